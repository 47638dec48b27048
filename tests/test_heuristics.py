import math
from datetime import timedelta

import pytest

from perpsignal.strategy.heuristics import (
    AggressiveStrategy,
    FundingRateStrategy,
    LiquidationCascadeStrategy,
    LiquidationHuntStrategy,
    MomentumStrategy,
    StaticMarketFeed,
    Strategy,
    StrategyContext,
    StrategyEvaluator,
    StrategyRegistry,
    VolumeSpikeStrategy,
    WhaleFlow,
    WhaleMovementStrategy,
    available_strategies,
    create_strategy,
    default_strategies,
    dynamic_levels,
)
from perpsignal.strategy.models import Direction, OrderType
from perpsignal.strategy.risk import max_leverage


def _assert_ordered(sig):
    if sig.direction is Direction.LONG:
        assert sig.target_price > sig.entry_price > sig.stop_price
    else:
        assert sig.target_price < sig.entry_price < sig.stop_price


def test_funding_negative_rate_goes_long(snap, now):
    snapshot = snap(symbol="SOMENEWUSDT", funding_rate=-0.0017, volume_24h=20_000_000.0)
    signals = FundingRateStrategy().evaluate([snapshot], StrategyContext(now=now))
    assert len(signals) == 1
    sig = signals[0]
    assert sig.direction is Direction.LONG
    assert sig.leverage == max_leverage("SOMENEWUSDT")
    _assert_ordered(sig)
    assert sig.expires_at - now == timedelta(hours=8)
    assert sig.strategy == "funding"


def test_funding_ignores_mild_rates_and_thin_volume(snap, now):
    mild = snap(symbol="AAAUSDT", funding_rate=0.0005)
    thin = snap(symbol="BBBUSDT", funding_rate=0.003, volume_24h=500_000.0)
    assert FundingRateStrategy().evaluate([mild, thin], StrategyContext(now=now)) == []


def test_funding_positive_rate_goes_short(snap, now):
    snapshot = snap(symbol="BTCUSDT", funding_rate=0.00251)
    (sig,) = FundingRateStrategy().evaluate([snapshot], StrategyContext(now=now))
    assert sig.direction is Direction.SHORT
    assert sig.leverage == 50
    _assert_ordered(sig)


def test_momentum_follows_24h_move(snap, now):
    snapshot = snap(change_24h=8.0)
    (sig,) = MomentumStrategy().evaluate([snapshot], StrategyContext(now=now))
    assert sig.direction is Direction.LONG
    assert sig.leverage == 50
    assert sig.order_type is OrderType.LIMIT
    assert sig.expires_at - now == timedelta(minutes=45)


def test_volume_spike_needs_ratio_and_move(snap, now):
    spiking = snap(change_1m=0.3, volume_1m=400_000.0, avg_volume_5m=100_000.0)
    quiet = snap(symbol="ETHUSDT", change_1m=0.3, volume_1m=150_000.0, avg_volume_5m=100_000.0)
    signals = VolumeSpikeStrategy().evaluate([spiking, quiet], StrategyContext(now=now))
    assert [sig.symbol for sig in signals] == ["SOLUSDT"]
    sig = signals[0]
    assert sig.direction is Direction.LONG
    assert sig.leverage == 40
    assert sig.order_type is OrderType.CONDITIONAL
    _assert_ordered(sig)


def test_liquidation_cascade_short_squeeze(snap, now):
    # mostly shorts liquidated
    snapshot = snap(liquidations=(500_000.0, 4_500_000.0))
    (sig,) = LiquidationCascadeStrategy().evaluate([snapshot], StrategyContext(now=now))
    assert sig.direction is Direction.LONG
    assert sig.entry_price == pytest.approx(99.8)
    _assert_ordered(sig)


def test_liquidation_cascade_needs_imbalance(snap, now):
    snapshot = snap(liquidations=(2_400_000.0, 2_600_000.0))
    assert LiquidationCascadeStrategy().evaluate([snapshot], StrategyContext(now=now)) == []


def test_liquidation_hunt_fades_liquidated_longs(snap, now):
    # mostly longs liquidated
    snapshot = snap(liquidations=(4_000_000.0, 1_000_000.0))
    (sig,) = LiquidationHuntStrategy().evaluate([snapshot], StrategyContext(now=now))
    assert sig.direction is Direction.SHORT
    _assert_ordered(sig)
    assert sig.leverage <= max_leverage("SOLUSDT")
    assert sig.order_type is OrderType.MARKET


@pytest.mark.parametrize(
    "liquidations, expected",
    [
        ((4_500_000.0, 500_000.0), Direction.SHORT),
        ((500_000.0, 4_500_000.0), Direction.LONG),
    ],
)
def test_liquidation_strategies_agree_on_one_sided_flow(snap, now, liquidations, expected):
    snapshot = snap(liquidations=liquidations)
    context = StrategyContext(now=now)
    directions = {
        type(strategy).__name__: [sig.direction for sig in strategy.evaluate([snapshot], context)]
        for strategy in (LiquidationCascadeStrategy(), LiquidationHuntStrategy(), AggressiveStrategy())
    }
    assert directions == {
        "LiquidationCascadeStrategy": [expected],
        "LiquidationHuntStrategy": [expected],
        "AggressiveStrategy": [expected],
    }


def test_aggressive_funding_before_settlement(snap, now):
    snapshot = snap(funding_rate=0.006, next_funding_time=now + timedelta(minutes=20))
    (sig,) = AggressiveStrategy().evaluate([snapshot], StrategyContext(now=now))
    band = 0.02 * math.log10(50)
    assert sig.direction is Direction.SHORT
    assert sig.leverage == max_leverage("SOLUSDT")
    assert sig.metadata == {"confidence": 85, "source": "funding"}
    assert sig.target_price == pytest.approx(100.0 * (1 - band))
    assert sig.stop_price == pytest.approx(100.0 * (1 + band / 2))
    assert sig.order_type is OrderType.MARKET
    assert sig.expires_at - now == timedelta(minutes=45)
    _assert_ordered(sig)


def test_aggressive_funding_far_from_settlement_is_a_pattern(snap, now):
    snapshot = snap(funding_rate=-0.006, next_funding_time=now + timedelta(hours=2))
    (sig,) = AggressiveStrategy().evaluate([snapshot], StrategyContext(now=now))
    assert sig.direction is Direction.LONG
    assert sig.metadata == {"confidence": 75, "source": "pattern"}
    assert sig.take_profit_fraction == pytest.approx(sig.stop_loss_fraction)
    _assert_ordered(sig)


def test_aggressive_momentum_spike_and_quiet_market(snap, now):
    spiking = snap(change_24h=12.0)
    quiet = snap(symbol="ETHUSDT")
    (sig,) = AggressiveStrategy().evaluate([spiking, quiet], StrategyContext(now=now))
    assert sig.symbol == "SOLUSDT"
    assert sig.direction is Direction.LONG
    assert sig.order_type is OrderType.LIMIT
    _assert_ordered(sig)


def test_dynamic_levels_band_is_capped():
    levels = dynamic_levels(100.0, 80.0, 1e15)
    assert levels.band == 0.5
    assert levels.support2 == pytest.approx(50.0)
    assert levels.resistance1 == pytest.approx(125.0)
    assert dynamic_levels(100.0, 0.0, 0.0).band == pytest.approx(0.02)


def test_feed_strategies_skip_without_feed(snap, now):
    snapshot = snap()
    assert WhaleMovementStrategy().evaluate([snapshot], StrategyContext(now=now)) == []


def test_whale_movement_with_static_feed(snap, now):
    feed = StaticMarketFeed(
        whale={
            "SOLUSDT": WhaleFlow(
                large_transactions=5,
                whale_volume=5_000_000.0,
                exchange_inflow=1_000_000.0,
                exchange_outflow=3_000_000.0,
            )
        }
    )
    (sig,) = WhaleMovementStrategy().evaluate([snap()], StrategyContext(now=now, feed=feed))
    assert sig.direction is Direction.LONG
    _assert_ordered(sig)


def test_leverage_cap_from_context(snap, now):
    snapshot = snap(symbol="BTCUSDT", funding_rate=0.00251)
    (sig,) = FundingRateStrategy().evaluate([snapshot], StrategyContext(now=now, leverage_cap=10))
    assert sig.leverage == 10


def test_registry_lookup_and_errors():
    assert {"funding", "aggressive"} <= set(available_strategies())
    assert len(default_strategies()) == len(available_strategies())
    assert create_strategy(" Funding ").name == "funding"
    with pytest.raises(ValueError):
        create_strategy("does_not_exist")
    registry = StrategyRegistry([FundingRateStrategy()])
    with pytest.raises(ValueError):
        registry.register(FundingRateStrategy())
    assert registry.names() == ["funding"]


class _Broken(Strategy):
    name = "broken"

    def evaluate(self, snapshots, context):
        raise RuntimeError("boom")


def test_evaluator_isolates_failing_strategy(snap, now):
    registry = StrategyRegistry([_Broken(), FundingRateStrategy()])
    evaluator = StrategyEvaluator(registry)
    candidates = evaluator.evaluate([snap(funding_rate=-0.0017)], now)
    assert [sig.strategy for sig in candidates] == ["funding"]
