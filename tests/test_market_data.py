from datetime import timedelta

import pytest

from perpsignal.data.market import (
    LiquidationAggregator,
    LiquidationTotals,
    SnapshotError,
    parse_ticker_snapshot,
)

TICKER = {
    "symbol": "solusdt",
    "lastPrice": "152.3",
    "turnover24h": "812345678.5",
    "volume24h": "5300000",
    "price24hPcnt": "0.0412",
    "fundingRate": "-0.00012",
    "openInterest": "2100000",
    "nextFundingTime": "1714579200000",
}


def test_parse_ticker_snapshot(now):
    snapshot = parse_ticker_snapshot(TICKER, change_1m=0.4, captured_at=now)
    assert snapshot.symbol == "SOLUSDT"
    assert snapshot.price == 152.3
    assert snapshot.volume_24h == pytest.approx(812345678.5)
    assert snapshot.change_24h == pytest.approx(4.12)
    assert snapshot.funding_rate == pytest.approx(-0.00012)
    assert snapshot.open_interest == 2100000.0
    assert snapshot.next_funding_time.year == 2024
    assert snapshot.change_1m == 0.4
    assert snapshot.is_valid()


def test_open_interest_from_notional():
    ticker = dict(TICKER)
    del ticker["openInterest"]
    ticker["openInterestValue"] = "1523000"
    assert parse_ticker_snapshot(ticker).open_interest == pytest.approx(10000.0)


@pytest.mark.parametrize(
    "field, value",
    [("symbol", ""), ("lastPrice", "0"), ("lastPrice", "nan"), ("price24hPcnt", None), ("fundingRate", "")],
)
def test_parse_rejects_broken_payloads(field, value):
    ticker = dict(TICKER)
    ticker[field] = value
    with pytest.raises(SnapshotError):
        parse_ticker_snapshot(ticker)


def test_volume_ratio(snap):
    assert snap(volume_1m=300.0, avg_volume_5m=100.0).volume_ratio == 3.0
    assert snap(volume_1m=300.0, avg_volume_5m=0.0).volume_ratio is None
    assert snap().volume_ratio is None


def test_snapshot_validity(snap):
    assert not snap(price=-1.0).is_valid()
    assert not snap(symbol="").is_valid()
    assert not snap(volume_1m=-5.0).is_valid()


def test_liquidation_totals_imbalance():
    assert LiquidationTotals(0.0, 0.0).imbalance == 0.0
    totals = LiquidationTotals(buy_volume=1_000.0, sell_volume=3_000.0)
    assert totals.total == 4_000.0
    assert totals.imbalance == pytest.approx(0.5)


def test_aggregator_window(now):
    agg = LiquidationAggregator(window_seconds=60)
    agg.add("solusdt", "Buy", 1_000.0, now - timedelta(seconds=90))
    agg.add("SOLUSDT", "Buy", 2_000.0, now - timedelta(seconds=30))
    agg.add("SOLUSDT", "Sell", 500.0, now)
    agg.add("SOLUSDT", "Hold", 500.0, now)
    agg.add("SOLUSDT", "Sell", 0.0, now)
    totals = agg.totals("SOLUSDT", now)
    assert totals == LiquidationTotals(buy_volume=2_000.0, sell_volume=500.0)
    assert agg.totals("ETHUSDT", now) is None
    assert agg.totals("SOLUSDT", now + timedelta(minutes=5)) is None


def test_aggregator_stream_event(now):
    agg = LiquidationAggregator()
    ts = int(now.timestamp() * 1000)
    agg.add_event({"s": "BTCUSDT", "S": "Sell", "v": "0.5", "p": "60000", "T": ts})
    agg.add_event({"s": "BTCUSDT", "S": "Buy", "v": "bad", "p": "60000", "T": ts})
    totals = agg.totals("BTCUSDT", now)
    assert totals.sell_volume == pytest.approx(30_000.0)
    assert totals.buy_volume == 0.0
    assert agg.symbols() == ["BTCUSDT"]
