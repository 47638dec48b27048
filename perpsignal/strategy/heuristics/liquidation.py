from __future__ import annotations

"""Heuristics built on aggregated liquidation volume."""

import math
from datetime import timedelta
from typing import TYPE_CHECKING, Sequence

from ..models import CandidateSignal, Direction, OrderType
from .base import Strategy, StrategyContext, direction_from_sign, top_by

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.data.market.snapshots import MarketSnapshot


class LiquidationCascadeStrategy(Strategy):
    """Anticipate a squeeze when one side dominates forced liquidations.

    ``sell_volume`` counts liquidated shorts and ``buy_volume`` liquidated
    longs. Short liquidations dominating is read as a squeeze in progress
    (LONG), long liquidations dominating as a flush (SHORT).
    """

    name = "liquidation_cascade"
    kind = "liquidation"
    max_signals = 3

    min_liquidations = 1_000_000.0
    min_volume = 10_000_000.0
    min_intensity = 0.05
    min_imbalance = 0.4
    direction_threshold = 0.3
    market_intensity = 0.1
    entry_offset = 0.002

    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[CandidateSignal]:
        signals: list[CandidateSignal] = []
        for snap in snapshots:
            liq = snap.liquidations
            if liq is None or liq.total <= self.min_liquidations:
                continue
            if snap.volume_24h <= self.min_volume:
                continue
            intensity = liq.total / snap.volume_24h
            if intensity < self.min_intensity:
                continue
            skew = liq.imbalance
            if abs(skew) < self.min_imbalance:
                continue
            if skew > self.direction_threshold:
                direction = Direction.LONG
            elif skew < -self.direction_threshold:
                direction = Direction.SHORT
            else:
                direction = direction_from_sign(snap.change_24h)
            scaled = intensity * 10
            ceiling = self._ceiling(snap.symbol, context)
            leverage = min(max(15, min(15 + math.floor(scaled * 5), ceiling)), ceiling)
            take_profit = min(0.8 + scaled * 0.3, 2.5)
            stop_loss = min(0.4 + scaled * 0.1, 1.0)
            if direction is Direction.LONG:
                entry = snap.price * (1 - self.entry_offset)
                label = "Short Squeeze"
            else:
                entry = snap.price * (1 + self.entry_offset)
                label = "Long Dump"
            signals.append(
                CandidateSignal.build(
                    symbol=snap.symbol,
                    direction=direction,
                    entry_price=entry,
                    take_profit_pct=take_profit,
                    stop_loss_pct=stop_loss,
                    leverage=leverage,
                    order_type=(
                        OrderType.MARKET if intensity > self.market_intensity else OrderType.CONDITIONAL
                    ),
                    reason=(
                        f"Liquidation {label} | Liq: {intensity * 100:.1f}% "
                        f"| Imbalance: {abs(skew) * 100:.0f}%"
                    ),
                    strategy=self.name,
                    timeframe="5m",
                    now=context.now,
                    validity=timedelta(minutes=30),
                    intensity=intensity,
                )
            )
        return self._top(signals)


class LiquidationHuntStrategy(Strategy):
    """High-leverage play against the side being liquidated.

    Heavier short liquidations (``sell_volume``) point LONG, heavier long
    liquidations point SHORT, matching the cascade heuristic.
    """

    name = "liquidation_hunt"
    kind = "liquidation"
    max_signals = 2

    min_volume = 20_000_000.0
    min_imbalance = 0.3
    base_leverage = 75
    stop_margin_share = 0.6
    reward_multiple = 5.0

    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[CandidateSignal]:
        eligible = [
            snap
            for snap in snapshots
            if snap.liquidations is not None
            and snap.liquidations.total > 0
            and snap.volume_24h > self.min_volume
        ]
        validity, timeframe = self.validity()
        signals: list[CandidateSignal] = []
        for snap in top_by(eligible, lambda s: s.liquidations.total, self.max_signals):
            liq = snap.liquidations
            if abs(liq.buy_volume - liq.sell_volume) / liq.total < self.min_imbalance:
                continue
            direction = Direction.LONG if liq.sell_volume > liq.buy_volume else Direction.SHORT
            intensity = min(liq.total / snap.volume_24h * 100, 5.0)
            raw = min(self.base_leverage + math.floor(intensity * 5), context.leverage_cap)
            leverage = min(raw, self._ceiling(snap.symbol, context))
            stop_pct = 100.0 / leverage * self.stop_margin_share
            signals.append(
                CandidateSignal.build(
                    symbol=snap.symbol,
                    direction=direction,
                    entry_price=snap.price,
                    take_profit_pct=stop_pct * self.reward_multiple,
                    stop_loss_pct=stop_pct,
                    leverage=leverage,
                    order_type=OrderType.MARKET,
                    reason=f"Liquidation Hunt {direction.value} | Liq/Vol: {intensity:.2f}%",
                    strategy=self.name,
                    timeframe=timeframe,
                    now=context.now,
                    validity=validity,
                    intensity=intensity,
                )
            )
        return signals


__all__ = ["LiquidationCascadeStrategy", "LiquidationHuntStrategy"]
