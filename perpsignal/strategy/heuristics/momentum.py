from __future__ import annotations

"""Trend-following heuristics: 24h momentum and 1m micro-breakout scalping."""

import math
from typing import TYPE_CHECKING, Sequence

from ..models import CandidateSignal
from .base import Strategy, StrategyContext, direction_from_sign, optimal_order_type, top_by

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.data.market.snapshots import MarketSnapshot


class MomentumStrategy(Strategy):
    """Ride large 24h moves; calmer moves get more leverage."""

    name = "momentum"
    kind = "momentum"
    max_signals = 3

    min_change_pct = 5.0
    min_volume = 5_000_000.0
    min_leverage = 25
    stop_margin_share = 0.8
    reward_multiple = 3.0

    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[CandidateSignal]:
        moving = [
            snap
            for snap in snapshots
            if abs(snap.change_24h) > self.min_change_pct and snap.volume_24h > self.min_volume
        ]
        validity, timeframe = self.validity()
        signals: list[CandidateSignal] = []
        for snap in top_by(moving, lambda s: abs(s.change_24h), self.max_signals):
            change = snap.change_24h
            direction = direction_from_sign(change)
            base = min(round(50 / abs(change) * 10), context.leverage_cap)
            leverage = min(max(self.min_leverage, base), self._ceiling(snap.symbol, context))
            stop_pct = 100.0 / leverage * self.stop_margin_share
            signals.append(
                CandidateSignal.build(
                    symbol=snap.symbol,
                    direction=direction,
                    entry_price=snap.price,
                    take_profit_pct=stop_pct * self.reward_multiple,
                    stop_loss_pct=stop_pct,
                    leverage=leverage,
                    order_type=optimal_order_type(self.kind, leverage, "MEDIUM"),
                    reason=f"Momentum {direction.value} | 24h: {change:+.2f}%",
                    strategy=self.name,
                    timeframe=timeframe,
                    now=context.now,
                    validity=validity,
                    intensity=abs(change),
                )
            )
        return signals


class ScalpingStrategy(Strategy):
    """Micro-breakout: a sharp 1m move on at least double the 5m average volume."""

    name = "scalping"
    kind = "scalping"
    max_signals = 5

    min_change_1m = 0.25
    min_volume_ratio = 2.0
    max_funding = 0.001
    base_leverage = 75

    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[CandidateSignal]:
        validity = self.validity()[0]
        signals: list[CandidateSignal] = []
        for snap in snapshots:
            if snap.change_1m is None or snap.volume_1m is None or snap.avg_volume_5m is None:
                continue
            volatility = abs(snap.change_1m)
            if volatility <= self.min_change_1m:
                continue
            if snap.volume_1m <= snap.avg_volume_5m * self.min_volume_ratio:
                continue
            if abs(snap.funding_rate) >= self.max_funding:
                continue
            direction = direction_from_sign(snap.change_1m)
            raw = self.base_leverage + math.floor(volatility * 10)
            leverage = min(raw, self._ceiling(snap.symbol, context))
            signals.append(
                CandidateSignal.build(
                    symbol=snap.symbol,
                    direction=direction,
                    entry_price=snap.price,
                    take_profit_pct=0.15 + volatility * 0.5,
                    stop_loss_pct=0.08 + volatility * 0.2,
                    leverage=leverage,
                    order_type=optimal_order_type(self.kind, leverage, "HIGH"),
                    reason=(
                        f"Scalping {direction.value} | Spike 1m: {snap.change_1m:+.2f}% "
                        f"| Vol 1m: ${snap.volume_1m:,.0f}"
                    ),
                    strategy=self.name,
                    timeframe="30s",
                    now=context.now,
                    validity=validity,
                    intensity=volatility,
                )
            )
        return self._top(signals)


__all__ = ["MomentumStrategy", "ScalpingStrategy"]
