from __future__ import annotations

"""Volume-driven heuristics."""

import math
from datetime import timedelta
from typing import TYPE_CHECKING, Sequence

from ..models import CandidateSignal, Direction, OrderType
from .base import Strategy, StrategyContext, direction_from_sign, top_by

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.data.market.snapshots import MarketSnapshot


class VolumeSpikeStrategy(Strategy):
    """Follow the 1m price move when 1m volume bursts past the 5m average."""

    name = "volume_spike"
    kind = "scalping"
    max_signals = 5

    min_volume = 5_000_000.0
    min_ratio = 3.0
    min_move_pct = 0.05
    market_ratio = 5.0
    entry_offset = 0.0005

    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[CandidateSignal]:
        signals: list[CandidateSignal] = []
        for snap in snapshots:
            ratio = snap.volume_ratio
            if ratio is None or snap.volume_24h <= self.min_volume:
                continue
            if ratio < self.min_ratio or snap.change_1m is None:
                continue
            move = abs(snap.change_1m)
            if move < self.min_move_pct:
                continue
            direction = direction_from_sign(snap.change_1m)
            ceiling = self._ceiling(snap.symbol, context)
            leverage = min(max(20, min(math.floor(ratio * 10), ceiling)), ceiling)
            take_profit = min(0.3 + ratio * 0.1, 1.5)
            stop_loss = min(0.2 + move * 0.05, 0.5)
            if direction is Direction.LONG:
                entry = snap.price * (1 + self.entry_offset)
            else:
                entry = snap.price * (1 - self.entry_offset)
            signals.append(
                CandidateSignal.build(
                    symbol=snap.symbol,
                    direction=direction,
                    entry_price=entry,
                    take_profit_pct=take_profit,
                    stop_loss_pct=stop_loss,
                    leverage=leverage,
                    order_type=OrderType.MARKET if ratio > self.market_ratio else OrderType.CONDITIONAL,
                    reason=(
                        f"Volume Spike {ratio:.1f}x | Price {snap.change_1m:+.3f}% "
                        f"| TP: {take_profit:.2f}% | SL: {stop_loss:.2f}%"
                    ),
                    strategy=self.name,
                    timeframe="1m",
                    now=context.now,
                    validity=timedelta(minutes=15),
                    intensity=ratio,
                )
            )
        return self._top(signals)


class VolumeAnomalyStrategy(Strategy):
    """Fade outsized turnover relative to open interest outside the top names."""

    name = "volume_anomaly"
    kind = "volume"
    max_signals = 2

    skip_top = 5
    min_ratio = 0.3
    min_volume = 5_000_000.0
    base_leverage = 50
    stop_margin_share = 0.65
    reward_multiple = 4.0

    @staticmethod
    def _turnover_ratio(snap: "MarketSnapshot") -> float:
        notional_oi = snap.price * snap.open_interest
        if notional_oi <= 0:
            return 0.0
        return snap.volume_24h / notional_oi

    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[CandidateSignal]:
        by_volume = sorted(snapshots, key=lambda s: s.volume_24h, reverse=True)[self.skip_top:]
        anomalies = [
            snap
            for snap in by_volume
            if self._turnover_ratio(snap) > self.min_ratio and snap.volume_24h > self.min_volume
        ]
        validity, timeframe = self.validity()
        signals: list[CandidateSignal] = []
        for snap in top_by(anomalies, self._turnover_ratio, self.max_signals):
            ratio = self._turnover_ratio(snap)
            direction = Direction.SHORT if snap.change_24h > 0 else Direction.LONG
            raw = self.base_leverage + math.floor(ratio * 100)
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
                    order_type=OrderType.LIMIT,
                    reason=(
                        f"Volume Anomaly {ratio:.2f}x OI | 24h vol ${snap.volume_24h / 1_000_000:.2f}M "
                        f"| 24h: {snap.change_24h:+.2f}%"
                    ),
                    strategy=self.name,
                    timeframe=timeframe,
                    now=context.now,
                    validity=validity,
                    intensity=ratio,
                )
            )
        return signals


__all__ = ["VolumeAnomalyStrategy", "VolumeSpikeStrategy"]
