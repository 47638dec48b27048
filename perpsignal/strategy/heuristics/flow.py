from __future__ import annotations

"""Order-flow heuristics fed by an injected :class:`MarketFeed`.

Whale flow, book depth and CVD deltas are not derived from the ticker stream.
Without a feed these strategies return no candidates; their thresholds have
not been validated against live data.
"""

import math
from datetime import timedelta
from typing import TYPE_CHECKING, Sequence

from ..models import CandidateSignal, Direction, OrderType
from .base import Strategy, StrategyContext, direction_from_sign

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.data.market.snapshots import MarketSnapshot

    from .feeds import CvdDelta


class WhaleMovementStrategy(Strategy):
    name = "whale_movement"
    kind = "default"
    max_signals = 3

    min_volume = 25_000_000.0
    min_intensity = 0.15
    min_large_transactions = 3
    entry_offset = 0.003

    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[CandidateSignal]:
        if context.feed is None:
            return []
        signals: list[CandidateSignal] = []
        for snap in snapshots:
            if snap.volume_24h <= self.min_volume:
                continue
            flow = context.feed.whale_flow(snap.symbol)
            if flow is None:
                continue
            intensity = min(flow.whale_volume / snap.volume_24h, 0.5) * 2
            if intensity < self.min_intensity or flow.large_transactions < self.min_large_transactions:
                continue
            net = flow.exchange_outflow - flow.exchange_inflow
            if net > flow.exchange_inflow * 0.5:
                direction = Direction.LONG
            elif net < -flow.exchange_outflow * 0.5:
                direction = Direction.SHORT
            else:
                direction = direction_from_sign(snap.change_24h)
            ceiling = self._ceiling(snap.symbol, context)
            leverage = min(max(20, min(20 + math.floor(intensity * 20), ceiling)), ceiling)
            ratio = flow.flow_ratio
            take_profit = min(0.8 + intensity * 0.6, 2.0)
            stop_loss = min(0.4 + abs(ratio) * 0.3, 0.8)
            if direction is Direction.LONG:
                entry = snap.price * (1 - self.entry_offset)
            else:
                entry = snap.price * (1 + self.entry_offset)
            if ratio > 0.2:
                flow_text = "Outflow"
            elif ratio < -0.2:
                flow_text = "Inflow"
            else:
                flow_text = "Balanced"
            signals.append(
                CandidateSignal.build(
                    symbol=snap.symbol,
                    direction=direction,
                    entry_price=entry,
                    take_profit_pct=take_profit,
                    stop_loss_pct=stop_loss,
                    leverage=leverage,
                    order_type=OrderType.CONDITIONAL,
                    reason=(
                        f"Whale Movement {intensity * 100:.0f}% | {flow_text} "
                        f"| {flow.large_transactions} Large TX"
                    ),
                    strategy=self.name,
                    timeframe="30m",
                    now=context.now,
                    validity=timedelta(minutes=60),
                    intensity=intensity,
                )
            )
        return self._top(signals)


class OrderbookImbalanceStrategy(Strategy):
    """Scalp toward the heavier side of a tight book."""

    name = "orderbook_imbalance"
    kind = "scalping"
    max_signals = 5

    min_volume = 50_000_000.0
    min_strength = 0.3
    max_spread_pct = 0.03
    tight_spread_pct = 0.02

    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[CandidateSignal]:
        if context.feed is None:
            return []
        signals: list[CandidateSignal] = []
        for snap in snapshots:
            if snap.volume_24h <= self.min_volume:
                continue
            depth = context.feed.orderbook_depth(snap.symbol)
            if depth is None or depth.bid_volume <= 0 or depth.ask_volume <= 0:
                continue
            ratio = depth.bid_ask_ratio
            strength = abs(math.log(ratio)) / 2
            spread = depth.spread_pct
            if strength < self.min_strength or spread > self.max_spread_pct:
                continue
            if ratio > 2 and spread < self.tight_spread_pct:
                direction = Direction.LONG
            elif ratio < 0.5 and spread < self.tight_spread_pct:
                direction = Direction.SHORT
            else:
                direction = Direction.LONG if ratio > 1 else Direction.SHORT
            ceiling = self._ceiling(snap.symbol, context)
            leverage = min(max(30, min(30 + math.floor(strength * 40), ceiling)), ceiling)
            take_profit = min(0.15 + strength * 0.2, 0.5)
            stop_loss = min(0.08 + spread * 5, 0.25)
            half_spread = spread / 100.0 / 2
            if direction is Direction.LONG:
                entry = snap.price * (1 - half_spread)
            else:
                entry = snap.price * (1 + half_spread)
            signals.append(
                CandidateSignal.build(
                    symbol=snap.symbol,
                    direction=direction,
                    entry_price=entry,
                    take_profit_pct=take_profit,
                    stop_loss_pct=stop_loss,
                    leverage=leverage,
                    order_type=OrderType.LIMIT,
                    reason=(
                        f"Orderbook Imbalance {strength * 100:.0f}% | Ratio: {ratio:.2f} "
                        f"| Spread: {spread * 100:.0f}bps"
                    ),
                    strategy=self.name,
                    timeframe="30s",
                    now=context.now,
                    validity=timedelta(minutes=2),
                    intensity=strength,
                )
            )
        return self._top(signals)


def _cvd_direction(delta: "CvdDelta", change_24h: float) -> Direction:
    futures, spot = delta.futures_delta, delta.spot_delta
    ratio = futures / (spot or 1.0)
    if ratio > 2 and change_24h > 0:
        return Direction.SHORT
    if ratio < 0.5 and spot > 0:
        return Direction.LONG
    if math.copysign(1, futures) == math.copysign(1, spot):
        return direction_from_sign(futures)
    dominant = futures if abs(futures) > abs(spot) else spot
    return direction_from_sign(dominant)


def _cvd_confidence(delta: "CvdDelta", change_24h: float) -> float:
    futures, spot = delta.futures_delta, delta.spot_delta
    value = 0.5
    if delta.spot_volume_spike:
        value += 0.2
    value += abs(futures - spot) / (abs(futures) + abs(spot) + 1) * 0.3
    dominant = futures if abs(futures) > abs(spot) else spot
    if math.copysign(1, dominant) != math.copysign(1, change_24h):
        value += 0.2
    return min(value, 1.0)


class CvdDivergenceStrategy(Strategy):
    """Trade divergence between futures and spot cumulative volume delta."""

    name = "cvd_divergence"
    kind = "momentum"
    max_signals = 4

    min_volume = 8_000_000.0
    min_total_delta = 100_000.0
    min_divergence = 0.3
    min_confidence = 0.6
    entry_offset = 0.0015

    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[CandidateSignal]:
        if context.feed is None:
            return []
        signals: list[CandidateSignal] = []
        for snap in snapshots:
            if snap.volume_24h <= self.min_volume:
                continue
            delta = context.feed.cvd_delta(snap.symbol)
            if delta is None:
                continue
            total = abs(delta.futures_delta) + abs(delta.spot_delta)
            if total < self.min_total_delta:
                continue
            divergence = abs(delta.futures_delta - delta.spot_delta) / total
            if divergence < self.min_divergence:
                continue
            confidence = _cvd_confidence(delta, snap.change_24h)
            if confidence < self.min_confidence:
                continue
            direction = _cvd_direction(delta, snap.change_24h)
            ceiling = self._ceiling(snap.symbol, context)
            leverage = min(max(20, min(20 + math.floor(divergence * 15), ceiling)), ceiling)
            take_profit = min(0.6 + divergence * confidence * 0.4, 1.8)
            stop_loss = max(0.5 - confidence * 0.2, 0.25)
            if direction is Direction.LONG:
                entry = snap.price * (1 - self.entry_offset)
            else:
                entry = snap.price * (1 + self.entry_offset)
            futures_flow = "Buy" if delta.futures_delta > 0 else "Sell"
            spot_flow = "Buy" if delta.spot_delta > 0 else "Sell"
            signals.append(
                CandidateSignal.build(
                    symbol=snap.symbol,
                    direction=direction,
                    entry_price=entry,
                    take_profit_pct=take_profit,
                    stop_loss_pct=stop_loss,
                    leverage=leverage,
                    order_type=OrderType.CONDITIONAL if confidence > 0.8 else OrderType.LIMIT,
                    reason=(
                        f"CVD Divergence {divergence * 100:.0f}% | Futures: {futures_flow} "
                        f"| Spot: {spot_flow} | Conf: {confidence * 100:.0f}%"
                    ),
                    strategy=self.name,
                    timeframe="15m",
                    now=context.now,
                    validity=timedelta(minutes=45),
                    intensity=confidence,
                    metadata={"divergence": divergence},
                )
            )
        return self._top(signals)


__all__ = [
    "CvdDivergenceStrategy",
    "OrderbookImbalanceStrategy",
    "WhaleMovementStrategy",
]
