from __future__ import annotations

"""High-leverage composite heuristic.

Three sources feed one candidate pool: extreme funding shortly before the
funding timestamp, massive one-sided liquidations, and price/volume patterns.
Target and stop come from dynamic support/resistance bands instead of
fixed percentages. Per symbol only the most confident candidate survives.
"""

import logging
import math
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Optional, Sequence

from ..models import CandidateSignal, Direction
from .base import Strategy, StrategyContext, direction_from_sign, optimal_order_type

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.data.market.snapshots import MarketSnapshot

logger = logging.getLogger("perpSignal.strategy.aggressive")

EXTREME_FUNDING_RATE = 0.005
FUNDING_WINDOW = timedelta(minutes=30)
MASSIVE_LIQUIDATIONS = 1_000_000.0
LIQUIDATION_DOMINANCE = 0.3
VOLUME_BREAKOUT_MULTIPLE = 3.0
VOLUME_BREAKOUT_MOVE = 5.0
MOMENTUM_SPIKE_MOVE = 10.0
MIN_CONFIDENCE = 70
BASE_RANGE = 0.02
# bands wider than this would put a LONG stop at or below zero
MAX_RANGE = 0.5

REFERENCE_VOLUMES: dict[str, float] = {
    "BTCUSDT": 1_000_000_000.0,
    "ETHUSDT": 500_000_000.0,
    "SOLUSDT": 100_000_000.0,
    "ADAUSDT": 50_000_000.0,
    "DOTUSDT": 30_000_000.0,
}
DEFAULT_REFERENCE_VOLUME = 50_000_000.0

_URGENCY_RANK = {"HIGH": 3, "MEDIUM": 2, "LOW": 1}


@dataclass(frozen=True, slots=True)
class DynamicLevels:
    """Support/resistance bands around ``pivot``; ``band`` is a price fraction."""

    pivot: float
    band: float

    @property
    def resistance1(self) -> float:
        return self.pivot * (1 + self.band * 0.5)

    @property
    def resistance2(self) -> float:
        return self.pivot * (1 + self.band)

    @property
    def support1(self) -> float:
        return self.pivot * (1 - self.band * 0.5)

    @property
    def support2(self) -> float:
        return self.pivot * (1 - self.band)


def dynamic_levels(price: float, change_24h: float, volume_24h: float) -> DynamicLevels:
    """Band widens with 24h volatility and with log-scaled 24h volume."""
    volatility = abs(change_24h) / 100.0
    volatility_mult = max(1.0, volatility * 20)
    volume_mult = max(1.0, math.log10(volume_24h / 1_000_000)) if volume_24h > 0 else 1.0
    band = min(BASE_RANGE * volatility_mult * volume_mult, MAX_RANGE)
    return DynamicLevels(pivot=price, band=band)


@dataclass(frozen=True, slots=True)
class _Setup:
    snapshot: "MarketSnapshot"
    direction: Direction
    leverage: int
    confidence: int
    urgency: str
    target_band: float
    stop_band: float
    source: str
    reason: str


class AggressiveStrategy(Strategy):
    name = "aggressive"
    kind = "aggressive"
    max_signals = 10

    max_liquidation_setups = 3
    max_pattern_setups = 5

    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[CandidateSignal]:
        setups = [
            *self._funding_setups(snapshots, context),
            *self._liquidation_setups(snapshots),
            *self._pattern_setups(snapshots),
        ]
        best: dict[str, _Setup] = {}
        for setup in setups:
            current = best.get(setup.snapshot.symbol)
            if current is None or setup.confidence > current.confidence:
                best[setup.snapshot.symbol] = setup
        kept = [setup for setup in best.values() if setup.confidence >= MIN_CONFIDENCE]
        kept.sort(
            key=lambda s: (_URGENCY_RANK[s.urgency], s.confidence, s.leverage),
            reverse=True,
        )
        if kept:
            logger.debug("Aggressive setups: %s", [(s.snapshot.symbol, s.source) for s in kept])
        return [self._build(setup, context) for setup in kept[: self.max_signals]]

    def _funding_setups(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[_Setup]:
        setups: list[_Setup] = []
        for snap in snapshots:
            rate = snap.funding_rate
            if abs(rate) <= EXTREME_FUNDING_RATE:
                continue
            if snap.next_funding_time is None:
                continue
            remaining = snap.next_funding_time - context.now
            if not timedelta(0) < remaining <= FUNDING_WINDOW:
                continue
            band = dynamic_levels(snap.price, snap.change_24h, snap.volume_24h).band
            setups.append(
                _Setup(
                    snapshot=snap,
                    direction=Direction.SHORT if rate > 0 else Direction.LONG,
                    leverage=100,
                    confidence=85,
                    urgency="HIGH",
                    target_band=band,
                    stop_band=band * 0.5,
                    source="funding",
                    reason=f"Extreme funding {rate * 100:.3f}% before settlement",
                )
            )
        return setups

    def _liquidation_setups(self, snapshots: Sequence["MarketSnapshot"]) -> list[_Setup]:
        massive = []
        for snap in snapshots:
            liq = snap.liquidations
            if liq is None or liq.total <= MASSIVE_LIQUIDATIONS:
                continue
            # imbalance > 0 means shorts were liquidated
            if abs(liq.imbalance) <= LIQUIDATION_DOMINANCE:
                continue
            massive.append(snap)
        massive.sort(key=lambda s: s.liquidations.total, reverse=True)
        setups: list[_Setup] = []
        for snap in massive[: self.max_liquidation_setups]:
            liq = snap.liquidations
            band = dynamic_levels(snap.price, snap.change_24h, snap.volume_24h).band
            setups.append(
                _Setup(
                    snapshot=snap,
                    direction=direction_from_sign(liq.imbalance),
                    leverage=75,
                    confidence=80,
                    urgency="HIGH",
                    target_band=band * 0.5,
                    stop_band=band,
                    source="liquidation",
                    reason=f"Massive liquidations ${liq.total / 1_000_000:.1f}M",
                )
            )
        return setups

    def _pattern_setups(self, snapshots: Sequence["MarketSnapshot"]) -> list[_Setup]:
        setups = [setup for setup in map(self._pattern, snapshots) if setup is not None]
        setups.sort(key=lambda s: s.confidence, reverse=True)
        return setups[: self.max_pattern_setups]

    def _pattern(self, snap: "MarketSnapshot") -> Optional[_Setup]:
        rate = snap.funding_rate
        change = snap.change_24h
        reference = REFERENCE_VOLUMES.get(snap.symbol, DEFAULT_REFERENCE_VOLUME)
        if abs(rate) > EXTREME_FUNDING_RATE:
            direction = Direction.SHORT if rate > 0 else Direction.LONG
            leverage, confidence = 100, 75
            reason = f"Funding reversal {rate * 100:.3f}%"
        elif snap.volume_24h > reference * VOLUME_BREAKOUT_MULTIPLE and abs(change) > VOLUME_BREAKOUT_MOVE:
            direction = direction_from_sign(change)
            leverage, confidence = 75, 80
            reason = f"Volume breakout {snap.volume_24h / reference:.1f}x normal volume"
        elif abs(change) > MOMENTUM_SPIKE_MOVE:
            direction = direction_from_sign(change)
            leverage, confidence = 50, 70
            reason = f"Momentum spike {change:.1f}% in 24h"
        else:
            return None
        band = dynamic_levels(snap.price, change, snap.volume_24h).band
        return _Setup(
            snapshot=snap,
            direction=direction,
            leverage=leverage,
            confidence=confidence,
            urgency="HIGH" if confidence > 80 else "MEDIUM",
            target_band=band * 0.5,
            stop_band=band * 0.5,
            source="pattern",
            reason=reason,
        )

    def _build(self, setup: _Setup, context: StrategyContext) -> CandidateSignal:
        snap = setup.snapshot
        leverage = min(setup.leverage, self._ceiling(snap.symbol, context))
        kind = "liquidation" if setup.source == "liquidation" else self.kind
        validity, timeframe = self.validity()
        return CandidateSignal.build(
            symbol=snap.symbol,
            direction=setup.direction,
            entry_price=snap.price,
            take_profit_pct=setup.target_band * 100,
            stop_loss_pct=setup.stop_band * 100,
            leverage=leverage,
            order_type=optimal_order_type(kind, leverage, setup.urgency),
            reason=setup.reason,
            strategy=self.name,
            timeframe=timeframe,
            now=context.now,
            validity=validity,
            intensity=setup.confidence / 100.0,
            metadata={"confidence": setup.confidence, "source": setup.source},
        )


__all__ = ["AggressiveStrategy", "DynamicLevels", "dynamic_levels"]
