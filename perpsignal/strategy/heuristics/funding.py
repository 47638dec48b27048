from __future__ import annotations

"""Funding-rate contrarian heuristic."""

import logging
import math
from typing import TYPE_CHECKING, Sequence

from ..models import CandidateSignal, Direction, OrderType
from .base import Strategy, StrategyContext, top_by

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.data.market.snapshots import MarketSnapshot

logger = logging.getLogger("perpSignal.strategy.funding")

MIN_FUNDING_RATE = 0.001
EXTREME_FUNDING_RATE = 0.002
MIN_VOLUME = 1_000_000.0
MIN_LEVERAGE = 5
LEVERAGE_PER_RATE = 20_000
STOP_MARGIN_SHARE = 0.7
REWARD_MULTIPLE = 4.0


def _order_type(rate: float, leverage: int) -> OrderType:
    magnitude = abs(rate)
    if magnitude > EXTREME_FUNDING_RATE:
        return OrderType.CONDITIONAL if leverage > 25 else OrderType.MARKET
    if magnitude > MIN_FUNDING_RATE:
        return OrderType.LIMIT
    return OrderType.TWAP


class FundingRateStrategy(Strategy):
    """Fade crowded funding: positive rate means longs pay, so go SHORT."""

    name = "funding"
    kind = "funding"
    max_signals = 3

    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[CandidateSignal]:
        extreme = [
            snap
            for snap in snapshots
            if abs(snap.funding_rate) > MIN_FUNDING_RATE and snap.volume_24h > MIN_VOLUME
        ]
        validity, timeframe = self.validity()
        signals: list[CandidateSignal] = []
        for snap in top_by(extreme, lambda s: abs(s.funding_rate), self.max_signals):
            rate = snap.funding_rate
            direction = Direction.SHORT if rate > 0 else Direction.LONG
            raw_leverage = max(MIN_LEVERAGE, math.floor(abs(rate) * LEVERAGE_PER_RATE))
            leverage = min(raw_leverage, self._ceiling(snap.symbol, context))
            stop_pct = 100.0 / leverage * STOP_MARGIN_SHARE
            payer = "longs pay shorts" if rate > 0 else "shorts pay longs"
            signals.append(
                CandidateSignal.build(
                    symbol=snap.symbol,
                    direction=direction,
                    entry_price=snap.price,
                    take_profit_pct=stop_pct * REWARD_MULTIPLE,
                    stop_loss_pct=stop_pct,
                    leverage=leverage,
                    order_type=_order_type(rate, leverage),
                    reason=f"Funding Rate {rate * 100:.4f}% | {payer}",
                    strategy=self.name,
                    timeframe=timeframe,
                    now=context.now,
                    validity=validity,
                    intensity=abs(rate),
                    metadata={"funding_rate": rate},
                )
            )
        if signals:
            logger.debug("Funding candidates: %s", [sig.symbol for sig in signals])
        return signals


__all__ = ["FundingRateStrategy"]
