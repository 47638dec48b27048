from __future__ import annotations

"""Common interface for signal heuristics."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Iterable, Optional, Sequence

from ..models import CandidateSignal, Direction, OrderType
from ..risk import max_leverage, validity_for

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.data.market.snapshots import MarketSnapshot

    from .feeds import MarketFeed


@dataclass(frozen=True, slots=True)
class StrategyContext:
    """Per-tick inputs shared by every heuristic."""

    now: datetime
    feed: Optional["MarketFeed"] = None
    leverage_cap: int = 100


class Strategy(ABC):
    """Maps a batch of snapshots to candidate signals.

    Implementations must not mutate shared state. Returning an empty list means
    no opportunity; raising is reserved for malformed input.
    """

    name: str = ""
    kind: str = "default"
    max_signals: int = 3

    @abstractmethod
    def evaluate(
        self,
        snapshots: Sequence["MarketSnapshot"],
        context: StrategyContext,
    ) -> list[CandidateSignal]:
        """Return candidate signals for this tick."""

    def validity(self) -> tuple[timedelta, str]:
        return validity_for(self.kind)

    def _ceiling(self, symbol: str, context: StrategyContext) -> int:
        return min(max_leverage(symbol), max(1, context.leverage_cap))

    def _top(self, signals: Iterable[CandidateSignal]) -> list[CandidateSignal]:
        ordered = sorted(signals, key=lambda sig: sig.intensity, reverse=True)
        return ordered[: self.max_signals]

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def optimal_order_type(
    kind: str,
    leverage: int,
    urgency: str = "MEDIUM",
    *,
    entry_price: Optional[float] = None,
    current_price: Optional[float] = None,
) -> OrderType:
    """Pick an order placement mode from strategy kind, leverage and urgency."""
    if entry_price and current_price and abs(entry_price - current_price) / current_price > 0.001:
        if entry_price > current_price:
            return OrderType.CONDITIONAL
        return OrderType.CONDITIONAL if leverage > 25 else OrderType.LIMIT
    if urgency == "HIGH":
        return OrderType.CONDITIONAL if leverage > 50 else OrderType.MARKET
    if kind in {"scalping", "liquidation"}:
        return OrderType.CONDITIONAL if leverage > 25 else OrderType.MARKET
    if kind == "volume":
        return OrderType.TWAP
    return OrderType.LIMIT


def direction_from_sign(value: float) -> Direction:
    return Direction.LONG if value > 0 else Direction.SHORT


def top_by(
    snapshots: Iterable["MarketSnapshot"],
    key: Callable[["MarketSnapshot"], float],
    limit: int,
) -> list["MarketSnapshot"]:
    return sorted(snapshots, key=key, reverse=True)[:limit]


__all__ = [
    "Strategy",
    "StrategyContext",
    "direction_from_sign",
    "optimal_order_type",
    "top_by",
]
