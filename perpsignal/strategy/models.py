from __future__ import annotations

"""Signal value objects shared by heuristics, scoring and the lifecycle manager."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from .risk import clamp_leverage


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def opposite(self) -> "Direction":
        return Direction.SHORT if self is Direction.LONG else Direction.LONG

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1


class OrderType(str, Enum):
    MARKET = "Market"
    LIMIT = "Limit"
    CONDITIONAL = "Conditional"
    TWAP = "TWAP"
    ICEBERG = "Iceberg"


class SignalStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True, slots=True)
class CandidateSignal:
    """Unranked trade proposal emitted by a single heuristic."""

    symbol: str
    direction: Direction
    entry_price: float
    target_price: float
    stop_price: float
    leverage: int
    order_type: OrderType
    reason: str
    strategy: str
    timeframe: str
    created_at: datetime
    expires_at: datetime
    intensity: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.leverage < 1:
            raise ValueError(f"{self.symbol}: leverage must be >= 1, got {self.leverage}")
        if self.direction is Direction.LONG:
            ordered = self.target_price > self.entry_price > self.stop_price
        else:
            ordered = self.target_price < self.entry_price < self.stop_price
        if not ordered:
            raise ValueError(
                f"{self.symbol} {self.direction.value}: target/stop on wrong side of entry "
                f"(entry={self.entry_price} target={self.target_price} stop={self.stop_price})"
            )

    @classmethod
    def build(
        cls,
        *,
        symbol: str,
        direction: Direction,
        entry_price: float,
        take_profit_pct: float,
        stop_loss_pct: float,
        leverage: float,
        order_type: OrderType,
        reason: str,
        strategy: str,
        timeframe: str,
        now: datetime,
        validity: timedelta,
        intensity: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> "CandidateSignal":
        """Derive target/stop from percent distances and clamp leverage to the symbol ceiling."""
        tp = take_profit_pct / 100.0
        sl = stop_loss_pct / 100.0
        if direction is Direction.LONG:
            target = entry_price * (1 + tp)
            stop = entry_price * (1 - sl)
        else:
            target = entry_price * (1 - tp)
            stop = entry_price * (1 + sl)
        return cls(
            symbol=symbol.upper(),
            direction=direction,
            entry_price=entry_price,
            target_price=target,
            stop_price=stop,
            leverage=clamp_leverage(symbol, leverage),
            order_type=order_type,
            reason=reason,
            strategy=strategy,
            timeframe=timeframe,
            created_at=now,
            expires_at=now + validity,
            intensity=intensity,
            metadata=dict(metadata or {}),
        )

    @property
    def take_profit_fraction(self) -> float:
        return abs(self.target_price - self.entry_price) / self.entry_price

    @property
    def stop_loss_fraction(self) -> float:
        return abs(self.entry_price - self.stop_price) / self.entry_price

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True, slots=True)
class RankedSignal:
    """Scored candidate that survived expiry filtering and deduplication."""

    signal: CandidateSignal
    score: float
    confidence: float
    risk_reward: float

    @property
    def symbol(self) -> str:
        return self.signal.symbol

    @property
    def direction(self) -> Direction:
        return self.signal.direction

    @property
    def strategy(self) -> str:
        return self.signal.strategy

    def to_dict(self) -> dict[str, Any]:
        sig = self.signal
        return {
            "symbol": sig.symbol,
            "direction": sig.direction.value,
            "strategy": sig.strategy,
            "entry_price": sig.entry_price,
            "target_price": sig.target_price,
            "stop_price": sig.stop_price,
            "leverage": sig.leverage,
            "order_type": sig.order_type.value,
            "timeframe": sig.timeframe,
            "expires_at": sig.expires_at.isoformat(),
            "score": self.score,
            "confidence": self.confidence,
            "risk_reward": round(self.risk_reward, 4),
        }


__all__ = [
    "CandidateSignal",
    "Direction",
    "OrderType",
    "RankedSignal",
    "SignalStatus",
]
