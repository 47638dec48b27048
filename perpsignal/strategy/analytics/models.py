from __future__ import annotations

"""Dataclasses shared by the closed-position analytics."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.strategy.lifecycle import ClosedPosition


@dataclass(slots=True)
class TradeRecord:
    """Realized outcome of one tracked position."""

    symbol: str
    direction: str
    strategy: str
    reason: str
    entry_price: float
    exit_price: float
    leverage: int
    opened_at: datetime
    closed_at: datetime
    holding_seconds: float
    move_pct: float
    leveraged_return_pct: float
    quantity: float = 0.0
    max_favorable_price: Optional[float] = None
    order_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def notional(self) -> float:
        return abs(self.entry_price * self.quantity)

    @property
    def realized_pnl(self) -> float:
        """Quote-currency PnL when a quantity is known, else 0."""
        return self.notional * self.move_pct / 100.0

    @classmethod
    def from_closed(cls, closed: "ClosedPosition", **metadata: Any) -> "TradeRecord":
        return cls(
            symbol=closed.symbol,
            direction=closed.direction.value,
            strategy=closed.strategy,
            reason=closed.reason.value,
            entry_price=closed.entry_price,
            exit_price=closed.exit_price,
            leverage=closed.leverage,
            opened_at=closed.opened_at,
            closed_at=closed.closed_at,
            holding_seconds=max(0.0, closed.holding_seconds),
            move_pct=closed.realized_move_pct,
            leveraged_return_pct=closed.leveraged_return_pct,
            quantity=closed.quantity,
            max_favorable_price=closed.max_favorable_price,
            order_id=closed.order_id,
            metadata=dict(metadata),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "direction": self.direction,
            "strategy": self.strategy,
            "reason": self.reason,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "leverage": self.leverage,
            "quantity": self.quantity,
            "opened_at": self.opened_at.isoformat(),
            "closed_at": self.closed_at.isoformat(),
            "holding_seconds": self.holding_seconds,
            "move_pct": self.move_pct,
            "leveraged_return_pct": self.leveraged_return_pct,
            "max_favorable_price": self.max_favorable_price,
            "order_id": self.order_id,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "TradeRecord":
        return cls(
            symbol=str(payload.get("symbol", "")).upper(),
            direction=str(payload.get("direction", "")).upper(),
            strategy=str(payload.get("strategy", "")),
            reason=str(payload.get("reason", "")),
            entry_price=float(payload.get("entry_price", 0.0) or 0.0),
            exit_price=float(payload.get("exit_price", 0.0) or 0.0),
            leverage=int(payload.get("leverage", 1) or 1),
            opened_at=cls._parse_datetime(payload.get("opened_at")),
            closed_at=cls._parse_datetime(payload.get("closed_at")),
            holding_seconds=float(payload.get("holding_seconds", 0.0) or 0.0),
            move_pct=float(payload.get("move_pct", 0.0) or 0.0),
            leveraged_return_pct=float(payload.get("leveraged_return_pct", 0.0) or 0.0),
            quantity=float(payload.get("quantity", 0.0) or 0.0),
            max_favorable_price=(
                float(payload["max_favorable_price"])
                if payload.get("max_favorable_price") is not None
                else None
            ),
            order_id=payload.get("order_id"),
            metadata=dict(payload.get("metadata", {}) or {}),
        )

    @staticmethod
    def _parse_datetime(value: Any) -> datetime:
        if isinstance(value, datetime):
            return value
        if isinstance(value, (int, float)):
            # epoch ms
            if value > 1_000_000_000_000:
                value = value / 1000.0
            return datetime.fromtimestamp(float(value), tz=timezone.utc)
        if isinstance(value, str) and value:
            try:
                return datetime.fromisoformat(value)
            except ValueError:
                pass
        return datetime.now(timezone.utc)


__all__ = ["TradeRecord"]
