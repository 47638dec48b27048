from __future__ import annotations

"""Collaborator contracts the engine calls: storage, notification, execution."""

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Optional, Protocol, Sequence

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .lifecycle import ClosedPosition, Position
    from .models import CandidateSignal, Direction, RankedSignal, SignalStatus


@dataclass(frozen=True, slots=True)
class OrderResult:
    opened: bool
    order_id: Optional[str] = None
    quantity: float = 0.0
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "OrderResult":
        return cls(opened=False, error=error)


class SignalSink(Protocol):
    def save_signals(self, ranked: Sequence["RankedSignal"]) -> int: ...

    def get_active_signals(self) -> list[dict[str, Any]]: ...

    def update_signal_status(
        self,
        symbol: str,
        direction: "Direction | str",
        status: "SignalStatus | str",
    ) -> int: ...

    def expire_signals(self, now: datetime) -> int: ...

    def record_position_open(self, position: "Position") -> None: ...

    def record_position_close(self, closed: "ClosedPosition") -> None: ...


class Notifier(Protocol):
    def notify_signal(self, ranked: "RankedSignal") -> None: ...

    def notify_close(self, closed: "ClosedPosition") -> None: ...


class OrderGateway(Protocol):
    def open(self, signal: "CandidateSignal") -> OrderResult: ...


__all__ = ["Notifier", "OrderGateway", "OrderResult", "SignalSink"]
