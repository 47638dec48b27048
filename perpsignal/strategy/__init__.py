"""Signal generation, ranking and position lifecycle."""

from .engine import SignalEngine, TickReport
from .interfaces import Notifier, OrderGateway, OrderResult, SignalSink
from .lifecycle import ClosedPosition, ExitReason, Position, PositionLifecycleManager, PositionState
from .models import CandidateSignal, Direction, OrderType, RankedSignal, SignalStatus

__all__ = [
    "CandidateSignal",
    "ClosedPosition",
    "Direction",
    "ExitReason",
    "Notifier",
    "OrderGateway",
    "OrderResult",
    "OrderType",
    "Position",
    "PositionLifecycleManager",
    "PositionState",
    "RankedSignal",
    "SignalEngine",
    "SignalSink",
    "SignalStatus",
    "TickReport",
]
