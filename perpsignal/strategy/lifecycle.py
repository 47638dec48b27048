from __future__ import annotations

"""Tracked positions and their automatic exit conditions.

The manager owns the open-position set and the last accepted signal per
symbol. Every call that touches either goes through one lock, and each
:meth:`PositionLifecycleManager.evaluate` pass completes before the next one
starts.

Exit checks run in a fixed order and the first match closes the position:
trailing ratchet (never closes by itself), take profit, stop loss (against
the tighter of the static and trailing stop), opposite signal,
pre-liquidation guard, volatility spike, liquidation cluster, timeout.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping, Optional

from perpsignal.config.engine_config import LifecycleConfig

from .models import CandidateSignal, Direction
from .risk import liquidation_price, trailing_stop

logger = logging.getLogger("perpSignal.strategy.lifecycle")


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    OPPOSITE_SIGNAL = "opposite_signal"
    PRE_LIQUIDATION = "pre_liquidation"
    VOLATILITY_SPIKE = "volatility_spike"
    LIQUIDATION_CLUSTER = "liquidation_cluster"
    TIMEOUT = "timeout"
    MANUAL = "manual"


class PositionState(str, Enum):
    PENDING = "PENDING"
    OPEN = "OPEN"
    CLOSED = "CLOSED"


@dataclass(slots=True)
class Position:
    symbol: str
    direction: Direction
    entry_price: float
    leverage: int
    target_price: float
    stop_price: float
    opened_at: datetime
    timeout: timedelta
    strategy: str = ""
    trailing_stop: Optional[float] = None
    liquidation_price: float = 0.0
    max_favorable_price: float = 0.0
    state: PositionState = PositionState.PENDING
    order_id: Optional[str] = None
    quantity: float = 0.0

    def __post_init__(self) -> None:
        if not self.max_favorable_price:
            self.max_favorable_price = self.entry_price

    @property
    def key(self) -> tuple[str, Direction]:
        return self.symbol, self.direction

    def effective_stop(self) -> float:
        if self.trailing_stop is None:
            return self.stop_price
        if self.direction is Direction.LONG:
            return max(self.stop_price, self.trailing_stop)
        return min(self.stop_price, self.trailing_stop)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "direction": self.direction.value,
            "state": self.state.value,
            "strategy": self.strategy,
            "entry_price": self.entry_price,
            "target_price": self.target_price,
            "stop_price": self.stop_price,
            "trailing_stop": self.trailing_stop,
            "effective_stop": self.effective_stop(),
            "liquidation_price": self.liquidation_price,
            "max_favorable_price": self.max_favorable_price,
            "leverage": self.leverage,
            "quantity": self.quantity,
            "order_id": self.order_id,
            "opened_at": self.opened_at.isoformat(),
            "timeout_minutes": self.timeout.total_seconds() / 60.0,
        }


@dataclass(frozen=True, slots=True)
class ClosedPosition:
    """Terminal record emitted when an exit condition fires."""

    symbol: str
    direction: Direction
    entry_price: float
    exit_price: float
    reason: ExitReason
    opened_at: datetime
    closed_at: datetime
    leverage: int
    strategy: str = ""
    max_favorable_price: float = 0.0
    quantity: float = 0.0
    order_id: Optional[str] = None

    @property
    def holding_seconds(self) -> float:
        return (self.closed_at - self.opened_at).total_seconds()

    @property
    def realized_move_pct(self) -> float:
        """Direction-adjusted, unleveraged percent move from entry to exit."""
        move = (self.exit_price - self.entry_price) / self.entry_price * 100.0
        return move * self.direction.sign

    @property
    def leveraged_return_pct(self) -> float:
        return self.realized_move_pct * self.leverage

    @property
    def is_win(self) -> bool:
        return self.realized_move_pct > 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "direction": self.direction.value,
            "strategy": self.strategy,
            "reason": self.reason.value,
            "entry_price": self.entry_price,
            "exit_price": self.exit_price,
            "leverage": self.leverage,
            "quantity": self.quantity,
            "order_id": self.order_id,
            "opened_at": self.opened_at.isoformat(),
            "closed_at": self.closed_at.isoformat(),
            "holding_seconds": round(self.holding_seconds, 3),
            "realized_move_pct": round(self.realized_move_pct, 6),
            "leveraged_return_pct": round(self.leveraged_return_pct, 6),
            "max_favorable_price": self.max_favorable_price,
        }


class PositionLifecycleManager:
    """Turn accepted signals into positions and close them on exit conditions."""

    def __init__(self, config: Optional[LifecycleConfig] = None) -> None:
        self._config = config or LifecycleConfig()
        self._lock = threading.Lock()
        self._open: dict[tuple[str, Direction], Position] = {}
        self._last_signals: dict[str, CandidateSignal] = {}

    @property
    def config(self) -> LifecycleConfig:
        return self._config

    @property
    def timeout(self) -> timedelta:
        return timedelta(minutes=self._config.timeout_minutes)

    def record_signal(self, signal: CandidateSignal) -> None:
        with self._lock:
            self._last_signals[signal.symbol] = signal

    def last_signal(self, symbol: str) -> Optional[CandidateSignal]:
        with self._lock:
            return self._last_signals.get(symbol.upper())

    def last_signals(self) -> dict[str, CandidateSignal]:
        with self._lock:
            return dict(self._last_signals)

    def can_open(self, signal: CandidateSignal) -> bool:
        with self._lock:
            return (signal.symbol, signal.direction) not in self._open

    def begin(self, signal: CandidateSignal, now: datetime) -> Optional[Position]:
        """Reserve the symbol+direction slot with a PENDING position."""
        key = (signal.symbol, signal.direction)
        with self._lock:
            existing = self._open.get(key)
            if existing is not None:
                logger.info(
                    "Skipping %s %s from %s: position already %s",
                    signal.symbol,
                    signal.direction.value,
                    signal.strategy,
                    existing.state.value,
                )
                return None
            position = Position(
                symbol=signal.symbol,
                direction=signal.direction,
                entry_price=signal.entry_price,
                leverage=signal.leverage,
                target_price=signal.target_price,
                stop_price=signal.stop_price,
                opened_at=now,
                timeout=self.timeout,
                strategy=signal.strategy,
                liquidation_price=liquidation_price(
                    signal.entry_price,
                    signal.leverage,
                    signal.direction,
                    self._config.maintenance_margin_ratio,
                ),
            )
            self._open[key] = position
            return position

    def confirm(
        self,
        position: Position,
        order_id: Optional[str] = None,
        quantity: float = 0.0,
    ) -> bool:
        with self._lock:
            tracked = self._open.get(position.key)
            if tracked is not position or position.state is not PositionState.PENDING:
                logger.warning(
                    "Cannot confirm %s %s: not a pending position",
                    position.symbol,
                    position.direction.value,
                )
                return False
            position.state = PositionState.OPEN
            position.order_id = order_id
            position.quantity = quantity
        logger.info(
            "Opened %s %s @ %.6f lev=%sx target=%.6f stop=%.6f liq=%.6f",
            position.symbol,
            position.direction.value,
            position.entry_price,
            position.leverage,
            position.target_price,
            position.stop_price,
            position.liquidation_price,
        )
        return True

    def abandon(self, position: Position) -> None:
        with self._lock:
            tracked = self._open.get(position.key)
            if tracked is position and position.state is PositionState.PENDING:
                del self._open[position.key]
                position.state = PositionState.CLOSED

    def open_position(
        self,
        signal: CandidateSignal,
        now: datetime,
        *,
        order_id: Optional[str] = None,
        quantity: float = 0.0,
    ) -> Optional[Position]:
        position = self.begin(signal, now)
        if position is None:
            return None
        self.confirm(position, order_id=order_id, quantity=quantity)
        return position

    def evaluate(
        self,
        snapshots_by_symbol: Mapping[str, Any],
        now: datetime,
    ) -> list[ClosedPosition]:
        """Run the exit checks for every OPEN position with a snapshot this tick.

        Positions opened at ``now`` are first evaluated on the next tick.
        """
        closed: list[ClosedPosition] = []
        with self._lock:
            for key, position in list(self._open.items()):
                if position.state is not PositionState.OPEN:
                    continue
                if position.opened_at >= now:
                    continue
                snapshot = snapshots_by_symbol.get(position.symbol)
                if snapshot is None:
                    continue
                reason = self._check_exit(position, snapshot, now)
                if reason is None:
                    self._update_favorable(position, snapshot.price)
                    continue
                del self._open[key]
                closed.append(self._finalize(position, snapshot.price, now, reason))
        for item in closed:
            logger.info(
                "Closed %s %s reason=%s entry=%.6f exit=%.6f move=%.3f%%",
                item.symbol,
                item.direction.value,
                item.reason.value,
                item.entry_price,
                item.exit_price,
                item.realized_move_pct,
            )
        return closed

    def close(
        self,
        symbol: str,
        direction: Direction,
        price: float,
        now: datetime,
        reason: ExitReason = ExitReason.MANUAL,
    ) -> Optional[ClosedPosition]:
        key = (symbol.upper(), direction)
        with self._lock:
            position = self._open.get(key)
            if position is None or position.state is not PositionState.OPEN:
                return None
            del self._open[key]
            result = self._finalize(position, price, now, reason)
        logger.info("Closed %s %s on request (%s)", result.symbol, direction.value, reason.value)
        return result

    def positions(self) -> list[Position]:
        with self._lock:
            return [replace(position) for position in self._open.values()]

    def open_count(self) -> int:
        with self._lock:
            return sum(1 for p in self._open.values() if p.state is PositionState.OPEN)

    def status_snapshot(self, now: datetime) -> dict[str, Any]:
        with self._lock:
            positions = [position.to_dict() for position in self._open.values()]
            signals = {
                symbol: {
                    "direction": sig.direction.value,
                    "strategy": sig.strategy,
                    "entry_price": sig.entry_price,
                    "created_at": sig.created_at.isoformat(),
                    "expires_at": sig.expires_at.isoformat(),
                }
                for symbol, sig in self._last_signals.items()
            }
        return {
            "timestamp": now.isoformat(),
            "open_positions": positions,
            "last_signals": signals,
        }

    def _check_exit(self, position: Position, snapshot: Any, now: datetime) -> Optional[ExitReason]:
        cfg = self._config
        price = snapshot.price
        long = position.direction is Direction.LONG

        position.trailing_stop = trailing_stop(
            price,
            position.entry_price,
            position.direction,
            cfg.trailing_fraction,
            position.trailing_stop,
            activation=cfg.trailing_activation,
        )

        if (long and price >= position.target_price) or (
            not long and price <= position.target_price
        ):
            return ExitReason.TAKE_PROFIT

        stop = position.effective_stop()
        if (long and price <= stop) or (not long and price >= stop):
            return ExitReason.STOP_LOSS

        last = self._last_signals.get(position.symbol)
        if last is not None and last.direction is not position.direction:
            return ExitReason.OPPOSITE_SIGNAL

        position.liquidation_price = liquidation_price(
            position.entry_price,
            position.leverage,
            position.direction,
            cfg.maintenance_margin_ratio,
        )
        buffer = cfg.pre_liquidation_buffer
        if long and price <= position.liquidation_price * (1 + buffer):
            return ExitReason.PRE_LIQUIDATION
        if not long and price >= position.liquidation_price * (1 - buffer):
            return ExitReason.PRE_LIQUIDATION

        change_1m = getattr(snapshot, "change_1m", None)
        if change_1m is not None and abs(change_1m) > cfg.volatility_spike_pct:
            return ExitReason.VOLATILITY_SPIKE

        liquidations = getattr(snapshot, "liquidations", None)
        if liquidations is not None and liquidations.total > cfg.liquidation_cluster_threshold:
            return ExitReason.LIQUIDATION_CLUSTER

        if now - position.opened_at > position.timeout:
            return ExitReason.TIMEOUT
        return None

    @staticmethod
    def _update_favorable(position: Position, price: float) -> None:
        if position.direction is Direction.LONG:
            position.max_favorable_price = max(position.max_favorable_price, price)
        else:
            position.max_favorable_price = min(position.max_favorable_price, price)

    @staticmethod
    def _finalize(
        position: Position,
        price: float,
        now: datetime,
        reason: ExitReason,
    ) -> ClosedPosition:
        position.state = PositionState.CLOSED
        return ClosedPosition(
            symbol=position.symbol,
            direction=position.direction,
            entry_price=position.entry_price,
            exit_price=price,
            reason=reason,
            opened_at=position.opened_at,
            closed_at=now,
            leverage=position.leverage,
            strategy=position.strategy,
            max_favorable_price=position.max_favorable_price,
            quantity=position.quantity,
            order_id=position.order_id,
        )


__all__ = [
    "ClosedPosition",
    "ExitReason",
    "Position",
    "PositionLifecycleManager",
    "PositionState",
]
