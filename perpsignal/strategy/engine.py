from __future__ import annotations

"""Per-tick pipeline: evaluate, rank, open, run exits, hand results to collaborators.

``run_tick`` is the only entry point and is serialized by one lock, so the
scheduler and the push stream can both call it. Collaborator failures are
logged and never roll back lifecycle state.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence

from .interfaces import OrderResult
from .lifecycle import ClosedPosition, ExitReason, PositionLifecycleManager
from .models import Direction, RankedSignal, SignalStatus
from .scoring import DEFAULT_SCORE_WEIGHTS, ScoreWeights, SignalStats, best_by_strategy, rank, signal_stats

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.data.market.snapshots import MarketSnapshot

    from .analytics import PerformanceTracker, TradeLedger
    from .heuristics import StrategyEvaluator
    from .interfaces import Notifier, OrderGateway, SignalSink

logger = logging.getLogger("perpSignal.strategy.engine")


@dataclass(slots=True)
class TickReport:
    timestamp: datetime
    snapshots: int = 0
    dropped: int = 0
    candidates: int = 0
    ranked: list[RankedSignal] = field(default_factory=list)
    opened: list[RankedSignal] = field(default_factory=list)
    skipped: list[RankedSignal] = field(default_factory=list)
    failed: list[RankedSignal] = field(default_factory=list)
    closed: list[ClosedPosition] = field(default_factory=list)
    stats: Optional[SignalStats] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "snapshots": self.snapshots,
            "dropped": self.dropped,
            "candidates": self.candidates,
            "ranked": len(self.ranked),
            "opened": [item.symbol for item in self.opened],
            "skipped": [item.symbol for item in self.skipped],
            "failed": [item.symbol for item in self.failed],
            "closed": [f"{item.symbol}:{item.reason.value}" for item in self.closed],
            "stats": self.stats.to_dict() if self.stats else None,
        }


class SignalEngine:
    """Wire the evaluator, scorer and lifecycle manager to their collaborators."""

    def __init__(
        self,
        evaluator: "StrategyEvaluator",
        lifecycle: PositionLifecycleManager,
        *,
        max_signals: int = 10,
        weights: ScoreWeights = DEFAULT_SCORE_WEIGHTS,
        sink: Optional["SignalSink"] = None,
        notifier: Optional["Notifier"] = None,
        gateway: Optional["OrderGateway"] = None,
        ledger: Optional["TradeLedger"] = None,
        performance: Optional["PerformanceTracker"] = None,
    ) -> None:
        self._evaluator = evaluator
        self._lifecycle = lifecycle
        self._max_signals = max(1, max_signals)
        self._weights = weights
        self._sink = sink
        self._notifier = notifier
        self._gateway = gateway
        self._ledger = ledger
        self._performance = performance
        self._lock = threading.Lock()
        self._last_report: Optional[TickReport] = None

    @property
    def lifecycle(self) -> PositionLifecycleManager:
        return self._lifecycle

    @property
    def last_report(self) -> Optional[TickReport]:
        return self._last_report

    def run_tick(
        self,
        snapshots: Sequence["MarketSnapshot"],
        now: Optional[datetime] = None,
    ) -> TickReport:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            report = self._run(snapshots, now)
            self._last_report = report
        return report

    def close_position(
        self,
        symbol: str,
        direction: Direction,
        price: float,
        now: Optional[datetime] = None,
        reason: ExitReason = ExitReason.MANUAL,
    ) -> Optional[ClosedPosition]:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            closed = self._lifecycle.close(symbol, direction, price, now, reason)
            if closed is not None:
                self._handle_closed([closed])
        return closed

    def status_snapshot(self, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        payload = self._lifecycle.status_snapshot(now)
        report = self._last_report
        payload["last_tick"] = report.to_dict() if report else None
        return payload

    def shutdown(self, now: Optional[datetime] = None) -> dict[str, Any]:
        """Flush a status snapshot. Open positions are left as they are."""
        with self._lock:
            status = self.status_snapshot(now)
        logger.info(
            "Shutdown with %s open positions: %s",
            len(status["open_positions"]),
            json.dumps(status["open_positions"], ensure_ascii=True),
        )
        return status

    def _run(self, snapshots: Sequence["MarketSnapshot"], now: datetime) -> TickReport:
        valid = [snap for snap in snapshots if snap.is_valid()]
        report = TickReport(
            timestamp=now,
            snapshots=len(valid),
            dropped=len(snapshots) - len(valid),
        )
        if report.dropped:
            logger.debug("Dropped %s invalid snapshots", report.dropped)

        candidates = self._evaluator.evaluate(valid, now)
        report.candidates = len(candidates)
        ranked = rank(candidates, now, self._max_signals, self._weights)
        report.ranked = ranked
        report.stats = signal_stats(ranked)

        if ranked:
            self._log_decision_snapshot(
                {
                    "timestamp": now,
                    "candidates": len(candidates),
                    "ranked": [item.to_dict() for item in ranked],
                    "stats": report.stats.to_dict(),
                    "best_by_strategy": {
                        name: item.symbol for name, item in best_by_strategy(ranked).items()
                    },
                }
            )
            if self._sink is not None:
                self._call("signal sink save", self._sink.save_signals, ranked)

        for item in ranked:
            self._accept(item, now, report)

        closed = self._lifecycle.evaluate({snap.symbol: snap for snap in valid}, now)
        report.closed = closed
        if closed:
            self._handle_closed(closed)

        if self._sink is not None:
            self._call("signal sink expiry", self._sink.expire_signals, now)

        logger.info(
            "Tick %s: snapshots=%s candidates=%s ranked=%s opened=%s skipped=%s failed=%s closed=%s",
            now.isoformat(),
            report.snapshots,
            report.candidates,
            len(ranked),
            len(report.opened),
            len(report.skipped),
            len(report.failed),
            len(closed),
        )
        return report

    def _accept(self, item: RankedSignal, now: datetime, report: TickReport) -> None:
        signal = item.signal
        self._lifecycle.record_signal(signal)
        position = self._lifecycle.begin(signal, now)
        if position is None:
            report.skipped.append(item)
            return
        result = self._open_order(item)
        if not result.opened:
            self._lifecycle.abandon(position)
            report.failed.append(item)
            logger.warning(
                "Open failed for %s %s (%s): %s",
                signal.symbol,
                signal.direction.value,
                signal.strategy,
                result.error or "rejected",
            )
            if self._sink is not None:
                self._call(
                    "signal sink status",
                    self._sink.update_signal_status,
                    signal.symbol,
                    signal.direction,
                    SignalStatus.FAILED,
                )
            return
        self._lifecycle.confirm(position, order_id=result.order_id, quantity=result.quantity)
        report.opened.append(item)
        if self._sink is not None:
            self._call("position journal open", self._sink.record_position_open, position)
        if self._notifier is not None:
            self._call("signal notification", self._notifier.notify_signal, item)

    def _open_order(self, item: RankedSignal) -> OrderResult:
        if self._gateway is None:
            return OrderResult(opened=True)
        try:
            return self._gateway.open(item.signal)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Order gateway raised for %s: %s", item.symbol, exc)
            return OrderResult.failure(str(exc))

    def _handle_closed(self, closed: list[ClosedPosition]) -> None:
        for item in closed:
            status = SignalStatus.COMPLETED if item.is_win else SignalStatus.FAILED
            self._log_decision_snapshot({"event": "close", **item.to_dict()})
            if self._sink is not None:
                self._call(
                    "signal sink status",
                    self._sink.update_signal_status,
                    item.symbol,
                    item.direction,
                    status,
                )
                self._call("position journal close", self._sink.record_position_close, item)
            if self._notifier is not None:
                self._call("close notification", self._notifier.notify_close, item)
        if self._ledger is None:
            return
        records = self._call("trade ledger", self._ledger.record, closed)
        if records and self._performance is not None:
            summary = self._call("performance tracker", self._performance.record, records)
            if summary:
                total = summary["total"]
                logger.info(
                    "Performance: trades=%s win_rate=%.2f avg_move=%.3f%%",
                    total["trades"],
                    total["win_rate"],
                    total["avg_move_pct"],
                )

    @staticmethod
    def _call(label: str, func: Callable[..., Any], *args: Any) -> Any:
        try:
            return func(*args)
        except Exception as exc:  # noqa: BLE001
            logger.exception("%s failed: %s", label, exc)
            return None

    def _log_decision_snapshot(self, payload: dict[str, Any]) -> None:
        try:
            message = json.dumps(payload, default=self._json_default, ensure_ascii=True)
        except TypeError:
            logger.debug("Failed to serialize decision snapshot payload; emitting fallback repr")
            message = repr(payload)
        logger.info("DecisionSnapshot %s", message)

    @staticmethod
    def _json_default(obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, (Direction, SignalStatus, ExitReason)):
            return obj.value
        raise TypeError(f"Object of type {type(obj)!r} is not JSON serializable")


__all__ = ["SignalEngine", "TickReport"]
