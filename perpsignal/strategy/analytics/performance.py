from __future__ import annotations

"""Win rate, average move and profit factor over closed positions."""

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Deque, Iterable, Optional

from .models import TradeRecord

logger = logging.getLogger("perpSignal.analytics.performance")


@dataclass(slots=True)
class PerformanceSummary:
    """Aggregates over unleveraged percent moves."""

    trades: int = 0
    wins: int = 0
    losses: int = 0
    ties: int = 0
    win_rate: float = 0.0
    avg_win_pct: float = 0.0
    avg_loss_pct: float = 0.0
    net_move_pct: float = 0.0
    profit_factor: float = 0.0
    avg_move_pct: float = 0.0
    avg_leveraged_return_pct: float = 0.0
    avg_holding_seconds: float = 0.0
    by_reason: dict[str, int] = field(default_factory=dict)
    by_strategy: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "trades": self.trades,
            "wins": self.wins,
            "losses": self.losses,
            "ties": self.ties,
            "win_rate": self.win_rate,
            "avg_win_pct": self.avg_win_pct,
            "avg_loss_pct": self.avg_loss_pct,
            "net_move_pct": self.net_move_pct,
            "profit_factor": self.profit_factor,
            "avg_move_pct": self.avg_move_pct,
            "avg_leveraged_return_pct": self.avg_leveraged_return_pct,
            "avg_holding_seconds": self.avg_holding_seconds,
            "by_reason": dict(self.by_reason),
            "by_strategy": dict(self.by_strategy),
        }


def compute_summary(records: list[TradeRecord]) -> PerformanceSummary:
    trades = len(records)
    if trades == 0:
        return PerformanceSummary()
    wins = 0
    losses = 0
    ties = 0
    sum_win = 0.0
    sum_loss = 0.0
    by_reason: dict[str, int] = {}
    by_strategy: dict[str, int] = {}
    for record in records:
        move = record.move_pct
        if move > 0:
            wins += 1
            sum_win += move
        elif move < 0:
            losses += 1
            sum_loss += abs(move)
        else:
            ties += 1
        by_reason[record.reason] = by_reason.get(record.reason, 0) + 1
        by_strategy[record.strategy] = by_strategy.get(record.strategy, 0) + 1
    if sum_loss:
        profit_factor = sum_win / sum_loss
    else:
        profit_factor = float("inf") if sum_win else 0.0
    return PerformanceSummary(
        trades=trades,
        wins=wins,
        losses=losses,
        ties=ties,
        win_rate=wins / trades,
        avg_win_pct=(sum_win / wins) if wins else 0.0,
        avg_loss_pct=(sum_loss / losses) if losses else 0.0,
        net_move_pct=sum_win - sum_loss,
        profit_factor=profit_factor,
        avg_move_pct=sum(r.move_pct for r in records) / trades,
        avg_leveraged_return_pct=sum(r.leveraged_return_pct for r in records) / trades,
        avg_holding_seconds=sum(r.holding_seconds for r in records) / trades,
        by_reason=by_reason,
        by_strategy=by_strategy,
    )


class PerformanceTracker:
    """Maintain total and rolling-window summaries backed by the trade history."""

    def __init__(
        self,
        *,
        history_file: Path,
        output_file: Path,
        window_size: int = 50,
    ) -> None:
        self._history_file = Path(history_file)
        self._output_file = Path(output_file)
        self._output_file.parent.mkdir(parents=True, exist_ok=True)
        self._window_size = max(1, window_size)
        self._total_records: list[TradeRecord] = []
        self._recent: Deque[TradeRecord] = deque(maxlen=self._window_size)
        self._load_history()

    @property
    def output_file(self) -> Path:
        return self._output_file

    def _load_history(self) -> None:
        if not self._history_file.exists():
            return
        try:
            with self._history_file.open("r", encoding="utf-8") as handle:
                for line in handle:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = TradeRecord.from_dict(json.loads(line))
                    except (json.JSONDecodeError, TypeError, ValueError):
                        logger.debug("Skipping malformed trade history line during load")
                        continue
                    self._total_records.append(record)
                    self._recent.append(record)
        except OSError as exc:
            logger.warning("Failed to preload trade history from %s: %s", self._history_file, exc)

    def record(self, records: Iterable[TradeRecord]) -> Optional[dict[str, dict[str, Any]]]:
        added = False
        for record in records:
            self._total_records.append(record)
            self._recent.append(record)
            added = True
        if not added:
            return None
        snapshot = self.snapshot()
        self._write_snapshot(snapshot)
        return snapshot

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {
            "total": compute_summary(self._total_records).to_dict(),
            "window": compute_summary(list(self._recent)).to_dict(),
        }

    def _write_snapshot(self, payload: dict[str, dict[str, Any]]) -> None:
        try:
            with self._output_file.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=True, indent=2)
        except OSError as exc:
            logger.error("Failed to persist performance snapshot to %s: %s", self._output_file, exc)


__all__ = ["PerformanceSummary", "PerformanceTracker", "compute_summary"]
