from __future__ import annotations

"""Append-only JSONL history of closed positions."""

import json
import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List

from .models import TradeRecord

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.strategy.lifecycle import ClosedPosition

logger = logging.getLogger("perpSignal.analytics.trade_ledger")


class TradeLedger:
    """Persist one :class:`TradeRecord` line per closed position."""

    def __init__(self, *, history_file: Path) -> None:
        self._history_file = Path(history_file)
        self._history_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @property
    def history_file(self) -> Path:
        return self._history_file

    def record(self, closed: Iterable["ClosedPosition"]) -> List[TradeRecord]:
        records = [TradeRecord.from_closed(item) for item in closed]
        if records:
            self._append_records(records)
        return records

    def load(self) -> List[TradeRecord]:
        records: List[TradeRecord] = []
        if not self._history_file.exists():
            return records
        try:
            with self._history_file.open("r", encoding="utf-8") as handle:
                for line in handle:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(TradeRecord.from_dict(json.loads(line)))
                    except (json.JSONDecodeError, TypeError, ValueError):
                        logger.debug("Skipping malformed trade history line: %s", line)
        except OSError as exc:
            logger.warning("Failed to load trade history from %s: %s", self._history_file, exc)
        return records

    def _append_records(self, records: Iterable[TradeRecord]) -> None:
        with self._lock:
            try:
                with self._history_file.open("a", encoding="utf-8") as handle:
                    for record in records:
                        handle.write(json.dumps(record.to_dict(), ensure_ascii=True))
                        handle.write("\n")
            except OSError as exc:
                logger.error("Failed to persist trade history to %s: %s", self._history_file, exc)


__all__ = ["TradeLedger"]
