from __future__ import annotations

"""SQLite storage for ranked signals and the positions opened from them."""

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.strategy.lifecycle import ClosedPosition, Position
    from perpsignal.strategy.models import Direction, RankedSignal, SignalStatus

logger = logging.getLogger("perpSignal.data.signal_store")

_SIGNAL_COLUMNS = (
    "symbol",
    "direction",
    "entryPrice",
    "targetPrice",
    "stopLoss",
    "leverage",
    "orderType",
    "reason",
    "timestamp",
    "timeframe",
    "validUntil",
    "createdAt",
    "expiresAt",
    "status",
    "strategy",
    "score",
)
_STATUSES = frozenset({"ACTIVE", "COMPLETED", "FAILED", "EXPIRED"})


def _epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _value(item: Any) -> str:
    return str(getattr(item, "value", item))


class SignalStore:
    """``trade_signals`` and ``active_positions`` tables behind one connection."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        if str(path) != ":memory:":
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if str(path) != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL;")
        self._ensure_schema()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS trade_signals (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              symbol TEXT NOT NULL,
              direction TEXT NOT NULL,
              entryPrice REAL NOT NULL,
              targetPrice REAL NOT NULL,
              stopLoss REAL NOT NULL,
              leverage INTEGER NOT NULL,
              orderType TEXT DEFAULT 'Market',
              reason TEXT NOT NULL,
              timestamp INTEGER NOT NULL,
              timeframe TEXT DEFAULT '15m',
              validUntil INTEGER,
              createdAt TEXT,
              expiresAt TEXT,
              status TEXT DEFAULT 'ACTIVE',
              strategy TEXT,
              score REAL
            );
            """
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_signals_status ON trade_signals(status, validUntil);"
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS active_positions (
              id TEXT PRIMARY KEY,
              symbol TEXT NOT NULL,
              side TEXT NOT NULL,
              size REAL NOT NULL,
              entry_price REAL NOT NULL,
              leverage INTEGER NOT NULL,
              take_profit REAL,
              stop_loss REAL,
              pnl REAL DEFAULT 0,
              status TEXT NOT NULL DEFAULT 'OPEN',
              strategy TEXT,
              order_id TEXT,
              exit_price REAL,
              close_reason TEXT,
              created_at TEXT NOT NULL,
              closed_at TEXT
            );
            """
        )

    def save_signals(self, ranked: Iterable["RankedSignal"]) -> int:
        rows = []
        for item in ranked:
            sig = item.signal
            rows.append(
                (
                    sig.symbol,
                    sig.direction.value,
                    sig.entry_price,
                    sig.target_price,
                    sig.stop_price,
                    sig.leverage,
                    sig.order_type.value,
                    sig.reason,
                    _epoch_ms(sig.created_at),
                    sig.timeframe,
                    _epoch_ms(sig.expires_at),
                    _iso(sig.created_at),
                    _iso(sig.expires_at),
                    "ACTIVE",
                    sig.strategy,
                    item.score,
                )
            )
        if not rows:
            return 0
        placeholders = ", ".join("?" for _ in _SIGNAL_COLUMNS)
        with self._lock:
            self._conn.executemany(
                f"INSERT INTO trade_signals ({', '.join(_SIGNAL_COLUMNS)}) VALUES ({placeholders});",
                rows,
            )
        logger.debug("Stored %s signals", len(rows))
        return len(rows)

    def get_active_signals(self, limit: int = 50) -> list[dict[str, Any]]:
        return self._select(
            "SELECT * FROM trade_signals WHERE status = 'ACTIVE' "
            "ORDER BY timestamp DESC, id DESC LIMIT ?;",
            (limit,),
        )

    def get_all_signals(self, limit: int = 100) -> list[dict[str, Any]]:
        return self._select(
            "SELECT * FROM trade_signals ORDER BY timestamp DESC, id DESC LIMIT ?;",
            (limit,),
        )

    def update_signal_status(
        self,
        symbol: str,
        direction: "Direction | str",
        status: "SignalStatus | str",
    ) -> int:
        """Move ACTIVE rows for symbol+direction to ``status``; returns rows changed."""
        new_status = _value(status).upper()
        if new_status not in _STATUSES:
            raise ValueError(f"Unknown signal status '{status}'")
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE trade_signals SET status = ? "
                "WHERE symbol = ? AND direction = ? AND status = 'ACTIVE';",
                (new_status, symbol.upper(), _value(direction).upper()),
            )
        if cursor.rowcount:
            logger.info("Signal %s %s marked %s", symbol, _value(direction), new_status)
        return cursor.rowcount

    def expire_signals(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        with self._lock:
            cursor = self._conn.execute(
                "UPDATE trade_signals SET status = 'EXPIRED' "
                "WHERE status = 'ACTIVE' AND validUntil IS NOT NULL AND validUntil <= ?;",
                (_epoch_ms(now),),
            )
        if cursor.rowcount:
            logger.debug("Expired %s signals", cursor.rowcount)
        return cursor.rowcount

    def record_position_open(self, position: "Position") -> None:
        position_id = (
            f"{position.symbol}:{position.direction.value}:{_epoch_ms(position.opened_at)}"
        )
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO active_positions (
                  id, symbol, side, size, entry_price, leverage, take_profit, stop_loss,
                  status, strategy, order_id, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'OPEN', ?, ?, ?);
                """,
                (
                    position_id,
                    position.symbol,
                    position.direction.value,
                    position.quantity,
                    position.entry_price,
                    position.leverage,
                    position.target_price,
                    position.stop_price,
                    position.strategy,
                    position.order_id,
                    _iso(position.opened_at),
                ),
            )

    def record_position_close(self, closed: "ClosedPosition") -> None:
        pnl = abs(closed.entry_price * closed.quantity) * closed.realized_move_pct / 100.0
        with self._lock:
            self._conn.execute(
                """
                UPDATE active_positions
                SET status = 'CLOSED', pnl = ?, exit_price = ?, close_reason = ?, closed_at = ?
                WHERE symbol = ? AND side = ? AND status = 'OPEN';
                """,
                (
                    pnl,
                    closed.exit_price,
                    closed.reason.value,
                    _iso(closed.closed_at),
                    closed.symbol,
                    closed.direction.value,
                ),
            )

    def get_open_positions(self) -> list[dict[str, Any]]:
        return self._select(
            "SELECT * FROM active_positions WHERE status = 'OPEN' ORDER BY created_at DESC;",
            (),
        )

    def _select(self, query: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]


__all__ = ["SignalStore"]
