from __future__ import annotations

"""Rolling per-symbol liquidation totals fed by the public stream."""

import logging
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Optional

from .constants import DEFAULT_LIQUIDATION_WINDOW
from .snapshots import LiquidationTotals

logger = logging.getLogger("perpSignal.market.liquidations")


class LiquidationAggregator:
    """Sum liquidation notional by side over a sliding time window.

    Bybit tags each liquidation with the side of the position that was
    closed: ``Buy`` events (liquidated longs) go to ``buy_volume`` and
    ``Sell`` events (liquidated shorts) to ``sell_volume``.
    """

    def __init__(self, window_seconds: float = DEFAULT_LIQUIDATION_WINDOW) -> None:
        self._window = timedelta(seconds=max(1.0, window_seconds))
        self._lock = threading.Lock()
        self._events: dict[str, Deque[tuple[datetime, str, float]]] = {}

    def add(self, symbol: str, side: str, notional: float, at: Optional[datetime] = None) -> None:
        if notional <= 0:
            return
        side_key = side.strip().capitalize()
        if side_key not in {"Buy", "Sell"}:
            logger.debug("Ignoring liquidation with unknown side %s for %s", side, symbol)
            return
        at = at or datetime.now(timezone.utc)
        with self._lock:
            self._events.setdefault(symbol.upper(), deque()).append((at, side_key, notional))

    def add_event(self, event: dict[str, Any]) -> None:
        """Ingest one ``allLiquidation`` entry (``s``, ``S``, ``v``, ``p``, ``T``)."""
        try:
            symbol = str(event.get("s") or event.get("symbol") or "")
            side = str(event.get("S") or event.get("side") or "")
            qty = float(event.get("v") or event.get("size") or 0.0)
            price = float(event.get("p") or event.get("price") or 0.0)
        except (TypeError, ValueError):
            logger.debug("Skipping malformed liquidation event: %s", event)
            return
        if not symbol:
            return
        ts = event.get("T") or event.get("updatedTime")
        at = None
        if ts:
            try:
                at = datetime.fromtimestamp(int(ts) / 1000.0, tz=timezone.utc)
            except (TypeError, ValueError, OverflowError):
                at = None
        self.add(symbol, side, qty * price, at)

    def totals(self, symbol: str, now: Optional[datetime] = None) -> Optional[LiquidationTotals]:
        """Totals inside the window, or None when nothing was seen for ``symbol``."""
        now = now or datetime.now(timezone.utc)
        cutoff = now - self._window
        with self._lock:
            events = self._events.get(symbol.upper())
            if not events:
                return None
            while events and events[0][0] < cutoff:
                events.popleft()
            if not events:
                return None
            buy = sum(notional for _, side, notional in events if side == "Buy")
            sell = sum(notional for _, side, notional in events if side == "Sell")
        return LiquidationTotals(buy_volume=buy, sell_volume=sell)

    def symbols(self) -> list[str]:
        with self._lock:
            return [sym for sym, events in self._events.items() if events]


__all__ = ["LiquidationAggregator"]
