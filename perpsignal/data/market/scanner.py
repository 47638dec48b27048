from __future__ import annotations

"""REST snapshot acquisition: tickers for the universe, klines for the leaders."""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional, Sequence

from perpsignal.exchange.bybit_v5 import BybitAPIError

from .constants import (
    DEFAULT_CATEGORY,
    DEFAULT_KLINE_SYMBOLS,
    DEFAULT_SCAN_INTERVAL,
    DEFAULT_SETTLE_COIN,
    DEFAULT_SYMBOL_LIMIT,
)
from .snapshots import MarketSnapshot, SnapshotError, parse_ticker_snapshot

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.config.engine_config import ScannerConfig
    from perpsignal.exchange.bybit_v5 import BybitV5Client

    from .liquidations import LiquidationAggregator

logger = logging.getLogger("perpSignal.market.scanner")

# current candle plus the five before it
_KLINE_LIMIT = 6

SnapshotCallback = Callable[[list[MarketSnapshot]], None]


@dataclass(frozen=True, slots=True)
class KlineStats:
    change_1m: float  # percent
    volume_1m: float
    avg_volume_5m: float


def _turnover_key(item: dict[str, Any]) -> float:
    for key in ("turnover24h", "volume24h"):
        try:
            return float(item.get(key))
        except (TypeError, ValueError):
            continue
    return 0.0


def kline_stats(rows: Sequence[Sequence[Any]]) -> Optional[KlineStats]:
    """1m stats from v5 kline rows (newest first).

    The newest candle gives the 1m change (close vs open, percent) and the 1m
    quote volume; the candles before it give the 5m average.
    """
    candles: list[tuple[int, float, float, float]] = []
    for row in rows:
        try:
            start = int(row[0])
            open_price = float(row[1])
            close = float(row[4])
            volume = float(row[6]) if len(row) > 6 else float(row[5]) * close
        except (TypeError, ValueError, IndexError):
            logger.debug("Skipping malformed kline row: %s", row)
            continue
        candles.append((start, open_price, close, volume))
    if len(candles) < 2:
        return None
    candles.sort(key=lambda c: c[0])
    _, open_price, close, volume = candles[-1]
    history = candles[:-1][-5:]
    if open_price <= 0:
        return None
    return KlineStats(
        change_1m=(close - open_price) / open_price * 100.0,
        volume_1m=volume,
        avg_volume_5m=sum(c[3] for c in history) / len(history),
    )


class MarketScanner:
    """Poll Bybit tickers and build one snapshot per symbol in the universe."""

    def __init__(
        self,
        client: "BybitV5Client",
        *,
        aggregator: Optional["LiquidationAggregator"] = None,
        config: Optional["ScannerConfig"] = None,
        on_snapshots: Optional[SnapshotCallback] = None,
    ) -> None:
        self._client = client
        self._aggregator = aggregator
        self._on_snapshots = on_snapshots
        self.interval = config.interval if config else DEFAULT_SCAN_INTERVAL
        self._limit = max(1, config.symbol_limit if config else DEFAULT_SYMBOL_LIMIT)
        self._kline_symbols = max(0, config.kline_symbols if config else DEFAULT_KLINE_SYMBOLS)
        self._category = (config.category if config else None) or DEFAULT_CATEGORY
        self._settle_coin = (config.settle_coin if config else None) or DEFAULT_SETTLE_COIN
        self._exclude = {s.upper() for s in (config.exclude_symbols if config else ())}
        self._lock = threading.Lock()
        self._snapshots: dict[str, MarketSnapshot] = {}
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    def last_snapshots(self) -> dict[str, MarketSnapshot]:
        with self._lock:
            return dict(self._snapshots)

    def scan_once(self, now: Optional[datetime] = None) -> list[MarketSnapshot]:
        now = now or datetime.now(timezone.utc)
        response = self._client.get_tickers(category=self._category)
        tickers = [
            item
            for item in response.get("result", {}).get("list") or []
            if self._accept_symbol(str(item.get("symbol") or ""))
        ]
        tickers.sort(key=_turnover_key, reverse=True)
        tickers = tickers[: self._limit]

        snapshots: list[MarketSnapshot] = []
        for index, ticker in enumerate(tickers):
            symbol = str(ticker.get("symbol")).upper()
            stats = self._fetch_kline_stats(symbol) if index < self._kline_symbols else None
            liquidations = self._aggregator.totals(symbol, now) if self._aggregator else None
            try:
                snapshot = parse_ticker_snapshot(
                    ticker,
                    change_1m=stats.change_1m if stats else None,
                    volume_1m=stats.volume_1m if stats else None,
                    avg_volume_5m=stats.avg_volume_5m if stats else None,
                    liquidations=liquidations,
                    captured_at=now,
                )
            except SnapshotError as exc:
                logger.debug("Skipping %s: %s", symbol, exc)
                continue
            snapshots.append(snapshot)

        with self._lock:
            self._snapshots = {snap.symbol: snap for snap in snapshots}
        logger.debug(
            "Scanned %s tickers (%s with kline stats)",
            len(snapshots),
            min(len(tickers), self._kline_symbols),
        )
        return snapshots

    def apply_ticker(
        self,
        symbol: str,
        data: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> Optional[MarketSnapshot]:
        """Re-price the last snapshot of ``symbol`` from a stream ticker push."""
        try:
            price = float(data.get("lastPrice"))
        except (TypeError, ValueError):
            return None
        if price <= 0:
            return None
        now = now or datetime.now(timezone.utc)
        key = symbol.upper()
        with self._lock:
            current = self._snapshots.get(key)
            if current is None:
                return None
            updated = current.with_price(price, captured_at=now)
            if self._aggregator is not None:
                updated = updated.with_liquidations(self._aggregator.totals(key, now))
            self._snapshots[key] = updated
        return updated

    def _accept_symbol(self, symbol: str) -> bool:
        sym = symbol.upper()
        if not sym or sym in self._exclude:
            return False
        if self._settle_coin and not sym.endswith(self._settle_coin.upper()):
            return False
        return True

    def _fetch_kline_stats(self, symbol: str) -> Optional[KlineStats]:
        try:
            response = self._client.get_kline(
                symbol=symbol,
                interval="1",
                limit=_KLINE_LIMIT,
                category=self._category,
            )
        except BybitAPIError as exc:
            logger.warning("Kline fetch failed for %s: %s", symbol, exc)
            return None
        return kline_stats(response.get("result", {}).get("list") or [])

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="MarketScanner", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=min(self.interval * 2, 30.0))
        self._thread = None

    def _run(self) -> None:
        logger.info(
            "Starting market scanner: interval=%ss category=%s settleCoin=%s limit=%s",
            self.interval,
            self._category,
            self._settle_coin,
            self._limit,
        )
        while not self._stop_event.is_set():
            start = time.perf_counter()
            try:
                snapshots = self.scan_once()
                if self._on_snapshots is not None:
                    self._on_snapshots(snapshots)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Market scan failed: %s", exc)
            elapsed = time.perf_counter() - start
            if self._stop_event.wait(max(0.0, self.interval - elapsed)):
                break
        logger.info("Market scanner stopped")


__all__ = ["KlineStats", "MarketScanner", "kline_stats"]
