"""Bybit v5 public WebSocket stream (tickers + all-liquidation topics).

Runs ``websocket-client``'s ``WebSocketApp`` on a daemon thread and
reconnects with capped exponential backoff until ``stop()`` is called.
Each ``tickers.{symbol}`` push is forwarded to ``on_ticker`` and each
``allLiquidation.{symbol}`` entry to ``on_liquidation``.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Iterable, Optional

import websocket

logger = logging.getLogger("perpSignal.exchange.bybit_ws")

DEFAULT_WS_MAINNET = "wss://stream.bybit.com/v5/public/{category}"
DEFAULT_WS_TESTNET = "wss://stream-testnet.bybit.com/v5/public/{category}"

# bybit caps args per subscribe request
_SUBSCRIBE_BATCH = 10
_MAX_BACKOFF = 60.0

TickerCallback = Callable[[str, dict[str, Any]], None]
LiquidationCallback = Callable[[dict[str, Any]], None]


def build_topics(symbols: Iterable[str], *, tickers: bool = True, liquidations: bool = True) -> list[str]:
    topics: list[str] = []
    for symbol in symbols:
        sym = symbol.strip().upper()
        if not sym:
            continue
        if tickers:
            topics.append(f"tickers.{sym}")
        if liquidations:
            topics.append(f"allLiquidation.{sym}")
    return topics


class BybitPublicStream:
    def __init__(
        self,
        symbols: Iterable[str],
        *,
        testnet: bool = False,
        category: str = "linear",
        on_ticker: Optional[TickerCallback] = None,
        on_liquidation: Optional[LiquidationCallback] = None,
        url: Optional[str] = None,
    ) -> None:
        self.symbols = [s.strip().upper() for s in symbols if s.strip()]
        template = DEFAULT_WS_TESTNET if testnet else DEFAULT_WS_MAINNET
        self.url = url or template.format(category=category)
        self.on_ticker = on_ticker
        self.on_liquidation = on_liquidation
        self.ws: Optional[websocket.WebSocketApp] = None
        self._thread: Optional[threading.Thread] = None
        self._should_stop = threading.Event()

    @property
    def topics(self) -> list[str]:
        return build_topics(self.symbols)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _on_open(self, ws: websocket.WebSocketApp) -> None:
        topics = self.topics
        for start in range(0, len(topics), _SUBSCRIBE_BATCH):
            batch = topics[start : start + _SUBSCRIBE_BATCH]
            ws.send(json.dumps({"op": "subscribe", "args": batch}))
        logger.info("Public stream connected: %s topics on %s", len(topics), self.url)

    def _on_message(self, ws: websocket.WebSocketApp, message: str) -> None:  # noqa: ARG002
        try:
            payload = json.loads(message)
        except ValueError:
            logger.debug("Dropping non-JSON frame: %s", message[:200])
            return
        try:
            self.dispatch(payload)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Public stream handler failed: %s", exc)

    def dispatch(self, payload: dict[str, Any]) -> None:
        """Route one decoded frame to the matching callback."""
        topic = str(payload.get("topic") or "")
        if not topic:
            if payload.get("op") == "subscribe" and not payload.get("success", True):
                logger.warning("Subscription rejected: %s", payload.get("ret_msg"))
            return
        data = payload.get("data")
        if topic.startswith("tickers."):
            if self.on_ticker is not None and isinstance(data, dict):
                self.on_ticker(topic.split(".", 1)[1], data)
        elif topic.startswith("allLiquidation."):
            if self.on_liquidation is None:
                return
            events = data if isinstance(data, list) else [data]
            for event in events:
                if isinstance(event, dict):
                    self.on_liquidation(event)

    def _on_error(self, ws: websocket.WebSocketApp, error: Exception) -> None:  # noqa: ARG002
        logger.warning("Public stream error: %s", error)

    def _on_close(self, ws: websocket.WebSocketApp, status_code: Any, msg: Any) -> None:  # noqa: ARG002
        logger.info("Public stream closed: code=%s msg=%s", status_code, msg)

    def start(self) -> None:
        if self.running:
            return
        if not self.symbols:
            logger.info("Public stream not started: no symbols configured")
            return
        self._should_stop.clear()

        def _run() -> None:
            backoff = 1.0
            while not self._should_stop.is_set():
                self.ws = websocket.WebSocketApp(
                    self.url,
                    on_open=self._on_open,
                    on_message=self._on_message,
                    on_error=self._on_error,
                    on_close=self._on_close,
                )
                try:
                    self.ws.run_forever(ping_interval=20, ping_timeout=10)
                    backoff = 1.0
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Public stream crashed: %s", exc)
                if self._should_stop.wait(backoff):
                    break
                backoff = min(_MAX_BACKOFF, backoff * 2)

        self._thread = threading.Thread(target=_run, name="bybit-public-ws", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._should_stop.set()
        if self.ws is not None:
            self.ws.close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)


__all__ = ["BybitPublicStream", "build_topics"]
