from __future__ import annotations

"""Telegram notifier: Markdown messages delivered through python-telegram-bot.

Delivery runs on one worker thread so the tick pipeline never waits on the
network. Failures are logged and dropped.
"""

import asyncio
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from telegram import Bot, LinkPreviewOptions
from telegram.constants import ParseMode

from perpsignal.strategy.models import Direction

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.strategy.lifecycle import ClosedPosition
    from perpsignal.strategy.models import RankedSignal

logger = logging.getLogger("perpSignal.notify.telegram")

_ORDER_TYPE_ICONS = {
    "Market": "⚡",
    "Limit": "🎯",
    "Conditional": "🔄",
    "TWAP": "📊",
    "Iceberg": "🧊",
}

Sender = Callable[[str], None]


def _direction_label(direction: Direction) -> str:
    return "🟢 LONG" if direction is Direction.LONG else "🔴 SHORT"


def _display_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_signal_message(ranked: "RankedSignal") -> str:
    sig = ranked.signal
    risk = abs(sig.entry_price - sig.stop_price)
    reward = abs(sig.target_price - sig.entry_price)
    ratio = reward / risk if risk > 0 else 0.0
    potential = sig.take_profit_fraction * sig.leverage * 100.0
    order_type = sig.order_type.value
    icon = _ORDER_TYPE_ICONS.get(order_type, "⚡")
    return (
        "📡 *perpSignal*\n\n"
        f"{_direction_label(sig.direction)} *{sig.symbol}*\n"
        f"💰 Entry: `${sig.entry_price:.4f}`\n"
        f"🎯 Target: `${sig.target_price:.4f}`\n"
        f"🛡️ Stop Loss: `${sig.stop_price:.4f}`\n"
        f"⚡ Leverage: `{sig.leverage}x`\n"
        f"{icon} Order: `{order_type}`\n"
        f"📊 R/R: `1:{ratio:.1f}`\n"
        f"💸 Potential: `+{potential:.1f}%`\n"
        f"🏷️ Strategy: `{sig.strategy}` (score {ranked.score:.1f})\n\n"
        f"⏰ *Created:* {_display_time(sig.created_at)}\n"
        f"📅 *Timeframe:* {sig.timeframe}\n"
        f"⌛ *Valid until:* {_display_time(sig.expires_at)}\n\n"
        "📝 *Reason:*\n"
        f"`{sig.reason}`"
    )


def format_close_message(closed: "ClosedPosition") -> str:
    icon = "✅" if closed.is_win else "❌"
    minutes = closed.holding_seconds / 60.0
    return (
        f"{icon} *Closed* {_direction_label(closed.direction)} *{closed.symbol}*\n"
        f"📌 Reason: `{closed.reason.value}`\n"
        f"💰 Entry: `${closed.entry_price:.4f}` → Exit: `${closed.exit_price:.4f}`\n"
        f"📈 Move: `{closed.realized_move_pct:+.2f}%` "
        f"(`{closed.leveraged_return_pct:+.1f}%` at {closed.leverage}x)\n"
        f"⏱️ Held: {minutes:.1f} min"
    )


class TelegramNotifier:
    def __init__(
        self,
        token: str,
        chat_id: str,
        *,
        sender: Optional[Sender] = None,
    ) -> None:
        if not token or not chat_id:
            raise ValueError("Telegram token and chat_id are required")
        self._token = token
        self._chat_id = chat_id
        self._sender = sender or self._send_blocking
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="telegram")

    def notify_signal(self, ranked: "RankedSignal") -> None:
        self.send(format_signal_message(ranked))

    def notify_close(self, closed: "ClosedPosition") -> None:
        self.send(format_close_message(closed))

    def send(self, text: str) -> Future:
        future = self._executor.submit(self._sender, text)
        future.add_done_callback(self._log_failure)
        return future

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _send_blocking(self, text: str) -> None:
        asyncio.run(self._send(text))

    async def _send(self, text: str) -> None:
        async with Bot(self._token) as bot:
            await bot.send_message(
                chat_id=self._chat_id,
                text=text,
                parse_mode=ParseMode.MARKDOWN,
                link_preview_options=LinkPreviewOptions(is_disabled=True),
            )

    @staticmethod
    def _log_failure(future: Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Telegram delivery failed: %s", exc)


__all__ = ["TelegramNotifier", "format_close_message", "format_signal_message"]
