#!/usr/bin/env python3
"""
Telegram bot entrypoint for reading signals, engine status and performance
snapshots written by the perpSignal runner.

Environment variables:
  TELEGRAM_BOT_TOKEN            Telegram bot token (required)
  TELEGRAM_ALLOWED_CHAT_IDS     Comma-separated chat IDs allowed to interact (optional)
  ENGINE_CONFIG                 Path to engineConfig.ini (optional)
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import Application, ApplicationBuilder, CommandHandler, ContextTypes

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from perpsignal.config import default_engine_config, maybe_load_engine_config  # noqa: E402
from perpsignal.data.signal_store import SignalStore  # noqa: E402

ENGINE_CONFIG = maybe_load_engine_config() or default_engine_config()
BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
ALLOWED_CHAT_IDS = {
    int(cid)
    for cid in filter(None, (part.strip() for part in os.getenv("TELEGRAM_ALLOWED_CHAT_IDS", "").split(",")))
}
SIGNAL_LIMIT = 10


def _project_path(value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else PROJECT_ROOT / path


DATABASE_FILE = _project_path(ENGINE_CONFIG.storage.database_path)
STATUS_FILE = _project_path(ENGINE_CONFIG.storage.status_file)
ANALYTICS_FILE = _project_path(ENGINE_CONFIG.storage.analytics_dir) / "performance_snapshot.json"


async def send_text(update: Update, text: str, **kwargs) -> None:
    if update.message:
        await update.message.reply_text(text, **kwargs)
    elif update.effective_chat:
        await update.effective_chat.send_message(text, **kwargs)


def ensure_token() -> None:
    if not BOT_TOKEN:
        raise RuntimeError("Set TELEGRAM_BOT_TOKEN before starting the Telegram bot.")


def is_authorized(chat_id: int) -> bool:
    return not ALLOWED_CHAT_IDS or chat_id in ALLOWED_CHAT_IDS


async def guard_authorization(update: Update) -> bool:
    chat_id = update.effective_chat.id if update.effective_chat else None
    if chat_id is None or is_authorized(chat_id):
        return True
    await send_text(update, "🚫 This chat is not allowed.")
    return False


def format_signals(rows: list[dict[str, Any]]) -> str:
    if not rows:
        return "*Active signals*\nNo active signals."
    lines = [f"*Active signals* ({len(rows)})"]
    for row in rows:
        icon = "🟢" if row.get("direction") == "LONG" else "🔴"
        lines.append(
            f"{icon} *{row.get('symbol')}* {row.get('direction')} {row.get('leverage')}x "
            f"`{row.get('strategy') or '-'}`\n"
            f"   entry `{row.get('entryPrice')}` → tp `{row.get('targetPrice')}` / "
            f"sl `{row.get('stopLoss')}`\n"
            f"   valid until {row.get('expiresAt') or 'N/A'}"
        )
    return "\n".join(lines)


def load_active_signals(path: Path = DATABASE_FILE, limit: int = SIGNAL_LIMIT) -> list[dict[str, Any]]:
    if not path.exists():
        raise FileNotFoundError(f"Signal database not found: {path}")
    store = SignalStore(path)
    try:
        return store.get_active_signals(limit=limit)
    finally:
        store.close()


def format_status(data: dict[str, Any]) -> str:
    positions = data.get("open_positions") or []
    last_tick = data.get("last_tick") or {}
    lines = [
        "*Engine status*",
        f"- Updated: {data.get('timestamp', 'N/A')}",
        f"- Open positions: {len(positions)}",
    ]
    for pos in positions:
        lines.append(
            f"  • {pos.get('symbol')} {pos.get('direction')} {pos.get('leverage')}x "
            f"entry `{pos.get('entry_price')}` stop `{pos.get('effective_stop', pos.get('stop_price'))}`"
        )
    if last_tick:
        lines.append(
            f"- Last tick: snapshots={last_tick.get('snapshots', 0)} "
            f"ranked={last_tick.get('ranked', 0)} opened={len(last_tick.get('opened') or [])} "
            f"closed={len(last_tick.get('closed') or [])}"
        )
    return "\n".join(lines)


def format_performance(data: dict[str, Any]) -> str:
    total = data.get("total", {})
    window = data.get("window", {})

    def pack(section_name: str, section: dict) -> str:
        if not section or not section.get("trades"):
            return f"*{section_name}*\nNo trades yet."
        return (
            f"*{section_name}*\n"
            f"- Trades: {section.get('trades', 'N/A')} (W {section.get('wins', 'N/A')}, "
            f"L {section.get('losses', 'N/A')}, T {section.get('ties', 0)})\n"
            f"- Win rate: {section.get('win_rate', 0):.2%}\n"
            f"- Net move: {section.get('net_move_pct', 0):.3f}%\n"
            f"- Profit factor: {section.get('profit_factor', 0):.4f}\n"
            f"- Avg move: {section.get('avg_move_pct', 0):.3f}% "
            f"(leveraged {section.get('avg_leveraged_return_pct', 0):.2f}%)"
        )

    return "\n\n".join(["*Performance summary*", pack("All trades", total), pack("Recent window", window)])


def _read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


async def _reply_with(update: Update, producer) -> None:
    if not await guard_authorization(update):
        return
    try:
        text = await asyncio.to_thread(producer)
        await send_text(update, text, parse_mode=ParseMode.MARKDOWN)
    except FileNotFoundError as exc:
        await send_text(update, f"❌ {exc}")
    except json.JSONDecodeError:
        await send_text(update, "❌ Failed to parse the snapshot JSON.")
    except Exception as exc:  # noqa: BLE001
        await send_text(update, f"❌ Unexpected error: {exc}")


async def handle_signals(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _reply_with(update, lambda: format_signals(load_active_signals()))


async def handle_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _reply_with(update, lambda: format_status(_read_json(STATUS_FILE)))


async def handle_performance(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    await _reply_with(update, lambda: format_performance(_read_json(ANALYTICS_FILE)))


def build_application() -> Application:
    ensure_token()
    app = ApplicationBuilder().token(BOT_TOKEN).build()
    app.add_handler(CommandHandler("signals", handle_signals))
    app.add_handler(CommandHandler("status", handle_status))
    app.add_handler(CommandHandler(["performance", "stats"], handle_performance))
    return app


def main() -> None:
    app = build_application()
    print("✅ Telegram bot initialized.")
    print("🤖 Telegram bot started. Press Ctrl+C to stop.")
    app.run_polling(allowed_updates=Update.ALL_TYPES)


if __name__ == "__main__":
    main()
