"""Outbound notifications for accepted signals and closed positions."""

from .telegram import TelegramNotifier, format_close_message, format_signal_message

__all__ = ["TelegramNotifier", "format_close_message", "format_signal_message"]
