from datetime import timedelta

import pytest

from perpsignal.notify import TelegramNotifier, format_close_message, format_signal_message
from perpsignal.strategy.lifecycle import ClosedPosition, ExitReason
from perpsignal.strategy.models import Direction, OrderType, RankedSignal


@pytest.fixture
def ranked(make_signal):
    return RankedSignal(signal=make_signal(order_type=OrderType.LIMIT), score=61.0, confidence=70.0, risk_reward=0.67)


def test_signal_message(ranked):
    text = format_signal_message(ranked)
    assert "🟢 LONG *SOLUSDT*" in text
    assert "`$100.0000`" in text
    assert "`$102.0000`" in text
    assert "`$97.0000`" in text
    assert "`10x`" in text
    assert "🎯 Order: `Limit`" in text
    assert "R/R: `1:0.7`" in text
    assert "Potential: `+20.0%`" in text
    assert "(score 61.0)" in text
    assert "2024-05-01 12:30:00 UTC" in text


def test_close_message(now):
    closed = ClosedPosition(
        symbol="ETHUSDT",
        direction=Direction.SHORT,
        entry_price=3000.0,
        exit_price=3060.0,
        reason=ExitReason.STOP_LOSS,
        opened_at=now,
        closed_at=now + timedelta(minutes=12),
        leverage=20,
    )
    text = format_close_message(closed)
    assert text.startswith("❌")
    assert "`stop_loss`" in text
    assert "`-2.00%`" in text
    assert "`-40.0%` at 20x" in text
    assert "12.0 min" in text


def test_notifier_delivers_through_sender(ranked):
    sent = []
    notifier = TelegramNotifier("token", "chat", sender=sent.append)
    try:
        notifier.notify_signal(ranked)
        notifier.send("plain").result(timeout=5)
    finally:
        notifier.close()
    assert len(sent) == 2
    assert sent[1] == "plain"


def test_notifier_swallows_delivery_errors(caplog):
    def broken(text):
        raise RuntimeError("403 Forbidden")

    notifier = TelegramNotifier("token", "chat", sender=broken)
    future = notifier.send("hello")
    notifier.close()
    assert isinstance(future.exception(), RuntimeError)
    assert "Telegram delivery failed" in caplog.text


def test_notifier_requires_credentials():
    with pytest.raises(ValueError):
        TelegramNotifier("", "chat")
