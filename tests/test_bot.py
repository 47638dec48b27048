from telegram_bot import bot

from perpsignal.data.signal_store import SignalStore
from perpsignal.strategy.models import RankedSignal


def test_format_signals_empty_and_rows():
    assert "No active signals" in bot.format_signals([])
    text = bot.format_signals(
        [
            {
                "symbol": "BTCUSDT",
                "direction": "SHORT",
                "leverage": 20,
                "strategy": "funding",
                "entryPrice": 65000,
                "targetPrice": 64000,
                "stopLoss": 65500,
                "expiresAt": "2024-05-01T20:00:00Z",
            }
        ]
    )
    assert "🔴 *BTCUSDT* SHORT 20x" in text
    assert "2024-05-01T20:00:00Z" in text


def test_load_active_signals(tmp_path, make_signal):
    path = tmp_path / "signals.db"
    store = SignalStore(path)
    store.save_signals([RankedSignal(signal=make_signal(), score=50.0, confidence=60.0, risk_reward=0.67)])
    store.close()
    rows = bot.load_active_signals(path, limit=5)
    assert [row["symbol"] for row in rows] == ["SOLUSDT"]


def test_format_status():
    text = bot.format_status(
        {
            "timestamp": "2024-05-01T12:00:00+00:00",
            "open_positions": [
                {"symbol": "SOLUSDT", "direction": "LONG", "leverage": 10, "entry_price": 100.0, "effective_stop": 99.7}
            ],
            "last_tick": {"snapshots": 60, "ranked": 4, "opened": ["SOLUSDT"], "closed": []},
        }
    )
    assert "Open positions: 1" in text
    assert "stop `99.7`" in text
    assert "snapshots=60 ranked=4 opened=1 closed=0" in text


def test_format_performance():
    text = bot.format_performance(
        {
            "total": {"trades": 4, "wins": 3, "losses": 1, "win_rate": 0.75, "net_move_pct": 2.5, "profit_factor": 3.5},
            "window": {"trades": 0},
        }
    )
    assert "Win rate: 75.00%" in text
    assert "No trades yet." in text


def test_authorization(monkeypatch):
    monkeypatch.setattr(bot, "ALLOWED_CHAT_IDS", {42})
    assert bot.is_authorized(42)
    assert not bot.is_authorized(7)
