from datetime import timedelta

import pytest

from perpsignal.data.signal_store import SignalStore
from perpsignal.strategy.lifecycle import PositionLifecycleManager
from perpsignal.strategy.models import Direction, RankedSignal, SignalStatus


@pytest.fixture
def store(tmp_path):
    store = SignalStore(tmp_path / "signals.db")
    yield store
    store.close()


def _ranked(signal, score=50.0):
    return RankedSignal(signal=signal, score=score, confidence=60.0, risk_reward=0.67)


def test_save_and_read_active(store, make_signal, now):
    saved = store.save_signals(
        [
            _ranked(make_signal()),
            _ranked(make_signal(symbol="ETHUSDT", direction=Direction.SHORT), score=40.0),
        ]
    )
    assert saved == 2
    rows = store.get_active_signals()
    assert {row["symbol"] for row in rows} == {"SOLUSDT", "ETHUSDT"}
    sol = next(row for row in rows if row["symbol"] == "SOLUSDT")
    assert sol["direction"] == "LONG"
    assert sol["orderType"] == "Market"
    assert sol["status"] == "ACTIVE"
    assert sol["strategy"] == "momentum"
    assert sol["expiresAt"].endswith("Z")
    assert sol["validUntil"] == int((now + timedelta(minutes=30)).timestamp() * 1000)


def test_save_nothing(store):
    assert store.save_signals([]) == 0


def test_status_update_only_touches_active_rows(store, make_signal):
    store.save_signals([_ranked(make_signal())])
    assert store.update_signal_status("solusdt", Direction.LONG, SignalStatus.COMPLETED) == 1
    assert store.update_signal_status("SOLUSDT", "LONG", "FAILED") == 0
    assert store.get_active_signals() == []
    assert store.get_all_signals()[0]["status"] == "COMPLETED"


def test_unknown_status_rejected(store):
    with pytest.raises(ValueError):
        store.update_signal_status("SOLUSDT", "LONG", "CANCELLED")


def test_expire_signals(store, make_signal, now):
    store.save_signals(
        [
            _ranked(make_signal(validity=timedelta(minutes=5))),
            _ranked(make_signal(symbol="ETHUSDT", validity=timedelta(hours=2))),
        ]
    )
    assert store.expire_signals(now + timedelta(minutes=5)) == 1
    assert [row["symbol"] for row in store.get_active_signals()] == ["ETHUSDT"]


def test_position_journal(store, make_signal, now):
    manager = PositionLifecycleManager()
    position = manager.open_position(make_signal(), now, order_id="oid-9", quantity=2.0)
    store.record_position_open(position)
    (row,) = store.get_open_positions()
    assert row["order_id"] == "oid-9"
    assert row["side"] == "LONG"
    assert row["size"] == 2.0

    closed = manager.close("SOLUSDT", Direction.LONG, 102.0, now + timedelta(minutes=3))
    store.record_position_close(closed)
    assert store.get_open_positions() == []


def test_in_memory_database(make_signal):
    store = SignalStore(":memory:")
    try:
        store.save_signals([_ranked(make_signal())])
        assert len(store.get_active_signals(limit=1)) == 1
    finally:
        store.close()
