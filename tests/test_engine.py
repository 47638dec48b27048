import json
from datetime import timedelta

import pytest

from conftest import FakeGateway, FakeNotifier, FakeSink
from perpsignal.strategy import PositionLifecycleManager, SignalEngine
from perpsignal.strategy.analytics import PerformanceTracker, TradeLedger
from perpsignal.strategy.heuristics import FundingRateStrategy, StrategyEvaluator, StrategyRegistry
from perpsignal.strategy.lifecycle import ExitReason
from perpsignal.strategy.models import Direction, SignalStatus


def _engine(**kwargs):
    evaluator = StrategyEvaluator(StrategyRegistry([FundingRateStrategy()]))
    return SignalEngine(evaluator, PositionLifecycleManager(), **kwargs)


@pytest.fixture
def crowded(snap):
    # shorts pay longs: the funding heuristic proposes a LONG at 34x
    def _make(price=100.0):
        return snap(price=price, funding_rate=-0.0017)

    return _make


def test_tick_opens_and_notifies(crowded, sink, notifier, gateway, now):
    engine = _engine(sink=sink, notifier=notifier, gateway=gateway)
    report = engine.run_tick([crowded()], now)
    assert report.snapshots == 1
    assert [item.symbol for item in report.opened] == ["SOLUSDT"]
    assert len(sink.saved) == 1
    assert len(sink.opened) == 1
    assert sink.opened[0].order_id == "oid-1"
    assert sink.opened[0].quantity == 1.5
    assert [item.symbol for item in notifier.signals] == ["SOLUSDT"]
    assert engine.lifecycle.open_count() == 1
    assert report.closed == []


def test_second_tick_skips_open_position(crowded, sink, gateway, now):
    engine = _engine(sink=sink, gateway=gateway)
    engine.run_tick([crowded()], now)
    report = engine.run_tick([crowded(100.5)], now + timedelta(minutes=1))
    assert report.opened == []
    assert [item.symbol for item in report.skipped] == ["SOLUSDT"]
    assert len(gateway.calls) == 1


def test_invalid_snapshots_are_dropped(crowded, snap, now):
    engine = _engine()
    report = engine.run_tick([crowded(), snap(symbol="BADUSDT", price=0.0)], now)
    assert report.snapshots == 1
    assert report.dropped == 1


@pytest.mark.parametrize("gw", [FakeGateway(opened=False), FakeGateway(raises=True)])
def test_failed_order_releases_slot(crowded, sink, notifier, now, gw):
    engine = _engine(sink=sink, notifier=notifier, gateway=gw)
    report = engine.run_tick([crowded()], now)
    assert report.opened == []
    assert [item.symbol for item in report.failed] == ["SOLUSDT"]
    assert engine.lifecycle.open_count() == 0
    assert sink.status_updates == [("SOLUSDT", Direction.LONG, SignalStatus.FAILED)]
    assert notifier.signals == []


def test_collaborator_failures_do_not_block_positions(crowded, gateway, now):
    sink = FakeSink(fail=True)
    notifier = FakeNotifier(fail=True)
    engine = _engine(sink=sink, notifier=notifier, gateway=gateway)
    report = engine.run_tick([crowded()], now)
    assert len(report.opened) == 1
    assert engine.lifecycle.open_count() == 1


def test_without_gateway_every_open_succeeds(crowded, now):
    engine = _engine()
    report = engine.run_tick([crowded()], now)
    assert len(report.opened) == 1
    assert engine.lifecycle.positions()[0].order_id is None


@pytest.mark.parametrize(
    "exit_price, reason, status",
    [
        (109.0, ExitReason.TAKE_PROFIT, SignalStatus.COMPLETED),
        (97.0, ExitReason.STOP_LOSS, SignalStatus.FAILED),
    ],
)
def test_close_updates_sink_and_ledger(crowded, sink, notifier, now, tmp_path, exit_price, reason, status):
    history = tmp_path / "trade_history.jsonl"
    snapshot_file = tmp_path / "performance_snapshot.json"
    engine = _engine(
        sink=sink,
        notifier=notifier,
        ledger=TradeLedger(history_file=history),
        performance=PerformanceTracker(history_file=history, output_file=snapshot_file),
    )
    engine.run_tick([crowded()], now)
    report = engine.run_tick([crowded(exit_price)], now + timedelta(minutes=2))

    assert [item.reason for item in report.closed] == [reason]
    assert ("SOLUSDT", Direction.LONG, status) in sink.status_updates
    assert len(sink.closed) == 1
    assert len(notifier.closes) == 1
    assert engine.lifecycle.open_count() == 0

    lines = history.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    assert json.loads(lines[0])["reason"] == reason.value
    summary = json.loads(snapshot_file.read_text(encoding="utf-8"))
    assert summary["total"]["trades"] == 1


def test_manual_close(crowded, sink, now):
    engine = _engine(sink=sink)
    engine.run_tick([crowded()], now)
    closed = engine.close_position("SOLUSDT", Direction.LONG, 101.0, now + timedelta(minutes=5))
    assert closed.reason is ExitReason.MANUAL
    assert ("SOLUSDT", Direction.LONG, SignalStatus.COMPLETED) in sink.status_updates
    assert engine.close_position("SOLUSDT", Direction.LONG, 101.0, now) is None


def test_status_and_shutdown_keep_positions(crowded, now):
    engine = _engine()
    engine.run_tick([crowded()], now)
    status = engine.status_snapshot(now)
    assert status["last_tick"]["opened"] == ["SOLUSDT"]
    assert status["last_tick"]["stats"]["total"] == 1
    final = engine.shutdown(now)
    assert len(final["open_positions"]) == 1
    assert engine.lifecycle.open_count() == 1


def test_expiry_runs_every_tick(sink, now):
    engine = _engine(sink=sink)
    engine.run_tick([], now)
    assert sink.expired_at == [now]
