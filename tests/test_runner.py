import json

from perpsignal.config import EngineConfig, StorageConfig
from perpsignal.exchange import PaperOrderGateway
from perpsignal.run import main as runner


def _config(tmp_path):
    return EngineConfig(
        storage=StorageConfig(
            database_path=str(tmp_path / "signals.db"),
            analytics_dir=str(tmp_path / "analytics"),
            status_file=str(tmp_path / "status.json"),
        )
    )


def test_build_engine_dry_run(tmp_path, snap, now):
    engine, store, notifier = runner.build_engine(_config(tmp_path), client=None, account=None)
    try:
        assert notifier is None
        assert isinstance(engine._gateway, PaperOrderGateway)
        report = engine.run_tick([snap(funding_rate=-0.0017)], now)
        assert [item.symbol for item in report.opened] == ["SOLUSDT"]
        assert store.get_active_signals()[0]["symbol"] == "SOLUSDT"
        assert (tmp_path / "analytics").is_dir()
    finally:
        store.close()


class _Scanner:
    def __init__(self, snapshot):
        self.snapshot = snapshot
        self.pushes = []

    def apply_ticker(self, symbol, data):
        self.pushes.append(symbol)
        return self.snapshot


def test_tick_driver_throttles_pushes_and_writes_status(tmp_path, snap):
    engine, store, _ = runner.build_engine(_config(tmp_path), client=None, account=None)
    status_file = tmp_path / "status.json"
    try:
        driver = runner._TickDriver(engine, status_file)
        driver.on_ticker("SOLUSDT", {"lastPrice": "100"})
        driver.scanner = _Scanner(snap())
        driver.on_ticker("SOLUSDT", {"lastPrice": "100"})
        driver.on_ticker("SOLUSDT", {"lastPrice": "100.1"})
        assert driver.scanner.pushes == ["SOLUSDT"]
        status = json.loads(status_file.read_text(encoding="utf-8"))
        assert status["last_tick"]["snapshots"] == 1
    finally:
        store.close()


def test_write_status_replaces_file(tmp_path):
    path = tmp_path / "nested" / "status.json"
    runner._write_status(path, {"open_positions": []})
    runner._write_status(path, {"open_positions": [{"symbol": "BTCUSDT"}]})
    assert json.loads(path.read_text(encoding="utf-8"))["open_positions"][0]["symbol"] == "BTCUSDT"
    assert not path.with_suffix(".json.tmp").exists()
