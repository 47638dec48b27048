from __future__ import annotations

"""Main entry point: scan Bybit, rank signals, manage positions until interrupted."""

import json
import logging
import sys
import threading
import time
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

# allow running as a script (e.g. F5 in IDE) without manual PYTHONPATH tweaks
if __package__ is None or __package__ == "":
    current_file = Path(__file__).resolve()
    project_root = current_file.parents[2]
    if str(project_root) not in sys.path:
        sys.path.insert(0, str(project_root))

from perpsignal.config import (  # noqa: E402  pylint: disable=wrong-import-position
    BybitAccountConfig,
    EngineConfig,
    default_engine_config,
    maybe_load_account_config,
    maybe_load_engine_config,
    resolve_account_config_path,
)
from perpsignal.data import SignalStore, WalletBalanceReader  # noqa: E402  pylint: disable=wrong-import-position
from perpsignal.data.market import LiquidationAggregator, MarketSnapshot  # noqa: E402  pylint: disable=wrong-import-position
from perpsignal.data.market.scanner import MarketScanner  # noqa: E402  pylint: disable=wrong-import-position
from perpsignal.exchange import (  # noqa: E402  pylint: disable=wrong-import-position
    BybitOrderGateway,
    BybitPublicStream,
    BybitV5Client,
    PaperOrderGateway,
)
from perpsignal.notify import TelegramNotifier  # noqa: E402  pylint: disable=wrong-import-position
from perpsignal.strategy import PositionLifecycleManager, SignalEngine  # noqa: E402  pylint: disable=wrong-import-position
from perpsignal.strategy.analytics import PerformanceTracker, TradeLedger  # noqa: E402  pylint: disable=wrong-import-position
from perpsignal.strategy.heuristics import (  # noqa: E402  pylint: disable=wrong-import-position
    StrategyEvaluator,
    StrategyRegistry,
    default_strategies,
)
from perpsignal.strategy.scoring import ScoreWeights  # noqa: E402  pylint: disable=wrong-import-position

logger = logging.getLogger("perpSignal")

PROJECT_ROOT = Path(__file__).resolve().parents[2]
# stream pushes arrive several times a second
PUSH_MIN_INTERVAL = 1.0


def _configure_logging(log_file: Path) -> None:
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    for handler in root.handlers[:]:
        handler.close()
        root.removeHandler(handler)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    root.addHandler(stream_handler)
    root.addHandler(file_handler)


def _setup_logging() -> tuple[Path, datetime]:
    log_dir = PROJECT_ROOT / "log"
    log_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"perpSignal_{timestamp}.log"
    _configure_logging(log_file)
    return log_file, datetime.now()


def _maybe_rotate_logs(
    current_file: Path,
    start_time: datetime,
    rotation_hours: int = 6,
) -> tuple[Path, datetime]:
    if datetime.now() - start_time < timedelta(hours=rotation_hours):
        return current_file, start_time
    return _setup_logging()


def _project_path(value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else PROJECT_ROOT / path


def _build_client(config: EngineConfig) -> tuple[BybitV5Client, Optional[BybitAccountConfig]]:
    account = maybe_load_account_config()
    if account is None:
        if not config.execution.dry_run:
            default_path = resolve_account_config_path()
            sample_path = Path(default_path.parent, "sampleConfig.ini")
            raise FileNotFoundError(
                "accountConfig.ini is required when dry_run = false. Run "
                f"`python -m perpsignal.config.account_config` or copy {sample_path}."
            )
        logger.info("No account config; using public market data only")
        return BybitV5Client(testnet=False, category=config.scanner.category), None
    logger.info(
        "Loaded account config: name=%s, key=%s, testnet=%s, category=%s",
        account.account_name or "default",
        account.masked_key(),
        account.testnet,
        account.category,
    )
    client = BybitV5Client(
        api_key=account.api_key,
        api_secret=account.api_secret,
        testnet=account.testnet,
        category=account.category,
    )
    return client, account


def build_engine(
    config: EngineConfig,
    client: BybitV5Client,
    account: Optional[BybitAccountConfig],
) -> tuple[SignalEngine, SignalStore, Optional[TelegramNotifier]]:
    registry = StrategyRegistry(default_strategies(config.execution.strategies))
    evaluator = StrategyEvaluator(registry, leverage_cap=config.execution.leverage_cap)
    logger.info("Strategies enabled: %s", ", ".join(registry.names()))

    scoring = config.scoring
    weights = ScoreWeights(
        confidence=scoring.confidence_weight,
        risk_reward=scoring.risk_reward_weight,
        risk_reward_scale=scoring.risk_reward_scale,
        strategy=scoring.strategy_weight,
        strategy_scale=scoring.strategy_scale,
    )

    store = SignalStore(_project_path(config.storage.database_path))
    notifier = None
    if config.telegram.enabled:
        notifier = TelegramNotifier(config.telegram.token, config.telegram.chat_id)
        logger.info("Telegram notifications enabled for chat %s", config.telegram.chat_id)

    if config.execution.dry_run or account is None:
        gateway: Any = PaperOrderGateway(risk_pct=config.execution.risk_pct)
        logger.info("Dry run: orders are recorded, not sent")
    else:
        wallet = WalletBalanceReader(client, account_type=account.account_type)
        gateway = BybitOrderGateway(
            client,
            wallet,
            risk_pct=config.execution.risk_pct,
            category=account.category,
        )
        logger.warning("Live trading enabled: risk_pct=%s%%", config.execution.risk_pct)

    analytics_root = _project_path(config.storage.analytics_dir)
    analytics_root.mkdir(parents=True, exist_ok=True)
    history_file = analytics_root / "trade_history.jsonl"
    engine = SignalEngine(
        evaluator,
        PositionLifecycleManager(config.lifecycle),
        max_signals=scoring.max_signals,
        weights=weights,
        sink=store,
        notifier=notifier,
        gateway=gateway,
        ledger=TradeLedger(history_file=history_file),
        performance=PerformanceTracker(
            history_file=history_file,
            output_file=analytics_root / "performance_snapshot.json",
        ),
    )
    return engine, store, notifier


def _write_status(path: Path, status: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(status, indent=2, ensure_ascii=False, default=str), encoding="utf-8")
    tmp.replace(path)


class _TickDriver:
    """Funnel scanner batches and stream pushes into ``engine.run_tick``."""

    def __init__(self, engine: SignalEngine, status_file: Path) -> None:
        self._engine = engine
        self.scanner: Optional[MarketScanner] = None
        self._status_file = status_file
        self._last_push: dict[str, float] = {}
        self._lock = threading.Lock()
        self._status_lock = threading.Lock()

    def on_snapshots(self, snapshots: list[MarketSnapshot]) -> None:
        self._tick(snapshots)

    def on_ticker(self, symbol: str, data: dict[str, Any]) -> None:
        if self.scanner is None:
            return
        now_mono = time.monotonic()
        with self._lock:
            if now_mono - self._last_push.get(symbol, 0.0) < PUSH_MIN_INTERVAL:
                return
            self._last_push[symbol] = now_mono
        snapshot = self.scanner.apply_ticker(symbol, data)
        if snapshot is not None:
            self._tick([snapshot])

    def _tick(self, snapshots: list[MarketSnapshot]) -> None:
        try:
            self._engine.run_tick(snapshots)
            with self._status_lock:
                _write_status(self._status_file, self._engine.status_snapshot())
        except Exception as exc:  # noqa: BLE001
            logger.exception("Tick failed: %s", exc)


def main() -> None:
    log_file, log_started = _setup_logging()
    logger.info("Logging to %s", log_file)
    config = maybe_load_engine_config() or default_engine_config()
    client, account = _build_client(config)
    logger.info("Bybit REST client ready: base_url=%s", client.base_url)
    engine, store, notifier = build_engine(config, client, account)

    aggregator = LiquidationAggregator()
    status_file = _project_path(config.storage.status_file)
    driver = _TickDriver(engine, status_file)
    scanner = MarketScanner(
        client,
        aggregator=aggregator,
        config=config.scanner,
        on_snapshots=driver.on_snapshots,
    )
    driver.scanner = scanner
    stream = BybitPublicStream(
        config.scanner.stream_symbols,
        testnet=client.testnet,
        category=config.scanner.category,
        on_ticker=driver.on_ticker,
        on_liquidation=aggregator.add_event,
    )

    scanner.start()
    stream.start()
    logger.info(
        "perpSignal running: scan_interval=%ss stream_symbols=%s dry_run=%s",
        scanner.interval,
        ", ".join(stream.symbols) or "-",
        config.execution.dry_run,
    )
    try:
        while True:
            time.sleep(5.0)
            new_log_file, new_start = _maybe_rotate_logs(log_file, log_started)
            if new_log_file != log_file:
                logger.info("Rotated log file to %s", new_log_file)
            log_file, log_started = new_log_file, new_start
    except KeyboardInterrupt:
        logger.info("Received interrupt, stopping")
    finally:
        stream.stop()
        scanner.stop()
        _write_status(status_file, engine.shutdown())
        if notifier is not None:
            notifier.close()
        store.close()
        client.close()


if __name__ == "__main__":
    main()
