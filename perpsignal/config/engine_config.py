from __future__ import annotations

"""Configuration loader for the signal engine: scanner, ranking, exits, execution, sinks."""

import configparser
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from perpsignal.data.market.constants import (
    DEFAULT_CATEGORY,
    DEFAULT_KLINE_SYMBOLS,
    DEFAULT_SCAN_INTERVAL,
    DEFAULT_SETTLE_COIN,
    DEFAULT_SYMBOL_LIMIT,
)

_CONFIG_ENV_VAR = "ENGINE_CONFIG"
_DEFAULT_FILE_NAME = "engineConfig.ini"
_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
_TOKEN_ENV_VAR = "TELEGRAM_BOT_TOKEN"
_CHAT_ENV_VAR = "TELEGRAM_CHAT_ID"


@dataclass(slots=True)
class ScannerConfig:
    interval: float = DEFAULT_SCAN_INTERVAL
    symbol_limit: int = DEFAULT_SYMBOL_LIMIT
    kline_symbols: int = DEFAULT_KLINE_SYMBOLS
    category: str = DEFAULT_CATEGORY
    settle_coin: str = DEFAULT_SETTLE_COIN
    stream_symbols: tuple[str, ...] = ()
    exclude_symbols: tuple[str, ...] = ()


@dataclass(slots=True)
class ScoringConfig:
    max_signals: int = 10
    confidence_weight: float = 0.4
    risk_reward_weight: float = 0.3
    risk_reward_scale: float = 20.0
    strategy_weight: float = 0.3
    strategy_scale: float = 100.0


@dataclass(slots=True)
class LifecycleConfig:
    """Exit thresholds. Fractions are price fractions; ``volatility_spike_pct`` is a percent."""

    trailing_fraction: float = 0.003
    trailing_activation: float = 0.0
    pre_liquidation_buffer: float = 0.003
    maintenance_margin_ratio: float = 0.005
    volatility_spike_pct: float = 2.0
    liquidation_cluster_threshold: float = 5_000_000.0
    timeout_minutes: float = 30.0


@dataclass(slots=True)
class ExecutionConfig:
    dry_run: bool = True
    risk_pct: float = 1.0
    leverage_cap: int = 100
    strategies: tuple[str, ...] = ()


@dataclass(slots=True)
class StorageConfig:
    database_path: str = "data/signals.db"
    analytics_dir: str = "analytics"
    status_file: str = "analytics/status_snapshot.json"


@dataclass(slots=True)
class TelegramConfig:
    token: str = ""
    chat_id: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.token and self.chat_id)


@dataclass(slots=True)
class EngineConfig:
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)


def _normalize_percent(value: float, *, assume_percent: bool = False) -> float:
    if assume_percent and value >= 1:
        return value / 100.0
    return value


def _parse_symbol_list(raw: str) -> tuple[str, ...]:
    if not raw:
        return ()
    symbols = [sym.strip().upper() for sym in raw.split(",")]
    return tuple(sorted({sym for sym in symbols if sym}))


def _parse_name_list(raw: str) -> tuple[str, ...]:
    names: list[str] = []
    for item in raw.split(","):
        name = item.strip().lower()
        if name and name not in names:
            names.append(name)
    return tuple(names)


def _section(parser: configparser.ConfigParser, name: str) -> configparser.SectionProxy:
    if name not in parser:
        parser.add_section(name)
    return parser[name]


def resolve_engine_config_path(path: str | os.PathLike[str] | None = None) -> Path:
    candidates: list[Path] = []
    if path:
        candidates.append(Path(path).expanduser())
    env_path = os.environ.get(_CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser())
    candidates.append(_CONFIG_DIR / _DEFAULT_FILE_NAME)
    candidates.append(Path(_DEFAULT_FILE_NAME))
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return candidates[0]


def load_engine_config(path: str | os.PathLike[str] | None = None) -> EngineConfig:
    config_path = resolve_engine_config_path(path)
    parser = configparser.ConfigParser()
    read_files = parser.read(config_path)
    if not read_files:
        raise FileNotFoundError(f"engine config not found at {config_path}")

    scan = _section(parser, "scanner")
    scanner = ScannerConfig(
        interval=max(5.0, scan.getfloat("interval", fallback=DEFAULT_SCAN_INTERVAL)),
        symbol_limit=max(1, scan.getint("symbol_limit", fallback=DEFAULT_SYMBOL_LIMIT)),
        kline_symbols=max(0, scan.getint("kline_symbols", fallback=DEFAULT_KLINE_SYMBOLS)),
        category=scan.get("category", fallback=DEFAULT_CATEGORY).strip() or DEFAULT_CATEGORY,
        settle_coin=(
            scan.get("settle_coin", fallback=DEFAULT_SETTLE_COIN).strip().upper()
            or DEFAULT_SETTLE_COIN
        ),
        stream_symbols=_parse_symbol_list(scan.get("stream_symbols", fallback="")),
        exclude_symbols=_parse_symbol_list(scan.get("exclude_symbols", fallback="")),
    )

    sc = _section(parser, "scoring")
    scoring = ScoringConfig(
        max_signals=max(1, sc.getint("max_signals", fallback=10)),
        confidence_weight=max(0.0, sc.getfloat("confidence_weight", fallback=0.4)),
        risk_reward_weight=max(0.0, sc.getfloat("risk_reward_weight", fallback=0.3)),
        risk_reward_scale=max(0.0, sc.getfloat("risk_reward_scale", fallback=20.0)),
        strategy_weight=max(0.0, sc.getfloat("strategy_weight", fallback=0.3)),
        strategy_scale=max(0.0, sc.getfloat("strategy_scale", fallback=100.0)),
    )

    lc = _section(parser, "lifecycle")
    lifecycle = LifecycleConfig(
        trailing_fraction=max(0.0, lc.getfloat("trailing_pct", fallback=0.3) / 100.0),
        trailing_activation=max(
            0.0,
            lc.getfloat("trailing_activation_pct", fallback=0.0) / 100.0,
        ),
        pre_liquidation_buffer=max(
            0.0,
            _normalize_percent(
                lc.getfloat("pre_liquidation_buffer", fallback=0.003),
                assume_percent=True,
            ),
        ),
        maintenance_margin_ratio=max(
            0.0,
            lc.getfloat("maintenance_margin_ratio", fallback=0.005),
        ),
        volatility_spike_pct=max(0.0, lc.getfloat("volatility_spike_pct", fallback=2.0)),
        liquidation_cluster_threshold=max(
            0.0,
            lc.getfloat("liquidation_cluster_threshold", fallback=5_000_000.0),
        ),
        timeout_minutes=max(1.0, lc.getfloat("timeout_minutes", fallback=30.0)),
    )

    ex = _section(parser, "execution")
    risk_pct = ex.getfloat("risk_pct", fallback=1.0)
    if risk_pct <= 0 or risk_pct > 100:
        raise ValueError(f"execution.risk_pct must be in (0, 100], got {risk_pct}")
    execution = ExecutionConfig(
        dry_run=ex.getboolean("dry_run", fallback=True),
        risk_pct=risk_pct,
        leverage_cap=max(1, ex.getint("leverage_cap", fallback=100)),
        strategies=_parse_name_list(ex.get("strategies", fallback="")),
    )

    st = _section(parser, "storage")
    storage = StorageConfig(
        database_path=st.get("database_path", fallback="data/signals.db").strip()
        or "data/signals.db",
        analytics_dir=st.get("analytics_dir", fallback="analytics").strip() or "analytics",
        status_file=st.get("status_file", fallback="analytics/status_snapshot.json").strip()
        or "analytics/status_snapshot.json",
    )

    tg = _section(parser, "telegram")
    telegram = TelegramConfig(
        token=os.environ.get(_TOKEN_ENV_VAR) or tg.get("token", fallback="").strip(),
        chat_id=os.environ.get(_CHAT_ENV_VAR) or tg.get("chat_id", fallback="").strip(),
    )

    return EngineConfig(
        scanner=scanner,
        scoring=scoring,
        lifecycle=lifecycle,
        execution=execution,
        storage=storage,
        telegram=telegram,
    )


def maybe_load_engine_config(
    path: str | os.PathLike[str] | None = None,
    *,
    strict: bool = False,
) -> Optional[EngineConfig]:
    try:
        return load_engine_config(path)
    except (FileNotFoundError, ValueError):
        if strict:
            raise
        return None


def default_engine_config() -> EngineConfig:
    """In-memory defaults, with Telegram credentials taken from the environment."""

    return EngineConfig(
        telegram=TelegramConfig(
            token=os.environ.get(_TOKEN_ENV_VAR, ""),
            chat_id=os.environ.get(_CHAT_ENV_VAR, ""),
        ),
    )


def _format_float(value: float) -> str:
    formatted = f"{value:.6f}"
    while formatted.endswith("0") and "." in formatted:
        formatted = formatted[:-1]
    if formatted.endswith("."):
        formatted = formatted[:-1]
    return formatted or "0"


def _format_percent(value: float) -> str:
    return _format_float(value * 100.0)


def write_engine_config(config: EngineConfig, path: str | os.PathLike[str]) -> Path:
    """Write ``config`` as INI. Telegram credentials are not persisted."""

    parser = configparser.ConfigParser()
    parser["scanner"] = {
        "interval": _format_float(config.scanner.interval),
        "symbol_limit": str(config.scanner.symbol_limit),
        "kline_symbols": str(config.scanner.kline_symbols),
        "category": config.scanner.category,
        "settle_coin": config.scanner.settle_coin,
        "stream_symbols": ", ".join(config.scanner.stream_symbols),
        "exclude_symbols": ", ".join(config.scanner.exclude_symbols),
    }
    parser["scoring"] = {
        "max_signals": str(config.scoring.max_signals),
        "confidence_weight": _format_float(config.scoring.confidence_weight),
        "risk_reward_weight": _format_float(config.scoring.risk_reward_weight),
        "risk_reward_scale": _format_float(config.scoring.risk_reward_scale),
        "strategy_weight": _format_float(config.scoring.strategy_weight),
        "strategy_scale": _format_float(config.scoring.strategy_scale),
    }
    parser["lifecycle"] = {
        "trailing_pct": _format_percent(config.lifecycle.trailing_fraction),
        "trailing_activation_pct": _format_percent(config.lifecycle.trailing_activation),
        "pre_liquidation_buffer": _format_float(config.lifecycle.pre_liquidation_buffer),
        "maintenance_margin_ratio": _format_float(config.lifecycle.maintenance_margin_ratio),
        "volatility_spike_pct": _format_float(config.lifecycle.volatility_spike_pct),
        "liquidation_cluster_threshold": _format_float(
            config.lifecycle.liquidation_cluster_threshold
        ),
        "timeout_minutes": _format_float(config.lifecycle.timeout_minutes),
    }
    parser["execution"] = {
        "dry_run": "true" if config.execution.dry_run else "false",
        "risk_pct": _format_float(config.execution.risk_pct),
        "leverage_cap": str(config.execution.leverage_cap),
        "strategies": ", ".join(config.execution.strategies),
    }
    parser["storage"] = {
        "database_path": config.storage.database_path,
        "analytics_dir": config.storage.analytics_dir,
        "status_file": config.storage.status_file,
    }
    parser["telegram"] = {"token": "", "chat_id": ""}
    config_path = Path(path).expanduser()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w") as fh:
        parser.write(fh)
    return config_path


__all__ = [
    "EngineConfig",
    "ExecutionConfig",
    "LifecycleConfig",
    "ScannerConfig",
    "ScoringConfig",
    "StorageConfig",
    "TelegramConfig",
    "default_engine_config",
    "load_engine_config",
    "maybe_load_engine_config",
    "resolve_engine_config_path",
    "write_engine_config",
]
