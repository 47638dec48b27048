"""Configuration utilities for perpSignal."""

from .account_config import (
    BybitAccountConfig,
    interactive_setup,
    load_account_config,
    maybe_load_account_config,
    resolve_account_config_path,
    write_account_config,
)
from .engine_config import (
    EngineConfig,
    ExecutionConfig,
    LifecycleConfig,
    ScannerConfig,
    ScoringConfig,
    StorageConfig,
    TelegramConfig,
    default_engine_config,
    load_engine_config,
    maybe_load_engine_config,
    resolve_engine_config_path,
    write_engine_config,
)

__all__ = [
    "BybitAccountConfig",
    "EngineConfig",
    "ExecutionConfig",
    "LifecycleConfig",
    "ScannerConfig",
    "ScoringConfig",
    "StorageConfig",
    "TelegramConfig",
    "default_engine_config",
    "interactive_setup",
    "load_account_config",
    "load_engine_config",
    "maybe_load_account_config",
    "maybe_load_engine_config",
    "resolve_account_config_path",
    "resolve_engine_config_path",
    "write_account_config",
    "write_engine_config",
]
