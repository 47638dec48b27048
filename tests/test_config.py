import pytest

from perpsignal.config import (
    BybitAccountConfig,
    EngineConfig,
    ExecutionConfig,
    LifecycleConfig,
    load_account_config,
    load_engine_config,
    maybe_load_account_config,
    write_account_config,
    write_engine_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("ENGINE_CONFIG", "PERPSIGNAL_ACCOUNT_CONFIG", "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID"):
        monkeypatch.delenv(name, raising=False)


def test_engine_config_round_trip(tmp_path):
    config = EngineConfig(
        lifecycle=LifecycleConfig(trailing_fraction=0.005, timeout_minutes=45.0),
        execution=ExecutionConfig(dry_run=False, risk_pct=0.5, leverage_cap=20, strategies=("funding", "momentum")),
    )
    config.scanner.stream_symbols = ("ETHUSDT", "BTCUSDT")
    path = write_engine_config(config, tmp_path / "engine.ini")
    loaded = load_engine_config(path)
    assert loaded.lifecycle.trailing_fraction == pytest.approx(0.005)
    assert loaded.lifecycle.pre_liquidation_buffer == pytest.approx(0.003)
    assert loaded.lifecycle.timeout_minutes == 45.0
    assert loaded.execution.dry_run is False
    assert loaded.execution.leverage_cap == 20
    assert loaded.execution.strategies == ("funding", "momentum")
    assert loaded.scanner.stream_symbols == ("BTCUSDT", "ETHUSDT")
    assert loaded.telegram.enabled is False


def test_engine_config_percent_buffer_and_env_credentials(tmp_path, monkeypatch):
    path = tmp_path / "engine.ini"
    path.write_text(
        "[lifecycle]\npre_liquidation_buffer = 1\n[scanner]\ninterval = 1\n"
        "[telegram]\ntoken = from-file\nchat_id = 42\n"
    )
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "from-env")
    config = load_engine_config(path)
    assert config.lifecycle.pre_liquidation_buffer == pytest.approx(0.01)
    assert config.scanner.interval == 5.0
    assert config.telegram.token == "from-env"
    assert config.telegram.chat_id == "42"
    assert config.telegram.enabled


def test_engine_config_env_override(tmp_path, monkeypatch):
    path = tmp_path / "custom.ini"
    path.write_text("[scoring]\nmax_signals = 3\n")
    monkeypatch.setenv("ENGINE_CONFIG", str(path))
    assert load_engine_config().scoring.max_signals == 3


def test_engine_config_rejects_bad_risk(tmp_path):
    path = tmp_path / "engine.ini"
    path.write_text("[execution]\nrisk_pct = 150\n")
    with pytest.raises(ValueError):
        load_engine_config(path)


def test_account_config_round_trip(tmp_path):
    account = BybitAccountConfig(api_key="abcdef123", api_secret="secret", testnet=False, account_name="main")
    path = write_account_config(account, tmp_path / "account.ini")
    loaded = load_account_config(path)
    assert loaded == account
    assert loaded.masked_key() == "abc***123"


def test_account_config_incomplete(tmp_path):
    path = tmp_path / "account.ini"
    path.write_text("[bybit]\napi_key = only-key\n")
    assert maybe_load_account_config(path) is None
    with pytest.raises(ValueError):
        maybe_load_account_config(path, strict=True)
