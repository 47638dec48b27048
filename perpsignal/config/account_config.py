from __future__ import annotations

"""Bybit credentials for live order placement (config/accountConfig.ini, section [bybit])."""

import configparser
import getpass
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

_CONFIG_ENV_VAR = "PERPSIGNAL_ACCOUNT_CONFIG"
_DEFAULT_FILE_NAME = "accountConfig.ini"
_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"
_SECTION = "bybit"
_YES = frozenset({"y", "yes", "true", "1"})
_NO = frozenset({"n", "no", "false", "0"})


@dataclass(slots=True)
class BybitAccountConfig:
    api_key: str
    api_secret: str
    testnet: bool = True
    category: str = "linear"
    account_type: str = "UNIFIED"
    account_name: Optional[str] = None

    def masked_key(self) -> str:
        key = self.api_key
        return "***" if len(key) <= 6 else f"{key[:3]}***{key[-3:]}"

    def to_section(self) -> dict[str, str]:
        return {
            "account_name": self.account_name or "",
            "api_key": self.api_key,
            "api_secret": self.api_secret,
            "testnet": str(self.testnet).lower(),
            "category": self.category,
            "account_type": self.account_type,
        }


def _candidate_paths(path: str | os.PathLike[str] | None) -> list[Path]:
    explicit = [path, os.environ.get(_CONFIG_ENV_VAR)]
    found = [Path(item).expanduser() for item in explicit if item]
    return found + [_CONFIG_DIR / _DEFAULT_FILE_NAME, Path(_DEFAULT_FILE_NAME)]


def resolve_account_config_path(path: str | os.PathLike[str] | None = None) -> Path:
    """First existing candidate; otherwise the preferred location for a new file."""

    candidates = _candidate_paths(path)
    return next((item for item in candidates if item.exists()), candidates[0])


def load_account_config(path: str | os.PathLike[str] | None = None) -> BybitAccountConfig:
    config_path = resolve_account_config_path(path)
    parser = configparser.ConfigParser()
    if not parser.read(config_path):
        raise FileNotFoundError(f"no account config at {config_path}")
    if not parser.has_section(_SECTION):
        raise ValueError(f"{config_path} has no [{_SECTION}] section")
    section = parser[_SECTION]

    def text(key: str, default: str = "") -> str:
        return section.get(key, fallback=default).strip()

    api_key, api_secret = text("api_key"), text("api_secret")
    if not (api_key and api_secret):
        raise ValueError(f"{config_path} needs both api_key and api_secret")
    return BybitAccountConfig(
        api_key=api_key,
        api_secret=api_secret,
        testnet=section.getboolean("testnet", fallback=True),
        category=text("category") or "linear",
        account_type=text("account_type").upper() or "UNIFIED",
        account_name=text("account_name") or None,
    )


def maybe_load_account_config(
    path: str | os.PathLike[str] | None = None,
    *,
    strict: bool = False,
) -> Optional[BybitAccountConfig]:
    """Like ``load_account_config`` but returns None for a missing or partial file."""

    try:
        return load_account_config(path)
    except (FileNotFoundError, ValueError):
        if strict:
            raise
        return None


def write_account_config(config: BybitAccountConfig, path: str | os.PathLike[str]) -> Path:
    parser = configparser.ConfigParser()
    parser[_SECTION] = config.to_section()
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as fh:
        parser.write(fh)
    return target


def _ask(prompt: str, default: str = "") -> str:
    suffix = f" [{default}]" if default else ""
    return input(f"{prompt}{suffix}: ").strip() or default


def interactive_setup(
    path: str | os.PathLike[str] | None = None,
    *,
    force: bool = False,
) -> Path:
    """Collect credentials on the terminal and save them.

    The secret is read without echo. An existing file is only replaced after
    confirmation unless ``force`` is set.
    """

    target = resolve_account_config_path(path)
    if target.exists() and not force:
        if _ask(f"{target} exists, replace it? (y/n)", "n").lower() not in _YES:
            return target
    print("Bybit API credentials (stored in plain INI next to the engine config)")
    config = BybitAccountConfig(
        account_name=_ask("Label for this account (blank for none)") or None,
        api_key=_ask("API key"),
        api_secret=getpass.getpass("API secret: ").strip(),
        testnet=_ask("Trade on testnet? (y/n)", "y").lower() not in _NO,
        category=_ask("Contract category (linear/inverse)", "linear"),
        account_type=_ask("Account type", "UNIFIED").upper(),
    )
    written = write_account_config(config, target)
    print(f"Account config written to {written}")
    return written


if __name__ == "__main__":
    interactive_setup()
