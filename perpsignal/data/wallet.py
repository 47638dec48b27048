from __future__ import annotations

"""Wallet balance lookup used to size live orders."""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.exchange.bybit_v5 import BybitV5Client

logger = logging.getLogger("perpSignal.wallet")

DEFAULT_BALANCE_MAX_AGE = 60.0


@dataclass(slots=True)
class WalletSnapshot:
    account_type: str
    coin: str
    total_equity: float
    available_balance: float
    wallet_balance: float
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _number(source: dict[str, Any], key: str) -> Optional[float]:
    raw = source.get(key)
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-numeric wallet field %s=%r", key, raw)
        return None


def parse_wallet_response(
    response: dict[str, Any],
    *,
    coin: str = "USDT",
    account_type: str = "UNIFIED",
) -> WalletSnapshot:
    """Build a snapshot from a ``/v5/account/wallet-balance`` payload.

    Available balance prefers the account-level ``totalAvailableBalance``, then
    the coin's own available fields, then wallet balance minus initial margin.
    """
    accounts = (response.get("result") or {}).get("list") or []
    if not accounts:
        raise ValueError("wallet-balance response has no account entries")
    entry = accounts[0]
    coins = entry.get("coin") or []
    if not coins:
        raise ValueError("wallet-balance response has no coin entries")
    desired = next((item for item in coins if item.get("coin") == coin), coins[0])

    available: Optional[float] = _number(entry, "totalAvailableBalance")
    if available is None:
        for key in ("availableBalance", "availableToTrade", "availableToWithdraw"):
            available = _number(desired, key)
            if available is not None:
                break
    if available is None:
        margin = (_number(desired, "totalPositionIM") or 0.0) + (
            _number(desired, "totalOrderIM") or 0.0
        )
        base = _number(desired, "walletBalance")
        if base is None:
            base = _number(desired, "equity")
        available = max(0.0, base - margin) if base is not None else 0.0

    return WalletSnapshot(
        account_type=entry.get("accountType", account_type),
        coin=desired.get("coin", coin),
        total_equity=_number(desired, "equity") or 0.0,
        available_balance=available,
        wallet_balance=_number(desired, "walletBalance") or 0.0,
    )


class WalletBalanceReader:
    """Fetch and briefly cache the tradable balance."""

    def __init__(
        self,
        client: "BybitV5Client",
        *,
        account_type: str = "UNIFIED",
        coin: str = "USDT",
        max_age: float = DEFAULT_BALANCE_MAX_AGE,
    ) -> None:
        self._client = client
        self._account_type = account_type
        self._coin = coin
        self._max_age = max(0.0, max_age)
        self._lock = threading.Lock()
        self._cached: Optional[WalletSnapshot] = None
        self._fetched_monotonic = 0.0

    @property
    def snapshot(self) -> Optional[WalletSnapshot]:
        with self._lock:
            return self._cached

    def fetch_once(self) -> WalletSnapshot:
        kind, coin = self._account_type, self._coin
        response = self._client.get_wallet_balance(accountType=kind, coin=coin)
        snapshot = parse_wallet_response(response, coin=coin, account_type=kind)
        with self._lock:
            self._cached = snapshot
            self._fetched_monotonic = time.monotonic()
        logger.debug("Balance refreshed: %s %.4f available", coin, snapshot.available_balance)
        return snapshot

    def available_balance(self) -> float:
        with self._lock:
            cached = self._cached
            age = time.monotonic() - self._fetched_monotonic
        if cached is not None and age < self._max_age:
            return cached.available_balance
        return self.fetch_once().available_balance


__all__ = ["WalletBalanceReader", "WalletSnapshot", "parse_wallet_response"]
