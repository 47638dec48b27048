from __future__ import annotations

"""Leverage ceilings, liquidation math and trailing-stop helpers.

Shared by the heuristics (leverage clamping, validity windows) and the
lifecycle manager (liquidation guard, trailing ratchet).
"""

import math
from datetime import timedelta
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .models import Direction

DEFAULT_MAINTENANCE_MARGIN_RATIO = 0.005

LEVERAGE_LIMITS: dict[str, float] = {
    # major
    "BTCUSDT": 100,
    "ETHUSDT": 100,
    "SOLUSDT": 50,
    "ADAUSDT": 50,
    "DOTUSDT": 50,
    # alt
    "AVAXUSDT": 25,
    "LINKUSDT": 25,
    "UNIUSDT": 25,
    "AAVEUSDT": 25,
    # meme
    "DOGEUSDT": 25,
    "SHIBUSDT": 25,
    # new listings
    "RADUSDT": 12.5,
}

CATEGORY_DEFAULTS: dict[str, float] = {
    "major": 50,
    "alt": 25,
    "meme": 20,
    "new": 12.5,
}

_VALIDITY: dict[str, tuple[timedelta, str]] = {
    "funding": (timedelta(hours=8), "1h"),
    "scalping": (timedelta(minutes=5), "1m"),
    "liquidation": (timedelta(minutes=5), "1m"),
    "momentum": (timedelta(minutes=45), "15m"),
    "aggressive": (timedelta(minutes=45), "15m"),
    "volume": (timedelta(hours=2), "5m"),
}
_DEFAULT_VALIDITY = (timedelta(hours=1), "15m")


def symbol_category(symbol: str) -> str:
    sym = symbol.upper()
    if "BTC" in sym or "ETH" in sym:
        return "major"
    if sym.endswith("USDT") and len(sym) <= 8:
        return "alt"
    return "new"


def leverage_ceiling(symbol: str) -> float:
    """Raw exchange ceiling, possibly fractional (e.g. 12.5)."""
    sym = symbol.upper()
    limit = LEVERAGE_LIMITS.get(sym)
    if limit is not None:
        return float(limit)
    return float(CATEGORY_DEFAULTS[symbol_category(sym)])


def max_leverage(symbol: str) -> int:
    return max(1, int(math.floor(leverage_ceiling(symbol))))


def clamp_leverage(symbol: str, leverage: float) -> int:
    """Clamp to [1, max_leverage(symbol)] without complaint."""
    try:
        value = int(math.floor(leverage))
    except (TypeError, ValueError, OverflowError):
        value = 1
    return max(1, min(value, max_leverage(symbol)))


def liquidation_price(
    entry_price: float,
    leverage: float,
    direction: "Direction | str",
    mmr: float = DEFAULT_MAINTENANCE_MARGIN_RATIO,
) -> float:
    """Isolated-margin liquidation estimate.

    Approximation only: funding accrual, fees and cross-margin collateral are
    ignored, so the exchange's real liquidation price will differ.
    """
    if leverage <= 0:
        raise ValueError("leverage must be positive")
    if _is_long(direction):
        return entry_price * (1 - 1 / leverage + mmr)
    return entry_price * (1 + 1 / leverage - mmr)


def trailing_stop(
    current_price: float,
    entry_price: float,
    direction: "Direction | str",
    trailing_fraction: float,
    previous_stop: Optional[float] = None,
    *,
    activation: float = 0.0,
) -> Optional[float]:
    """Return the ratcheted stop; never loosens ``previous_stop``.

    The stop only starts trailing once the favorable move from entry reaches
    ``activation`` (a price fraction). Before that ``previous_stop`` is
    returned unchanged.
    """
    long = _is_long(direction)
    if entry_price > 0:
        move = (current_price - entry_price) / entry_price
        if not long:
            move = -move
        if move < activation:
            return previous_stop
    if long:
        candidate = current_price * (1 - trailing_fraction)
        return candidate if previous_stop is None else max(previous_stop, candidate)
    candidate = current_price * (1 + trailing_fraction)
    return candidate if previous_stop is None else min(previous_stop, candidate)


def position_size(
    balance: float,
    entry_price: float,
    stop_price: float,
    risk_pct: float,
) -> float:
    """Quantity such that hitting the stop loses ``risk_pct`` percent of balance."""
    if balance <= 0 or entry_price <= 0:
        return 0.0
    stop_distance = abs(entry_price - stop_price) / entry_price
    if stop_distance <= 0:
        return 0.0
    risk_amount = balance * (risk_pct / 100.0)
    notional = risk_amount / stop_distance
    return notional / entry_price


def validity_for(kind: str) -> tuple[timedelta, str]:
    return _VALIDITY.get(kind.lower(), _DEFAULT_VALIDITY)


def _is_long(direction: "Direction | str") -> bool:
    value = getattr(direction, "value", direction)
    return str(value).upper() == "LONG"


__all__ = [
    "CATEGORY_DEFAULTS",
    "DEFAULT_MAINTENANCE_MARGIN_RATIO",
    "LEVERAGE_LIMITS",
    "clamp_leverage",
    "leverage_ceiling",
    "liquidation_price",
    "max_leverage",
    "position_size",
    "symbol_category",
    "trailing_stop",
    "validity_for",
]
