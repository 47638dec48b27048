"""Bybit v5 REST client for the scanner and the order gateway.

Endpoints covered:
- market: tickers, kline, instruments-info (no auth)
- account: wallet balance
- trading: set leverage, create order with TP/SL attached

Credentials fall back to ``BYBIT_API_KEY`` / ``BYBIT_API_SECRET``; ``TESTNET``
(default true) and ``BYBIT_CATEGORY`` (default linear) pick the venue.

Private calls are signed with HMAC-SHA256 over
``timestamp + apiKey + recvWindow + payload``, where payload is the query
string for GET and the compact JSON body for POST.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import time
from typing import Any, Dict, Mapping, Optional

import httpx

logger = logging.getLogger("perpSignal.exchange.bybit")

MAINNET_URL = "https://api.bybit.com"
TESTNET_URL = "https://api-testnet.bybit.com"

# rate limit, timestamp drift, too many visits, internal error
_RETRYABLE_CODES = frozenset({10006, 10016, 10018, 110001})
_EDGE_STATUSES = frozenset({403, 502, 520, 521})
LEVERAGE_NOT_MODIFIED = 110043
_AUTH_REQUIRED = 10003


class BybitAPIError(Exception):
    """Non-zero ``retCode`` or an unusable HTTP response."""

    def __init__(self, ret_code: int, ret_msg: str, data: Any | None = None) -> None:
        super().__init__(f"Bybit API error {ret_code}: {ret_msg}")
        self.ret_code = ret_code
        self.ret_msg = ret_msg
        self.data = data


class EdgeProtectionError(BybitAPIError):
    """The CDN answered with HTML (403/5xx) on every attempt."""


def _order_side(side: str) -> str:
    normalized = str(side).strip().lower()
    if normalized in ("buy", "long"):
        return "Buy"
    if normalized in ("sell", "short"):
        return "Sell"
    raise ValueError(f"unsupported order side {side!r}")


def _drop_none(values: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    if not values:
        return None
    kept = {key: value for key, value in values.items() if value is not None}
    return kept or None


def _as_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class BybitV5Client:
    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        *,
        testnet: bool | None = None,
        base_url: Optional[str] = None,
        recv_window_ms: int = 5000,
        category: str | None = None,
        total_timeout: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        env = os.environ
        self.api_key = api_key or env.get("BYBIT_API_KEY", "")
        self.api_secret = api_secret or env.get("BYBIT_API_SECRET", "")
        self.testnet = (
            env.get("TESTNET", "true").strip().lower() == "true" if testnet is None else testnet
        )
        self.base_url = base_url or (TESTNET_URL if self.testnet else MAINNET_URL)
        self.default_category = category or env.get("BYBIT_CATEGORY", "linear")
        self.recv_window_ms = recv_window_ms
        self.total_timeout = total_timeout
        self._client = httpx.Client(
            timeout=httpx.Timeout(connect=5.0, read=7.0, write=5.0, pool=5.0),
            transport=transport,
            headers={"Accept": "application/json", "User-Agent": "perpsignal/0.1 (+httpx)"},
        )

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)

    @staticmethod
    def _canonical_query(params: Optional[Mapping[str, Any]]) -> str:
        if not params:
            return ""
        # bybit verifies the signature against the query exactly as sent
        parts = []
        for key, value in params.items():
            text = value if isinstance(value, str) else json.dumps(value, separators=(",", ":"))
            parts.append(f"{key}={text}")
        return "&".join(parts)

    @staticmethod
    def _minified_json(body: Optional[Mapping[str, Any]]) -> str:
        return json.dumps(body, separators=(",", ":"), ensure_ascii=False) if body else ""

    def _sign(self, ts_ms: int, payload: str) -> str:
        message = f"{ts_ms}{self.api_key}{self.recv_window_ms}{payload}".encode()
        return hmac.new(self.api_secret.encode(), message, hashlib.sha256).hexdigest()

    def _auth_headers(self, path: str, payload: str) -> Dict[str, str]:
        if not self.has_credentials:
            raise BybitAPIError(_AUTH_REQUIRED, f"API credentials required for {path}")
        ts_ms = int(time.time() * 1000)
        return {
            "X-BAPI-API-KEY": self.api_key,
            "X-BAPI-TIMESTAMP": str(ts_ms),
            "X-BAPI-RECV-WINDOW": str(self.recv_window_ms),
            "X-BAPI-SIGN": self._sign(ts_ms, payload),
            "X-BAPI-SIGN-TYPE": "2",
        }

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        data: Optional[Mapping[str, Any]] = None,
        auth: bool = False,
        max_retries: int = 2,
    ) -> Dict[str, Any]:
        query = _drop_none(params)
        body = _drop_none(data)
        is_get = method.upper() == "GET"
        deadline = time.monotonic() + self.total_timeout
        attempt = 0

        def backoff() -> bool:
            nonlocal attempt
            if attempt >= max_retries:
                return False
            time.sleep(2**attempt)
            attempt += 1
            return True

        while True:
            if time.monotonic() > deadline:
                raise BybitAPIError(408, f"total timeout exceeded {self.total_timeout}s for {path}")
            content = None if is_get else self._minified_json(body)
            headers = {"Content-Type": "application/json"}
            if auth:
                signed = self._canonical_query(query) if is_get else content
                headers.update(self._auth_headers(path, signed or ""))
            try:
                resp = self._client.request(
                    method,
                    f"{self.base_url}{path}",
                    params=query,
                    content=content or None,
                    headers=headers,
                )
            except httpx.RequestError as exc:
                logger.debug("%s %s failed on attempt %s: %s", method, path, attempt + 1, exc)
                if backoff():
                    continue
                raise

            if resp.status_code == 429 and backoff():
                continue

            try:
                payload = resp.json()
            except ValueError:
                status = resp.status_code
                snippet = resp.text[:200]
                if status in _EDGE_STATUSES:
                    if backoff():
                        continue
                    raise EdgeProtectionError(
                        status,
                        f"edge returned HTTP {status} without JSON for {path}: {snippet}",
                        {"status": status, "body": snippet},
                    )
                raise BybitAPIError(
                    status,
                    f"HTTP {status} without JSON for {path}: {snippet}",
                    {"status": status, "body": snippet},
                )

            ret_code = payload.get("retCode", 0)
            if ret_code == 0:
                return payload
            if ret_code in _RETRYABLE_CODES and backoff():
                logger.debug("Retrying %s after retCode %s", path, ret_code)
                continue
            raise BybitAPIError(ret_code, payload.get("retMsg", "unknown"), payload)

    def _category(self, category: Optional[str]) -> str:
        return category or self.default_category

    def get_tickers(
        self,
        category: Optional[str] = None,
        symbol: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self._request(
            "GET",
            "/v5/market/tickers",
            params={"category": self._category(category), "symbol": symbol},
        )

    def get_kline(
        self,
        *,
        symbol: str,
        interval: str = "1",
        limit: int = 6,
        category: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Candles newest first: [startTime, open, high, low, close, volume, turnover]."""
        return self._request(
            "GET",
            "/v5/market/kline",
            params={
                "category": self._category(category),
                "symbol": symbol,
                "interval": interval,
                "limit": limit,
            },
        )

    def get_instruments(
        self,
        category: Optional[str] = None,
        symbol: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self._request(
            "GET",
            "/v5/market/instruments-info",
            params={"category": self._category(category), "symbol": symbol},
        )

    def get_wallet_balance(
        self,
        *,
        accountType: str = "UNIFIED",
        coin: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self._request(
            "GET",
            "/v5/account/wallet-balance",
            params={"accountType": accountType, "coin": coin},
            auth=True,
        )

    def set_leverage(
        self,
        *,
        symbol: str,
        buyLeverage: int | float,
        sellLeverage: int | float,
        category: Optional[str] = None,
    ) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/v5/position/set-leverage",
            data={
                "category": self._category(category),
                "symbol": symbol,
                "buyLeverage": str(buyLeverage),
                "sellLeverage": str(sellLeverage),
            },
            auth=True,
        )

    def place_order(
        self,
        *,
        symbol: str,
        side: str,
        qty: str | float,
        price: str | float | None = None,
        orderType: str = "Market",
        timeInForce: str = "GTC",
        orderLinkId: Optional[str] = None,
        category: Optional[str] = None,
        takeProfit: str | float | None = None,
        stopLoss: str | float | None = None,
        triggerPrice: str | float | None = None,
        triggerDirection: Optional[int] = None,
        tpTriggerBy: Optional[str] = None,
        slTriggerBy: Optional[str] = None,
    ) -> Dict[str, Any]:
        order = {
            "category": self._category(category),
            "symbol": symbol,
            "side": _order_side(side),
            "orderType": orderType,
            "qty": str(qty),
            "price": _as_str(price),
            "timeInForce": timeInForce,
            "orderLinkId": orderLinkId,
            "takeProfit": _as_str(takeProfit),
            "stopLoss": _as_str(stopLoss),
            "tpTriggerBy": tpTriggerBy,
            "slTriggerBy": slTriggerBy,
            "triggerPrice": _as_str(triggerPrice),
            "triggerDirection": triggerDirection,
        }
        return self._request("POST", "/v5/order/create", data=order, auth=True)

    @staticmethod
    def extract_symbol_filters(resp: Dict[str, Any], symbol: str) -> Dict[str, Optional[float]]:
        """tickSize, qtyStep and order-size bounds for ``symbol`` from instruments-info."""

        def number(value: Any) -> Optional[float]:
            if value in (None, ""):
                return None
            try:
                return float(value)
            except (TypeError, ValueError):
                return None

        for item in (resp.get("result") or {}).get("list") or []:
            if item.get("symbol") != symbol:
                continue
            price_filter = item.get("priceFilter") or {}
            lot_filter = item.get("lotSizeFilter") or {}
            return {
                "tickSize": number(price_filter.get("tickSize")),
                "qtyStep": number(lot_filter.get("qtyStep")),
                "minOrderQty": number(lot_filter.get("minOrderQty")),
                "maxOrderQty": number(lot_filter.get("maxOrderQty")),
            }
        return dict.fromkeys(("tickSize", "qtyStep", "minOrderQty", "maxOrderQty"))

    def close(self) -> None:
        self._client.close()


__all__ = [
    "BybitAPIError",
    "BybitV5Client",
    "EdgeProtectionError",
    "LEVERAGE_NOT_MODIFIED",
]
