from __future__ import annotations

"""Order gateways the engine calls when it accepts a ranked signal.

``BybitOrderGateway`` submits one order per signal: set leverage, size from
the wallet balance, place the entry with TP/SL attached. It never retries;
any rejection comes back as ``OrderResult(opened=False)``.
``PaperOrderGateway`` opens everything and only records what it was asked.
"""

import logging
import math
import threading
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Deque, Optional

import httpx

from perpsignal.strategy.interfaces import OrderResult
from perpsignal.strategy.models import Direction, OrderType
from perpsignal.strategy.risk import position_size

from .bybit_v5 import LEVERAGE_NOT_MODIFIED, BybitAPIError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from perpsignal.data.wallet import WalletBalanceReader
    from perpsignal.strategy.models import CandidateSignal

    from .bybit_v5 import BybitV5Client

logger = logging.getLogger("perpSignal.exchange.gateway")

PAPER_HISTORY = 500


@dataclass(frozen=True, slots=True)
class InstrumentFilters:
    tick_size: float = 0.0
    qty_step: float = 0.0
    min_qty: float = 0.0
    max_qty: float = 0.0


def side_for(direction: Direction) -> str:
    return "Buy" if direction is Direction.LONG else "Sell"


def quantize_qty(qty: float, filters: InstrumentFilters) -> float:
    """Floor to the lot step and cap at the max order size; 0 when below minimum."""
    step = filters.qty_step or filters.min_qty
    if step > 0:
        qty = math.floor(qty / step + 1e-9) * step
    if filters.max_qty > 0:
        qty = min(qty, filters.max_qty)
    if qty <= 0 or qty < filters.min_qty:
        return 0.0
    return round(qty, 10)


def quantize_price(price: float, tick_size: float) -> float:
    if tick_size and tick_size > 0:
        price = round(price / tick_size) * tick_size
    return round(price, 10)


def _format_number(value: float) -> str:
    text = f"{value:.10f}".rstrip("0").rstrip(".")
    return text or "0"


class BybitOrderGateway:
    def __init__(
        self,
        client: "BybitV5Client",
        wallet: "WalletBalanceReader",
        *,
        risk_pct: float = 1.0,
        category: Optional[str] = None,
    ) -> None:
        if not 0 < risk_pct <= 100:
            raise ValueError("risk_pct must be in (0, 100]")
        self._client = client
        self._wallet = wallet
        self._risk_pct = risk_pct
        self._category = category or client.default_category
        self._filters: dict[str, InstrumentFilters] = {}
        self._leverage: dict[str, int] = {}
        self._lock = threading.Lock()

    def open(self, signal: "CandidateSignal") -> OrderResult:
        try:
            return self._submit(signal)
        except BybitAPIError as exc:
            logger.error("Bybit rejected %s %s: %s", signal.symbol, signal.direction.value, exc)
            return OrderResult.failure(str(exc))
        except httpx.HTTPError as exc:
            logger.error("HTTP failure while opening %s: %s", signal.symbol, exc)
            return OrderResult.failure(f"http error: {exc}")
        except ValueError as exc:
            logger.error("Cannot size %s: %s", signal.symbol, exc)
            return OrderResult.failure(str(exc))

    def _submit(self, signal: "CandidateSignal") -> OrderResult:
        symbol = signal.symbol
        filters = self._instrument(symbol)
        balance = self._wallet.available_balance()
        qty = position_size(balance, signal.entry_price, signal.stop_price, self._risk_pct)
        # margin cannot exceed what is available
        qty = min(qty, balance * signal.leverage / signal.entry_price)
        qty = quantize_qty(qty, filters)
        if qty <= 0:
            return OrderResult.failure(
                f"quantity below minimum (balance={balance:.4f} min_qty={filters.min_qty})"
            )
        self._ensure_leverage(symbol, signal.leverage)

        order_type = "Market" if signal.order_type is OrderType.MARKET else "Limit"
        price = None
        if order_type == "Limit":
            price = _format_number(quantize_price(signal.entry_price, filters.tick_size))
        link_id = f"ps-{uuid.uuid4().hex[:20]}"
        response = self._client.place_order(
            symbol=symbol,
            side=side_for(signal.direction),
            qty=_format_number(qty),
            price=price,
            orderType=order_type,
            timeInForce="IOC" if order_type == "Market" else "GTC",
            orderLinkId=link_id,
            category=self._category,
            takeProfit=_format_number(quantize_price(signal.target_price, filters.tick_size)),
            stopLoss=_format_number(quantize_price(signal.stop_price, filters.tick_size)),
        )
        result = response.get("result") if isinstance(response, dict) else None
        order_id = result.get("orderId") if isinstance(result, dict) else None
        logger.info(
            "Placed %s %s %s qty=%s lev=%sx order_id=%s",
            order_type,
            side_for(signal.direction),
            symbol,
            _format_number(qty),
            signal.leverage,
            order_id or link_id,
        )
        return OrderResult(opened=True, order_id=order_id or link_id, quantity=qty)

    def _instrument(self, symbol: str) -> InstrumentFilters:
        with self._lock:
            cached = self._filters.get(symbol)
        if cached is not None:
            return cached
        response = self._client.get_instruments(category=self._category, symbol=symbol)
        raw = self._client.extract_symbol_filters(response, symbol)
        if raw.get("qtyStep") is None and raw.get("minOrderQty") is None:
            raise ValueError(f"instrument info not found for {symbol}")
        filters = InstrumentFilters(
            tick_size=raw.get("tickSize") or 0.0,
            qty_step=raw.get("qtyStep") or 0.0,
            min_qty=raw.get("minOrderQty") or 0.0,
            max_qty=raw.get("maxOrderQty") or 0.0,
        )
        with self._lock:
            self._filters[symbol] = filters
        return filters

    def _ensure_leverage(self, symbol: str, leverage: int) -> None:
        with self._lock:
            if self._leverage.get(symbol) == leverage:
                return
        try:
            self._client.set_leverage(
                symbol=symbol,
                buyLeverage=leverage,
                sellLeverage=leverage,
                category=self._category,
            )
        except BybitAPIError as exc:
            if exc.ret_code != LEVERAGE_NOT_MODIFIED:
                raise
            logger.debug("Leverage already %sx for %s", leverage, symbol)
        with self._lock:
            self._leverage[symbol] = leverage


class PaperOrderGateway:
    """Accept every signal; quantity is sized against a notional balance."""

    def __init__(
        self,
        *,
        balance: float = 1000.0,
        risk_pct: float = 1.0,
        history: int = PAPER_HISTORY,
    ) -> None:
        self.balance = balance
        self.risk_pct = risk_pct
        self.orders: Deque[dict[str, Any]] = deque(maxlen=max(1, history))
        self._submitted = 0
        self._lock = threading.Lock()

    def open(self, signal: "CandidateSignal") -> OrderResult:
        qty = position_size(self.balance, signal.entry_price, signal.stop_price, self.risk_pct)
        with self._lock:
            self._submitted += 1
            order_id = f"paper-{self._submitted}"
            self.orders.append(
                {
                    "order_id": order_id,
                    "symbol": signal.symbol,
                    "side": side_for(signal.direction),
                    "order_type": signal.order_type.value,
                    "qty": qty,
                    "leverage": signal.leverage,
                    "entry_price": signal.entry_price,
                    "take_profit": signal.target_price,
                    "stop_loss": signal.stop_price,
                    "submitted_at": datetime.now(timezone.utc).isoformat(),
                }
            )
        logger.info(
            "Paper %s %s qty=%.6f lev=%sx (%s)",
            side_for(signal.direction),
            signal.symbol,
            qty,
            signal.leverage,
            signal.strategy,
        )
        return OrderResult(opened=True, order_id=order_id, quantity=qty)


__all__ = [
    "BybitOrderGateway",
    "InstrumentFilters",
    "PaperOrderGateway",
    "quantize_price",
    "quantize_qty",
    "side_for",
]
