import pytest

from perpsignal.exchange import BybitOrderGateway, PaperOrderGateway
from perpsignal.exchange.bybit_v5 import BybitAPIError, BybitV5Client
from perpsignal.exchange.gateway import InstrumentFilters, quantize_price, quantize_qty
from perpsignal.strategy.models import Direction, OrderType


class _Wallet:
    def __init__(self, balance=1000.0):
        self.balance = balance

    def available_balance(self):
        return self.balance


class _Client:
    default_category = "linear"
    extract_symbol_filters = staticmethod(BybitV5Client.extract_symbol_filters)

    def __init__(self, leverage_error=None, min_qty="0.1"):
        self.leverage_error = leverage_error
        self.min_qty = min_qty
        self.instrument_calls = 0
        self.leverage_calls = []
        self.orders = []

    def get_instruments(self, category=None, symbol=None):
        self.instrument_calls += 1
        return {
            "result": {
                "list": [
                    {
                        "symbol": "SOLUSDT",
                        "priceFilter": {"tickSize": "0.01"},
                        "lotSizeFilter": {
                            "qtyStep": "0.1",
                            "minOrderQty": self.min_qty,
                            "maxOrderQty": "10000",
                        },
                    }
                ]
            }
        }

    def set_leverage(self, **kwargs):
        self.leverage_calls.append(kwargs)
        if self.leverage_error is not None:
            raise BybitAPIError(self.leverage_error, "leverage error")
        return {"retCode": 0}

    def place_order(self, **kwargs):
        self.orders.append(kwargs)
        return {"retCode": 0, "result": {"orderId": f"bybit-{len(self.orders)}"}}


def test_quantize_helpers():
    filters = InstrumentFilters(tick_size=0.01, qty_step=0.1, min_qty=0.5, max_qty=5.0)
    assert quantize_qty(3.3333, filters) == 3.3
    assert quantize_qty(12.0, filters) == 5.0
    assert quantize_qty(0.45, filters) == 0.0
    assert quantize_price(101.2345, 0.01) == 101.23
    assert quantize_price(101.2345, 0.0) == 101.2345


def test_market_order_sized_from_risk(make_signal):
    client = _Client()
    gateway = BybitOrderGateway(client, _Wallet(1000.0), risk_pct=1.0)
    result = gateway.open(make_signal())
    # 1% of 1000 at a 3% stop is 333.33 notional, floored to the 0.1 lot
    assert result.opened
    assert result.order_id == "bybit-1"
    assert result.quantity == 3.3
    order = client.orders[0]
    assert order["side"] == "Buy"
    assert order["orderType"] == "Market"
    assert order["timeInForce"] == "IOC"
    assert order["price"] is None
    assert order["qty"] == "3.3"
    assert order["takeProfit"] == "102"
    assert order["stopLoss"] == "97"
    assert client.leverage_calls[0]["buyLeverage"] == 10


def test_non_market_orders_rest_at_entry(make_signal):
    client = _Client()
    gateway = BybitOrderGateway(client, _Wallet())
    gateway.open(make_signal(direction=Direction.SHORT, order_type=OrderType.CONDITIONAL))
    order = client.orders[0]
    assert order["side"] == "Sell"
    assert order["orderType"] == "Limit"
    assert order["timeInForce"] == "GTC"
    assert order["price"] == "100"


def test_filters_and_leverage_are_cached(make_signal):
    client = _Client()
    gateway = BybitOrderGateway(client, _Wallet())
    gateway.open(make_signal())
    gateway.open(make_signal(direction=Direction.SHORT))
    assert client.instrument_calls == 1
    assert len(client.leverage_calls) == 1
    assert len(client.orders) == 2


def test_leverage_not_modified_is_accepted(make_signal):
    client = _Client(leverage_error=110043)
    assert BybitOrderGateway(client, _Wallet()).open(make_signal()).opened


def test_leverage_rejection_fails_open(make_signal):
    client = _Client(leverage_error=110013)
    result = BybitOrderGateway(client, _Wallet()).open(make_signal())
    assert not result.opened
    assert "110013" in result.error
    assert client.orders == []


def test_quantity_below_minimum(make_signal):
    client = _Client(min_qty="50")
    result = BybitOrderGateway(client, _Wallet()).open(make_signal())
    assert not result.opened
    assert "below minimum" in result.error
    assert client.leverage_calls == []


def test_unknown_instrument(make_signal):
    result = BybitOrderGateway(_Client(), _Wallet()).open(make_signal(symbol="XYZUSDT"))
    assert not result.opened
    assert "XYZUSDT" in result.error


def test_risk_pct_bounds():
    with pytest.raises(ValueError):
        BybitOrderGateway(_Client(), _Wallet(), risk_pct=0)


def test_paper_gateway_records_orders(make_signal):
    gateway = PaperOrderGateway(balance=1000.0, risk_pct=1.0)
    first = gateway.open(make_signal())
    second = gateway.open(make_signal(symbol="ETHUSDT"))
    assert first.opened and second.opened
    assert [order["order_id"] for order in gateway.orders] == ["paper-1", "paper-2"]
    assert first.quantity == pytest.approx(1000.0 * 0.01 / 0.03 / 100.0)


def test_paper_gateway_history_is_bounded(make_signal):
    gateway = PaperOrderGateway(history=3)
    results = [gateway.open(make_signal(symbol=f"S{i}USDT")) for i in range(5)]
    assert results[-1].order_id == "paper-5"
    assert [order["order_id"] for order in gateway.orders] == ["paper-3", "paper-4", "paper-5"]
