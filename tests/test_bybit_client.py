import json

import httpx
import pytest

from perpsignal.exchange import bybit_v5
from perpsignal.exchange.bybit_v5 import BybitAPIError, BybitV5Client, EdgeProtectionError


def _client(handler, **kwargs):
    kwargs.setdefault("testnet", True)
    return BybitV5Client(transport=httpx.MockTransport(handler), **kwargs)


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr(bybit_v5.time, "sleep", lambda seconds: None)


def test_public_request_has_no_auth_headers():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"retCode": 0, "result": {"list": []}})

    client = _client(handler)
    body = client.get_tickers(symbol="BTCUSDT")
    assert body["retCode"] == 0
    request = seen[0]
    assert request.url.host == "api-testnet.bybit.com"
    assert request.url.params["category"] == "linear"
    assert "X-BAPI-SIGN" not in request.headers


def test_signed_get_matches_query():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"retCode": 0, "result": {}})

    client = _client(handler, api_key="key123", api_secret="secret456")
    client.get_wallet_balance(accountType="UNIFIED", coin="USDT")
    headers = seen[0].headers
    ts = int(headers["X-BAPI-TIMESTAMP"])
    assert headers["X-BAPI-API-KEY"] == "key123"
    assert headers["X-BAPI-SIGN"] == client._sign(ts, "accountType=UNIFIED&coin=USDT")


def test_private_call_without_credentials(monkeypatch):
    monkeypatch.delenv("BYBIT_API_KEY", raising=False)
    monkeypatch.delenv("BYBIT_API_SECRET", raising=False)

    def handler(request):  # pragma: no cover - never reached
        raise AssertionError("request should not be sent")

    client = _client(handler)
    with pytest.raises(BybitAPIError) as excinfo:
        client.set_leverage(symbol="BTCUSDT", buyLeverage=10, sellLeverage=10)
    assert excinfo.value.ret_code == 10003


def test_error_code_raises():
    def handler(request):
        return httpx.Response(200, json={"retCode": 10001, "retMsg": "params error"})

    with pytest.raises(BybitAPIError) as excinfo:
        _client(handler).get_instruments(symbol="BTCUSDT")
    assert excinfo.value.ret_code == 10001
    assert excinfo.value.ret_msg == "params error"


def test_retryable_code_is_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(200, json={"retCode": 10006, "retMsg": "rate limit"})
        return httpx.Response(200, json={"retCode": 0, "result": {"list": []}})

    assert _client(handler).get_kline(symbol="BTCUSDT")["retCode"] == 0
    assert len(calls) == 2
    assert calls[0].url.params["limit"] == "6"


def test_edge_html_raises_after_retries():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(403, text="<html>blocked</html>")

    with pytest.raises(EdgeProtectionError):
        _client(handler).get_tickers()
    assert len(calls) == 3


def test_place_order_body():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"retCode": 0, "result": {"orderId": "abc"}})

    client = _client(handler, api_key="k" * 8, api_secret="s" * 8)
    client.place_order(symbol="BTCUSDT", side="long", qty="0.01", takeProfit="70000")
    body = seen[0]
    assert body["side"] == "Buy"
    assert body["takeProfit"] == "70000"
    assert "price" not in body
    assert "stopLoss" not in body


def test_extract_symbol_filters():
    response = {
        "result": {
            "list": [
                {
                    "symbol": "BTCUSDT",
                    "priceFilter": {"tickSize": "0.10"},
                    "lotSizeFilter": {"qtyStep": "0.001", "minOrderQty": "0.001", "maxOrderQty": ""},
                }
            ]
        }
    }
    filters = BybitV5Client.extract_symbol_filters(response, "BTCUSDT")
    assert filters == {"tickSize": 0.1, "qtyStep": 0.001, "minOrderQty": 0.001, "maxOrderQty": None}
    assert BybitV5Client.extract_symbol_filters(response, "ETHUSDT")["qtyStep"] is None
