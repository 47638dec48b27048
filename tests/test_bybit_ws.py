import json

from perpsignal.exchange.bybit_ws import BybitPublicStream, build_topics


class _Socket:
    def __init__(self):
        self.sent = []

    def send(self, message):
        self.sent.append(json.loads(message))


def test_build_topics():
    assert build_topics(["btcusdt", " "]) == ["tickers.BTCUSDT", "allLiquidation.BTCUSDT"]
    assert build_topics(["ETHUSDT"], liquidations=False) == ["tickers.ETHUSDT"]


def test_stream_url():
    assert BybitPublicStream(["BTCUSDT"]).url == "wss://stream.bybit.com/v5/public/linear"
    assert "testnet" in BybitPublicStream(["BTCUSDT"], testnet=True).url


def test_subscribe_in_batches():
    symbols = [f"SYM{i}USDT" for i in range(6)]
    stream = BybitPublicStream(symbols)
    socket = _Socket()
    stream._on_open(socket)
    assert [len(msg["args"]) for msg in socket.sent] == [10, 2]
    assert all(msg["op"] == "subscribe" for msg in socket.sent)


def test_dispatch_routes_frames():
    tickers = []
    liquidations = []
    stream = BybitPublicStream(
        ["BTCUSDT"],
        on_ticker=lambda symbol, data: tickers.append((symbol, data)),
        on_liquidation=liquidations.append,
    )
    stream.dispatch({"topic": "tickers.BTCUSDT", "data": {"lastPrice": "65000"}})
    stream.dispatch(
        {
            "topic": "allLiquidation.BTCUSDT",
            "data": [{"s": "BTCUSDT", "S": "Buy", "v": "1", "p": "64000"}, "junk"],
        }
    )
    stream.dispatch({"op": "subscribe", "success": False, "ret_msg": "bad topic"})
    assert tickers == [("BTCUSDT", {"lastPrice": "65000"})]
    assert liquidations == [{"s": "BTCUSDT", "S": "Buy", "v": "1", "p": "64000"}]


def test_bad_frames_do_not_raise():
    def boom(symbol, data):
        raise RuntimeError("handler bug")

    stream = BybitPublicStream(["BTCUSDT"], on_ticker=boom)
    stream._on_message(None, "not json")
    stream._on_message(None, json.dumps({"topic": "tickers.BTCUSDT", "data": {}}))


def test_start_without_symbols_is_noop():
    stream = BybitPublicStream([])
    stream.start()
    assert not stream.running
