import pytest

from perpsignal.data import WalletBalanceReader, parse_wallet_response


def _response(**account):
    coin = {"coin": "USDT", "equity": "1200", "walletBalance": "1100", "totalPositionIM": "100"}
    coin.update(account.pop("coin", {}))
    return {"result": {"list": [{"accountType": "UNIFIED", "coin": [coin], **account}]}}


def test_account_level_available_balance():
    snapshot = parse_wallet_response(_response(totalAvailableBalance="950"))
    assert snapshot.available_balance == 950.0
    assert snapshot.total_equity == 1200.0
    assert snapshot.wallet_balance == 1100.0


def test_coin_level_fallbacks():
    assert parse_wallet_response(_response(coin={"availableToWithdraw": "700"})).available_balance == 700.0
    assert parse_wallet_response(_response()).available_balance == 1000.0


def test_malformed_wallet_response():
    with pytest.raises(ValueError):
        parse_wallet_response({"result": {"list": []}})
    with pytest.raises(ValueError):
        parse_wallet_response({"result": {"list": [{"coin": []}]}})


class _Client:
    def __init__(self):
        self.calls = 0

    def get_wallet_balance(self, *, accountType, coin):
        self.calls += 1
        return _response(totalAvailableBalance="500")


def test_reader_caches_balance():
    client = _Client()
    reader = WalletBalanceReader(client, max_age=60.0)
    assert reader.available_balance() == 500.0
    assert reader.available_balance() == 500.0
    assert client.calls == 1
    assert reader.snapshot.coin == "USDT"


def test_reader_without_cache_refetches():
    client = _Client()
    reader = WalletBalanceReader(client, max_age=0.0)
    reader.available_balance()
    reader.available_balance()
    assert client.calls == 2
