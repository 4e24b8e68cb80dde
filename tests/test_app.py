import argparse
from decimal import Decimal, InvalidOperation

import pytest

import iitrader.app.__main__ as runner
from iitrader.backend.broker.rest_client import RestReplyError
from iitrader.config import Settings
from iitrader.domain.models import OrderReply, QuoteReply


class FakeClient:
    instances: list = []

    def __init__(self, cfg):
        self.cfg = cfg
        self.closed = False
        self.orders = []
        FakeClient.instances.append(self)

    def quote(self, symbol, ts=0):
        return QuoteReply(price=Decimal("580"), timestamp=1700000000)

    def place_order(self, symbol, volume, price, callback, order_type, tag):
        self.orders.append((symbol, volume, price, callback, order_type, tag))
        return OrderReply(order_id="R-1")

    def position(self):
        raise RestReplyError("NOT_LOGGED_IN")

    def close(self):
        self.closed = True


@pytest.fixture
def fake_client(monkeypatch):
    FakeClient.instances = []
    monkeypatch.setattr(runner, "IITraderClient", FakeClient)
    monkeypatch.setenv("IITRADER_TOKEN", "secret")
    return FakeClient


def test_quote_action(fake_client, capsys):
    assert runner.main(["quote", "--symbol", "2454.TW"]) == 0
    assert "580" in capsys.readouterr().out
    assert fake_client.instances[0].cfg.token == "secret"
    assert fake_client.instances[0].closed


def test_order_action_parses_decimals(fake_client):
    assert runner.main([
        "order", "--symbol", "2330.TW", "--volume", "1000", "--price", "600.5", "--type", "2", "--tag", "t",
    ]) == 0
    assert fake_client.instances[0].orders == [("2330.TW", Decimal("1000"), Decimal("600.5"), "", 2, "t")]


def test_api_error_exit_code(fake_client):
    assert runner.main(["position"]) == 1
    assert fake_client.instances[0].closed


def test_missing_token_exit_code(monkeypatch):
    monkeypatch.delenv("IITRADER_TOKEN", raising=False)
    monkeypatch.setattr(runner, "get_settings", lambda: Settings(_env_file=None))
    assert runner.main(["quote"]) == 2


def test_invalid_settings_exit_code(monkeypatch):
    monkeypatch.setenv("IITRADER_MAX_RETRY", "0")
    assert runner.main(["quote"]) == 2


def test_unknown_action_is_rejected():
    with pytest.raises(SystemExit):
        runner.build_parser().parse_args(["explode"])


def test_decimal_argument_keeps_parse_error_as_cause():
    with pytest.raises(argparse.ArgumentTypeError) as exc:
        runner._decimal("12,5")
    assert isinstance(exc.value.__cause__, InvalidOperation)
