"""
Shared fixtures: a scripted fake transport and real requests.Response objects,
so the client runs end to end without touching the network.
"""
import io
import json

import pytest
import requests

from iitrader.backend.broker import rest_client
from iitrader.backend.broker.rest_client import IITraderClient, RestConfig

TOKEN = "test-token"
BASE_URL = "http://trader.test:5691"


def make_response(payload=None, status: int = 200, body: bytes | None = None) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp.url = BASE_URL
    if body is None:
        body = json.dumps(payload).encode()
    resp.raw = io.BytesIO(body)
    return resp


class FakeTransport:
    """Returns (or raises) the queued outcomes in order and records every call."""

    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[dict] = []
        self.closed = False

    def queue(self, *outcomes) -> None:
        self.outcomes.extend(outcomes)

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def respond():
    return make_response


@pytest.fixture
def sleeps(monkeypatch):
    recorded: list[float] = []
    monkeypatch.setattr(rest_client.time, "sleep", recorded.append)
    return recorded


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def client(transport, sleeps):
    api = IITraderClient(RestConfig(token=TOKEN, base_url=BASE_URL), transport=transport)
    yield api
    api.close()
