# iitrader/backend/broker/rest_client.py
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Type, TypeVar, Union
from urllib.parse import quote as urlquote

import requests
from loguru import logger

from iitrader.backend.broker.transport import Transport
from iitrader.config import Settings, get_settings
from iitrader.domain.dto import SymbolData
from iitrader.domain.models import (
    AllTagsReply,
    ApiTokenReply,
    DealsReply,
    DocIdReply,
    NetValueReply,
    OrderReply,
    OrdersReply,
    PositionReply,
    QuotePeriodReply,
    QuoteReply,
    RanksReply,
    RestReply,
    RightReply,
    SubListReply,
    WatchListReply,
    decode_envelope,
)

DEFAULT_BASE_URL = "http://50.18.230.41:5691"
MAX_RETRY = 5
RETRY_DELAY = 0.2  # seconds between attempts

R = TypeVar("R", bound=RestReply)
DecimalLike = Union[Decimal, int, str]


# ===== Errors of the REST client layer =====
class RestApiError(Exception):
    """Base error of the REST client layer."""


class RestConfigError(RestApiError):
    """Client cannot be used as configured (e.g. no token)."""


class RestNetworkError(RestApiError):
    """DNS/connect/write/read failure. Retryable."""


class RestServerError(RestApiError):
    """HTTP 5xx from the service. Retryable."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class RestRetryExhaustedError(RestApiError):
    """Every allowed attempt hit a retryable failure."""

    def __init__(self, message: str, attempts: int, last_error: Optional[RestApiError]) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class RestDecodeError(RestApiError):
    """Body is not a valid reply. Not retried."""

    def __init__(self, message: str, body: bytes = b"") -> None:
        super().__init__(message)
        self.body = body


class RestReplyError(RestApiError):
    """The service answered with a non-OK ``ret``; the message is that status."""

    def __init__(self, status: str) -> None:
        super().__init__(status)
        self.status = status


@dataclass
class RestConfig:
    token: str
    base_url: str = DEFAULT_BASE_URL
    max_retry: int = MAX_RETRY
    retry_delay: float = RETRY_DELAY
    connect_timeout: float = 30.0
    keepalive: int = 30
    dns_refresh_interval: float = 3600.0
    pool_connections: int = 100
    pool_maxsize: int = 50

    @staticmethod
    def from_env(settings: Optional[Settings] = None) -> "RestConfig":
        """Builds the config from IITRADER_* environment variables / .env."""
        s = settings or get_settings()
        return RestConfig(
            token=s.TOKEN or "",
            base_url=s.BASE_URL,
            max_retry=s.MAX_RETRY,
            retry_delay=s.RETRY_DELAY,
            connect_timeout=s.CONNECT_TIMEOUT,
            keepalive=s.KEEPALIVE,
            dns_refresh_interval=s.DNS_REFRESH_INTERVAL,
            pool_connections=s.POOL_CONNECTIONS,
            pool_maxsize=s.POOL_MAXSIZE,
        )


def _decimal_str(value: DecimalLike) -> str:
    if isinstance(value, Decimal):
        return str(value)
    return str(Decimal(str(value)))


class IITraderClient:
    """
    Client of the trading service REST API.

    Every public method is blocking and maps to exactly one endpoint, except
    read_symbol_data() which combines two. Failures raise RestApiError
    subclasses; replies are returned as the dataclasses from domain.models.
    """

    def __init__(
        self,
        cfg: Optional[RestConfig] = None,
        transport: Optional[Transport] = None,
        log=None,
    ) -> None:
        self.cfg = cfg or RestConfig.from_env()
        if not self.cfg.token:
            raise RestConfigError("client initialized without token")
        self._token = self.cfg.token
        self._headers = {"authorization": self._token, "Accept": "application/json"}
        self.log = log or logger.bind(component=self.__class__.__name__)

        self.transport = transport or Transport(
            connect_timeout=self.cfg.connect_timeout,
            keepalive=self.cfg.keepalive,
            dns_refresh_interval=self.cfg.dns_refresh_interval,
            pool_connections=self.cfg.pool_connections,
            pool_maxsize=self.cfg.pool_maxsize,
        )
        self.log.info(f"IITraderClient initialized (base_url={self.cfg.base_url})")

    @property
    def token(self) -> str:
        return self._token

    def close(self) -> None:
        self.transport.close()

    def __enter__(self) -> "IITraderClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---------- REQUEST HELPER ----------

    def _perform(
        self,
        method: str,
        path: str,
        reply_cls: Type[R],
        *,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        allow_retry: bool = False,
    ) -> R:
        """
        Sends one request and decodes the reply into ``reply_cls``.

        Network errors, 5xx statuses and body read failures are retried up to
        ``max_retry`` attempts (only one attempt unless ``allow_retry``), with a
        fixed delay in between. Decode errors and non-OK replies are raised
        right away.
        """
        url = self.cfg.base_url + path
        attempts = self.cfg.max_retry if allow_retry else 1
        last_error: Optional[RestApiError] = None

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                time.sleep(self.cfg.retry_delay)
            try:
                resp = self.transport.request(
                    method, url, headers=self._headers, params=params, json=body, stream=True
                )
            except requests.RequestException as e:
                last_error = RestNetworkError(f"{method} {path}: {e}")
                self.log.warning(f"HTTP failed {method} {path} (attempt {attempt}/{attempts}): {e}")
                continue

            with resp:
                if 500 <= resp.status_code <= 599:
                    last_error = RestServerError(
                        f"{method} {path}: HTTP {resp.status_code}", status_code=resp.status_code
                    )
                    self.log.warning(
                        f"HTTP failed {method} {path} (attempt {attempt}/{attempts}): {resp.status_code}"
                    )
                    continue
                try:
                    data = resp.content
                except requests.RequestException as e:
                    last_error = RestNetworkError(f"{method} {path}: body read failed: {e}")
                    self.log.warning(f"HTTP read body failed {method} {path} (attempt {attempt}/{attempts}): {e}")
                    continue

            return self._decode(method, path, data, reply_cls)

        raise RestRetryExhaustedError(
            f"{method} {path} failed after {attempts} attempt(s): {last_error}",
            attempts=attempts,
            last_error=last_error,
        ) from last_error

    def _decode(self, method: str, path: str, data: bytes, reply_cls: Type[R]) -> R:
        try:
            payload = json.loads(data)
            envelope = decode_envelope(payload)
        except ValueError as e:
            self.log.error(f"HTTP failed to decode {method} {path}: {e}, json:\n{data!r}")
            raise RestDecodeError(f"{method} {path}: {e}", body=data) from e

        if not envelope.is_success():
            self.log.info(f"{method} {path} rejected: {envelope.get_error()}")
            raise RestReplyError(envelope.get_error())

        try:
            return reply_cls.from_payload(payload)
        except ValueError as e:
            self.log.error(f"HTTP failed to decode {method} {path}: {e}, json:\n{data!r}")
            raise RestDecodeError(f"{method} {path}: {e}", body=data) from e

    # ---------- PUBLIC API: MARKET DATA ----------

    def quote(self, symbol: str, ts: int = 0, *, allow_retry: bool = False) -> QuoteReply:
        """Latest price, or the price at ``ts`` (epoch seconds) when ts > 0."""
        params = {"ts": ts} if ts > 0 else None
        return self._perform(
            "GET", f"/quote/{urlquote(symbol, safe='')}", QuoteReply, params=params, allow_retry=allow_retry
        )

    def quote_period(self, symbol: str, ts1: int, ts2: int, *, allow_retry: bool = False) -> QuotePeriodReply:
        """Candles between ts1 and ts2 inclusive; each candle gets a UTC ``timestamp``."""
        return self._perform(
            "GET",
            f"/quote_period/{urlquote(symbol, safe='')}",
            QuotePeriodReply,
            params={"ts1": ts1, "ts2": ts2},
            allow_retry=allow_retry,
        )

    # ---------- PUBLIC API: ORDERS ----------

    def place_order(
        self,
        symbol: str,
        volume: DecimalLike,
        price: DecimalLike,
        callback: str = "",
        order_type: int = 0,
        tag: str = "",
    ) -> OrderReply:
        """Places an order; every body value is sent as a JSON string."""
        body = {
            "sym": symbol,
            "vol": _decimal_str(volume),
            "pri": _decimal_str(price),
            "callback": callback,
            "type": str(order_type),
            "tag": tag,
        }
        reply = self._perform("POST", "/order", OrderReply, body=body)
        self.log.info(
            f"ORDER {symbol} vol={body['vol']} pri={body['pri']} type={order_type} tag={tag!r} -> {reply.order_id}"
        )
        return reply

    def cancel_order(self, order_id: str) -> None:
        self._perform("DELETE", "/cancel", RestReply, params={"roid": order_id})
        self.log.info(f"ORDER CANCELLED: {order_id}")

    def open_orders(self, *, allow_retry: bool = False) -> OrdersReply:
        return self._perform("GET", "/oorder", OrdersReply, allow_retry=allow_retry)

    def historical_orders(self, page: int, *, allow_retry: bool = False) -> OrdersReply:
        return self._perform("GET", "/horder", OrdersReply, params={"page": page}, allow_retry=allow_retry)

    def historical_deals(self, page: int, *, allow_retry: bool = False) -> DealsReply:
        return self._perform("GET", "/hdeal", DealsReply, params={"page": page}, allow_retry=allow_retry)

    # ---------- PUBLIC API: ACCOUNT ----------

    def position(self, *, allow_retry: bool = False) -> PositionReply:
        return self._perform("GET", "/position", PositionReply, allow_retry=allow_retry)

    def right(self, *, allow_retry: bool = False) -> RightReply:
        return self._perform("GET", "/right", RightReply, allow_retry=allow_retry)

    def doc_id(self, *, allow_retry: bool = False) -> DocIdReply:
        return self._perform("GET", "/doc", DocIdReply, allow_retry=allow_retry)

    def net_value(self, *, allow_retry: bool = False) -> NetValueReply:
        return self._perform("GET", "/netvalue", NetValueReply, allow_retry=allow_retry)

    def all_tags(self, *, allow_retry: bool = False) -> AllTagsReply:
        return self._perform("GET", "/alltags", AllTagsReply, allow_retry=allow_retry)

    def api_token(self, *, allow_retry: bool = False) -> ApiTokenReply:
        return self._perform("GET", "/apitoken", ApiTokenReply, allow_retry=allow_retry)

    # ---------- PUBLIC API: WATCHLIST ----------

    def watch(self, symbol: str) -> None:
        self._perform("POST", "/watch", RestReply, body={"sym": symbol})

    def unwatch(self, symbol: str) -> None:
        self._perform("DELETE", "/watch_del", RestReply, params={"sym": symbol})

    def watch_list(self, *, allow_retry: bool = False) -> WatchListReply:
        return self._perform("GET", "/watch_list", WatchListReply, allow_retry=allow_retry)

    # ---------- PUBLIC API: STRATEGY RANKS / SUBSCRIPTIONS ----------

    def rank(self, *, allow_retry: bool = False) -> RanksReply:
        return self._perform("GET", "/rank", RanksReply, allow_retry=allow_retry)

    def ranks(self, *, allow_retry: bool = False) -> RanksReply:
        return self._perform("GET", "/ranks", RanksReply, allow_retry=allow_retry)

    def subscribe(self, strategy_hash: str) -> None:
        self._perform("POST", "/sub", RestReply, body={"hash": strategy_hash})

    def sub_list(self, *, allow_retry: bool = False) -> SubListReply:
        return self._perform("GET", "/sub_list", SubListReply, allow_retry=allow_retry)

    # ---------- DERIVED ----------

    def read_symbol_data(self, symbol: str, start_time: int, end_time: int = 0) -> SymbolData:
        """
        Current price + candles for ``symbol`` in one call.

        Never raises RestApiError: a failed sub-call leaves its field at the
        zero value (current_price 0.0 / no candles), so treat those as
        "unavailable", not as real data.
        """
        data = SymbolData(symbol=symbol)
        if end_time == 0:
            end_time = int(time.time())

        try:
            data.current_price = float(self.quote(symbol).price)
        except (RestApiError, ValueError) as e:
            self.log.warning(f"read_symbol_data: quote for {symbol} unavailable: {e}")

        try:
            data.candles = self.quote_period(symbol, start_time, end_time).candles
        except RestApiError as e:
            self.log.warning(f"read_symbol_data: candles for {symbol} unavailable: {e}")

        return data
