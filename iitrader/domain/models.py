"""
Reply models for the trading service REST API.

Every response body is a JSON object carrying the ``ret`` envelope field:
``"OK"`` on success, otherwise the error code/message itself. Decimal values
travel as JSON strings to keep precision; integer timestamps travel as strings
too.

Decoding is done in two steps: ``decode_envelope()`` looks at ``ret`` only,
and the endpoint payload is decoded (``from_payload()``) once the envelope says
the call succeeded. Shape problems raise ``ValueError``; missing payload fields
fall back to zero values, same as the service's own lenient clients.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List

from iitrader.domain.dto import Candle, Deal, Holding, NetValue, Order, Rank, WatchSymbol

RET_OK = "OK"


# ---------- field helpers ----------

def _decimal(payload: Dict[str, Any], key: str) -> Decimal:
    value = payload.get(key)
    if value is None:
        return Decimal(0)
    return _to_decimal(value, key)


def _to_decimal(value: Any, key: str) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise ValueError(f"field '{key}': expected decimal, got {value!r}")
    try:
        d = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"field '{key}': invalid decimal {value!r}") from e
    if not d.is_finite():
        raise ValueError(f"field '{key}': non-finite decimal {value!r}")
    return d


def _int(payload: Dict[str, Any], key: str) -> int:
    value = payload.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValueError(f"field '{key}': expected integer, got {value!r}")
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"field '{key}': invalid integer {value!r}") from e


def _str(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field '{key}': expected string, got {value!r}")
    return value


def _list(payload: Dict[str, Any], key: str) -> List[Any]:
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"field '{key}': expected list, got {type(value).__name__}")
    return value


def _objects(payload: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
    items = _list(payload, key)
    for item in items:
        if not isinstance(item, dict):
            raise ValueError(f"field '{key}': expected list of objects, got {item!r}")
    return items


def _utc(ts: int, key: str) -> datetime:
    try:
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    except (ValueError, OverflowError, OSError) as e:
        raise ValueError(f"field '{key}': timestamp {ts} out of range") from e


def _candle(item: Dict[str, Any]) -> Candle:
    ts = _int(item, "ts")
    return Candle(
        open=_decimal(item, "o"),
        high=_decimal(item, "h"),
        low=_decimal(item, "l"),
        close=_decimal(item, "c"),
        raw_timestamp=ts,
        timestamp=_utc(ts, "ts"),
    )


def _rank(item: Dict[str, Any]) -> Rank:
    return Rank(
        hash=_str(item, "hash"),
        performance=_decimal(item, "perf"),
        name=_str(item, "name"),
        tag=_str(item, "tag"),
        count=_int(item, "cnt"),
        expire=_str(item, "expire"),
    )


# ---------- envelope ----------

@dataclass
class RestReply:
    """Common envelope shared by every reply."""
    ret: str = RET_OK

    def is_success(self) -> bool:
        return self.ret == RET_OK

    def get_error(self) -> str:
        return self.ret

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]):
        envelope = decode_envelope(payload)
        return cls(ret=envelope.ret, **cls._fields(payload))

    @classmethod
    def _fields(cls, payload: Dict[str, Any]) -> Dict[str, Any]:
        return {}


def decode_envelope(payload: Any) -> RestReply:
    """Reads only the ``ret`` field; raises ValueError when it is absent."""
    if not isinstance(payload, dict):
        raise ValueError(f"expected JSON object, got {type(payload).__name__}")
    ret = payload.get("ret")
    if not isinstance(ret, str):
        raise ValueError(f"missing or invalid 'ret' field: {ret!r}")
    return RestReply(ret=ret)


# ---------- per-endpoint replies ----------

@dataclass
class QuoteReply(RestReply):
    price: Decimal = Decimal(0)
    timestamp: int = 0

    @classmethod
    def _fields(cls, payload):
        return {"price": _decimal(payload, "v"), "timestamp": _int(payload, "ts")}


@dataclass
class QuotePeriodReply(RestReply):
    start_timestamp: int = 0
    end_timestamp: int = 0
    candles: List[Candle] = field(default_factory=list)

    @classmethod
    def _fields(cls, payload):
        return {
            "start_timestamp": _int(payload, "ts1"),
            "end_timestamp": _int(payload, "ts2"),
            "candles": [_candle(item) for item in _objects(payload, "v")],
        }


@dataclass
class OrderReply(RestReply):
    order_id: str = ""

    @classmethod
    def _fields(cls, payload):
        return {"order_id": _str(payload, "roid")}


@dataclass
class OrdersReply(RestReply):
    orders: List[Order] = field(default_factory=list)

    @classmethod
    def _fields(cls, payload):
        orders = [
            Order(
                symbol=_str(item, "sym"),
                volume=_decimal(item, "vol"),
                price=_decimal(item, "pri"),
                date=_str(item, "date"),
                type=_int(item, "type"),
                tag=_str(item, "tag"),
                order_id=_str(item, "oid"),
            )
            for item in _objects(payload, "orders")
        ]
        return {"orders": orders}


@dataclass
class DealsReply(RestReply):
    deals: List[Deal] = field(default_factory=list)

    @classmethod
    def _fields(cls, payload):
        deals = [
            Deal(
                symbol=_str(item, "sym"),
                volume=_decimal(item, "vol"),
                price=_decimal(item, "pri"),
                date=_str(item, "date"),
                tag=_str(item, "tag"),
                order_id=_str(item, "oid"),
                usd=_decimal(item, "usd"),
                ntd=_decimal(item, "ntd"),
            )
            for item in _objects(payload, "deals")
        ]
        return {"deals": deals}


@dataclass
class PositionReply(RestReply):
    """Held positions as three parallel sequences; index i is one position."""
    symbols: List[str] = field(default_factory=list)
    volumes: List[Decimal] = field(default_factory=list)
    prices: List[Decimal] = field(default_factory=list)

    @classmethod
    def _fields(cls, payload):
        symbols = _list(payload, "sym")
        volumes = [_to_decimal(v, "vol") for v in _list(payload, "vol")]
        prices = [_to_decimal(p, "pri") for p in _list(payload, "pri")]
        if not (len(symbols) == len(volumes) == len(prices)):
            raise ValueError(
                f"position arrays differ in length: sym={len(symbols)} vol={len(volumes)} pri={len(prices)}"
            )
        for s in symbols:
            if not isinstance(s, str):
                raise ValueError(f"field 'sym': expected string, got {s!r}")
        return {"symbols": symbols, "volumes": volumes, "prices": prices}

    def holdings(self) -> List[Holding]:
        return [
            Holding(symbol=s, volume=v, price=p)
            for s, v, p in zip(self.symbols, self.volumes, self.prices)
        ]


@dataclass
class RightReply(RestReply):
    right: str = ""

    @classmethod
    def _fields(cls, payload):
        return {"right": _str(payload, "right")}


@dataclass
class DocIdReply(RestReply):
    doc_id: str = ""

    @classmethod
    def _fields(cls, payload):
        return {"doc_id": _str(payload, "doc")}


@dataclass
class WatchListReply(RestReply):
    watch_list: List[WatchSymbol] = field(default_factory=list)

    @classmethod
    def _fields(cls, payload):
        watches = [
            WatchSymbol(
                symbol=_str(item, "sym"),
                price=_decimal(item, "pri"),
                change=_decimal(item, "change"),
            )
            for item in _objects(payload, "watches")
        ]
        return {"watch_list": watches}


@dataclass
class RanksReply(RestReply):
    ranks: List[Rank] = field(default_factory=list)

    @classmethod
    def _fields(cls, payload):
        return {"ranks": [_rank(item) for item in _objects(payload, "rank")]}


@dataclass
class SubListReply(RestReply):
    subs: List[Rank] = field(default_factory=list)

    @classmethod
    def _fields(cls, payload):
        return {"subs": [_rank(item) for item in _objects(payload, "sub")]}


@dataclass
class AllTagsReply(RestReply):
    tags: List[str] = field(default_factory=list)

    @classmethod
    def _fields(cls, payload):
        tags = _list(payload, "tags")
        for tag in tags:
            if not isinstance(tag, str):
                raise ValueError(f"field 'tags': expected string, got {tag!r}")
        return {"tags": tags}


@dataclass
class NetValueReply(RestReply):
    net_values: List[NetValue] = field(default_factory=list)

    @classmethod
    def _fields(cls, payload):
        points = [
            NetValue(timestamp=_int(item, "ts"), balance=_decimal(item, "balance"))
            for item in _objects(payload, "netvalue")
        ]
        return {"net_values": points}


@dataclass
class ApiTokenReply(RestReply):
    token: str = ""

    @classmethod
    def _fields(cls, payload):
        return {"token": _str(payload, "token")}
