from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional


@dataclass
class Candle:
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    raw_timestamp: int  # epoch seconds, as sent by the service
    timestamp: Optional[datetime] = None  # UTC view of raw_timestamp


@dataclass
class Order:
    symbol: str
    volume: Decimal
    price: Decimal
    date: str
    type: int
    tag: str
    order_id: str


@dataclass
class Deal:
    symbol: str
    volume: Decimal
    price: Decimal
    date: str
    tag: str
    order_id: str
    usd: Decimal  # settlement amount in USD
    ntd: Decimal  # settlement amount in TWD


@dataclass
class Holding:
    symbol: str
    volume: Decimal
    price: Decimal


@dataclass
class WatchSymbol:
    symbol: str
    price: Decimal
    change: Decimal


@dataclass
class Rank:
    hash: str
    performance: Decimal
    name: str
    tag: str
    count: int
    expire: str


@dataclass
class NetValue:
    timestamp: int  # epoch seconds
    balance: Decimal


@dataclass
class SymbolData:
    """Best-effort snapshot of one symbol: zero values mean 'unavailable'."""
    symbol: str
    current_price: float = 0.0
    candles: List[Candle] = field(default_factory=list)
