# iitrader/backend/broker/transport.py
"""
HTTP transport for the trading service.

requests.Session + custom HTTPAdapter whose connections:
- resolve hostnames through a shared DnsCache (refreshed in the background),
- try every resolved address in order until one connects,
- keep idle connections alive indefinitely (urllib3 never evicts idle
  connections on a timer; pool sizes cap how many are kept).
"""
from __future__ import annotations

import socket
import threading
from typing import Dict, List, Optional

import requests
from loguru import logger
from requests.adapters import HTTPAdapter
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool
from urllib3.exceptions import ConnectTimeoutError, NameResolutionError, NewConnectionError
from urllib3.poolmanager import PoolManager
from urllib3.util import connection

DEFAULT_REFRESH_INTERVAL = 3600.0


class DnsCache:
    """
    Thread-safe hostname -> addresses cache.

    lookup() resolves on first use and then serves cached addresses;
    refresh() re-resolves every cached host. start() runs refresh()
    periodically on a daemon thread owned by this object; stop() wakes
    and joins it.
    """

    def __init__(self) -> None:
        self._cache: Dict[str, List[str]] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.log = logger.bind(component="dns")

    @staticmethod
    def resolve(host: str) -> List[str]:
        infos = socket.getaddrinfo(host, None, type=socket.SOCK_STREAM)
        addresses: List[str] = []
        for _family, _type, _proto, _canon, sockaddr in infos:
            ip = sockaddr[0]
            if ip not in addresses:
                addresses.append(ip)
        return addresses

    def lookup(self, host: str) -> List[str]:
        with self._lock:
            cached = self._cache.get(host)
        if cached is not None:
            return list(cached)
        addresses = self.resolve(host)
        with self._lock:
            self._cache[host] = addresses
        return list(addresses)

    def refresh(self) -> None:
        with self._lock:
            hosts = list(self._cache)
        for host in hosts:
            try:
                addresses = self.resolve(host)
            except OSError as e:
                self.log.warning(f"DNS refresh failed for {host}, keeping previous addresses: {e}")
                continue
            with self._lock:
                self._cache[host] = addresses

    def hosts(self) -> List[str]:
        with self._lock:
            return list(self._cache)

    # ---------- background refresh ----------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, interval: float = DEFAULT_REFRESH_INTERVAL) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, args=(interval,), name="dns-refresh", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            self.refresh()


# ---------- urllib3 plumbing ----------

class _ResolvingConnectionMixin:
    resolver: Optional[DnsCache] = None

    def _new_conn(self) -> socket.socket:
        if self.resolver is None:
            return super()._new_conn()

        try:
            addresses = self.resolver.lookup(self._dns_host)
        except socket.gaierror as e:
            raise NameResolutionError(self.host, self, e) from e

        last_error: Optional[OSError] = None
        for address in addresses:
            try:
                return connection.create_connection(
                    (address, self.port),
                    self.timeout,
                    source_address=self.source_address,
                    socket_options=self.socket_options,
                )
            except OSError as e:
                last_error = e

        if isinstance(last_error, TimeoutError):
            raise ConnectTimeoutError(
                self, f"Connection to {self.host} timed out. (connect timeout={self.timeout})"
            ) from last_error
        reason = last_error or f"no addresses for {self.host}"
        raise NewConnectionError(self, f"Failed to establish a new connection: {reason}") from last_error


class ResolvingHTTPConnection(_ResolvingConnectionMixin, HTTPConnection):
    pass


class ResolvingHTTPSConnection(_ResolvingConnectionMixin, HTTPSConnection):
    pass


class _ResolvingPoolMixin:
    resolver: Optional[DnsCache] = None

    def _new_conn(self):
        conn = super()._new_conn()
        conn.resolver = self.resolver
        return conn


class ResolvingHTTPConnectionPool(_ResolvingPoolMixin, HTTPConnectionPool):
    ConnectionCls = ResolvingHTTPConnection


class ResolvingHTTPSConnectionPool(_ResolvingPoolMixin, HTTPSConnectionPool):
    ConnectionCls = ResolvingHTTPSConnection


class ResolvingPoolManager(PoolManager):
    def __init__(self, resolver: DnsCache, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.resolver = resolver
        self.pool_classes_by_scheme = {
            "http": ResolvingHTTPConnectionPool,
            "https": ResolvingHTTPSConnectionPool,
        }

    def _new_pool(self, scheme, host, port, request_context=None):
        pool = super()._new_pool(scheme, host, port, request_context)
        pool.resolver = self.resolver
        return pool


def keepalive_socket_options(idle: int) -> list:
    options = list(HTTPConnection.default_socket_options)
    options.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))
    if hasattr(socket, "TCP_KEEPIDLE"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, idle))
    if hasattr(socket, "TCP_KEEPINTVL"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, idle))
    return options


class KeepAliveAdapter(HTTPAdapter):
    """HTTPAdapter whose pools resolve through a DnsCache and keep TCP keep-alive on."""

    def __init__(
        self,
        resolver: DnsCache,
        keepalive: int = 30,
        pool_connections: int = 100,
        pool_maxsize: int = 50,
        **kwargs,
    ) -> None:
        # init_poolmanager() runs inside HTTPAdapter.__init__
        self.resolver = resolver
        self.keepalive = keepalive
        super().__init__(pool_connections=pool_connections, pool_maxsize=pool_maxsize, **kwargs)

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        self._pool_connections = connections
        self._pool_maxsize = maxsize
        self._pool_block = block
        pool_kwargs.setdefault("socket_options", keepalive_socket_options(self.keepalive))
        self.poolmanager = ResolvingPoolManager(
            self.resolver,
            num_pools=connections,
            maxsize=maxsize,
            block=block,
            **pool_kwargs,
        )


class Transport:
    """
    Owns the requests.Session, its adapter and the DnsCache refresh task.
    close() stops the refresh thread and releases pooled connections.
    """

    def __init__(
        self,
        connect_timeout: float = 30.0,
        keepalive: int = 30,
        dns_refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        pool_connections: int = 100,
        pool_maxsize: int = 50,
        resolver: Optional[DnsCache] = None,
    ) -> None:
        self.connect_timeout = connect_timeout
        self.resolver = resolver or DnsCache()
        self.adapter = KeepAliveAdapter(
            self.resolver,
            keepalive=keepalive,
            pool_connections=pool_connections,
            pool_maxsize=pool_maxsize,
        )
        self.session = requests.Session()
        self.session.mount("http://", self.adapter)
        self.session.mount("https://", self.adapter)
        self.resolver.start(dns_refresh_interval)

    def request(self, method: str, url: str, **kwargs) -> requests.Response:
        # dial timeout only; reads may block as long as the server needs
        kwargs.setdefault("timeout", (self.connect_timeout, None))
        return self.session.request(method, url, **kwargs)

    def close(self) -> None:
        self.resolver.stop()
        self.session.close()

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
