"""Query several upstreams and keep the answer with the fastest address."""

from __future__ import annotations

import ipaddress
import logging
import queue
import socket
import struct
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, NamedTuple, Optional, Union

import dns.message
import dns.rdatatype
import dns.rrset

from dnsproxy.bogusnxdomain import ip_from_rr

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

LOG_PREFIX = "fastip"
DEFAULT_PING_WAIT_TIMEOUT = 1.0
PING_TCP_TIMEOUT = 4.0
FASTEST_ADDR_CACHE_TTL_SEC = 10 * 60

_CACHE_MAX_SIZE = 64 * 1024
_ENTRY_FORMAT = ">IBH"

Dialer = Callable[[IPAddress, int, float], Any]


@dataclass
class Config:
    """Settings of FastestAddr; zero or None values select the defaults."""

    logger: Optional[logging.Logger] = None
    ping_wait_timeout: float = 0.0
    ping_ports: Sequence[int] = (80, 443)
    dialer: Optional[Dialer] = None


@dataclass
class CacheEntry:
    """A cached ping outcome: status 1 means the address timed out."""

    status: int = 0
    latency_msec: int = 0


@dataclass
class PingResult:
    """The outcome of dialing addr on port."""

    addr: IPAddress
    port: int = 0
    latency: int = 0
    success: bool = False


class _Reply(NamedTuple):
    resp: dns.message.Message
    upstream: Any


class _ExchangeError(Exception):
    def __init__(self, errors: list[BaseException]) -> None:
        super().__init__("\n".join(str(e) for e in errors))
        self.errors = errors


def _pack_cache_entry(ent: CacheEntry, ttl: int) -> bytes:
    expire = (int(time.time()) + ttl) & 0xFFFFFFFF
    return struct.pack(_ENTRY_FORMAT, expire, ent.status & 0xFF, ent.latency_msec & 0xFFFF)


def _unpack_cache_entry(data: bytes) -> Optional[CacheEntry]:
    expire, status, latency = struct.unpack(_ENTRY_FORMAT, data[:7])
    if expire <= int(time.time()):
        return None
    return CacheEntry(status=status, latency_msec=latency)


class _LRUCache:
    """A thread-safe LRU cache bounded by the total size of keys and values."""

    def __init__(self, max_size: int) -> None:
        self._max_size = max_size
        self._size = 0
        self._data: OrderedDict[bytes, bytes] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: bytes) -> Optional[bytes]:
        with self._lock:
            val = self._data.get(key)
            if val is not None:
                self._data.move_to_end(key)
            return val

    def set(self, key: bytes, val: bytes) -> None:
        with self._lock:
            old = self._data.pop(key, None)
            if old is not None:
                self._size -= len(key) + len(old)
            self._data[key] = val
            self._size += len(key) + len(val)
            while self._size > self._max_size and self._data:
                k, v = self._data.popitem(last=False)
                self._size -= len(k) + len(v)


def _tcp_dial(ip: IPAddress, port: int, timeout: float) -> socket.socket:
    return socket.create_connection((str(ip), port), timeout=timeout)


def _unmap(ip: IPAddress) -> IPAddress:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _exchange_all(upstreams: Sequence[Any], req: dns.message.Message) -> list[_Reply]:
    if not upstreams:
        raise ValueError("no upstream specified")

    def one(u: Any) -> Any:
        return u.exchange(req)

    replies: list[_Reply] = []
    errors: list[BaseException] = []
    with ThreadPoolExecutor(max_workers=len(upstreams)) as executor:
        futures = [(u, executor.submit(one, u)) for u in upstreams]
        for u, fut in futures:
            exc = fut.exception()
            if exc is not None:
                errors.append(exc)
                continue
            resp = fut.result()
            if resp is None:
                errors.append(ValueError(f"no reply from {u.address()}"))
                continue
            replies.append(_Reply(resp, u))

    if replies:
        return replies
    if len(errors) == 1:
        raise errors[0]
    raise _ExchangeError(errors)


def _has_in_ans(msg: dns.message.Message, ip: IPAddress) -> bool:
    return any(ip_from_rr(rd) == ip for rrset in msg.answer for rd in rrset)


def _filter_response_answer(resp: dns.message.Message, ip: IPAddress) -> None:
    target = _unmap(ip)
    answer = []
    for rrset in resp.answer:
        if rrset.rdtype not in (dns.rdatatype.A, dns.rdatatype.AAAA):
            answer.append(rrset)
            continue
        kept = [rd for rd in rrset if (rip := ip_from_rr(rd)) is not None and _unmap(rip) == target]
        if kept:
            answer.append(dns.rrset.from_rdata_list(rrset.name, rrset.ttl, kept))
    resp.answer = answer


class FastestAddr:
    """Finds the fastest address among those returned by several upstreams."""

    def __init__(self, config: Optional[Config] = None) -> None:
        config = config or Config()
        self._logger = config.logger or logging.getLogger(LOG_PREFIX)
        self._ping_wait_timeout = (
            config.ping_wait_timeout if config.ping_wait_timeout > 0 else DEFAULT_PING_WAIT_TIMEOUT
        )
        self._ping_ports = list(config.ping_ports)
        self._dialer: Dialer = config.dialer or _tcp_dial
        self._cache = _LRUCache(_CACHE_MAX_SIZE)
        self._cache_lock = threading.Lock()

    def exchange_fastest(
        self, req: dns.message.Message, upstreams: Sequence[Any]
    ) -> tuple[dns.message.Message, Any]:
        """Query every upstream and return the reply with the fastest address.

        Only the records with that address are kept in the answer.  Returns
        the response and the upstream that gave it.
        """
        replies = _exchange_all(upstreams, req)

        ips: dict[IPAddress, None] = {}
        for reply in replies:
            for rrset in reply.resp.answer:
                for rd in rrset:
                    ip = ip_from_rr(rd)
                    if ip is not None and not ip.is_unspecified:
                        ips[ip] = None

        host = req.question[0].name.to_text().lower()
        res = self._ping_all(host, list(ips))
        if res is not None:
            return self._prepare_reply(res, replies)

        self._logger.debug("no fastest ip found, using the first response for %s", host)
        return replies[0].resp, replies[0].upstream

    def _prepare_reply(
        self, res: PingResult, replies: list[_Reply]
    ) -> tuple[dns.message.Message, Any]:
        ip = res.addr
        for reply in replies:
            if _has_in_ans(reply.resp, ip):
                _filter_response_answer(reply.resp, ip)
                return reply.resp, reply.upstream

        self._logger.error("found no replies with %s, most likely this is a bug", ip)
        return replies[0].resp, replies[0].upstream

    def _cache_find(self, ip: IPAddress) -> Optional[CacheEntry]:
        val = self._cache.get(ip.packed)
        if val is None:
            return None
        return _unpack_cache_entry(val)

    def _cache_add(self, ent: CacheEntry, ip: IPAddress, ttl: int) -> None:
        self._cache.set(ip.packed, _pack_cache_entry(ent, ttl))

    def _cache_add_failure(self, ip: IPAddress) -> None:
        with self._cache_lock:
            if self._cache_find(ip) is None:
                self._cache_add(CacheEntry(status=1), ip, FASTEST_ADDR_CACHE_TTL_SEC)

    def _cache_add_successful(self, ip: IPAddress, latency: int) -> None:
        with self._cache_lock:
            cached = self._cache_find(ip)
            if cached is None or cached.status != 0 or cached.latency_msec > latency:
                self._cache_add(CacheEntry(latency_msec=latency), ip, FASTEST_ADDR_CACHE_TTL_SEC)

    def _schedule_pings(
        self, results: queue.Queue, ips: list[IPAddress], host: str
    ) -> tuple[Optional[PingResult], bool]:
        best: Optional[PingResult] = None
        scheduled = False
        for ip in ips:
            cached = self._cache_find(ip)
            if cached is None:
                scheduled = True
                for port in self._ping_ports:
                    threading.Thread(
                        target=self._ping_do_tcp, args=(host, ip, port, results), daemon=True
                    ).start()
                continue

            if cached.status == 0 and (best is None or cached.latency_msec < best.latency):
                best = PingResult(addr=ip, port=0, latency=cached.latency_msec, success=True)

        return best, scheduled

    def _ping_all(self, host: str, ips: Sequence[IPAddress]) -> Optional[PingResult]:
        ips = list(ips)
        if not ips:
            return None
        if len(ips) == 1:
            return PingResult(addr=ips[0], port=0, success=True)

        results: queue.Queue = queue.Queue()
        cached, scheduled = self._schedule_pings(results, ips, host)
        if not scheduled:
            if cached is not None:
                self._logger.debug("pinging all returns cached response for %s: %s", host, cached.addr)
            else:
                self._logger.debug("pinging all returns nothing for %s", host)
            return cached

        res = self._first_success_res(results, host)
        if res is None:
            return cached
        if cached is None or res.latency <= cached.latency:
            return res
        return cached

    def _first_success_res(self, results: queue.Queue, host: str) -> Optional[PingResult]:
        deadline = time.monotonic() + self._ping_wait_timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._logger.debug("pinging all timed out for %s", host)
                return None
            try:
                res: PingResult = results.get(timeout=remaining)
            except queue.Empty:
                self._logger.debug("pinging all timed out for %s", host)
                return None

            self._logger.debug(
                "pinging all got result for %s: %s:%d success=%s", host, res.addr, res.port, res.success
            )
            if res.success:
                return res

    def _ping_do_tcp(self, host: str, ip: IPAddress, port: int, results: queue.Queue) -> None:
        self._logger.debug("open tcp connection to %s:%d for %s", ip, port, host)

        start = time.monotonic()
        error: Optional[BaseException] = None
        try:
            conn = self._dialer(ip, port, PING_TCP_TIMEOUT)
        except (OSError, ValueError) as exc:
            error = exc
        else:
            try:
                conn.close()
            except OSError as exc:
                self._logger.debug("closing tcp connection: %s", exc)
        elapsed = time.monotonic() - start

        success = error is None
        latency = int(elapsed * 1000)
        results.put(PingResult(addr=ip, port=port, latency=latency, success=success))

        addr = _unmap(ip)
        if success:
            self._logger.debug("tcp ping to %s:%d succeeded in %.3fs", ip, port, elapsed)
            self._cache_add_successful(addr, latency)
        else:
            self._logger.debug("tcp ping to %s:%d failed in %.3fs: %s", ip, port, elapsed, error)
            self._cache_add_failure(addr)