"""Dialing upstream servers through resolved addresses."""

from __future__ import annotations

import ipaddress
import logging
import socket
import time
from collections.abc import Callable
from typing import Optional, Union
from urllib.parse import SplitResult, urlsplit

from dnsproxy.bootstrap.resolver import (
    NETWORK_IP,
    NETWORK_TCP,
    NETWORK_UDP,
    NoResolversError,
    Resolver,
)

logger = logging.getLogger(__name__)

DialHandler = Callable[..., socket.socket]


def _quote(s: str) -> str:
    return '"' + s.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _split_host_port(hostport: str) -> tuple[str, int]:
    """Split "host:port" or "[host]:port"; raise ValueError when malformed."""

    def error(why: str) -> ValueError:
        return ValueError(f"address {hostport}: {why}")

    colon = hostport.rfind(":")
    if colon < 0:
        raise error("missing port in address")

    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise error("missing ']' in address")
        if end + 1 == len(hostport):
            raise error("missing port in address")
        if end + 1 != colon:
            if hostport[end + 1] == ":":
                raise error("too many colons in address")
            raise error("missing port in address")
        host = hostport[1:end]
        if "[" in host or "]" in hostport[end + 1 :]:
            raise error("unexpected '[' or ']' in address")
    else:
        host = hostport[:colon]
        if ":" in host:
            raise error("too many colons in address")
        if "[" in host or "]" in host:
            raise error("unexpected '[' or ']' in address")

    port_str = hostport[colon + 1 :]
    if not (port_str.isascii() and port_str.isdigit()) or int(port_str) > 0xFFFF:
        raise ValueError(f"parsing port {_quote(port_str)}: invalid port")

    return host, int(port_str)


def _format_addr_port(ip: ipaddress._BaseAddress, port: int) -> str:
    if ip.version == 6:
        return f"[{ip}]:{port}"
    return f"{ip}:{port}"


def _url_host(url: Union[str, SplitResult]) -> str:
    if isinstance(url, str):
        return urlsplit(url).netloc if "://" in url else url
    return url.netloc


def resolve_dial_context(
    url: Union[str, SplitResult],
    timeout: Optional[float],
    resolver: Optional[Resolver],
    prefer_v6: bool,
) -> DialHandler:
    """Resolve the host of url with resolver and return a dial handler.

    The handler tries the resolved addresses in order, IPv6 ones first when
    prefer_v6 is set and IPv4 ones first otherwise.
    """
    host_port = _url_host(url)
    prefix = f"dialing {_quote(host_port)}"

    try:
        host, port = _split_host_port(host_port)
    except ValueError as exc:
        raise ValueError(f"{prefix}: {exc}") from exc

    if resolver is None:
        raise NoResolversError(f"{prefix}: resolver is nil: no resolvers specified")

    try:
        ips = resolver.lookup_net_ip(NETWORK_IP, host)
    except NoResolversError as exc:
        raise NoResolversError(f"{prefix}: resolving hostname: {exc}") from exc
    except Exception as exc:
        raise OSError(f"{prefix}: resolving hostname: {exc}") from exc

    valid = [
        ip for ip in ips if isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address))
    ]
    preferred = 6 if prefer_v6 else 4
    valid.sort(key=lambda ip: 0 if ip.version == preferred else 1)

    return new_dial_context(timeout, *(_format_addr_port(ip, port) for ip in valid))


def _dial(network: str, addr: str, timeout: Optional[float]) -> socket.socket:
    host, port = _split_host_port(addr)
    if network == NETWORK_TCP:
        return socket.create_connection((host, port), timeout=timeout)
    if network == NETWORK_UDP:
        family, type_, proto, _, sockaddr = socket.getaddrinfo(
            host, port, type=socket.SOCK_DGRAM
        )[0]
        sock = socket.socket(family, type_, proto)
        try:
            sock.settimeout(timeout)
            sock.connect(sockaddr)
        except OSError:
            sock.close()
            raise
        return sock
    raise OSError(f"dial {network}: unknown network {network}")


def new_dial_context(timeout: Optional[float], *args: str) -> DialHandler:
    """Return a handler dialing args in order and returning the first connection.

    The handler takes the network ("tcp" or "udp") and ignores the address it
    is given.
    """
    addrs = list(args)
    effective_timeout = timeout if timeout else None

    if not addrs:
        logger.debug("no addresses to dial")

        def dial_nothing(network: str, addr: str = "") -> socket.socket:
            raise OSError("no addresses")

        return dial_nothing

    def dial(network: str, addr: str = "") -> socket.socket:
        errors: list[OSError] = []
        for idx, target in enumerate(addrs, start=1):
            logger.debug("dialing %s (%d of %d)", target, idx, len(addrs))
            start = time.monotonic()
            try:
                conn = _dial(network, target, effective_timeout)
            except (OSError, ValueError) as exc:
                elapsed = time.monotonic() - start
                logger.debug("connection to %s failed after %.3fs: %s", target, elapsed, exc)
                errors.append(exc if isinstance(exc, OSError) else OSError(str(exc)))
                continue

            logger.debug(
                "connection to %s succeeded after %.3fs", target, time.monotonic() - start
            )
            return conn

        if len(errors) == 1:
            raise errors[0]
        raise OSError("\n".join(str(e) for e in errors))

    return dial