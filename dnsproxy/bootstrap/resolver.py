"""Resolvers that turn hostnames into IP addresses."""

from __future__ import annotations

import abc
import ipaddress
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

NETWORK_IP = "ip"
NETWORK_IP4 = "ip4"
NETWORK_IP6 = "ip6"
NETWORK_TCP = "tcp"
NETWORK_UDP = "udp"


class NoResolversError(Exception):
    """Raised when no resolvers are specified."""

    def __init__(self, message: str = "no resolvers specified") -> None:
        super().__init__(message)


class _JoinedError(Exception):
    """Several errors reported together, one message per line."""

    def __init__(self, errors: list[BaseException]) -> None:
        super().__init__("\n".join(str(e) for e in errors))
        self.errors = errors


def _join_errors(errors: list[BaseException]) -> BaseException:
    if len(errors) == 1:
        return errors[0]
    return _JoinedError(errors)


class Resolver(abc.ABC):
    """Resolves hostnames to IP addresses."""

    @abc.abstractmethod
    def lookup_net_ip(self, network: str, host: str) -> list[IPAddress]:
        """Look up the addresses of host; network is "ip", "ip4" or "ip6".

        The result may be empty even when no error is raised.
        """


class ParallelResolver(Resolver):
    """Queries all resolvers concurrently; the first success wins."""

    def __init__(self, resolvers: Iterable[Resolver] = ()) -> None:
        self.resolvers = list(resolvers)

    def __len__(self) -> int:
        return len(self.resolvers)

    def lookup_net_ip(self, network: str, host: str) -> list[IPAddress]:
        if not self.resolvers:
            raise NoResolversError()
        if len(self.resolvers) == 1:
            return self.resolvers[0].lookup_net_ip(network, host)

        executor = ThreadPoolExecutor(max_workers=len(self.resolvers))
        errors: list[BaseException] = []
        try:
            futures = [
                executor.submit(r.lookup_net_ip, network, host) for r in self.resolvers
            ]
            for future in as_completed(futures):
                exc = future.exception()
                if exc is None:
                    return future.result()
                errors.append(exc)
        finally:
            # Slower lookups are left to finish in the background.
            executor.shutdown(wait=False)

        raise _join_errors(errors)


class ConsequentResolver(Resolver):
    """Queries resolvers in order until one returns a non-empty result."""

    def __init__(self, resolvers: Iterable[Resolver] = ()) -> None:
        self.resolvers = list(resolvers)

    def __len__(self) -> int:
        return len(self.resolvers)

    def lookup_net_ip(self, network: str, host: str) -> list[IPAddress]:
        if not self.resolvers:
            raise NoResolversError()

        errors: list[BaseException] = []
        for resolver in self.resolvers:
            try:
                addrs = resolver.lookup_net_ip(network, host)
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)
                continue
            if addrs:
                return addrs

        if errors:
            raise _join_errors(errors)
        return []


class StaticResolver(Resolver):
    """Always answers with the same addresses, whatever the host."""

    def __init__(self, addrs: Iterable[IPAddress] = ()) -> None:
        self.addrs = list(addrs)

    def lookup_net_ip(self, network: str, host: str) -> list[IPAddress]:
        return list(self.addrs)