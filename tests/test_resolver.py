import ipaddress
import threading

import pytest

from dnsproxy.bootstrap.resolver import (
    ConsequentResolver,
    NoResolversError,
    ParallelResolver,
    Resolver,
    StaticResolver,
)

HOSTNAME = "host.name"
V4 = ipaddress.ip_address("127.0.0.1")
V6 = ipaddress.ip_address("::1")


class _FuncResolver(Resolver):
    def __init__(self, func):
        self.func = func

    def lookup_net_ip(self, network, host):
        return self.func(network, host)


def _immediate(network, host):
    assert host == HOSTNAME
    assert network == "ip"
    return [V4]


def _lookup_failure(resolver, network, host):
    """Run a lookup that must fail and return the raised exception."""
    try:
        resolver.lookup_net_ip(network, host)
    except Exception as exc:  # noqa: BLE001
        return exc
    return None


def test_parallel_no_resolvers():
    with pytest.raises(NoResolversError) as info:
        ParallelResolver([]).lookup_net_ip("ip", "")
    assert str(info.value) == "no resolvers specified"


def test_parallel_one_resolver():
    addrs = ParallelResolver([_FuncResolver(_immediate)]).lookup_net_ip("ip", HOSTNAME)
    assert addrs == [V4]


def test_parallel_one_resolver_error_propagates():
    def fail(network, host):
        raise RuntimeError("general error for testing")

    with pytest.raises(RuntimeError, match="general error for testing"):
        ParallelResolver([_FuncResolver(fail)]).lookup_net_ip("ip", HOSTNAME)


def test_parallel_two_resolvers():
    delay = threading.Event()

    def delayed(network, host):
        assert host == HOSTNAME
        assert network == "ip"
        delay.wait(1)
        return [V6]

    resolver = ParallelResolver([_FuncResolver(_immediate), _FuncResolver(delayed)])
    try:
        addrs = resolver.lookup_net_ip("ip", HOSTNAME)
    finally:
        delay.set()
    assert addrs == [V4]


def test_parallel_all_errors():
    message = "general error for testing"
    want = "\n".join([message, message, message])

    def fail(network, host):
        raise RuntimeError(message)

    r = _FuncResolver(fail)
    err = _lookup_failure(ParallelResolver([r, r, r]), "ip", HOSTNAME)
    assert str(err) == want


def test_consequent_no_resolvers():
    with pytest.raises(NoResolversError):
        ConsequentResolver([]).lookup_net_ip("ip", HOSTNAME)


def test_consequent_skips_empty_and_errors():
    def fail(network, host):
        raise RuntimeError("boom")

    resolver = ConsequentResolver(
        [_FuncResolver(fail), StaticResolver([]), StaticResolver([V6]), StaticResolver([V4])]
    )
    assert resolver.lookup_net_ip("ip", HOSTNAME) == [V6]


def test_consequent_all_empty_without_errors():
    resolver = ConsequentResolver([StaticResolver([]), StaticResolver([])])
    assert resolver.lookup_net_ip("ip", HOSTNAME) == []


def test_consequent_all_errors_joined():
    def fail_a(network, host):
        raise RuntimeError("first")

    def fail_b(network, host):
        raise RuntimeError("second")

    resolver = ConsequentResolver([_FuncResolver(fail_a), StaticResolver([]), _FuncResolver(fail_b)])
    err = _lookup_failure(resolver, "ip", HOSTNAME)
    assert str(err) == "first\nsecond"


def test_static_returns_copy():
    resolver = StaticResolver([V4, V6])
    first = resolver.lookup_net_ip("ip4", "anything")
    first.clear()
    assert resolver.lookup_net_ip("ip6", "other") == [V4, V6]


def test_resolver_is_abstract():
    with pytest.raises(TypeError):
        Resolver()