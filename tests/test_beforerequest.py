import dns.message
import dns.rcode
import pytest

from dnsproxy.beforerequest import (
    BeforeRequestError,
    BeforeRequestHandler,
    NoopRequestHandler,
)
from dnsproxy.dnsmsg import DefaultMessageConstructor


class _Ctx:
    def __init__(self, req):
        self.req = req
        self.res = None


class _DroppingHandler(BeforeRequestHandler):
    def __init__(self, response):
        self.response = response

    def handle_before(self, proxy, dctx):
        if dctx.req.question[0].name.to_text() == "error.":
            raise BeforeRequestError(RuntimeError("just error"), self.response)
        if dctx.req.question[0].name.to_text() == "dropped.":
            raise RuntimeError("just drop")


def test_error_message():
    req = dns.message.make_query("error.", "A")
    resp = DefaultMessageConstructor().new_msg_nxdomain(req)
    err = BeforeRequestError(RuntimeError("just error"), resp)
    assert str(err) == "just error; respond with NXDOMAIN"


def test_error_keeps_cause():
    req = dns.message.make_query("error.", "A")
    resp = DefaultMessageConstructor().new_msg_servfail(req)
    cause = RuntimeError("just error")
    err = BeforeRequestError(cause, resp)
    assert err.__cause__ is cause
    assert err.response is resp


def test_noop_handler():
    ctx = _Ctx(dns.message.make_query("allowed.", "A"))
    assert NoopRequestHandler().handle_before(None, ctx) is None
    assert ctx.res is None


def test_custom_handler_outcomes():
    resp = DefaultMessageConstructor().new_msg_nxdomain(dns.message.make_query("error.", "A"))
    handler = _DroppingHandler(resp)

    assert handler.handle_before(None, _Ctx(dns.message.make_query("allowed.", "A"))) is None

    with pytest.raises(BeforeRequestError) as info:
        handler.handle_before(None, _Ctx(dns.message.make_query("error.", "A")))
    assert info.value.response is resp

    with pytest.raises(RuntimeError, match="just drop"):
        handler.handle_before(None, _Ctx(dns.message.make_query("dropped.", "A")))


def test_abstract_handler_cannot_be_created():
    with pytest.raises(TypeError):
        BeforeRequestHandler()