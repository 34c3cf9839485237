import dns.flags
import dns.message
import dns.name
import dns.rcode
import dns.rdatatype
import pytest

from dnsproxy.dnsmsg import DefaultMessageConstructor, MessageConstructor

MC = DefaultMessageConstructor()


def _query(name="example.org.", rdtype="A"):
    return dns.message.make_query(name, rdtype)


@pytest.mark.parametrize(
    "method,rcode",
    [
        (MC.new_msg_nxdomain, dns.rcode.NXDOMAIN),
        (MC.new_msg_servfail, dns.rcode.SERVFAIL),
        (MC.new_msg_notimplemented, dns.rcode.NOTIMP),
        (MC.new_msg_nodata, dns.rcode.NOERROR),
    ],
)
def test_reply_header(method, rcode):
    req = _query()
    resp = method(req)
    assert resp.rcode() == rcode
    assert resp.id == req.id
    assert resp.flags & dns.flags.QR
    assert resp.flags & dns.flags.RA
    assert resp.flags & dns.flags.RD
    assert resp.question == req.question
    assert resp.answer == []


def test_reply_copies_missing_rd():
    req = _query()
    req.flags &= ~dns.flags.RD
    resp = MC.new_msg_nxdomain(req)
    assert resp.rcode() == dns.rcode.NXDOMAIN
    assert (resp.flags & dns.flags.RD) == 0
    assert (resp.flags & dns.flags.RA) == dns.flags.RA


def test_notimplemented_sets_edns():
    resp = MC.new_msg_notimplemented(_query())
    assert resp.edns == 0
    assert resp.payload == 1452
    assert not resp.ednsflags & dns.flags.DO


def test_other_replies_have_no_edns():
    req = _query()
    assert MC.new_msg_nxdomain(req).edns == -1
    assert MC.new_msg_nodata(req).edns == -1


def test_nodata_soa():
    req = _query("example.org.", "AAAA")
    resp = MC.new_msg_nodata(req)
    assert len(resp.authority) == 1
    rrset = resp.authority[0]
    assert rrset.rdtype == dns.rdatatype.SOA
    assert rrset.name == req.question[0].name
    assert rrset.ttl == 10
    soa = rrset[0]
    assert soa.mname == dns.name.from_text("fake-for-negative-caching.adguard.com.")
    assert soa.rname == dns.name.from_text("hostmaster.example.org.")
    assert (soa.serial, soa.refresh, soa.retry, soa.expire, soa.minimum) == (
        100500,
        1800,
        60,
        604800,
        86400,
    )


def test_nodata_root_zone():
    resp = MC.new_msg_nodata(_query(".", "A"))
    assert resp.authority[0][0].rname == dns.name.from_text("hostmaster.")


def test_nodata_wire_round_trip():
    resp = MC.new_msg_nodata(_query())
    parsed = dns.message.from_wire(resp.to_wire())
    assert parsed.rcode() == dns.rcode.NOERROR
    assert parsed.authority == resp.authority
    assert parsed.id == resp.id


def test_message_constructor_is_abstract():
    with pytest.raises(TypeError):
        MessageConstructor()