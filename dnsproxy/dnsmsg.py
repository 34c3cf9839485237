"""Construction of common DNS response messages."""

from __future__ import annotations

import abc

import dns.flags
import dns.message
import dns.name
import dns.opcode
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rdtypes.ANY.SOA
import dns.rrset

# Maximum DNS/UDP payload for IPv6 on a 1500-octet MTU ethernet link.
_MAX_UDP_PAYLOAD = 1452

_NODATA_TTL = 10


class MessageConstructor(abc.ABC):
    """Creates DNS response messages."""

    @abc.abstractmethod
    def new_msg_nxdomain(self, req: dns.message.Message) -> dns.message.Message:
        """Return a reply to req with the NXDOMAIN code."""

    @abc.abstractmethod
    def new_msg_servfail(self, req: dns.message.Message) -> dns.message.Message:
        """Return a reply to req with the SERVFAIL code."""

    @abc.abstractmethod
    def new_msg_notimplemented(self, req: dns.message.Message) -> dns.message.Message:
        """Return a reply to req with the NOTIMP code."""

    @abc.abstractmethod
    def new_msg_nodata(self, req: dns.message.Message) -> dns.message.Message:
        """Return an empty NOERROR reply to req (RFC 2308, section 2.2)."""


def _reply(req: dns.message.Message, code: int) -> dns.message.Message:
    resp = dns.message.QueryMessage(id=req.id)
    flags = dns.flags.QR | dns.flags.RA
    opcode = req.opcode()
    if opcode == dns.opcode.QUERY:
        flags |= req.flags & (dns.flags.RD | dns.flags.CD)
    resp.flags = flags
    resp.set_opcode(opcode)
    resp.set_rcode(code)
    if req.question:
        q = req.question[0]
        resp.question = [dns.rrset.RRset(q.name, q.rdclass, q.rdtype)]
    return resp


class DefaultMessageConstructor(MessageConstructor):
    """The default message constructor."""

    def new_msg_nxdomain(self, req: dns.message.Message) -> dns.message.Message:
        return _reply(req, dns.rcode.NXDOMAIN)

    def new_msg_servfail(self, req: dns.message.Message) -> dns.message.Message:
        return _reply(req, dns.rcode.SERVFAIL)

    def new_msg_notimplemented(self, req: dns.message.Message) -> dns.message.Message:
        resp = _reply(req, dns.rcode.NOTIMP)
        # NOTIMP without EDNS reads as "EDNS is unsupported", so set it.
        resp.use_edns(0, 0, _MAX_UDP_PAYLOAD)
        return resp

    def new_msg_nodata(self, req: dns.message.Message) -> dns.message.Message:
        resp = _reply(req, dns.rcode.NOERROR)

        zone = req.question[0].name
        zone_text = zone.to_text()
        mbox = "hostmaster."
        if not zone_text.startswith("."):
            mbox += zone_text

        soa = dns.rdtypes.ANY.SOA.SOA(
            dns.rdataclass.IN,
            dns.rdatatype.SOA,
            dns.name.from_text("fake-for-negative-caching.adguard.com."),
            dns.name.from_text(mbox),
            100500,
            1800,
            60,
            604800,
            86400,
        )
        resp.authority.append(dns.rrset.from_rdata(zone, _NODATA_TTL, soa))
        return resp