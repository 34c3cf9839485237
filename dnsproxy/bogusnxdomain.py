"""Detection of bogus NXDOMAIN responses."""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable
from typing import Optional, Union

import dns.message
import dns.rdatatype

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def ip_from_rr(rr: object) -> Optional[IPAddress]:
    """Return the address held by an A or AAAA record, or None for others."""
    rdtype = getattr(rr, "rdtype", None)
    try:
        if rdtype == dns.rdatatype.A:
            return ipaddress.IPv4Address(rr.address)  # type: ignore[attr-defined]
        if rdtype == dns.rdatatype.AAAA:
            return ipaddress.IPv6Address(rr.address)  # type: ignore[attr-defined]
    except ValueError:
        return None
    return None


def is_bogus_nxdomain(
    msg: Optional[dns.message.Message], subnets: Iterable[IPNetwork]
) -> bool:
    """Tell whether an A or AAAA answer in msg falls into one of subnets."""
    nets = list(subnets)
    if msg is None or not nets or not msg.question:
        return False
    if msg.question[0].rdtype not in (dns.rdatatype.A, dns.rdatatype.AAAA):
        return False

    for rrset in msg.answer:
        for rdata in rrset:
            ip = ip_from_rr(rdata)
            if ip is not None and any(ip in net for net in nets):
                return True

    return False