"""Network helpers shared across the package."""

from __future__ import annotations

import ipaddress
import ntpath
import os
import posixpath
import sys
from typing import Union

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def parse_subnet(s: str) -> IPNetwork:
    """Parse s as a CIDR prefix or as a single IP address.

    A bare address yields the single-address prefix of its family.  Raises
    ValueError when s is neither.
    """
    if "/" in s:
        return ipaddress.ip_network(s, strict=False)

    ip = ipaddress.ip_address(s)
    return ipaddress.ip_network((ip, ip.max_prefixlen))


def _windows_system_directory() -> str:
    root = os.environ.get("SystemRoot") or os.environ.get("windir")
    if not root:
        raise OSError("getting system directory: SystemRoot is not set")

    return ntpath.join(root, "System32")


def default_hosts_paths() -> list[str]:
    """Return the default paths to the system hosts files."""
    if sys.platform == "win32":
        return [posixpath.join(_windows_system_directory(), "drivers", "etc", "hosts")]

    return ["/etc/hosts"]