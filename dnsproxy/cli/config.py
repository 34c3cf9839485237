"""The dnsproxy configuration: defaults, YAML file and command line."""

from __future__ import annotations

import ipaddress
import logging
import sys
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional, Union

import yaml

from dnsproxy.cli.options import (
    COMMAND_LINE_OPTIONS,
    EXIT_CODE_FAILURE,
    EXIT_CODE_SUCCESS,
    OptionsError,
    ValueKind,
    parse_cmd_line_options,
    parse_duration,
    process_cmd_line_options,
)
from dnsproxy.netutil import default_hosts_paths, parse_subnet

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

DEFAULT_LISTEN_PORT = 53

_logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when the configuration is invalid; exit_code is for the process."""

    def __init__(self, message: str, exit_code: int = EXIT_CODE_FAILURE) -> None:
        super().__init__(message)
        self.exit_code = exit_code


@dataclass
class Configuration:
    """All settings of the dnsproxy command, with the program's defaults."""

    config_path: str = ""
    log_output: str = ""
    tls_cert_path: str = ""
    tls_key_path: str = ""
    https_server_name: str = "dnsproxy"
    https_userinfo: str = ""
    dnscrypt_config_path: str = ""
    edns_client_addr: str = ""
    upstream_mode: str = "load_balance"
    listen_addrs: list[str] = field(default_factory=list)
    listen_ports: list[int] = field(default_factory=list)
    https_listen_ports: list[int] = field(default_factory=list)
    tls_listen_ports: list[int] = field(default_factory=list)
    quic_listen_ports: list[int] = field(default_factory=list)
    dnscrypt_listen_ports: list[int] = field(default_factory=list)
    upstreams: list[str] = field(default_factory=list)
    bootstrap_dns: list[str] = field(default_factory=list)
    fallbacks: list[str] = field(default_factory=list)
    private_rdns_upstreams: list[str] = field(default_factory=list)
    dns64_prefix: list[str] = field(default_factory=list)
    private_subnet_list: list[str] = field(default_factory=list)
    bogus_nxdomain: list[str] = field(default_factory=list)
    hosts_file_paths: list[str] = field(default_factory=list)
    timeout: timedelta = timedelta(seconds=10)
    cache_min_ttl: int = 0
    cache_max_ttl: int = 0
    cache_size_bytes: int = 64 * 1024
    ratelimit: int = 0
    ratelimit_subnet_len_ipv4: int = 24
    ratelimit_subnet_len_ipv6: int = 56
    udp_buffer_size: int = 0
    max_go_routines: int = 0
    tls_min_version: float = 0.0
    tls_max_version: float = 0.0
    help: bool = False
    hosts_file_enabled: bool = True
    pprof: bool = False
    version: bool = False
    verbose: bool = False
    insecure: bool = False
    ipv6_disabled: bool = False
    http3: bool = False
    cache_optimistic: bool = False
    cache: bool = False
    refuse_any: bool = False
    enable_edns_subnet: bool = False
    dns64: bool = False
    use_private_rdns: bool = False

    def hosts_files(self) -> list[str]:
        """Return the hosts files to resolve from; empty when disabled."""
        if not self.hosts_file_enabled:
            _logger.debug("hosts files are disabled")
            return []

        _logger.debug("hosts files are enabled")

        if self.hosts_file_paths:
            return list(self.hosts_file_paths)

        try:
            paths = default_hosts_paths()
        except OSError as exc:
            raise ConfigError(f"getting default hosts files: {exc}") from exc

        _logger.debug("hosts files are not specified, using default: %s", paths)
        return paths

    def bogus_nxdomain_prefixes(self) -> list[IPNetwork]:
        """Return the bogus-NXDOMAIN subnets; invalid entries are logged and skipped."""
        prefixes: list[IPNetwork] = []
        for idx, s in enumerate(self.bogus_nxdomain):
            try:
                prefixes.append(parse_subnet(s))
            except ValueError as exc:
                _logger.warning("parsing bogus nxdomain at index %d: %s", idx, exc)
        return prefixes

    def listen_addr_ports(self) -> list[tuple[IPAddress, int]]:
        """Return the plain-DNS listen address and port pairs.

        When no ports are set, the default port 53 is stored and used.
        """
        try:
            addrs = parse_listen_addrs(self.listen_addrs)
        except ConfigError as exc:
            raise ConfigError(f"parsing listen addresses: {exc}") from exc

        if not self.listen_ports:
            self.listen_ports = [DEFAULT_LISTEN_PORT]

        return [(ip, port & 0xFFFF) for port in self.listen_ports for ip in addrs]

    def dns64_prefixes(self) -> list[IPNetwork]:
        """Return the DNS64 prefixes; empty when DNS64 is off."""
        if not self.dns64:
            return []
        return [
            _parse_prefix(p, f"parsing dns64 prefix at index {idx}")
            for idx, p in enumerate(self.dns64_prefix)
        ]

    def private_subnets(self) -> list[IPNetwork]:
        """Return the configured private subnets.

        Empty when private reverse lookups are off or no subnets are given,
        in which case the locally-served networks apply.
        """
        if not self.use_private_rdns:
            return []
        return [
            _parse_prefix(p, f"parsing private subnet at index {idx}")
            for idx, p in enumerate(self.private_subnet_list)
        ]

    def edns_addr(self) -> Optional[IPAddress]:
        """Return the EDNS client address to send, if configured and enabled."""
        if not self.edns_client_addr:
            return None

        if not self.enable_edns_subnet:
            _logger.warning("--edns is required; --edns-addr %s", self.edns_client_addr)
            return None

        try:
            return ipaddress.ip_address(self.edns_client_addr)
        except ValueError as exc:
            raise ConfigError(f"parsing edns-addr: {exc}") from exc

    def userinfo(self) -> Optional[tuple[str, Optional[str]]]:
        """Return the required DoH (user, password) pair; password may be None."""
        if not self.https_userinfo:
            return None
        user, sep, tail = self.https_userinfo.partition(":")
        return (user, tail) if sep else (user, None)


def _parse_prefix(s: str, context: str) -> IPNetwork:
    try:
        if "/" not in s:
            raise ValueError(f"netip.ParsePrefix({s!r}): no '/'")
        return ipaddress.ip_network(s, strict=False)
    except ValueError as exc:
        raise ConfigError(f"{context}: {exc}") from exc


def parse_listen_addrs(addr_strs: Iterable[str]) -> list[IPAddress]:
    """Parse listen addresses; with none given, return the IPv4 unspecified one."""
    addrs: list[IPAddress] = []
    for idx, a in enumerate(addr_strs):
        try:
            addrs.append(ipaddress.ip_address(a))
        except ValueError as exc:
            raise ConfigError(f"parsing listen address at index {idx}: {a}") from exc

    if not addrs:
        addrs.append(ipaddress.IPv4Address("0.0.0.0"))

    return addrs


def load_servers_list(sources: Iterable[str]) -> list[str]:
    """Expand sources into servers: each is a file of servers or a server itself.

    Blank lines and lines starting with "!" or "#" in files are ignored.
    """
    servers: list[str] = []
    for source in sources:
        try:
            with open(source, "rb") as f:
                data = f.read().decode("utf-8", errors="replace")
        except OSError:
            servers.append(source)
            continue

        for line in data.split("\n"):
            line = line.strip()
            if not line or line.startswith(("!", "#")):
                continue
            servers.append(line)

    return servers


_FIELD_KINDS: dict[str, ValueKind] = {o.field: o.kind for o in COMMAND_LINE_OPTIONS}

_YAML_FIELDS: dict[str, str] = {
    "configpath": "config_path",
    "output": "log_output",
    "tls-crt": "tls_cert_path",
    "tls-key": "tls_key_path",
    "https-server-name": "https_server_name",
    "https-userinfo": "https_userinfo",
    "dnscrypt-config": "dnscrypt_config_path",
    "edns-addr": "edns_client_addr",
    "upstream-mode": "upstream_mode",
    "listen-addrs": "listen_addrs",
    "listen-ports": "listen_ports",
    "https-port": "https_listen_ports",
    "tls-port": "tls_listen_ports",
    "quic-port": "quic_listen_ports",
    "dnscrypt-port": "dnscrypt_listen_ports",
    "upstream": "upstreams",
    "bootstrap": "bootstrap_dns",
    "fallback": "fallbacks",
    "private-rdns-upstream": "private_rdns_upstreams",
    "dns64-prefix": "dns64_prefix",
    "private-subnets": "private_subnet_list",
    "bogus-nxdomain": "bogus_nxdomain",
    "hosts-files": "hosts_file_paths",
    "timeout": "timeout",
    "cache-min-ttl": "cache_min_ttl",
    "cache-max-ttl": "cache_max_ttl",
    "cache-size": "cache_size_bytes",
    "ratelimit": "ratelimit",
    "ratelimit-subnet-len-ipv4": "ratelimit_subnet_len_ipv4",
    "ratelimit-subnet-len-ipv6": "ratelimit_subnet_len_ipv6",
    "udp-buf-size": "udp_buffer_size",
    "max-go-routines": "max_go_routines",
    "tls-min-version": "tls_min_version",
    "tls-max-version": "tls_max_version",
    "hosts-file-enabled": "hosts_file_enabled",
    "pprof": "pprof",
    "version": "version",
    "verbose": "verbose",
    "insecure": "insecure",
    "ipv6-disabled": "ipv6_disabled",
    "http3": "http3",
    "cache-optimistic": "cache_optimistic",
    "cache": "cache",
    "refuse-any": "refuse_any",
    "edns": "enable_edns_subnet",
    "dns64": "dns64",
    "use-private-rdns": "use_private_rdns",
}

_INT_RANGES = {
    ValueKind.INT: (-(1 << 63), (1 << 63) - 1),
    ValueKind.UINT: (0, (1 << 64) - 1),
    ValueKind.UINT32: (0, (1 << 32) - 1),
}


def _zero(kind: ValueKind) -> Any:
    if kind is ValueKind.STRING:
        return ""
    if kind is ValueKind.BOOL:
        return False
    if kind is ValueKind.FLOAT:
        return 0.0
    if kind is ValueKind.DURATION:
        return timedelta(0)
    if kind in (ValueKind.INT_LIST, ValueKind.STRING_LIST):
        return []
    return 0


def _decode(key: str, kind: ValueKind, value: Any) -> Any:
    if value is None:
        return _zero(kind)

    bad = ConfigError(f"cannot unmarshal {value!r} into {key} of type {kind.value}")

    if kind is ValueKind.STRING:
        if isinstance(value, (list, dict)):
            raise bad
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)
    if kind is ValueKind.BOOL:
        if not isinstance(value, bool):
            raise bad
        return value
    if kind in _INT_RANGES:
        if isinstance(value, bool) or not isinstance(value, int):
            raise bad
        low, high = _INT_RANGES[kind]
        if not low <= value <= high:
            raise bad
        return value
    if kind is ValueKind.FLOAT:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise bad
        return float(value)
    if kind is ValueKind.DURATION:
        if isinstance(value, (list, dict, bool)):
            raise bad
        try:
            return parse_duration(str(value))
        except ValueError as exc:
            raise ConfigError(f"{key}: {exc}") from exc
    if kind in (ValueKind.INT_LIST, ValueKind.STRING_LIST):
        if not isinstance(value, list):
            raise bad
        item_kind = ValueKind.INT if kind is ValueKind.INT_LIST else ValueKind.STRING
        return [_decode(key, item_kind, item) for item in value]
    raise bad


def parse_config_file(conf: Configuration, path: str) -> None:
    """Fill conf with the settings of the YAML file at path; unknown keys are ignored."""
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as exc:
        raise ConfigError(f"reading file: {exc}") from exc

    try:
        doc = yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise ConfigError(f"unmarshalling file: {exc}") from exc

    if doc is None:
        return
    if not isinstance(doc, dict):
        raise ConfigError(f"unmarshalling file: cannot unmarshal {type(doc).__name__} into configuration")

    for key, value in doc.items():
        name = _YAML_FIELDS.get(str(key))
        if name is None:
            continue
        try:
            setattr(conf, name, _decode(str(key), _FIELD_KINDS[name], value))
        except ConfigError as exc:
            raise ConfigError(f"unmarshalling file: {exc}") from exc


def parse_config(
    argv: Optional[Sequence[str]] = None,
) -> tuple[Optional[Configuration], int]:
    """Build the configuration from argv (default: sys.argv[1:]) and a config file.

    Returns (configuration, exit code); the configuration is None when the
    program should exit at once, as after --help.  Command-line options take
    priority over the file.  Raises ConfigError with the exit code on errors.
    """
    conf = Configuration()

    parse_error: Optional[OptionsError] = None
    try:
        parse_cmd_line_options(conf, argv)
    except OptionsError as exc:
        parse_error = exc

    exit_code, need_exit = process_cmd_line_options(conf, parse_error)
    if need_exit:
        if parse_error is not None:
            raise ConfigError(str(parse_error), exit_code) from parse_error
        return None, exit_code

    path = conf.config_path
    if not path:
        return conf, exit_code

    sys.stdout.write(f"dnsproxy config path: {path}\n")

    try:
        parse_config_file(conf, path)
    except ConfigError as exc:
        raise ConfigError(f"parsing config file {path}: {exc}", EXIT_CODE_FAILURE) from exc

    try:
        parse_cmd_line_options(conf, argv)
    except OptionsError as exc:
        raise ConfigError(str(exc), EXIT_CODE_FAILURE) from exc

    return conf, EXIT_CODE_SUCCESS