"""Command-line options of the dnsproxy command and their parsing."""

from __future__ import annotations

import enum
import math
import re
import sys
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

EXIT_CODE_SUCCESS = 0
EXIT_CODE_FAILURE = 1
EXIT_CODE_ARGUMENT_ERROR = 2

# Build information; empty unless set at packaging time.
_BRANCH = ""
_COMMIT_TIME = ""
_REVISION = ""
_VERSION = ""


def branch() -> str:
    """Return the Git branch the program was built from."""
    return _BRANCH


def commit_time() -> str:
    """Return the commit time of the build."""
    return _COMMIT_TIME


def revision() -> str:
    """Return the Git revision the program was built from."""
    return _REVISION


def version() -> str:
    """Return the build version."""
    return _VERSION


class OptionsError(Exception):
    """Raised when the command line cannot be parsed."""


class ValueKind(enum.Enum):
    """How the value of an option is parsed and stored."""

    STRING = "string"
    BOOL = "bool"
    INT = "int"
    UINT = "uint"
    UINT32 = "uint32"
    FLOAT = "float"
    INT_LIST = "int_list"
    STRING_LIST = "string_list"
    DURATION = "duration"


@dataclass(frozen=True)
class CommandLineOption:
    """A command-line option: its names, value hint, target field and help."""

    long: str
    field: str
    kind: ValueKind
    description: str
    short: str = ""
    value_type: str = ""

    def usage_line(self) -> str:
        """Return the line naming the option in the usage message."""
        if not self.short:
            if not self.value_type:
                return f"  --{self.long}\n"
            return f"  --{self.long}={self.value_type}\n"

        if not self.value_type:
            return f"  --{self.long}/-{self.short}\n"
        return f"  --{self.long}={self.value_type}/-{self.short} {self.value_type}\n"


_K = ValueKind

COMMAND_LINE_OPTIONS: tuple[CommandLineOption, ...] = (
    CommandLineOption(
        "config-path", "config_path", _K.STRING,
        "YAML configuration file. Minimal working configuration in config.yaml.dist."
        " Options passed through command line will override the ones from this file.",
        value_type="path",
    ),
    CommandLineOption(
        "output", "log_output", _K.STRING, "Path to the log file.",
        short="o", value_type="path",
    ),
    CommandLineOption(
        "tls-crt", "tls_cert_path", _K.STRING, "Path to a file with the certificate chain.",
        short="c", value_type="path",
    ),
    CommandLineOption(
        "tls-key", "tls_key_path", _K.STRING, "Path to a file with the private key.",
        short="k", value_type="path",
    ),
    CommandLineOption(
        "https-server-name", "https_server_name", _K.STRING,
        "Set the Server header for the responses from the HTTPS server.",
        value_type="name",
    ),
    CommandLineOption(
        "https-userinfo", "https_userinfo", _K.STRING,
        "If set, all DoH queries are required to have this basic authentication information.",
        value_type="name",
    ),
    CommandLineOption(
        "dnscrypt-config", "dnscrypt_config_path", _K.STRING,
        "Path to a file with DNSCrypt configuration. You can generate one using "
        "the dnscrypt tool.",
        short="g", value_type="path",
    ),
    CommandLineOption(
        "edns-addr", "edns_client_addr", _K.STRING, "Send EDNS Client Address.",
        value_type="address",
    ),
    CommandLineOption(
        "upstream-mode", "upstream_mode", _K.STRING,
        "Defines the upstreams logic mode, possible values: load_balance, parallel, "
        "fastest_addr (default: load_balance).",
        value_type="mode",
    ),
    CommandLineOption(
        "listen", "listen_addrs", _K.STRING_LIST, "Listening addresses.",
        short="l", value_type="address",
    ),
    CommandLineOption(
        "port", "listen_ports", _K.INT_LIST,
        "Listening ports. Zero value disables TCP and UDP listeners.",
        short="p", value_type="port",
    ),
    CommandLineOption(
        "https-port", "https_listen_ports", _K.INT_LIST, "Listening ports for DNS-over-HTTPS.",
        short="s", value_type="port",
    ),
    CommandLineOption(
        "tls-port", "tls_listen_ports", _K.INT_LIST, "Listening ports for DNS-over-TLS.",
        short="t", value_type="port",
    ),
    CommandLineOption(
        "quic-port", "quic_listen_ports", _K.INT_LIST, "Listening ports for DNS-over-QUIC.",
        short="q", value_type="port",
    ),
    CommandLineOption(
        "dnscrypt-port", "dnscrypt_listen_ports", _K.INT_LIST, "Listening ports for DNSCrypt.",
        short="y", value_type="port",
    ),
    CommandLineOption(
        "upstream", "upstreams", _K.STRING_LIST,
        "An upstream to be used (can be specified multiple times). You can also "
        "specify path to a file with the list of servers.",
        short="u",
    ),
    CommandLineOption(
        "bootstrap", "bootstrap_dns", _K.STRING_LIST,
        "Bootstrap DNS for DoH and DoT, can be specified multiple times (default: "
        "use system-provided).",
        short="b",
    ),
    CommandLineOption(
        "fallback", "fallbacks", _K.STRING_LIST,
        "Fallback resolvers to use when regular ones are unavailable, can be "
        "specified multiple times. You can also specify path to a file with the list of servers.",
        short="f",
    ),
    CommandLineOption(
        "private-rdns-upstream", "private_rdns_upstreams", _K.STRING_LIST,
        "Private DNS upstreams to use for reverse DNS lookups of private addresses, "
        "can be specified multiple times.",
    ),
    CommandLineOption(
        "dns64-prefix", "dns64_prefix", _K.STRING_LIST,
        "Prefix used to handle DNS64. If not specified, dnsproxy uses the "
        "'Well-Known Prefix' 64:ff9b::.  Can be specified multiple times.",
        value_type="subnet",
    ),
    CommandLineOption(
        "private-subnets", "private_subnet_list", _K.STRING_LIST,
        "Private subnets to use for reverse DNS lookups of private addresses.",
        value_type="subnet",
    ),
    CommandLineOption(
        "bogus-nxdomain", "bogus_nxdomain", _K.STRING_LIST,
        "Transform the responses containing at least a single IP that matches "
        "specified addresses and CIDRs into NXDOMAIN.  Can be specified multiple times.",
        value_type="subnet",
    ),
    CommandLineOption(
        "hosts-files", "hosts_file_paths", _K.STRING_LIST,
        "List of paths to the hosts files, can be specified multiple times.",
        value_type="path",
    ),
    CommandLineOption(
        "timeout", "timeout", _K.DURATION,
        "Timeout for outbound DNS queries to remote upstream servers in a human-readable form",
        value_type="duration",
    ),
    CommandLineOption(
        "cache-min-ttl", "cache_min_ttl", _K.UINT32,
        "Minimum TTL value for DNS entries, in seconds. Capped at 3600. "
        "Artificially extending TTLs should only be done with careful consideration.",
        value_type="uint32",
    ),
    CommandLineOption(
        "cache-max-ttl", "cache_max_ttl", _K.UINT32,
        "Maximum TTL value for DNS entries, in seconds.",
        value_type="uint32",
    ),
    CommandLineOption(
        "cache-size", "cache_size_bytes", _K.INT, "Cache size (in bytes). Default: 64k.",
        value_type="int",
    ),
    CommandLineOption(
        "ratelimit", "ratelimit", _K.INT, "Ratelimit (requests per second).",
        short="r", value_type="int",
    ),
    CommandLineOption(
        "ratelimit-subnet-len-ipv4", "ratelimit_subnet_len_ipv4", _K.INT,
        "Ratelimit subnet length for IPv4.",
        value_type="int",
    ),
    CommandLineOption(
        "ratelimit-subnet-len-ipv6", "ratelimit_subnet_len_ipv6", _K.INT,
        "Ratelimit subnet length for IPv6.",
        value_type="int",
    ),
    CommandLineOption(
        "udp-buf-size", "udp_buffer_size", _K.INT,
        "Set the size of the UDP buffer in bytes. A value <= 0 will use the system default.",
        value_type="int",
    ),
    CommandLineOption(
        "max-go-routines", "max_go_routines", _K.UINT,
        "Set the maximum number of go routines. A zero value will not not set a maximum.",
        value_type="uint",
    ),
    CommandLineOption(
        "tls-min-version", "tls_min_version", _K.FLOAT,
        "Minimum TLS version, for example 1.0.",
        value_type="version",
    ),
    CommandLineOption(
        "tls-max-version", "tls_max_version", _K.FLOAT,
        "Maximum TLS version, for example 1.3.",
        value_type="version",
    ),
    CommandLineOption("help", "help", _K.BOOL, "Print this help message and quit.", short="h"),
    CommandLineOption(
        "hosts-file-enabled", "hosts_file_enabled", _K.BOOL,
        "If specified, use hosts files for resolving.",
    ),
    CommandLineOption(
        "pprof", "pprof", _K.BOOL, "If present, exposes pprof information on localhost:6060.",
    ),
    CommandLineOption("version", "version", _K.BOOL, "Prints the program version."),
    CommandLineOption("verbose", "verbose", _K.BOOL, "Verbose output.", short="v"),
    CommandLineOption(
        "insecure", "insecure", _K.BOOL, "Disable secure TLS certificate validation.",
    ),
    CommandLineOption(
        "ipv6-disabled", "ipv6_disabled", _K.BOOL,
        "If specified, all AAAA requests will be replied with NoError RCode and empty answer.",
    ),
    CommandLineOption("http3", "http3", _K.BOOL, "Enable HTTP/3 support."),
    CommandLineOption(
        "cache-optimistic", "cache_optimistic", _K.BOOL,
        "If specified, optimistic DNS cache is enabled.",
    ),
    CommandLineOption("cache", "cache", _K.BOOL, "If specified, DNS cache is enabled."),
    CommandLineOption("refuse-any", "refuse_any", _K.BOOL, "If specified, refuses ANY requests."),
    CommandLineOption("edns", "enable_edns_subnet", _K.BOOL, "Use EDNS Client Subnet extension."),
    CommandLineOption(
        "dns64", "dns64", _K.BOOL, "If specified, dnsproxy will act as a DNS64 server.",
    ),
    CommandLineOption(
        "use-private-rdns", "use_private_rdns", _K.BOOL,
        "If specified, use private upstreams for reverse DNS lookups of private addresses.",
    ),
)


def _quote(s: str) -> str:
    return '"' + s.replace("\\", "\\\\").replace('"', '\\"') + '"'


# Durations.

_DURATION_UNITS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_MAX_DURATION_NS = (1 << 63) - 1
_DURATION_COMPONENT = re.compile(r"([0-9]*)(?:\.([0-9]*))?([^0-9.]*)")


def parse_duration(s: str) -> timedelta:
    """Parse a duration such as "300ms", "-1.5h" or "2h45m".

    Units are ns, us (or µs), ms, s, m and h.  Raises ValueError on bad input.
    """
    orig = s
    invalid = ValueError(f"time: invalid duration {_quote(orig)}")

    negative = False
    if s[:1] in ("+", "-"):
        negative = s[0] == "-"
        s = s[1:]

    if s == "0":
        return timedelta(0)
    if not s:
        raise invalid

    total = 0
    pos = 0
    while pos < len(s):
        match = _DURATION_COMPONENT.match(s, pos)
        whole, frac, unit = match.group(1), match.group(2), match.group(3)
        if not whole and not frac:
            raise invalid
        if not unit:
            raise ValueError(f"time: missing unit in duration {_quote(orig)}")

        scale = _DURATION_UNITS.get(unit)
        if scale is None:
            raise ValueError(f"time: unknown unit {_quote(unit)} in duration {_quote(orig)}")

        total += int(whole or "0") * scale
        if frac:
            total += int(frac) * scale // 10 ** len(frac)

        if total > _MAX_DURATION_NS + (1 if negative else 0):
            raise invalid

        pos = match.end()

    micros = total // 1000
    return timedelta(microseconds=-micros if negative else micros)


# Numbers.

_SYNTAX = "invalid syntax"
_RANGE = "value out of range"
_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
_FLOAT32_MAX = 3.4028234663852886e38
_TRUE_VALUES = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_VALUES = frozenset({"0", "f", "F", "FALSE", "false", "False"})


class _NumError(ValueError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def _parse_int(s: str, *, signed: bool, bits: int, prefixed: bool = True) -> int:
    """Parse an integer; with prefixed, 0x, 0o, 0b and leading-0 octal are allowed."""
    body = s
    negative = False
    if signed and body[:1] in ("+", "-"):
        negative = body[0] == "-"
        body = body[1:]

    base = 10
    digits = body
    if prefixed:
        prefix = body[:2].lower()
        if prefix in ("0x", "0o", "0b"):
            base = {"0x": 16, "0o": 8, "0b": 2}[prefix]
            digits = body[2:]
        elif len(body) > 1 and body[0] == "0":
            base = 8
            digits = body[1:]

        if "_" in digits:
            core = digits[1:] if base != 10 and digits.startswith("_") else digits
            if not core or core.startswith("_") or core.endswith("_") or "__" in core:
                raise _NumError(_SYNTAX)
            digits = core.replace("_", "")

    allowed = _DIGITS[:base]
    if not digits or any(c.lower() not in allowed for c in digits):
        raise _NumError(_SYNTAX)

    value = int(digits, base)
    if negative:
        value = -value

    if signed:
        low, high = -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    else:
        low, high = 0, (1 << bits) - 1
    if not low <= value <= high:
        raise _NumError(_RANGE)

    return value


def _parse_float32(s: str) -> float:
    error = f"strconv.ParseFloat: parsing {_quote(s)}: "
    if not s or s != s.strip() or "_" in s:
        raise ValueError(error + _SYNTAX)
    try:
        value = float(s)
    except ValueError:
        raise ValueError(error + _SYNTAX) from None
    if math.isfinite(value) and abs(value) > _FLOAT32_MAX:
        raise ValueError(error + _RANGE)
    return value


def _builtin_number(s: str, *, signed: bool) -> int:
    try:
        return _parse_int(s, signed=signed, bits=64)
    except _NumError as exc:
        raise ValueError("parse error" if exc.reason == _SYNTAX else _RANGE) from None


def _convert(opt: CommandLineOption, value: str) -> Any:
    kind = opt.kind
    if kind in (ValueKind.STRING, ValueKind.STRING_LIST):
        return value
    if kind is ValueKind.INT:
        return _builtin_number(value, signed=True)
    if kind is ValueKind.UINT:
        return _builtin_number(value, signed=False)
    if kind is ValueKind.UINT32:
        try:
            return _parse_int(value, signed=False, bits=32)
        except _NumError as exc:
            raise ValueError(
                f"strconv.ParseUint: parsing {_quote(value)}: {exc.reason}"
            ) from None
    if kind is ValueKind.FLOAT:
        return _parse_float32(value)
    if kind is ValueKind.INT_LIST:
        try:
            return _parse_int(value, signed=True, bits=64, prefixed=False)
        except _NumError as exc:
            q = _quote(value)
            raise ValueError(
                f"parsing integer slice arg {q}: strconv.Atoi: parsing {q}: {exc.reason}"
            ) from None
    if kind is ValueKind.DURATION:
        return parse_duration(value)
    raise ValueError(f"unexpected value kind {kind}")


def _option_index(options: Iterable[CommandLineOption]) -> dict[str, CommandLineOption]:
    index: dict[str, CommandLineOption] = {}
    for opt in options:
        index[opt.long] = opt
        if opt.short:
            index[opt.short] = opt
    return index


_INDEX = _option_index(COMMAND_LINE_OPTIONS)


def _parse_flags(conf: Any, args: Sequence[str]) -> list[str]:
    """Set the options found in args on conf and return the remaining arguments."""
    pending = deque(args)
    reset_lists: set[str] = set()

    while pending:
        arg = pending[0]
        if len(arg) < 2 or arg[0] != "-":
            break
        pending.popleft()

        minuses = 2 if arg[1] == "-" else 1
        if minuses == 2 and len(arg) == 2:
            break

        spec = arg[minuses:]
        if not spec or spec[0] in "-=":
            raise OptionsError(f"bad flag syntax: {arg}")

        name, eq, value = spec.partition("=")
        has_value = bool(eq)

        opt = _INDEX.get(name)
        if opt is None:
            raise OptionsError(f"flag provided but not defined: -{name}")

        if opt.kind is ValueKind.BOOL:
            if not has_value:
                setattr(conf, opt.field, True)
            elif value in _TRUE_VALUES:
                setattr(conf, opt.field, True)
            elif value in _FALSE_VALUES:
                setattr(conf, opt.field, False)
            else:
                raise OptionsError(
                    f"invalid boolean value {_quote(value)} for -{name}: parse error"
                )
            continue

        if not has_value:
            if not pending:
                raise OptionsError(f"flag needs an argument: -{name}")
            value = pending.popleft()

        try:
            converted = _convert(opt, value)
        except ValueError as exc:
            raise OptionsError(
                f"invalid value {_quote(value)} for flag -{name}: {exc}"
            ) from exc

        if opt.kind in (ValueKind.INT_LIST, ValueKind.STRING_LIST):
            # The first occurrence replaces the default list.
            if opt.field not in reset_lists:
                reset_lists.add(opt.field)
                setattr(conf, opt.field, [])
            getattr(conf, opt.field).append(converted)
        else:
            setattr(conf, opt.field, converted)

    return list(pending)


def _default_cmd_name() -> str:
    return sys.argv[0] if sys.argv and sys.argv[0] else "dnsproxy"


def format_usage(cmd_name: str) -> str:
    """Return the usage message listing every option, sorted by long name."""
    parts = [f"Usage of {cmd_name}:\n"]
    for opt in sorted(COMMAND_LINE_OPTIONS, key=lambda o: o.long):
        parts.append(opt.usage_line())
        # Four spaces before the tab align well with both 4- and 8-space tabs.
        parts.append(f"    \t{opt.description}\n")
    return "".join(parts)


def parse_cmd_line_options(conf: Any, argv: Optional[Sequence[str]] = None) -> None:
    """Set the options given in argv (default: sys.argv[1:]) on conf.

    Raises OptionsError on a malformed command line, after printing the error
    and the usage to standard error when the problem is with a flag.
    """
    args = list(sys.argv[1:] if argv is None else argv)

    try:
        rest = _parse_flags(conf, args)
    except OptionsError as exc:
        sys.stderr.write(f"{exc}\n")
        sys.stderr.write(format_usage(_default_cmd_name()))
        raise

    if rest:
        raise OptionsError(
            "positional arguments are not allowed, please check your command line "
            f"arguments; detected positional arguments: [{' '.join(rest)}]"
        )


def process_cmd_line_options(
    conf: Any, parse_error: Optional[BaseException], cmd_name: Optional[str] = None
) -> tuple[int, bool]:
    """Decide whether to exit after parsing; return (exit code, need exit).

    Prints the usage or the version to standard output when asked for.
    """
    if parse_error is not None:
        # The usage has already been printed.
        return EXIT_CODE_ARGUMENT_ERROR, True

    if getattr(conf, "help", False):
        sys.stdout.write(format_usage(cmd_name or _default_cmd_name()))
        return EXIT_CODE_SUCCESS, True

    if getattr(conf, "version", False):
        sys.stdout.write(f"dnsproxy version {version()}\n")
        return EXIT_CODE_SUCCESS, True

    return EXIT_CODE_SUCCESS, False