# dnsproxy

Components for building a DNS proxy in Python, on top of `dnspython`.

## What is inside

- `dnsproxy.netutil`: `parse_subnet` accepts either a CIDR prefix or a
  single IP address (which becomes a one-address prefix) and raises
  `ValueError` otherwise; `default_hosts_paths` gives the system hosts file
  for the current platform (`/etc/hosts`, or the one under the Windows
  system directory).
- `dnsproxy.bootstrap.resolver`: resolvers used to find upstream server
  addresses, all with a `lookup_net_ip(network, host)` method.
  `ParallelResolver` asks every resolver at once and returns the first
  success, `ConsequentResolver` asks them in turn until one gives a
  non-empty answer, and `StaticResolver` always answers with a fixed list.
  An empty resolver list raises `NoResolversError`.
- `dnsproxy.bootstrap.dial`: `resolve_dial_context(url, timeout, resolver,
  prefer_v6)` resolves the host of a URL (or a bare `host:port`) and returns
  a dialer that connects to the first address that accepts, trying IPv6 or
  IPv4 addresses first as asked; `new_dial_context(timeout, *addrs)` builds
  such a dialer from ready `host:port` strings. The dialer is called with
  `"tcp"` or `"udp"` and returns a connected socket.
- `dnsproxy.dnsmsg`: `DefaultMessageConstructor` builds NXDOMAIN, SERVFAIL,
  NOTIMP (with EDNS, payload size 1452) and NODATA replies; NODATA carries
  an SOA record for negative caching.
- `dnsproxy.fastip`: `FastestAddr` queries several upstreams, probes the
  returned addresses over TCP (ports 80 and 443 by default) and keeps only
  the address that answered first, caching probe results for ten minutes.
  Upstreams are any objects with `exchange(req)` and `address()` methods.
  `Config` sets the logger, the wait timeout, the ports and the dial
  function.
- `dnsproxy.bogusnxdomain`: `is_bogus_nxdomain(msg, subnets)` tells whether
  an A or AAAA answer to an A or AAAA question holds an address from the
  given subnets; `ip_from_rr` reads the address of an A or AAAA record.
- `dnsproxy.beforerequest`: the `BeforeRequestHandler` hook,
  `NoopRequestHandler` that lets everything through, and
  `BeforeRequestError`, which carries the reply to send instead.
- `dnsproxy.tlsconfig`: `new_tls_config(cert_path, key_path, min_version,
  max_version)` returns a server `ssl.SSLContext` with the certificate chain
  and key loaded; `tls_version_range` maps values such as `1.2` to
  `ssl.TLSVersion`, defaulting to TLS 1.0 through 1.3.
- `dnsproxy.cli.options`: the command-line option table, `format_usage`,
  `parse_cmd_line_options`, `process_cmd_line_options` and `parse_duration`
  (Go-style durations such as `300ms` or `2h45m`).
- `dnsproxy.cli.config`: `Configuration` with the program defaults,
  `parse_config(argv)`, `parse_config_file`, `load_servers_list` (entries may
  be servers or files listing servers) and `parse_listen_addrs`.

## Example

```python
import dns.message

from dnsproxy.bogusnxdomain import is_bogus_nxdomain
from dnsproxy.dnsmsg import DefaultMessageConstructor
from dnsproxy.netutil import parse_subnet

subnets = [parse_subnet("10.11.12.13"), parse_subnet("4.3.2.0/24")]

req = dns.message.make_query("example.org.", "A")
resp = DefaultMessageConstructor().new_msg_nxdomain(req)

print(is_bogus_nxdomain(resp, subnets))  # False: the reply has no answer
```

Resolving and dialing an upstream:

```python
import ipaddress

from dnsproxy.bootstrap.dial import resolve_dial_context
from dnsproxy.bootstrap.resolver import StaticResolver

resolver = StaticResolver([ipaddress.ip_address("127.0.0.1")])
dial = resolve_dial_context("tls://dns.example.com:853", 5.0, resolver, False)
sock = dial("tcp")
```

## Configuration

`dnsproxy.cli.config.parse_config(argv)` reads the options listed by
`dnsproxy.cli.options.format_usage` (`--upstream`, `--listen`, `--port`,
`--cache`, `--bogus-nxdomain` and the rest). When `--config-path` names a
YAML file, its settings are read first and the command-line options are
applied over them. It returns the configuration and an exit code, returns
no configuration after `--help` or `--version`, and raises `ConfigError`
(carrying the exit code) on bad input. `Configuration` methods turn the
settings into parsed values: `listen_addr_ports`, `bogus_nxdomain_prefixes`,
`dns64_prefixes`, `private_subnets`, `edns_addr`, `userinfo` and
`hosts_files`.

## What this package does not do

- It does not listen for or serve DNS queries: there is no proxy server, and
  the configuration is parsed but not used to start one.
- It installs no command; parsing options is done by calling
  `parse_config` from your own program.
- It has no upstream clients for plain DNS, DoT, DoH or DoQ; `FastestAddr`
  works with upstream objects you supply.
- It does not answer queries from hosts files; `default_hosts_paths` and
  `Configuration.hosts_files` only find the files.