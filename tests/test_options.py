from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

import pytest

from dnsproxy.cli.options import (
    COMMAND_LINE_OPTIONS,
    EXIT_CODE_ARGUMENT_ERROR,
    EXIT_CODE_SUCCESS,
    CommandLineOption,
    OptionsError,
    ValueKind,
    format_usage,
    parse_cmd_line_options,
    parse_duration,
    process_cmd_line_options,
    version,
)


def _default_for(kind: ValueKind):
    return {
        ValueKind.STRING: "",
        ValueKind.BOOL: False,
        ValueKind.INT: 0,
        ValueKind.UINT: 0,
        ValueKind.UINT32: 0,
        ValueKind.FLOAT: 0.0,
        ValueKind.INT_LIST: [],
        ValueKind.STRING_LIST: [],
        ValueKind.DURATION: timedelta(0),
    }[kind]


def make_conf(**overrides):
    values = {}
    for opt in COMMAND_LINE_OPTIONS:
        default = _default_for(opt.kind)
        values[opt.field] = list(default) if isinstance(default, list) else default
    values.update(overrides)
    return SimpleNamespace(**values)


def test_long_and_short_string_options():
    conf = make_conf()
    parse_cmd_line_options(conf, ["--output", "log.txt", "-c=cert.pem"])
    assert conf.log_output == "log.txt"
    assert conf.tls_cert_path == "cert.pem"


def test_single_dash_long_option():
    conf = make_conf()
    parse_cmd_line_options(conf, ["-upstream-mode", "parallel"])
    assert conf.upstream_mode == "parallel"


def test_empty_argv_keeps_defaults():
    conf = make_conf(https_server_name="dnsproxy", cache_size_bytes=65536)
    parse_cmd_line_options(conf, [])
    assert conf.https_server_name == "dnsproxy"
    assert conf.cache_size_bytes == 65536


def test_bool_flags():
    conf = make_conf(cache=True)
    parse_cmd_line_options(conf, ["--verbose", "-cache=false", "--http3=1"])
    assert conf.verbose is True
    assert conf.cache is False
    assert conf.http3 is True


def test_bool_flag_does_not_consume_next_argument():
    conf = make_conf()
    with pytest.raises(OptionsError, match="positional arguments are not allowed"):
        parse_cmd_line_options(conf, ["--verbose", "extra"])


def test_bad_bool_value():
    conf = make_conf()
    with pytest.raises(OptionsError) as info:
        parse_cmd_line_options(conf, ["--verbose=maybe"])
    assert "maybe" in str(info.value)
    assert "-verbose" in str(info.value)


def test_list_option_replaces_default_then_appends():
    conf = make_conf(listen_ports=[53])
    parse_cmd_line_options(conf, ["-p", "5353", "--port", "5354"])
    assert conf.listen_ports == [5353, 5354]


def test_string_list_short_and_long_share_values():
    conf = make_conf(upstreams=["default"])
    parse_cmd_line_options(conf, ["-u", "1.1.1.1", "--upstream=8.8.8.8"])
    assert conf.upstreams == ["1.1.1.1", "8.8.8.8"]


def test_list_reset_happens_per_parse():
    conf = make_conf()
    parse_cmd_line_options(conf, ["--bootstrap", "a"])
    parse_cmd_line_options(conf, ["--bootstrap", "b"])
    assert conf.bootstrap_dns == ["b"]


def test_int_list_rejects_non_decimal():
    conf = make_conf()
    with pytest.raises(OptionsError, match="parsing integer slice arg"):
        parse_cmd_line_options(conf, ["--port", "0x10"])


def test_int_accepts_prefixed_bases():
    hex_conf = make_conf()
    dec_conf = make_conf()
    parse_cmd_line_options(hex_conf, ["-r", "0x10"])
    parse_cmd_line_options(dec_conf, ["-r", "16"])
    assert hex_conf.ratelimit == dec_conf.ratelimit


def test_int_negative_and_invalid():
    conf = make_conf()
    parse_cmd_line_options(conf, ["--udp-buf-size", "-5"])
    assert conf.udp_buffer_size == -5
    with pytest.raises(OptionsError, match="parse error"):
        parse_cmd_line_options(conf, ["--udp-buf-size", "abc"])


def test_uint_rejects_negative():
    conf = make_conf()
    with pytest.raises(OptionsError):
        parse_cmd_line_options(conf, ["--max-go-routines", "-1"])
    assert conf.max_go_routines == 0


def test_uint32_bounds():
    conf = make_conf()
    parse_cmd_line_options(conf, ["--cache-min-ttl", "4294967295"])
    assert conf.cache_min_ttl == 4294967295
    with pytest.raises(OptionsError, match="out of range"):
        parse_cmd_line_options(conf, ["--cache-max-ttl", "4294967296"])


def test_float_option():
    conf = make_conf()
    parse_cmd_line_options(conf, ["--tls-min-version", "1.2", "--tls-max-version=1.3"])
    assert conf.tls_min_version == 1.2
    assert conf.tls_max_version == 1.3
    with pytest.raises(OptionsError):
        parse_cmd_line_options(conf, ["--tls-min-version", "one"])


def test_duration_option():
    conf = make_conf()
    parse_cmd_line_options(conf, ["--timeout", "1m30s"])
    assert conf.timeout == timedelta(minutes=1, seconds=30)
    with pytest.raises(OptionsError, match="invalid duration"):
        parse_cmd_line_options(conf, ["--timeout", "soon"])


def test_unknown_flag_prints_usage(capsys):
    conf = make_conf()
    with pytest.raises(OptionsError) as info:
        parse_cmd_line_options(conf, ["--nope"])
    assert "nope" in str(info.value)
    assert "Usage of" in capsys.readouterr().err


def test_missing_argument():
    conf = make_conf()
    with pytest.raises(OptionsError) as info:
        parse_cmd_line_options(conf, ["--output"])
    assert "-output" in str(info.value)


def test_double_dash_terminates_flags():
    conf = make_conf()
    with pytest.raises(OptionsError) as info:
        parse_cmd_line_options(conf, ["--verbose", "--", "--cache"])
    assert "--cache" in str(info.value)
    assert conf.verbose is True
    assert conf.cache is False


def test_bad_flag_syntax():
    conf = make_conf()
    with pytest.raises(OptionsError, match="bad flag syntax"):
        parse_cmd_line_options(conf, ["---verbose"])


def test_help_flag_sets_help():
    conf = make_conf()
    parse_cmd_line_options(conf, ["-h"])
    assert conf.help is True


@pytest.mark.parametrize(
    "text, expected",
    [
        ("0", timedelta(0)),
        ("10s", timedelta(seconds=10)),
        ("2h45m", timedelta(hours=2, minutes=45)),
        ("-1.5h", -timedelta(hours=1.5)),
        ("+300ms", timedelta(milliseconds=300)),
        (".5s", timedelta(seconds=0.5)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


def test_parse_duration_equivalent_units():
    assert parse_duration("1h") == parse_duration("60m")
    assert parse_duration("1.5s") == parse_duration("1500ms")
    assert parse_duration("1000us") == parse_duration("1\u00b5s") * 1000


@pytest.mark.parametrize("text", ["", "1", "1x", "abc", ".s", "-", "1.2.3s"])
def test_parse_duration_errors(text):
    with pytest.raises(ValueError) as info:
        parse_duration(text)
    assert "time:" in str(info.value)


def test_parse_duration_unknown_unit_message():
    with pytest.raises(ValueError) as info:
        parse_duration("5d")
    assert '"d"' in str(info.value)
    assert '"5d"' in str(info.value)


def test_usage_header_and_lines():
    usage = format_usage("prog")
    assert usage.startswith("Usage of prog:\n")
    assert "  --config-path=path\n" in usage
    assert "  --output=path/-o path\n" in usage
    assert "  --cache\n" in usage
    assert "  --help/-h\n" in usage


def test_usage_sorted_and_complete():
    usage = format_usage("prog")
    longs = [
        line[4:].split("=")[0].split("/")[0]
        for line in usage.splitlines()
        if line.startswith("  --")
    ]
    assert longs == sorted(longs)
    assert set(longs) == {o.long for o in COMMAND_LINE_OPTIONS}


def test_usage_descriptions_follow_option_lines():
    usage = format_usage("prog").splitlines()[1:]
    descriptions = usage[1::2]
    assert all(line.startswith("    \t") for line in descriptions)
    assert len(descriptions) == len(COMMAND_LINE_OPTIONS)


def test_option_names_are_unique():
    option_lines = [
        line for line in format_usage("prog").splitlines() if line.startswith("  --")
    ]
    longs = [line[4:].split("=")[0].split("/")[0] for line in option_lines]
    shorts = [line.rsplit("/-", 1)[1].split(" ")[0] for line in option_lines if "/-" in line]
    assert len(option_lines) == len(COMMAND_LINE_OPTIONS)
    assert len(set(longs)) == len(longs)
    assert len(set(shorts)) == len(shorts)


def test_usage_line_forms():
    opt = CommandLineOption("listen", "listen_addrs", ValueKind.STRING_LIST, "d", "l", "address")
    assert opt.usage_line() == "  --listen=address/-l address\n"
    bare = CommandLineOption("dns64", "dns64", ValueKind.BOOL, "d")
    assert bare.usage_line() == "  --dns64\n"


def test_process_parse_error():
    conf = make_conf()
    assert process_cmd_line_options(conf, OptionsError("x"), "prog") == (
        EXIT_CODE_ARGUMENT_ERROR,
        True,
    )


def test_process_help(capsys):
    conf = make_conf(help=True)
    assert process_cmd_line_options(conf, None, "prog") == (EXIT_CODE_SUCCESS, True)
    assert capsys.readouterr().out == format_usage("prog")


def test_process_version(capsys):
    conf = make_conf(version=True)
    assert process_cmd_line_options(conf, None, "prog") == (EXIT_CODE_SUCCESS, True)
    assert capsys.readouterr().out == f"dnsproxy version {version()}\n"


def test_process_continue(capsys):
    conf = make_conf()
    assert process_cmd_line_options(conf, None, "prog") == (EXIT_CODE_SUCCESS, False)
    assert capsys.readouterr().out == ""