import ipaddress

import pytest

from dnsproxy.config import (
    Config,
    ConfigError,
    IniError,
    iter_ini,
    load_blacklist_file,
    load_config,
    parse_blacklist,
)
from dnsproxy.records import Rcode

VALID = (
    "[server]\n"
    "port = 5353\n"
    "\n"
    "[upstream_dns]\n"
    "ipaddress = 8.8.8.8\n"
    "port = 53\n"
    "\n"
    "[blacklisted]\n"
    "response = NOERROR\n"
    "response_ip = 10.0.0.1\n"
    "response_ipv6 = ::1\n"
    "file_with_domains = blacklisted.txt\n"
)


def _write(tmp_path, body, domains="ads.example.com\ntracker.example.com\n"):
    (tmp_path / "blacklisted.txt").write_text(domains)
    path = tmp_path / "config.ini"
    path.write_text(body)
    return path


# iter_ini


def test_iter_ini_sections_and_values():
    entries = list(iter_ini("[a]\nx = 1\ny: two\n[b]\nz=3\n"))
    assert entries == [
        ("a", "x", "1", 2),
        ("a", "y", "two", 3),
        ("b", "z", "3", 5),
    ]


def test_iter_ini_setting_before_any_section_has_empty_section():
    assert list(iter_ini("key = value\n")) == [("", "key", "value", 1)]


def test_iter_ini_skips_comments_and_blank_lines():
    text = "; comment\n# other\n\n[s]\n  ; indented comment\nk = v\n"
    assert list(iter_ini(text)) == [("s", "k", "v", 6)]


def test_iter_ini_inline_comment_needs_preceding_space():
    entries = list(iter_ini("[s]\na = one # note\nb = x#y\n"))
    assert entries == [("s", "a", "one", 2), ("s", "b", "x#y", 3)]


def test_iter_ini_continuation_line_repeats_name():
    entries = list(iter_ini("[s]\nk = first\n   second\n"))
    assert entries == [("s", "k", "first", 2), ("s", "k", "second", 3)]


def test_iter_ini_strips_bom():
    assert list(iter_ini("\ufeffk = v\n")) == [("", "k", "v", 1)]


def test_iter_ini_accepts_list_of_lines():
    assert list(iter_ini(["[s]\n", "k=v"])) == [("s", "k", "v", 2)]


def test_iter_ini_section_without_bracket_raises():
    with pytest.raises(IniError) as info:
        list(iter_ini("[s]\nk = v\n[broken\n"))
    assert info.value.lineno == 3


def test_iter_ini_line_without_separator_raises():
    with pytest.raises(IniError) as info:
        list(iter_ini("[s]\nnovalue\n"))
    assert info.value.lineno == 2


def test_ini_error_is_config_error():
    with pytest.raises(ConfigError):
        list(iter_ini("garbage\n"))


# blacklist


def test_parse_blacklist_strips_line_endings_and_skips_empty():
    assert parse_blacklist("a.example.com\r\n\nb.example.com\n") == {
        "a.example.com",
        "b.example.com",
    }


def test_parse_blacklist_skips_overlong_domain():
    assert parse_blacklist("a" * 254 + "\nok.example.com\n") == {"ok.example.com"}


def test_parse_blacklist_truncates_longest_domain():
    result = parse_blacklist("b" * 253 + "\n")
    assert result == {"b" * 252}


def test_load_blacklist_file(tmp_path):
    path = tmp_path / "list.txt"
    path.write_bytes(b"x.example.com\r\ny.example.com")
    assert load_blacklist_file(path) == {"x.example.com", "y.example.com"}


def test_load_blacklist_file_missing(tmp_path):
    with pytest.raises(ConfigError):
        load_blacklist_file(tmp_path / "absent.txt")


# load_config


def test_load_config_valid(tmp_path):
    config = load_config(_write(tmp_path, VALID))
    assert config.server_port == 5353
    assert config.upstream_ip == ipaddress.IPv4Address("8.8.8.8")
    assert config.upstream_port == 53
    assert config.upstream_address == ("8.8.8.8", 53)
    assert config.blacklisted_response == Rcode.NOERROR
    assert config.blacklisted_ip_response == b"\x0a\x00\x00\x01"
    assert config.blacklisted_ipv6_response == b"\x00" * 15 + b"\x01"
    assert config.blacklisted_domains == {"ads.example.com", "tracker.example.com"}


def test_load_config_default_server_port(tmp_path):
    body = VALID.replace("[server]\nport = 5353\n", "")
    config = load_config(_write(tmp_path, body))
    assert config.server_port == 53


def test_config_defaults():
    config = Config()
    assert config.blacklist_file == "blacklisted.txt"
    assert config.blacklisted_domains == set()


def test_load_config_rcode_response_needs_no_addresses(tmp_path):
    body = (
        "[upstream_dns]\nipaddress = 1.1.1.1\nport = 53\n"
        "[blacklisted]\nresponse = NXDOMAIN\n"
    )
    config = load_config(_write(tmp_path, body))
    assert config.blacklisted_response == Rcode.NXDOMAIN
    assert config.blacklisted_ip_response is None


def test_load_config_noerror_requires_addresses(tmp_path):
    body = "[upstream_dns]\nipaddress = 1.1.1.1\nport = 53\n"
    with pytest.raises(ConfigError, match="NOERROR"):
        load_config(_write(tmp_path, body))


def test_load_config_missing_upstream_ip(tmp_path):
    body = VALID.replace("ipaddress = 8.8.8.8\n", "")
    with pytest.raises(ConfigError, match="ipaddress is required"):
        load_config(_write(tmp_path, body))


def test_load_config_non_numeric_upstream_port_is_missing(tmp_path):
    body = VALID.replace("[upstream_dns]\nipaddress = 8.8.8.8\nport = 53", "[upstream_dns]\nipaddress = 8.8.8.8\nport = abc")
    with pytest.raises(ConfigError, match="port is required"):
        load_config(_write(tmp_path, body))


@pytest.mark.parametrize(
    "old, new",
    [
        ("port = 5353", "port = 70000"),
        ("ipaddress = 8.8.8.8", "ipaddress = 8.8.8"),
        ("response = NOERROR", "response = BOGUS"),
        ("response_ip = 10.0.0.1", "response_ip = ::1"),
        ("response_ipv6 = ::1", "response_ipv6 = 10.0.0.1"),
    ],
)
def test_load_config_rejects_bad_values(tmp_path, old, new):
    with pytest.raises(ConfigError, match="Incorrect"):
        load_config(_write(tmp_path, VALID.replace(old, new)))


def test_load_config_rejects_unknown_setting(tmp_path):
    with pytest.raises(ConfigError, match="unknown setting"):
        load_config(_write(tmp_path, VALID + "[extra]\nfoo = bar\n"))


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "nowhere.ini")


def test_load_config_missing_blacklist(tmp_path):
    body = VALID.replace("blacklisted.txt", "other.txt")
    with pytest.raises(ConfigError, match="Error opening file"):
        load_config(_write(tmp_path, body))