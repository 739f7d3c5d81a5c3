"""Loading of the proxy configuration and the domain blacklist.

The configuration is an INI file with ``[section]`` headers, ``name = value``
(or ``name: value``) pairs, ``;``/``#`` line comments, ``#`` inline comments
after whitespace and indented continuation lines.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, Optional, Set, Tuple, Union

from .parser import parse_rcode
from .records import MAX_DOMAIN_LENGTH, DnsError, Rcode

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config.ini"
DEFAULT_BLACKLIST_FILE = "blacklisted.txt"
DEFAULT_SERVER_PORT = 53

_WHITESPACE = " \t\n\v\f\r"
_START_COMMENT_PREFIXES = ";#"
_INLINE_COMMENT_PREFIXES = "#"
_MAX_INI_LINE = 200
_MAX_SECTION = 50
_MAX_NAME = 50
_BLACKLIST_LINE = MAX_DOMAIN_LENGTH + 2
_MAX_PORT = 0xFFFF
_ATOI = re.compile(r"[ \t\n\v\f\r]*([+-]?[0-9]+)")

Lines = Union[str, Iterable[str]]


class ConfigError(Exception):
    """Raised when the configuration or the blacklist cannot be loaded."""


class IniError(ConfigError):
    """Raised for a malformed line in an INI document."""

    def __init__(self, lineno: int, message: str) -> None:
        super().__init__(f"line {lineno}: {message}")
        self.lineno = lineno


@dataclass
class Config:
    """Settings of the proxy."""

    server_port: int = DEFAULT_SERVER_PORT
    upstream_ip: ipaddress.IPv4Address = ipaddress.IPv4Address(0)
    upstream_port: int = 0
    blacklisted_response: Rcode = Rcode.NOERROR
    blacklisted_ip_response: Optional[bytes] = None
    blacklisted_ipv6_response: Optional[bytes] = None
    blacklist_file: str = DEFAULT_BLACKLIST_FILE
    blacklisted_domains: Set[str] = field(default_factory=set)

    @property
    def upstream_address(self) -> Tuple[str, int]:
        """The upstream resolver as a ``(host, port)`` socket address."""
        return str(self.upstream_ip), self.upstream_port


def _split_newlines(text: str) -> Iterator[str]:
    parts = text.split("\n")
    for part in parts[:-1]:
        yield part + "\n"
    if parts[-1]:
        yield parts[-1]


def _chunked(lines: Lines, size: int) -> Iterator[str]:
    """Yield lines as a reader with a fixed buffer of ``size`` characters would."""
    source = _split_newlines(lines) if isinstance(lines, str) else lines
    for line in source:
        for start in range(0, len(line), size):
            yield line[start : start + size]


def _find_chars_or_comment(text: str, chars: Optional[str]) -> int:
    was_space = False
    for index, char in enumerate(text):
        if (chars and char in chars) or (
            was_space and char in _INLINE_COMMENT_PREFIXES
        ):
            return index
        was_space = char in _WHITESPACE
    return len(text)


def iter_ini(lines: Lines) -> Iterator[Tuple[str, str, str, int]]:
    """Yield ``(section, name, value, lineno)`` for every setting in ``lines``.

    ``lines`` is a string or an iterable of lines. Raises :class:`IniError`
    at the first line that is neither a comment, a section header, a
    setting nor a continuation.
    """
    section = ""
    prev_name = ""
    for lineno, line in enumerate(_chunked(lines, _MAX_INI_LINE - 1), 1):
        offset = 1 if lineno == 1 and line.startswith("\ufeff") else 0
        body = line[offset:]
        stripped_left = body.lstrip(_WHITESPACE)
        indented = offset + len(body) - len(stripped_left) > 0
        start = stripped_left.rstrip(_WHITESPACE)

        if not start or start[0] in _START_COMMENT_PREFIXES:
            continue
        if prev_name and indented:
            end = _find_chars_or_comment(start, None)
            yield section, prev_name, start[:end].rstrip(_WHITESPACE), lineno
        elif start[0] == "[":
            rest = start[1:]
            end = _find_chars_or_comment(rest, "]")
            if end < len(rest) and rest[end] == "]":
                section = rest[:end][: _MAX_SECTION - 1]
                prev_name = ""
            else:
                raise IniError(lineno, "no ']' found on section line")
        else:
            end = _find_chars_or_comment(start, "=:")
            if end < len(start) and start[end] in "=:":
                name = start[:end].rstrip(_WHITESPACE)
                value = start[end + 1 :]
                value = value[: _find_chars_or_comment(value, None)]
                value = value.strip(_WHITESPACE)
                prev_name = name[: _MAX_NAME - 1]
                yield section, name, value, lineno
            else:
                raise IniError(lineno, "no '=' or ':' found on setting line")


def parse_blacklist(lines: Lines) -> Set[str]:
    """Return the set of domains listed one per line in ``lines``.

    Empty lines are skipped, and so are lines longer than the longest
    domain name.
    """
    domains: Set[str] = set()
    for chunk in _chunked(lines, _BLACKLIST_LINE - 1):
        domain = re.split(r"[\r\n]", chunk, maxsplit=1)[0]
        if not domain:
            continue
        if len(domain) > MAX_DOMAIN_LENGTH:
            logger.warning(
                "Domain '%s' exceeds max length of %d characters",
                domain,
                MAX_DOMAIN_LENGTH,
            )
            continue
        domains.add(domain[: MAX_DOMAIN_LENGTH - 1])
    return domains


def _read_lines(path: Path) -> Iterator[str]:
    with path.open("rb") as stream:
        for raw in stream:
            yield raw.decode("utf-8", errors="replace")


def load_blacklist_file(path: Union[str, Path]) -> Set[str]:
    """Read a blacklist file; raise :class:`ConfigError` if it cannot be opened."""
    path = Path(path)
    try:
        return parse_blacklist(_read_lines(path))
    except OSError as exc:
        raise ConfigError(f"Error opening file '{path}': {exc}") from exc


def _atoi(value: str) -> int:
    match = _ATOI.match(value)
    return int(match.group(1)) if match else 0


def _parse_port(value: str) -> int:
    port = _atoi(value)
    if port < 0 or port > _MAX_PORT:
        raise ValueError(f"port out of range: {port}")
    return port


def _parse_ipv4(value: str) -> ipaddress.IPv4Address:
    return ipaddress.IPv4Address(value)


def _parse_ipv6(value: str) -> ipaddress.IPv6Address:
    if "%" in value:
        raise ValueError("scoped IPv6 addresses are not accepted")
    return ipaddress.IPv6Address(value)


def _set_server_port(config: Config, value: str) -> None:
    config.server_port = _parse_port(value)


def _set_upstream_ip(config: Config, value: str) -> None:
    config.upstream_ip = _parse_ipv4(value)


def _set_upstream_port(config: Config, value: str) -> None:
    config.upstream_port = _parse_port(value)


def _set_response(config: Config, value: str) -> None:
    config.blacklisted_response = parse_rcode(value)


def _set_response_ip(config: Config, value: str) -> None:
    config.blacklisted_ip_response = None
    config.blacklisted_ip_response = _parse_ipv4(value).packed


def _set_response_ipv6(config: Config, value: str) -> None:
    config.blacklisted_ipv6_response = None
    config.blacklisted_ipv6_response = _parse_ipv6(value).packed


def _set_blacklist_file(config: Config, value: str) -> None:
    config.blacklist_file = value


_SETTINGS: Dict[Tuple[str, str], Callable[[Config, str], None]] = {
    ("server", "port"): _set_server_port,
    ("upstream_dns", "ipaddress"): _set_upstream_ip,
    ("upstream_dns", "port"): _set_upstream_port,
    ("blacklisted", "response"): _set_response,
    ("blacklisted", "response_ip"): _set_response_ip,
    ("blacklisted", "response_ipv6"): _set_response_ipv6,
    ("blacklisted", "file_with_domains"): _set_blacklist_file,
}


def _apply(config: Config, section: str, name: str, value: str, lineno: int) -> None:
    setter = _SETTINGS.get((section, name))
    if setter is None:
        raise ConfigError(f"line {lineno}: unknown setting [{section}] -> {name}")
    try:
        setter(config, value)
    except (ValueError, DnsError) as exc:
        raise ConfigError(f"Incorrect [{section}] -> {name}: {value}") from exc


def _log_summary(config: Config) -> None:
    logger.info("Config successfully loaded")
    logger.info("Upstream destination: %s:%d", config.upstream_ip, config.upstream_port)
    logger.info("Blacklisted response: %d", int(config.blacklisted_response))
    if config.blacklisted_response == Rcode.NOERROR and config.blacklisted_ip_response:
        logger.info(
            "Blacklisted response ip: %s",
            ipaddress.IPv4Address(config.blacklisted_ip_response),
        )
    logger.info("Blacklisted domains: %s", ", ".join(sorted(config.blacklisted_domains)))


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_FILE) -> Config:
    """Read the configuration at ``path`` together with its blacklist.

    A relative blacklist path is taken relative to the configuration file's
    directory. Raises :class:`ConfigError` on any problem.
    """
    path = Path(path)
    config = Config()
    try:
        lines = list(_read_lines(path))
    except OSError as exc:
        raise ConfigError(f"Can't read config file '{path}': {exc}") from exc

    for section, name, value, lineno in iter_ini(lines):
        _apply(config, section, name, value, lineno)

    if int(config.upstream_ip) == 0:
        raise ConfigError("[upstream_dns] -> ipaddress is required")
    if config.upstream_port == 0:
        raise ConfigError("[upstream_dns] -> port is required")
    if config.blacklisted_response == Rcode.NOERROR and (
        config.blacklisted_ip_response is None
        or config.blacklisted_ipv6_response is None
    ):
        raise ConfigError(
            "if [blacklisted] -> response = NOERROR, need setup "
            "[blacklisted] -> response_ip and [blacklisted] -> response_ipv6"
        )

    blacklist_path = Path(config.blacklist_file)
    if not blacklist_path.is_absolute():
        blacklist_path = path.parent / blacklist_path
    config.blacklisted_domains = load_blacklist_file(blacklist_path)

    _log_summary(config)
    return config