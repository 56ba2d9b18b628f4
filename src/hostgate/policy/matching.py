"""
Wildcard matching and identifier normalization.

Patterns use ``*`` for "zero or more characters" (dots included), every
other character is literal, and matching is case-insensitive and anchored
to the whole string. ``172.16.*`` matches ``172.16.0.5`` but not
``172.160.0.5``; ``*.example.com`` matches ``a.b.example.com`` but not
``example.com``.

Normalization never resolves DNS: blocking is pattern-based on the host
the caller supplied. IP literals are rewritten to their canonical form first
(``127.1``, ``2130706433`` and ``0x7f.0.0.1`` all become ``127.0.0.1``;
``0:0:0:0:0:0:0:1`` becomes ``::1``) so alternate spellings cannot slip past
the IP patterns. A trailing root dot is dropped.
"""

import ipaddress
import re
import socket
from functools import lru_cache
from typing import Iterable
from urllib.parse import urlparse


@lru_cache(maxsize=1024)
def _compile(pattern: str) -> re.Pattern[str]:
    regex = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.compile(regex, re.IGNORECASE | re.DOTALL)


def matches_pattern(value: str, pattern: str) -> bool:
    """Check if ``value`` matches a wildcard ``pattern`` (anchored)."""
    return _compile(pattern).fullmatch(value) is not None


def first_match(value: str, patterns: Iterable[str]) -> str | None:
    """Return the first pattern that matches ``value``, or None."""
    for pattern in patterns:
        if matches_pattern(value, pattern):
            return pattern
    return None


def matches_any(value: str, patterns: Iterable[str]) -> bool:
    """Check if ``value`` matches any of ``patterns``."""
    return first_match(value, patterns) is not None


# Numeric IPv4 shorthand: 1 to 4 decimal, octal or hex parts
_LEGACY_IPV4 = re.compile(r"(?:0x[0-9a-f]*|\d+)(?:\.(?:0x[0-9a-f]*|\d+)){0,3}")


def canonicalize_host(host: str) -> str:
    """
    Rewrite an IP-literal host to its canonical text form.

    Non-IP hosts are returned lower-cased without a trailing dot.

    Examples:
        127.1 -> 127.0.0.1
        0x7f.0.0.1 -> 127.0.0.1
        0:0:0:0:0:0:0:1 -> ::1
        LocalHost. -> localhost
    """
    host = host.lower()
    if host.endswith(".") and host != ".":
        host = host[:-1]

    candidate = host[1:-1] if host.startswith("[") and host.endswith("]") else host
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        pass

    if _LEGACY_IPV4.fullmatch(host):
        try:
            return str(ipaddress.IPv4Address(socket.inet_aton(host)))
        except OSError:
            # Out-of-range part, not an address
            pass
    return host


def normalize_domain(raw: str) -> str:
    """
    Reduce a URL or host string to a canonical domain.

    Examples:
        https://API.GitHub.com/users -> api.github.com
        http://[::1]:8080/ -> ::1
        http://127.1/ -> 127.0.0.1
        Example.COM -> example.com
    """
    text = raw.strip()
    try:
        parsed = urlparse(text)
        if parsed.scheme and parsed.netloc and parsed.hostname:
            return canonicalize_host(parsed.hostname)
    except ValueError:
        # Malformed netloc (e.g. an unterminated IPv6 bracket)
        pass
    return canonicalize_host(text)


def normalize_command(raw: str) -> str:
    """
    Reduce a command invocation to its executable basename.

    Examples:
        /usr/bin/curl -s https://x -> curl
        C:\\Tools\\YT-DLP.exe -> yt-dlp.exe
    """
    parts = raw.split()
    if not parts:
        return ""
    return re.split(r"[\\/]", parts[0])[-1].lower()
