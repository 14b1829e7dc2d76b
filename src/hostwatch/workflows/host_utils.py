"""Hostname helpers: normalization, validation, session scoping."""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlsplit

from .harvest_config import CONTENT_EXTENSIONS, CONTENT_URL_HINTS, DEFAULT_SCHEME

RE_IPV4_LITERAL = re.compile(r"^[0-9]+\.[0-9]+\.[0-9]+\.[0-9]+$")
RE_STRICT_HOST = re.compile(
    r"^(?:[a-zA-Z0-9](?:[a-zA-Z0-9\-]*[a-zA-Z0-9])?\.)+[a-zA-Z]{2,}$"
)

# Code points a URL parser refuses inside a host
_FORBIDDEN_HOST_CHARS = frozenset(" \t\n\r#%/:<>?@[\\]^|\"'`{}")


def normalize_host(candidate: str, origin: Optional[str] = None) -> Optional[str]:
    """Resolve a candidate string to its canonical hostname, or ``None``.

    Path-relative candidates (leading ``/``) are resolved against ``origin``;
    candidates without a scheme separator get ``https://``. Parse failures are
    local: the caller only ever sees ``None``.
    """

    raw = (candidate or "").strip()
    if not raw:
        return None
    if raw.startswith("/"):
        if not origin:
            return None
        url = origin.rstrip("/") + raw
    elif "://" not in raw:
        url = DEFAULT_SCHEME + raw
    else:
        url = raw
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    if any(ch in _FORBIDDEN_HOST_CHARS for ch in host):
        return None
    if not host.isascii():
        try:
            host = host.encode("idna").decode("ascii")
        except UnicodeError:
            return None
    return host


def is_valid_host(host: Optional[str], strict: bool = False) -> bool:
    """Return True when ``host`` looks like a real hostname.

    Base rules: contains a dot, no leading/trailing dot, not a dotted-quad IPv4
    literal, longer than three characters. ``strict`` additionally requires an
    anchored ``label(.label)*.tld`` shape.
    """

    if not host:
        return False
    if "." not in host:
        return False
    if host.startswith(".") or host.endswith("."):
        return False
    if RE_IPV4_LITERAL.match(host):
        return False
    if len(host) <= 3:
        return False
    if strict and not RE_STRICT_HOST.match(host):
        return False
    return True


def registrable_domain(url: str) -> Optional[str]:
    """Top two labels of the URL's host; scopes one collection session."""

    try:
        host = urlsplit((url or "").strip()).hostname
    except ValueError:
        return None
    if not host:
        return None
    return ".".join(host.split(".")[-2:])


def page_origin(url: str) -> Optional[str]:
    """``scheme://netloc`` of a page URL, used to resolve path-relative references."""

    try:
        parts = urlsplit((url or "").strip())
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def should_analyze_content(url: str) -> bool:
    """True for request targets whose bodies are worth scanning (scripts, markup, APIs)."""

    lowered = (url or "").lower()
    if any(ext in lowered for ext in CONTENT_EXTENSIONS):
        return True
    return any(hint in (url or "") for hint in CONTENT_URL_HINTS)


def sanity_check() -> None:
    assert normalize_host("api.example.com") == "api.example.com"
    assert normalize_host("/path", "https://www.example.com") == "www.example.com"
    assert normalize_host("/path") is None
    assert is_valid_host("api.example.com")
    assert not is_valid_host("192.168.1.1")
    assert registrable_domain("https://a.b.example.com/x") == "example.com"


sanity_check()

__all__ = [
    "normalize_host",
    "is_valid_host",
    "registrable_domain",
    "page_origin",
    "should_analyze_content",
    "sanity_check",
]
