"""Pattern scanner: finds hostname-shaped substrings in arbitrary text.

Four independent pattern families run over the same blob and their outputs
are unioned. Overlap between families is expected; dedup happens downstream.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterator, Optional, Pattern, Set, Tuple

from .host_utils import is_valid_host, normalize_host

logger = logging.getLogger(__name__)

_LABEL = r"[a-zA-Z0-9](?:[a-zA-Z0-9\-]*[a-zA-Z0-9])?"
_DOTTED = rf"(?:{_LABEL}\.)+[a-zA-Z]{{2,}}"

# (a) scheme://host
RE_SCHEME_HOST = re.compile(rf"[a-zA-Z][a-zA-Z0-9+\-]*://{_DOTTED}")
# (b) bare dotted labels, not glued to identifier characters on either side;
#     a trailing dot is allowed only when nothing label-like follows it
RE_BARE_HOST = re.compile(
    rf"(?<![a-zA-Z0-9_\-.%])({_DOTTED})(?![a-zA-Z0-9_\-]|\.[a-zA-Z0-9])"
)
# (c) quoted literal
RE_QUOTED_HOST = re.compile(rf"[\"']({_DOTTED})[\"']")
# (d) URL-encoded "//" marker
RE_ENCODED_HOST = re.compile(rf"(?i:%2F%2F)({_DOTTED})")

# (pattern, capture group holding the candidate)
PATTERN_FAMILIES: Tuple[Tuple[str, Pattern[str], int], ...] = (
    ("scheme", RE_SCHEME_HOST, 0),
    ("bare", RE_BARE_HOST, 1),
    ("quoted", RE_QUOTED_HOST, 1),
    ("encoded", RE_ENCODED_HOST, 1),
)


def iter_candidates(text: str) -> Iterator[str]:
    """Yield every candidate string from every pattern family, in family order."""

    if not text:
        return
    for _name, pattern, group in PATTERN_FAMILIES:
        for match in pattern.finditer(text):
            candidate = match.group(group)
            if candidate:
                yield candidate


@dataclass(frozen=True)
class HostScan:
    """Lazy, restartable scan of one text blob.

    Iterating yields raw candidates; :meth:`hosts` runs them through the
    normalizer and validator.
    """

    text: str
    origin: Optional[str] = None

    def __iter__(self) -> Iterator[str]:
        return iter_candidates(self.text)

    def hosts(self, strict: bool = False) -> Iterator[str]:
        """Yield accepted canonical hostnames (may repeat across families)."""

        for candidate in self:
            host = normalize_host(candidate, self.origin)
            if host is None:
                logger.debug("candidate %r did not parse", candidate)
                continue
            if is_valid_host(host, strict=strict):
                yield host


def scan_text(text: str, origin: Optional[str] = None) -> HostScan:
    return HostScan(text or "", origin)


def extract_hosts(text: str, origin: Optional[str] = None, strict: bool = False) -> Set[str]:
    """Set of accepted hostnames referenced anywhere in ``text``."""

    return set(scan_text(text, origin).hosts(strict=strict))


__all__ = [
    "PATTERN_FAMILIES",
    "HostScan",
    "iter_candidates",
    "scan_text",
    "extract_hosts",
]
