"""Subdomain record model shared by the dedup store, sync queue, and export."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

from ..core.keys import K_DOMAIN, K_ORIGIN, K_RETRY_COUNT, K_SOURCE, K_STATE, K_TIMESTAMP


class Source(str, Enum):
    """Where a hostname was observed."""

    URL = "URL"
    CONTENT = "Content"
    HTML = "HTML"
    JAVASCRIPT = "JavaScript"
    CSS = "CSS"
    FETCH = "Fetch"
    AJAX = "AJAX"
    DYNAMIC = "Dynamic"
    TEST = "Test"


class RecordState(str, Enum):
    NEW = "NEW"
    PENDING = "PENDING"
    IN_FLIGHT = "IN_FLIGHT"
    ACKED = "ACKED"
    DROPPED = "DROPPED"


def now_ms() -> int:
    return int(time.time() * 1000)


def iso_from_ms(timestamp_ms: int) -> str:
    """Millisecond-precision UTC ISO-8601 with a ``Z`` suffix."""

    seconds, millis = divmod(int(timestamp_ms), 1000)
    stamp = datetime.fromtimestamp(seconds, tz=timezone.utc) + timedelta(milliseconds=millis)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class SubdomainRecord:
    """One accepted hostname awaiting (or past) delivery to the sink."""

    domain: str
    source: Source
    timestamp: int = field(default_factory=now_ms)
    origin: Optional[str] = None
    retry_count: int = 0
    state: RecordState = RecordState.NEW

    @property
    def key(self) -> str:
        """Identity key in the dedup store: the domain alone."""
        return self.domain

    def to_sink(self) -> Dict[str, Any]:
        return {
            K_DOMAIN: self.domain,
            K_SOURCE: self.source.value,
            K_TIMESTAMP: self.timestamp,
            K_ORIGIN: self.origin,
        }

    def to_dict(self) -> Dict[str, Any]:
        payload = self.to_sink()
        payload[K_RETRY_COUNT] = self.retry_count
        payload[K_STATE] = self.state.value
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubdomainRecord":
        try:
            source = Source(data.get(K_SOURCE) or Source.URL.value)
        except ValueError:
            source = Source.URL
        try:
            state = RecordState(data.get(K_STATE) or RecordState.PENDING.value)
        except ValueError:
            state = RecordState.PENDING
        return cls(
            domain=str(data[K_DOMAIN]),
            source=source,
            timestamp=int(data.get(K_TIMESTAMP) or now_ms()),
            origin=data.get(K_ORIGIN),
            retry_count=max(0, int(data.get(K_RETRY_COUNT) or 0)),
            state=state,
        )
