"""Remote sink protocol: batch POSTs of discovered hosts and reply parsing.

Request::

    {"action": "add_subdomains", "subdomains": [{domain, source, timestamp, origin}, ...]}

Success reply::

    {"success": true, "added": int, "total_requested": int, "timestamp": str}

Anything else (transport error, timeout, non-2xx, unparseable body,
``success: false``) is raised as a :class:`SyncError` subclass.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
import requests

from ..core.keys import K_ACTION, K_ADDED, K_ERROR, K_SUBDOMAINS, K_SUCCESS, K_TIMESTAMP, K_TOTAL_REQUESTED
from .harvest_config import SINK_ACTION_ADD, SYNC_TIMEOUT_SECONDS
from .http_client import HttpClient
from .records import SubdomainRecord

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """Base class for sink delivery failures."""


class SyncTransportError(SyncError):
    """Network error, timeout, or non-2xx response."""


class SyncProtocolError(SyncError):
    """Reply body missing, malformed, or reporting ``success: false``."""


@dataclass(frozen=True)
class SinkReply:
    added: int
    total_requested: int
    timestamp: Optional[str] = None


def build_payload(records: Sequence[SubdomainRecord]) -> Dict[str, Any]:
    return {
        K_ACTION: SINK_ACTION_ADD,
        K_SUBDOMAINS: [record.to_sink() for record in records],
    }


def _as_count(value: Any, name: str) -> int:
    # bool is an int subclass; a JSON true is not a count
    if isinstance(value, bool) or not isinstance(value, int):
        raise SyncProtocolError(f"sink reply field {name!r} is not an integer: {value!r}")
    if value < 0:
        raise SyncProtocolError(f"sink reply field {name!r} is negative: {value}")
    return value


def parse_reply(text: str) -> SinkReply:
    """Parse a 2xx reply body into a :class:`SinkReply`."""

    try:
        data = json.loads(text)
    except (TypeError, ValueError) as exc:
        raise SyncProtocolError(f"sink reply is not JSON: {(text or '')[:200]!r}") from exc
    if not isinstance(data, dict):
        raise SyncProtocolError(f"sink reply is not an object: {type(data).__name__}")
    if data.get(K_SUCCESS) is not True:
        raise SyncProtocolError(f"sink rejected batch: {data.get(K_ERROR) or 'unknown error'}")
    added = _as_count(data.get(K_ADDED), K_ADDED)
    total = _as_count(data.get(K_TOTAL_REQUESTED), K_TOTAL_REQUESTED)
    stamp = data.get(K_TIMESTAMP)
    return SinkReply(added=added, total_requested=total, timestamp=str(stamp) if stamp is not None else None)


class SinkClient:
    """Sends one batch per call to the append-only sink endpoint."""

    def __init__(self, endpoint: str, http: HttpClient, *, timeout: float = SYNC_TIMEOUT_SECONDS) -> None:
        self.endpoint = endpoint
        self.http = http
        self.timeout = timeout

    async def add_subdomains(self, records: Sequence[SubdomainRecord]) -> SinkReply:
        payload = build_payload(records)
        try:
            resp = await self.http.request("POST", self.endpoint, json=payload, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise SyncTransportError(f"sink request timed out after {self.timeout:.1f}s") from exc
        except (aiohttp.ClientError, OSError) as exc:
            raise SyncTransportError(f"sink request failed: {exc}") from exc
        if not resp.ok:
            raise SyncTransportError(f"sink returned HTTP {resp.status}: {(resp.text or '')[:200]}")
        return parse_reply(resp.text)


def ping_sink(endpoint: str, *, timeout: float = 10.0) -> Dict[str, Any]:
    """GET the sink's status endpoint. Used by diagnostics, never by the sync path."""

    report: Dict[str, Any] = {"endpoint": endpoint, "ok": False}
    try:
        resp = requests.get(endpoint, timeout=timeout)
    except requests.RequestException as exc:
        report["error"] = str(exc)
        return report
    report["status"] = resp.status_code
    report["ok"] = resp.ok
    try:
        report["body"] = resp.json()
    except ValueError:
        report["body"] = resp.text[:200]
    return report


__all__: List[str] = [
    "SyncError",
    "SyncTransportError",
    "SyncProtocolError",
    "SinkReply",
    "SinkClient",
    "build_payload",
    "parse_reply",
    "ping_sink",
]
