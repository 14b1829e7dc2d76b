"""Async page/content fetcher with retry and backoff; failures come back as results."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlparse

import aiohttp

from .harvest_config import FETCH_MAX_ATTEMPTS, FETCH_TIMEOUT_SECONDS
from .http_client import HttpClient

logger = logging.getLogger(__name__)


@dataclass
class FetchConfig:
    """Configuration parameters for asynchronous page/content fetching."""

    timeout: float = FETCH_TIMEOUT_SECONDS
    max_attempts: int = FETCH_MAX_ATTEMPTS
    backoff_initial: float = 0.5
    backoff_max: float = 4.0


@dataclass
class FetchResult:
    """Container for a single fetch attempt."""

    url: str
    domain: str
    status: int
    content_type: str
    text: str
    fetched_at: str
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.error is None and 200 <= self.status < 300

    @property
    def is_html(self) -> bool:
        ctype = (self.content_type or "").lower()
        if "html" in ctype:
            return True
        return not ctype and self.text.lstrip()[:15].lower().startswith(("<!doctype html", "<html"))


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class PageFetcher:
    """Async fetcher with retry/backoff. Parallelism is bounded by the HTTP
    client's connection pool.

    Fetch failures never raise: they come back as a ``FetchResult`` with
    ``status=-1`` and ``error`` set, so one unreachable source does not stop a
    scan.
    """

    def __init__(self, http: HttpClient, config: Optional[FetchConfig] = None) -> None:
        self.http = http
        self.config = config or FetchConfig()

    async def fetch(self, url: str) -> FetchResult:
        domain = (urlparse(url).hostname or "").lower()
        try:
            status, content_type, text, final_url = await self._fetch_with_retries(url)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as exc:
            logger.debug("fetch failed for %s: %s", url, exc)
            return FetchResult(
                url=url,
                domain=domain,
                status=-1,
                content_type="",
                text="",
                fetched_at=_now_iso(),
                error=f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__,
            )
        metadata: Dict[str, Any] = {}
        if final_url and final_url != url:
            metadata["final_url"] = final_url
        return FetchResult(
            url=url,
            domain=domain,
            status=status,
            content_type=content_type,
            text=text,
            fetched_at=_now_iso(),
            metadata=metadata,
        )

    async def _fetch_with_retries(self, url: str) -> Tuple[int, str, str, str]:
        delay = self.config.backoff_initial
        for attempt in range(1, self.config.max_attempts + 1):
            try:
                resp = await self.http.request("GET", url, timeout=self.config.timeout)
                return resp.status, resp.content_type, resp.text, resp.url
            except (aiohttp.ClientError, asyncio.TimeoutError):
                if attempt == self.config.max_attempts:
                    raise
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.config.backoff_max)
        raise RuntimeError("unexpected retry state")
