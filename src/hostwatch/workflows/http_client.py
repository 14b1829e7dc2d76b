"""Minimal async HTTP client interface and its aiohttp implementation.

Everything that talks to the network (page fetcher, sink client) goes through
``HttpClient.request`` so it can be decorated (see ``observed_client``) or
faked in tests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import aiohttp

from .harvest_config import FETCH_CONCURRENCY, FETCH_TIMEOUT_SECONDS, USER_AGENT

logger = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    url: str
    status: int
    text: str
    content_type: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class HttpClient(Protocol):
    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse: ...


class AiohttpClient:
    """``HttpClient`` over one lazily created ``aiohttp.ClientSession``.

    Raises ``aiohttp.ClientError`` / ``asyncio.TimeoutError`` on transport
    failures; non-2xx statuses are returned, not raised.
    """

    def __init__(
        self,
        *,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        concurrency: int = FETCH_CONCURRENCY,
        user_agent: str = USER_AGENT,
    ) -> None:
        self.timeout = timeout
        self.concurrency = concurrency
        self.user_agent = user_agent
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "AiohttpClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=self.concurrency)
            headers = {
                "User-Agent": self.user_agent,
                "Accept-Encoding": "gzip, deflate",
            }
            self._session = aiohttp.ClientSession(connector=connector, headers=headers)
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        session = self._ensure_session()
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.timeout)
        async with session.request(
            method,
            url,
            json=json,
            headers=headers,
            timeout=client_timeout,
        ) as resp:
            body = await resp.read()
            try:
                text = body.decode(resp.charset or "utf-8", errors="replace")
            except LookupError:
                text = body.decode("utf-8", errors="replace")
            content_type = resp.headers.get("Content-Type", "").split(";")[0].strip()
            return HttpResponse(url=str(resp.url), status=resp.status, text=text, content_type=content_type)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
