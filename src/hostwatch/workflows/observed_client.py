"""Decorator that reports every outbound request target before performing it."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from .http_client import HttpClient, HttpResponse
from .records import Source

Reporter = Callable[[str, Source], None]


class ObservedClient:
    """Wraps an ``HttpClient``; each request's URL goes to ``report`` first.

    ``source`` tags what kind of call this client stands for (``Fetch`` for
    fetch-style calls, ``AJAX`` for XHR-style calls, ``URL`` for plain page
    loads).
    """

    def __init__(self, inner: HttpClient, report: Reporter, source: Source = Source.FETCH) -> None:
        self.inner = inner
        self.report = report
        self.source = source

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        self.report(url, self.source)
        return await self.inner.request(method, url, json=json, headers=headers, timeout=timeout)
