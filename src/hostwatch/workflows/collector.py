"""Collector: the composition root tying scanner, dedup, queue, worker and bus together.

One ``Collector`` is built at startup (see :func:`build_collector`) and passed
by reference to whatever drives it: the CLI, the harvest runner, or an
embedding application publishing page events on ``collector.bus``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .dedup_store import DedupStore
from .events import CandidateEvent, DocumentEvent, EventBus, MutationEvent, NavigationEvent, RequestEvent
from .export import build_export, summarize
from .harvest_config import HarvestSettings
from .host_utils import is_valid_host, normalize_host, page_origin, registrable_domain, should_analyze_content
from .http_client import AiohttpClient, HttpClient
from .observed_client import ObservedClient
from .page_extract import extract_document, extract_fragment_urls
from .page_fetch import FetchConfig, PageFetcher
from .patterns import scan_text
from .records import Source, SubdomainRecord
from .sink_client import SinkClient
from .storage import KeyValueStore, open_store
from .sync_queue import SyncQueue, SyncWorker

logger = logging.getLogger(__name__)

AcceptListener = Callable[[SubdomainRecord], None]


class Collector:
    def __init__(
        self,
        *,
        dedup: DedupStore,
        queue: SyncQueue,
        worker: SyncWorker,
        bus: Optional[EventBus] = None,
        fetcher: Optional[PageFetcher] = None,
        http: Optional[HttpClient] = None,
        strict_hosts: bool = False,
        follow_subresources: bool = False,
    ) -> None:
        self.dedup = dedup
        self.queue = queue
        self.worker = worker
        self.bus = bus or EventBus()
        self.fetcher = fetcher
        self.http = http
        self.strict_hosts = strict_hosts
        self.follow_subresources = follow_subresources
        self.page_url: Optional[str] = None
        self.session_domain: Optional[str] = None
        self.accepted = 0
        self.rejected = 0
        self._listeners: List[AcceptListener] = []
        self._serve_task: Optional[asyncio.Task] = None

        self.bus.register(NavigationEvent, self.on_navigation)
        self.bus.register(RequestEvent, self.on_request)
        self.bus.register(DocumentEvent, self.on_document)
        self.bus.register(MutationEvent, self.on_mutation)
        self.bus.register(CandidateEvent, self.on_candidate)

    # -- producer side -------------------------------------------------

    def add_listener(self, listener: AcceptListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: AcceptListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    def add_host(self, host: str, source: Source, page_url: Optional[str] = None) -> bool:
        """Record an already validated host; True when it was new this session."""
        record = SubdomainRecord(domain=host, source=source, origin=page_url or self.page_url)
        if not self.dedup.insert(record):
            return False
        self.queue.enqueue(record)
        self.accepted += 1
        logger.debug("new host %s (%s)", host, source.value)
        for listener in list(self._listeners):
            listener(record)
        return True

    def _origin_for(self, page_url: Optional[str]) -> Optional[str]:
        return page_origin(page_url or self.page_url or "")

    def offer(self, candidate: str, source: Source, page_url: Optional[str] = None) -> bool:
        """Normalize and validate one raw candidate (URL, attribute value, bare host)."""
        host = normalize_host(candidate, self._origin_for(page_url))
        if host is None or not is_valid_host(host, strict=self.strict_hosts):
            self.rejected += 1
            return False
        return self.add_host(host, source, page_url)

    def scan_text(self, text: str, source: Source, page_url: Optional[str] = None) -> int:
        """Scan a text blob; return how many new hosts it contributed."""
        added = 0
        for host in scan_text(text, self._origin_for(page_url)).hosts(strict=self.strict_hosts):
            if self.add_host(host, source, page_url):
                added += 1
        return added

    def observe_url(self, url: str, source: Source) -> None:
        self.offer(url, source)

    def client(self, source: Source = Source.FETCH) -> ObservedClient:
        """HTTP client whose request targets are reported to this collector."""
        if self.http is None:
            raise RuntimeError("collector has no HTTP client configured")
        return ObservedClient(self.http, self.observe_url, source)

    # -- event handlers ------------------------------------------------

    def on_navigation(self, event: NavigationEvent) -> None:
        domain = registrable_domain(event.url)
        if domain is None:
            logger.debug("navigation to %r has no host; session unchanged", event.url)
            return
        self.page_url = event.url
        if domain != self.session_domain:
            logger.info("session domain %s -> %s", self.session_domain, domain)
            self.dedup.clear_all()
            self.session_domain = domain

    async def on_request(self, event: RequestEvent) -> None:
        self.offer(event.url, Source.URL, event.page_url)
        if self.fetcher is None or not should_analyze_content(event.url):
            return
        result = await self.fetcher.fetch(event.url)
        if result.error or not result.text:
            logger.debug("content of %s skipped: %s", event.url, result.error or "empty body")
            return
        self.scan_text(result.text, Source.CONTENT, event.page_url)

    def on_document(self, event: DocumentEvent) -> None:
        parts = extract_document(event.html, event.page_url or self.page_url)
        for url in parts.attribute_urls:
            self.offer(url, Source.HTML, event.page_url)
        for script in parts.scripts:
            self.scan_text(script, Source.JAVASCRIPT, event.page_url)
        for style in parts.styles:
            self.scan_text(style, Source.CSS, event.page_url)
        if self.follow_subresources:
            for url in parts.subresources:
                self.bus.publish(RequestEvent(url, page_url=event.page_url))

    def on_mutation(self, event: MutationEvent) -> None:
        for url in extract_fragment_urls(event.html):
            self.offer(url, Source.DYNAMIC, event.page_url)

    def on_candidate(self, event: CandidateEvent) -> None:
        self.offer(event.candidate, event.source, event.page_url)

    # -- session / reporting -------------------------------------------

    def clear_session(self) -> None:
        self.dedup.clear_all()
        self.session_domain = None

    def export(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return build_export(self.dedup.records(), now)

    def stats(self) -> Dict[str, Any]:
        report = summarize(self.dedup.records())
        report["pending_sync"] = len(self.queue)
        report["session_domain"] = self.session_domain
        return report

    # -- lifecycle -----------------------------------------------------

    def start(self) -> None:
        """Start bus dispatch and the periodic sync timer on the running loop."""
        if self._serve_task is None or self._serve_task.done():
            self._serve_task = asyncio.get_running_loop().create_task(self.bus.serve())
        self.worker.start()

    async def stop(self) -> None:
        task, self._serve_task = self._serve_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self.worker.stop()

    async def aclose(self) -> None:
        await self.stop()
        close = getattr(self.http, "close", None)
        if close is not None:
            await close()


def build_collector(
    settings: HarvestSettings,
    *,
    store: Optional[KeyValueStore] = None,
    http: Optional[HttpClient] = None,
    follow_subresources: bool = False,
) -> Collector:
    """Wire one collector from settings. Sync is disabled when no sink URL is set."""

    store = store if store is not None else open_store(settings.state_path)
    if http is None:
        http = AiohttpClient(
            timeout=settings.fetch_timeout,
            concurrency=settings.fetch_concurrency,
            user_agent=settings.user_agent,
        )
    sink = SinkClient(settings.sink_url, http, timeout=settings.sync_timeout) if settings.sink_url else None
    queue = SyncQueue(store)
    worker = SyncWorker(
        queue,
        sink,
        batch_size=settings.batch_size,
        max_retries=settings.max_retries,
        interval=settings.sync_interval,
    )
    fetcher = PageFetcher(
        http,
        FetchConfig(timeout=settings.fetch_timeout),
    )
    return Collector(
        dedup=DedupStore(store),
        queue=queue,
        worker=worker,
        fetcher=fetcher,
        http=http,
        strict_hosts=settings.strict_hosts,
        follow_subresources=follow_subresources,
    )
