import asyncio
import re
from datetime import datetime, timezone

import aiohttp

from hostwatch.workflows.collector import Collector, build_collector
from hostwatch.workflows.dedup_store import DedupStore
from hostwatch.workflows.events import CandidateEvent, DocumentEvent, MutationEvent, NavigationEvent, RequestEvent
from hostwatch.workflows.harvest_config import HarvestSettings
from hostwatch.workflows.http_client import HttpResponse
from hostwatch.workflows.page_fetch import FetchConfig, PageFetcher
from hostwatch.workflows.records import Source
from hostwatch.workflows.storage import MemoryStore
from hostwatch.workflows.sync_queue import SyncQueue, SyncWorker

PAGE = "https://www.example.com/index.html"


class RoutedHttp:
    def __init__(self, routes=None):
        self.routes = routes or {}
        self.calls = []

    async def request(self, method, url, *, json=None, headers=None, timeout=None):
        self.calls.append(url)
        reply = self.routes.get(url)
        if reply is None:
            return HttpResponse(url=url, status=404, text="")
        if isinstance(reply, BaseException):
            raise reply
        return reply


def _collector(routes=None, **kwargs):
    store = MemoryStore()
    http = RoutedHttp(routes)
    queue = SyncQueue(store)
    collector = Collector(
        dedup=DedupStore(store),
        queue=queue,
        worker=SyncWorker(queue, None),
        fetcher=PageFetcher(http, FetchConfig(max_attempts=1)),
        http=http,
        **kwargs,
    )
    return collector, http


def _run(collector, *events):
    for event in events:
        collector.bus.publish(event)
    asyncio.run(collector.bus.run_until_idle())


def _sources(collector):
    return {r.domain: r.source for r in collector.dedup.records()}


def test_navigation_clears_session_only_when_registrable_domain_changes():
    collector, _ = _collector()
    _run(collector, NavigationEvent("https://www.example.com/"))
    collector.offer("api.example.net", Source.URL)
    _run(collector, NavigationEvent("https://shop.example.com/cart"))
    assert "api.example.net" in collector.dedup
    assert collector.session_domain == "example.com"

    _run(collector, NavigationEvent("https://other.org/"))
    assert len(collector.dedup) == 0
    assert collector.session_domain == "other.org"
    assert len(collector.queue) == 1


def test_navigation_without_host_keeps_session():
    collector, _ = _collector()
    _run(collector, NavigationEvent("https://www.example.com/"))
    collector.offer("api.example.net", Source.URL)
    _run(collector, NavigationEvent("about:blank"))
    assert collector.session_domain == "example.com"
    assert "api.example.net" in collector.dedup


def test_document_scan_tags_each_part():
    html = """
    <html><head>
      <style>body { background: url(https://img.example.org/bg) }</style>
      <script>var endpoint = "js.example.net";</script>
    </head><body>
      <a href="https://a.example.com/x">a</a>
      <form action="/submit"></form>
    </body></html>
    """
    collector, _ = _collector()
    _run(collector, NavigationEvent(PAGE), DocumentEvent(html, page_url=PAGE))
    assert _sources(collector) == {
        "a.example.com": Source.HTML,
        "www.example.com": Source.HTML,
        "js.example.net": Source.JAVASCRIPT,
        "img.example.org": Source.CSS,
    }
    assert [r.domain for r in collector.queue.pending()] == [
        "a.example.com",
        "www.example.com",
        "js.example.net",
        "img.example.org",
    ]


def test_mutation_and_candidate_events():
    collector, _ = _collector()
    _run(
        collector,
        NavigationEvent(PAGE),
        MutationEvent('<div><img src="https://late.example.com/p"></div>', page_url=PAGE),
        CandidateEvent("xhr.example.com", Source.AJAX, page_url=PAGE),
        CandidateEvent("localhost", Source.AJAX, page_url=PAGE),
    )
    assert _sources(collector) == {"late.example.com": Source.DYNAMIC, "xhr.example.com": Source.AJAX}
    assert collector.rejected == 1


def test_duplicate_hosts_are_announced_once():
    collector, _ = _collector()
    announced = []
    collector.add_listener(announced.append)
    assert collector.offer("https://a.example.com/1", Source.URL)
    assert not collector.offer("https://a.example.com/2", Source.CSS)
    assert collector.scan_text("a.example.com b.example.com", Source.CONTENT) == 1
    assert [r.domain for r in announced] == ["a.example.com", "b.example.com"]
    assert len(collector.queue) == len(collector.dedup) == 2


def test_observed_client_reports_before_requesting():
    collector, http = _collector({"https://api.example.com/v1": HttpResponse("https://api.example.com/v1", 200, "{}")})
    _run(collector, NavigationEvent(PAGE))
    response = asyncio.run(collector.client(Source.FETCH).request("GET", "https://api.example.com/v1"))
    assert response.ok
    assert http.calls == ["https://api.example.com/v1"]
    assert _sources(collector) == {"api.example.com": Source.FETCH}


def test_request_for_script_scans_its_body():
    script = "fetch('https://hidden.example.com/api/v2')"
    collector, http = _collector({"https://cdn.example.com/app.js": HttpResponse("https://cdn.example.com/app.js", 200, script)})
    _run(collector, NavigationEvent(PAGE), RequestEvent("https://cdn.example.com/app.js", page_url=PAGE))
    assert _sources(collector) == {"cdn.example.com": Source.URL, "hidden.example.com": Source.CONTENT}
    assert http.calls == ["https://cdn.example.com/app.js"]


def test_request_content_fetch_failure_is_skipped():
    collector, _ = _collector({"https://cdn.example.com/app.js": aiohttp.ClientConnectionError("refused")})
    _run(collector, NavigationEvent(PAGE), RequestEvent("https://cdn.example.com/app.js", page_url=PAGE))
    assert _sources(collector) == {"cdn.example.com": Source.URL}
    assert collector.bus.failed == 0


def test_request_for_image_is_not_fetched():
    collector, http = _collector()
    _run(collector, NavigationEvent(PAGE), RequestEvent("https://img.example.com/logo.png", page_url=PAGE))
    assert http.calls == []
    assert _sources(collector) == {"img.example.com": Source.URL}


def test_subresources_are_followed_when_enabled():
    html = '<html><head><script src="/static/app.js"></script></head><body></body></html>'
    routes = {
        "https://www.example.com/static/app.js": HttpResponse(
            "https://www.example.com/static/app.js", 200, "var api = 'api.example.io';"
        )
    }
    collector, http = _collector(routes, follow_subresources=True)
    _run(collector, NavigationEvent(PAGE), DocumentEvent(html, page_url=PAGE))
    assert http.calls == ["https://www.example.com/static/app.js"]
    assert _sources(collector) == {"www.example.com": Source.HTML, "api.example.io": Source.CONTENT}


def test_export_matches_dedup_contents():
    collector, _ = _collector()
    for host in ["b.example.com", "a.example.com", "c.example.com"]:
        collector.offer(host, Source.TEST)
    payload = collector.export(datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
    assert payload["timestamp"] == "2026-01-02T03:04:05.000Z"
    assert payload["total_count"] == len(collector.dedup) == 3
    assert [row["domain"] for row in payload["subdomains"]] == ["a.example.com", "b.example.com", "c.example.com"]
    for row in payload["subdomains"]:
        assert row["source"] == "Test"
        assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$", row["found_at"])


def test_stats_counts_by_source():
    collector, _ = _collector()
    collector.offer("a.example.com", Source.HTML)
    collector.offer("b.example.com", Source.HTML)
    collector.offer("c.example.com", Source.CSS)
    stats = collector.stats()
    assert stats["total"] == 3
    assert stats["by_source"]["HTML"] == 2
    assert stats["by_source"]["CSS"] == 1
    assert stats["by_source"]["Dynamic"] == 0
    assert stats["pending_sync"] == 3


def test_build_collector_without_sink_disables_sync():
    settings = HarvestSettings(sink_url=None, state_path=None)
    collector = build_collector(settings, http=RoutedHttp())
    collector.offer("a.example.com", Source.TEST)
    outcome = asyncio.run(collector.worker.trigger())
    assert outcome.status == "disabled"
    assert len(collector.queue) == 1
