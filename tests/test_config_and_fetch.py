import asyncio
from pathlib import Path

import aiohttp

from hostwatch.workflows import harvest_config
from hostwatch.workflows.harvest_config import load_settings
from hostwatch.workflows.http_client import HttpResponse
from hostwatch.workflows.page_extract import extract_document, subresource_urls, _soup
from hostwatch.workflows.page_fetch import FetchConfig, PageFetcher


def _clear_env(monkeypatch):
    for name in [
        "HOSTWATCH_SINK_URL",
        "HOSTWATCH_BATCH_SIZE",
        "HOSTWATCH_SYNC_INTERVAL",
        "HOSTWATCH_SYNC_TIMEOUT",
        "HOSTWATCH_MAX_RETRIES",
        "HOSTWATCH_STATE_PATH",
        "HOSTWATCH_STRICT_HOSTS",
        "HOSTWATCH_FETCH_CONCURRENCY",
        "HOSTWATCH_FETCH_TIMEOUT",
    ]:
        monkeypatch.delenv(name, raising=False)


def test_load_settings_defaults(monkeypatch):
    _clear_env(monkeypatch)
    settings = load_settings(dotenv=False)
    assert settings.sink_url is None
    assert settings.batch_size == 50
    assert settings.sync_interval == 30.0
    assert settings.sync_timeout == 20.0
    assert settings.max_retries == 3
    assert settings.state_path == harvest_config.STATE_PATH
    assert settings.strict_hosts is False


def test_load_settings_reads_environment(monkeypatch, tmp_path: Path):
    _clear_env(monkeypatch)
    monkeypatch.setenv("HOSTWATCH_SINK_URL", " https://sink.example.com/exec ")
    monkeypatch.setenv("HOSTWATCH_BATCH_SIZE", "10")
    monkeypatch.setenv("HOSTWATCH_MAX_RETRIES", "not-a-number")
    monkeypatch.setenv("HOSTWATCH_STATE_PATH", str(tmp_path / "s.json"))
    monkeypatch.setenv("HOSTWATCH_STRICT_HOSTS", "yes")
    settings = load_settings(dotenv=False)
    assert settings.sink_url == "https://sink.example.com/exec"
    assert settings.batch_size == 10
    assert settings.max_retries == 3
    assert settings.state_path == tmp_path / "s.json"
    assert settings.strict_hosts is True


class FlakyHttp:
    def __init__(self, failures, response):
        self.failures = failures
        self.response = response
        self.calls = 0

    async def request(self, method, url, *, json=None, headers=None, timeout=None):
        self.calls += 1
        if self.calls <= self.failures:
            raise aiohttp.ClientConnectionError("reset")
        return self.response


def test_fetch_retries_then_succeeds():
    http = FlakyHttp(1, HttpResponse("https://example.com/final", 200, "<html></html>", "text/html"))
    fetcher = PageFetcher(http, FetchConfig(max_attempts=2, backoff_initial=0.0))
    result = asyncio.run(fetcher.fetch("https://example.com/"))
    assert http.calls == 2
    assert result.ok
    assert result.is_html
    assert result.metadata["final_url"] == "https://example.com/final"


def test_fetch_failure_is_reported_not_raised():
    http = FlakyHttp(5, HttpResponse("u", 200, ""))
    fetcher = PageFetcher(http, FetchConfig(max_attempts=2, backoff_initial=0.0))
    result = asyncio.run(fetcher.fetch("https://example.com/"))
    assert result.status == -1
    assert "ClientConnectionError" in result.error
    assert not result.ok
    assert result.domain == "example.com"


def test_extract_document_collects_attribute_urls_and_inline_code():
    html = """
    <html><head>
      <link rel="stylesheet" href="/css/site.css">
      <script src="https://cdn.example.com/lib.js"></script>
      <script>init("api.example.com")</script>
      <style>.x { color: red }</style>
    </head><body>
      <div data-url="https://feed.example.com/rss"></div>
      <img src="data:image/png;base64,AAAA">
    </body></html>
    """
    parts = extract_document(html, "https://www.example.com/page")
    assert parts.attribute_urls == [
        "/css/site.css",
        "https://cdn.example.com/lib.js",
        "https://feed.example.com/rss",
        "data:image/png;base64,AAAA",
    ]
    assert parts.scripts == ['init("api.example.com")']
    assert parts.styles == [".x { color: red }"]
    assert parts.subresources == ["https://cdn.example.com/lib.js", "https://www.example.com/css/site.css"]


def test_subresource_urls_need_a_base():
    assert subresource_urls(_soup('<script src="/a.js"></script>'), None) == []
