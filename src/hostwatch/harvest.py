from __future__ import annotations

import json
import logging
import secrets
import sys
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, TextIO, Tuple

from .workflows.collector import Collector
from .workflows.events import DocumentEvent, NavigationEvent
from .workflows.page_fetch import FetchConfig, PageFetcher
from .workflows.records import Source, SubdomainRecord

logger = logging.getLogger(__name__)

SUMMARY_FILENAME = "harvest_summary.json"


def parse_manifest_lines(lines: Iterable[str]) -> List[str]:
    urls: List[str] = []
    for raw_line in lines:
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("#"):
            continue
        if any(ch.isspace() for ch in line):
            raise ValueError(f"Invalid manifest line (inline metadata not allowed): {raw_line.rstrip()}")
        urls.append(line)
    return urls


def load_manifest(path_or_dash: str, *, stdin: Optional[TextIO] = None) -> List[str]:
    if path_or_dash == "-":
        stream = stdin or sys.stdin
        return parse_manifest_lines(stream.read().splitlines())
    path = Path(path_or_dash)
    if not path.exists():
        raise FileNotFoundError(f"Manifest not found: {path}")
    return parse_manifest_lines(path.read_text(encoding="utf-8").splitlines())


def generate_run_id(now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    suffix = secrets.token_hex(3)
    return f"{stamp}_{suffix}"


def _iso(moment: datetime) -> str:
    return moment.replace(microsecond=0).isoformat().replace("+00:00", "Z")


async def harvest_urls(
    collector: Collector,
    urls: Iterable[str],
    *,
    sync: bool = False,
) -> Dict[str, Any]:
    """Visit each URL in order, the way a browser tab would, and collect hosts.

    Each visit is a navigation (which may start a new session), a page load
    through an observed client, and a document scan. Subresources found in the
    document are followed when the collector is configured to.
    """

    run_id = generate_run_id()
    started_at = datetime.now(timezone.utc)
    fetcher = PageFetcher(collector.client(Source.URL), collector.fetcher.config if collector.fetcher else FetchConfig())
    items: List[Dict[str, Any]] = []
    found: List[SubdomainRecord] = []
    listener = found.append
    collector.add_listener(listener)
    try:
        for url in urls:
            collector.bus.publish(NavigationEvent(url))
            await collector.bus.run_until_idle()
            start_index = len(found)
            result = await fetcher.fetch(url)
            page_url = result.metadata.get("final_url") or url
            if result.error is None and result.text:
                if result.is_html:
                    collector.bus.publish(DocumentEvent(result.text, page_url=page_url))
                    await collector.bus.run_until_idle()
                else:
                    collector.scan_text(result.text, Source.CONTENT, page_url)
            new_hosts = [record.domain for record in found[start_index:]]
            item = {
                "url": url,
                "final_url": page_url,
                "status": result.status,
                "content_type": result.content_type,
                "verdict": "ok" if result.ok else "failed",
                "new_hosts": new_hosts,
            }
            if result.error:
                item["error"] = result.error
            items.append(item)
            logger.info("%s: %d new hosts (status %s)", url, len(new_hosts), result.status)
    finally:
        collector.remove_listener(listener)

    sync_outcomes: List[Dict[str, Any]] = []
    if sync:
        sync_outcomes = [asdict(outcome) for outcome in await collector.worker.drain()]

    finished_at = datetime.now(timezone.utc)
    return {
        "command": "scan",
        "run_id": run_id,
        "started_at": _iso(started_at),
        "finished_at": _iso(finished_at),
        "duration_ms": int((finished_at - started_at).total_seconds() * 1000),
        "counts": {
            "total": len(items),
            "ok": sum(1 for item in items if item["verdict"] == "ok"),
            "failed": sum(1 for item in items if item["verdict"] == "failed"),
            "new_hosts": len(found),
            "pending_sync": len(collector.queue),
        },
        "items": items,
        "sync": sync_outcomes,
        "sync_totals": dict(zip(("acked", "requeued", "dropped"), summarize_outcomes(sync_outcomes))),
    }


def write_summary(summary: Dict[str, Any], out_dir: Path) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / SUMMARY_FILENAME
    path.write_text(json.dumps(summary, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    return path


def exit_code_for(summary: Dict[str, Any], *, soft_fail: bool = False) -> int:
    counts = summary.get("counts") or {}
    if soft_fail or not counts.get("failed"):
        return 0
    return 1


def summarize_outcomes(outcomes: Iterable[Dict[str, Any]]) -> Tuple[int, int, int]:
    """(acked, requeued, dropped) totals over serialized sync outcomes."""

    acked = requeued = dropped = 0
    for outcome in outcomes:
        acked += int(outcome.get("acked") or 0)
        requeued += int(outcome.get("requeued") or 0)
        dropped += int(outcome.get("dropped") or 0)
    return acked, requeued, dropped
