from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from .harvest import exit_code_for, harvest_urls, load_manifest, write_summary
from .workflows.collector import Collector, build_collector
from .workflows.doctor import build_doctor_report, format_doctor_report
from .workflows.events import event_from_dict
from .workflows.export import filter_by_source, unique_sorted, write_export
from .workflows.harvest_config import HarvestSettings, load_settings
from .workflows.records import Source, now_ms

logger = logging.getLogger(__name__)

app = typer.Typer(add_help_option=False, no_args_is_help=False)


def _minimal_help() -> str:
    return """Hostwatch (hostname discovery + sink sync)

Usage:
  hostwatch scan <urls.txt|-> [--out <DIR>] [--json] [--sync] [--no-follow] [--soft-fail]
  hostwatch scan-text <file|-> [--source <SOURCE>] [--page-url <URL>]
  hostwatch serve
  hostwatch sync [--all]
  hostwatch list [--source <SOURCE>]
  hostwatch stats
  hostwatch export [--out <FILE>]
  hostwatch clear
  hostwatch doctor

Discoverability:
  --help-full     Expanded help + env vars + state keys.
  --find <query>  Search commands, flags, env vars.
  --doctor        Run environment diagnostics and exit.
  --verbose, -v   Debug logging on stderr.
"""


def _help_full() -> str:
    return """Hostwatch CLI

Commands:
  scan        Visit each URL in a line-based manifest and collect referenced hosts.
  scan-text   Scan a local text blob (file or stdin).
  serve       Read JSON-line page events from stdin; sync on a timer.
  sync        Send queued hosts to the sink (one batch, or --all).
  list        Print hosts collected in the current session.
  stats       Per-source counts and sync backlog (JSON).
  export      Write the export document (subdomains_<epoch-ms>.json).
  clear       End the session: forget collected hosts.
  doctor      Print environment and sink diagnostics.

Sources:
  URL, Content, HTML, JavaScript, CSS, Fetch, AJAX, Dynamic, Test

State (HOSTWATCH_STATE_PATH, one JSON document):
  subdomains    Hosts accepted in the current session.
  pendingSync   Records not yet confirmed by the sink (in-flight first).

Important env vars:
  HOSTWATCH_SINK_URL           Sink endpoint; sync is disabled when unset.
  HOSTWATCH_BATCH_SIZE         Records per POST (default 50).
  HOSTWATCH_SYNC_INTERVAL      Seconds between timer syncs (default 30).
  HOSTWATCH_SYNC_TIMEOUT       Sink request timeout in seconds (default 20).
  HOSTWATCH_MAX_RETRIES        Failed attempts before a record is dropped (default 3).
  HOSTWATCH_STATE_PATH         State file (default run/hostwatch_state.json).
  HOSTWATCH_STRICT_HOSTS       Require label(.label)*.tld hostnames (default 0).
  HOSTWATCH_FETCH_CONCURRENCY  Parallel page/content fetches (default 8).
  HOSTWATCH_FETCH_TIMEOUT      Page/content fetch timeout in seconds (default 20).
"""


_FIND_INDEX = [
    ("command", "scan", "Visit manifest URLs and collect hosts."),
    ("command", "scan-text", "Scan a local text blob."),
    ("command", "serve", "Read JSON-line page events from stdin."),
    ("command", "sync", "Send queued hosts to the sink."),
    ("command", "list", "Print collected hosts."),
    ("command", "stats", "Per-source counts and sync backlog."),
    ("command", "export", "Write the export document."),
    ("command", "clear", "Forget collected hosts."),
    ("command", "doctor", "Print environment and sink diagnostics."),
    ("flag", "--out", "Summary directory (scan) or export file (export)."),
    ("flag", "--json", "Print summary JSON to stdout."),
    ("flag", "--sync", "Drain the sync queue after scanning."),
    ("flag", "--follow", "Fetch external scripts/stylesheets and scan them."),
    ("flag", "--soft-fail", "Exit 0 even if some pages fail."),
    ("flag", "--source", "Source tag (scan-text) or filter (list)."),
    ("flag", "--page-url", "Page a text blob came from."),
    ("flag", "--all", "Sync until the queue is empty or a batch fails."),
    ("env", "HOSTWATCH_SINK_URL", "Sink endpoint."),
    ("env", "HOSTWATCH_BATCH_SIZE", "Records per POST."),
    ("env", "HOSTWATCH_SYNC_INTERVAL", "Seconds between timer syncs."),
    ("env", "HOSTWATCH_SYNC_TIMEOUT", "Sink request timeout."),
    ("env", "HOSTWATCH_MAX_RETRIES", "Attempts before a record is dropped."),
    ("env", "HOSTWATCH_STATE_PATH", "State file path."),
    ("env", "HOSTWATCH_STRICT_HOSTS", "Strict hostname shape."),
    ("env", "HOSTWATCH_FETCH_CONCURRENCY", "Parallel fetches."),
    ("env", "HOSTWATCH_FETCH_TIMEOUT", "Fetch timeout."),
]


def _run_find(query: str) -> str:
    needle = (query or "").strip().lower()
    if not needle:
        return ""
    lines = []
    for category, name, desc in _FIND_INDEX:
        haystack = f"{category} {name} {desc}".lower()
        if needle in haystack:
            lines.append(f"{category} {name} - {desc}")
    return "\n".join(lines)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    help: bool = typer.Option(False, "--help", "-h", is_eager=True, help="Show minimal help."),
    help_full: bool = typer.Option(False, "--help-full", is_eager=True, help="Show expanded help."),
    find: Optional[str] = typer.Option(None, "--find", is_eager=True, help="Search commands, flags, env vars."),
    doctor: bool = typer.Option(False, "--doctor", is_eager=True, help="Run environment diagnostics and exit."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging on stderr."),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if help_full:
        typer.echo(_help_full())
        raise typer.Exit(code=0)
    if find is not None:
        output = _run_find(find)
        if output:
            typer.echo(output)
        raise typer.Exit(code=0)
    if doctor:
        report = build_doctor_report()
        typer.echo(format_doctor_report(report))
        raise typer.Exit(code=0 if report.get("ok", True) else 2)
    if help or ctx.invoked_subcommand is None:
        typer.echo(_minimal_help())
        raise typer.Exit(code=0)


def _settings() -> HarvestSettings:
    return load_settings()


async def _with_collector(settings: HarvestSettings, work, **kwargs: Any) -> Any:
    collector = build_collector(settings, **kwargs)
    try:
        return await work(collector)
    finally:
        await collector.aclose()


def _echo_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False) + "\n")


@app.command("scan", add_help_option=True)
def scan_cmd(
    path_or_dash: str = typer.Argument(..., help="Manifest of page URLs, one per line, or '-' for stdin."),
    out: Optional[Path] = typer.Option(None, "--out", help="Write harvest_summary.json into this directory."),
    sync: bool = typer.Option(False, "--sync", help="Drain the sync queue after scanning."),
    follow: bool = typer.Option(True, "--follow/--no-follow", help="Fetch external scripts/stylesheets and scan them."),
    json_out: bool = typer.Option(False, "--json", help="Print the summary JSON to stdout."),
    soft_fail: bool = typer.Option(False, "--soft-fail", help="Exit 0 even if some pages fail."),
) -> None:
    """Visit each page in a manifest and collect the hosts it references."""
    try:
        urls = load_manifest(path_or_dash)
    except Exception as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)
    settings = _settings()
    try:
        summary = asyncio.run(
            _with_collector(settings, lambda c: harvest_urls(c, urls, sync=sync), follow_subresources=follow)
        )
    except Exception as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)
    if out is not None:
        write_summary(summary, out)
    if json_out:
        _echo_json(summary)
    else:
        counts = summary["counts"]
        typer.echo(
            f"pages={counts['total']} ok={counts['ok']} failed={counts['failed']} "
            f"new_hosts={counts['new_hosts']} pending_sync={counts['pending_sync']}"
        )
        if sync:
            totals = summary["sync_totals"]
            typer.echo(f"synced acked={totals['acked']} requeued={totals['requeued']} dropped={totals['dropped']}")
    raise typer.Exit(code=exit_code_for(summary, soft_fail=soft_fail))


@app.command("scan-text", add_help_option=True)
def scan_text_cmd(
    path_or_dash: str = typer.Argument(..., help="Text file to scan, or '-' for stdin."),
    source: Source = typer.Option(Source.CONTENT, "--source", help="Source tag for discoveries."),
    page_url: Optional[str] = typer.Option(None, "--page-url", help="Page the text came from (resolves /relative refs)."),
) -> None:
    """Scan a local text blob for hostnames."""
    try:
        if path_or_dash == "-":
            text = sys.stdin.read()
        else:
            text = Path(path_or_dash).read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=2)

    async def _work(collector: Collector) -> int:
        return collector.scan_text(text, source, page_url)

    added = asyncio.run(_with_collector(_settings(), _work))
    typer.echo(f"new_hosts={added}")


@app.command("sync", add_help_option=True)
def sync_cmd(
    drain: bool = typer.Option(False, "--all", help="Keep sending batches until the queue is empty or a batch fails."),
) -> None:
    """Manually trigger delivery of queued hosts to the sink."""
    settings = _settings()
    if not settings.sink_url:
        typer.echo("error: HOSTWATCH_SINK_URL is not set", err=True)
        raise typer.Exit(code=2)

    async def _work(collector: Collector) -> List[Dict[str, Any]]:
        if drain:
            outcomes = await collector.worker.drain()
        else:
            outcomes = [await collector.worker.trigger()]
        return [asdict(o) for o in outcomes]

    try:
        outcomes = asyncio.run(_with_collector(settings, _work))
    except Exception as exc:
        typer.echo(f"fatal: {exc}", err=True)
        raise typer.Exit(code=3)
    _echo_json(outcomes)
    failed = any(o.get("status") == "failed" for o in outcomes)
    raise typer.Exit(code=1 if failed else 0)


@app.command("serve", add_help_option=True)
def serve_cmd() -> None:
    """Read JSON-line page events from stdin; sync on the configured interval."""
    settings = _settings()

    async def _work(collector: Collector) -> None:
        collector.start()
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            try:
                collector.bus.publish(event_from_dict(json.loads(line)))
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("ignoring bad event line: %s", exc)
        # waits for the serve task's current handler, then drains the rest
        await collector.bus.run_until_idle()

    asyncio.run(_with_collector(settings, _work))


@app.command("list", add_help_option=True)
def list_cmd(
    source: Optional[Source] = typer.Option(None, "--source", help="Only hosts first seen from this source."),
) -> None:
    """Print the hosts collected in the current session, sorted."""

    async def _work(collector: Collector) -> None:
        rows = unique_sorted(filter_by_source(collector.dedup.records(), source))
        if not rows:
            typer.echo("No subdomains found", err=True)
            return
        for record in rows:
            typer.echo(f"{record.domain}\t{record.source.value}")

    asyncio.run(_with_collector(_settings(), _work))


@app.command("stats", add_help_option=True)
def stats_cmd() -> None:
    """Print per-source counts and the sync backlog."""

    async def _work(collector: Collector) -> Dict[str, Any]:
        return collector.stats()

    _echo_json(asyncio.run(_with_collector(_settings(), _work)))


@app.command("export", add_help_option=True)
def export_cmd(
    out: Optional[Path] = typer.Option(None, "--out", help="Output file (default: subdomains_<epoch-ms>.json)."),
) -> None:
    """Write the deduplicated host list as a JSON export document."""

    async def _work(collector: Collector) -> Dict[str, Any]:
        return collector.export()

    payload = asyncio.run(_with_collector(_settings(), _work))
    if not payload["subdomains"]:
        typer.echo("No subdomains to export", err=True)
        raise typer.Exit(code=1)
    target = out or Path(f"subdomains_{now_ms()}.json")
    write_export(payload, target)
    typer.echo(f"exported {payload['total_count']} hosts -> {target}")


@app.command("clear", add_help_option=True)
def clear_cmd() -> None:
    """End the current session: forget every collected host."""

    async def _work(collector: Collector) -> None:
        collector.clear_session()

    asyncio.run(_with_collector(_settings(), _work))
    typer.echo("cleared")


@app.command("doctor", add_help_option=True)
def doctor_cmd() -> None:
    """Print environment and sink diagnostics."""
    report = build_doctor_report(_settings())
    typer.echo(format_doctor_report(report))
    raise typer.Exit(code=0 if report.get("ok", True) else 2)


if __name__ == "__main__":
    app()
