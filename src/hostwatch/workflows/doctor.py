from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..core.keys import K_PENDING_SYNC, K_SUBDOMAINS
from .harvest_config import HarvestSettings, load_settings
from .sink_client import ping_sink
from .storage import JsonFileStore


def redact_value(value: str, keep: int = 12) -> str:
    """Sink URLs embed deployment ids; show only both ends."""

    raw = (value or "").strip()
    if not raw:
        return ""
    if len(raw) <= keep * 2:
        return raw
    return f"{raw[:keep]}...{raw[-keep:]}"


def _check_writable(path: Path) -> bool:
    try:
        if path.exists():
            return os.access(path, os.W_OK)
        parent = path.parent if str(path.parent) else Path(".")
        while not parent.exists():
            if parent == parent.parent:
                return False
            parent = parent.parent
        return os.access(parent, os.W_OK)
    except Exception:
        return False


def build_doctor_report(
    settings: Optional[HarvestSettings] = None,
    *,
    ping: Optional[Callable[[str], Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    settings = settings or load_settings()
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
        value: Optional[str] = None,
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        if value is not None:
            entry["value"] = value
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    sink_url = settings.sink_url
    add_check(
        "HOSTWATCH_SINK_URL",
        bool(sink_url),
        detail="sync enabled" if sink_url else "sync disabled; discoveries stay queued locally",
        remedy="Set HOSTWATCH_SINK_URL to the deployed sink endpoint.",
        value=redact_value(sink_url) if sink_url else None,
    )

    if sink_url:
        probe = (ping or ping_sink)(sink_url)
        detail = f"HTTP {probe.get('status')}" if probe.get("status") is not None else probe.get("error")
        add_check(
            "sink_reachable",
            bool(probe.get("ok")),
            detail=detail,
            remedy="Check the endpoint URL and that the sink deployment accepts anonymous requests.",
        )

    state_path = settings.state_path
    if state_path is None:
        add_check("HOSTWATCH_STATE_PATH", True, detail="in-memory state (nothing survives a restart)", level="info")
    else:
        add_check(
            "HOSTWATCH_STATE_PATH",
            _check_writable(Path(state_path)),
            detail=str(state_path),
            remedy="Create the state directory or point HOSTWATCH_STATE_PATH at a writable location.",
        )
        if Path(state_path).exists():
            store = JsonFileStore(Path(state_path))
            pending = len(store.get(K_PENDING_SYNC) or [])
            accepted = len(store.get(K_SUBDOMAINS) or [])
            add_check(
                "state_snapshot",
                True,
                detail=f"{accepted} hosts in session, {pending} pending sync",
                level="info",
            )

    add_check(
        "settings",
        True,
        detail=(
            f"batch_size={settings.batch_size} interval={settings.sync_interval:g}s "
            f"timeout={settings.sync_timeout:g}s max_retries={settings.max_retries} "
            f"strict_hosts={settings.strict_hosts}"
        ),
        level="info",
    )
    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("hostwatch doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        detail = check.get("detail")
        value = check.get("value")
        label = f"{name}: {status}"
        if value:
            label = f"{label} ({value})"
        lines.append(f"- [{level}] {label}")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy and status != "ok":
            lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"
