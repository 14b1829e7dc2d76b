"""Hostwatch defaults (sink, batching, extraction scope, paths) and env-driven settings.

Centralizes static defaults so the collector and worker have no embedded magic
numbers. ``load_settings()`` overlays environment variables on top of them;
callers can also build a :class:`HarvestSettings` directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Sink / sync
SINK_ACTION_ADD = "add_subdomains"
BATCH_SIZE = 50
SYNC_INTERVAL_SECONDS = 30.0
SYNC_TIMEOUT_SECONDS = 20.0
MAX_RETRIES = 3

# Normalizer
DEFAULT_SCHEME = "https://"

# Attributes that carry URLs in page markup
URL_ATTRIBUTES = ("href", "src", "action", "data-url")

# Requests whose response bodies are worth scanning for more hosts
CONTENT_EXTENSIONS = (".js", ".html", ".htm", ".css", ".json", ".xml")
CONTENT_URL_HINTS = ("api", "ajax")

# Page fetching
FETCH_CONCURRENCY = 8
FETCH_TIMEOUT_SECONDS = 20.0
FETCH_MAX_ATTEMPTS = 2
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

# Paths (working-directory relative)
STATE_PATH = Path("run") / "hostwatch_state.json"


def _env_int(name: str, default: int) -> int:
    try:
        raw = os.getenv(name, "")
        return int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        raw = os.getenv(name, "")
        return float(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _env_bool(name: str, default: str = "0") -> bool:
    raw = os.getenv(name, default)
    return str(raw).strip().lower() not in {"0", "false", "no", "off", ""}


@dataclass
class HarvestSettings:
    """Runtime configuration for one collector instance."""

    sink_url: Optional[str] = None
    batch_size: int = BATCH_SIZE
    sync_interval: float = SYNC_INTERVAL_SECONDS
    sync_timeout: float = SYNC_TIMEOUT_SECONDS
    max_retries: int = MAX_RETRIES
    state_path: Optional[Path] = STATE_PATH
    strict_hosts: bool = False
    fetch_concurrency: int = FETCH_CONCURRENCY
    fetch_timeout: float = FETCH_TIMEOUT_SECONDS
    user_agent: str = USER_AGENT


def load_settings(*, dotenv: bool = True) -> HarvestSettings:
    """Build settings from ``HOSTWATCH_*`` environment variables (and ``.env``)."""

    if dotenv:
        load_dotenv(override=False)
    sink_url = (os.getenv("HOSTWATCH_SINK_URL") or "").strip() or None
    state_raw = (os.getenv("HOSTWATCH_STATE_PATH") or "").strip()
    return HarvestSettings(
        sink_url=sink_url,
        batch_size=max(1, _env_int("HOSTWATCH_BATCH_SIZE", BATCH_SIZE)),
        sync_interval=max(0.1, _env_float("HOSTWATCH_SYNC_INTERVAL", SYNC_INTERVAL_SECONDS)),
        sync_timeout=max(0.1, _env_float("HOSTWATCH_SYNC_TIMEOUT", SYNC_TIMEOUT_SECONDS)),
        max_retries=max(0, _env_int("HOSTWATCH_MAX_RETRIES", MAX_RETRIES)),
        state_path=Path(state_raw) if state_raw else STATE_PATH,
        strict_hosts=_env_bool("HOSTWATCH_STRICT_HOSTS", "0"),
        fetch_concurrency=max(1, _env_int("HOSTWATCH_FETCH_CONCURRENCY", FETCH_CONCURRENCY)),
        fetch_timeout=max(0.1, _env_float("HOSTWATCH_FETCH_TIMEOUT", FETCH_TIMEOUT_SECONDS)),
    )
