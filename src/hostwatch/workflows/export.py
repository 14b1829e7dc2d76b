"""Export document and per-source statistics over the deduplicated record set."""

from __future__ import annotations

import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from ..core.keys import K_DOMAIN, K_FOUND_AT, K_SOURCE, K_SUBDOMAINS, K_TIMESTAMP, K_TOTAL_COUNT
from .records import Source, SubdomainRecord, iso_from_ms


def unique_sorted(records: Iterable[SubdomainRecord]) -> List[SubdomainRecord]:
    """First record per domain, sorted by domain ascending."""

    seen = set()
    unique: List[SubdomainRecord] = []
    for record in records:
        if record.domain in seen:
            continue
        seen.add(record.domain)
        unique.append(record)
    unique.sort(key=lambda r: r.domain)
    return unique


def filter_by_source(records: Iterable[SubdomainRecord], source: Optional[Source]) -> List[SubdomainRecord]:
    if source is None:
        return list(records)
    return [r for r in records if r.source == source]


def build_export(records: Iterable[SubdomainRecord], now: Optional[datetime] = None) -> Dict[str, Any]:
    rows = unique_sorted(records)
    stamp = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return {
        K_TIMESTAMP: stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        K_TOTAL_COUNT: len(rows),
        K_SUBDOMAINS: [
            {
                K_DOMAIN: r.domain,
                K_SOURCE: r.source.value,
                K_FOUND_AT: iso_from_ms(r.timestamp),
            }
            for r in rows
        ],
    }


def write_export(payload: Dict[str, Any], output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    return output_path


def summarize(records: Iterable[SubdomainRecord]) -> Dict[str, Any]:
    rows = list(records)
    by_source = Counter(r.source.value for r in rows)
    return {
        "total": len(rows),
        "by_source": {source.value: by_source.get(source.value, 0) for source in Source},
    }
