"""Session-scoped dedup store gating re-announcement of hostnames."""

from __future__ import annotations

import logging
from typing import Dict, List

from ..core.keys import K_SUBDOMAINS
from .records import SubdomainRecord
from .storage import KeyValueStore

logger = logging.getLogger(__name__)


class DedupStore:
    """Identity key (the domain) → first record seen for it in this session.

    The accepted set is persisted under ``subdomains`` after every insert.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._records: Dict[str, SubdomainRecord] = {}
        for item in store.get(K_SUBDOMAINS) or []:
            try:
                record = SubdomainRecord.from_dict(item)
            except (KeyError, TypeError, ValueError) as exc:
                logger.debug("skipping unreadable persisted record %r: %s", item, exc)
                continue
            self._records.setdefault(record.key, record)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def contains(self, key: str) -> bool:
        return key in self._records

    def insert(self, record: SubdomainRecord) -> bool:
        """Insert ``record`` if its key is new; return whether it was inserted."""
        if record.key in self._records:
            return False
        self._records[record.key] = record
        self._save()
        return True

    def clear_all(self) -> None:
        """End the session: forget every key and drop the persisted snapshot."""
        dropped = len(self._records)
        self._records.clear()
        self._store.remove(K_SUBDOMAINS)
        logger.info("dedup store cleared (%d hosts)", dropped)

    def records(self) -> List[SubdomainRecord]:
        return list(self._records.values())

    def _save(self) -> None:
        self._store.set(K_SUBDOMAINS, [r.to_sink() for r in self._records.values()])
