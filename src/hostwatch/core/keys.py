"""Shared record and storage keys to avoid magic strings across hostwatch modules."""

from __future__ import annotations

# Record keys
K_DOMAIN = "domain"
K_SOURCE = "source"
K_TIMESTAMP = "timestamp"
K_ORIGIN = "origin"
K_RETRY_COUNT = "retryCount"
K_STATE = "state"
K_FOUND_AT = "found_at"

# Persistence keys (each value is replaced wholesale on save)
K_SUBDOMAINS = "subdomains"
K_PENDING_SYNC = "pendingSync"

# Sink protocol keys
K_ACTION = "action"
K_SUCCESS = "success"
K_ADDED = "added"
K_TOTAL_REQUESTED = "total_requested"
K_ERROR = "error"
K_TOTAL_COUNT = "total_count"
