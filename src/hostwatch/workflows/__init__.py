"""High-level exports for the hostwatch workflows."""

from .collector import Collector, build_collector
from .dedup_store import DedupStore
from .events import CandidateEvent, DocumentEvent, EventBus, MutationEvent, NavigationEvent, RequestEvent
from .export import build_export, summarize
from .harvest_config import HarvestSettings, load_settings
from .host_utils import is_valid_host, normalize_host, registrable_domain
from .patterns import extract_hosts, scan_text
from .records import RecordState, Source, SubdomainRecord
from .sink_client import SinkClient, SyncError, SyncProtocolError, SyncTransportError
from .storage import JsonFileStore, MemoryStore
from .sync_queue import SyncOutcome, SyncQueue, SyncWorker

__all__ = [
    "Collector",
    "build_collector",
    "DedupStore",
    "EventBus",
    "NavigationEvent",
    "RequestEvent",
    "DocumentEvent",
    "MutationEvent",
    "CandidateEvent",
    "build_export",
    "summarize",
    "HarvestSettings",
    "load_settings",
    "is_valid_host",
    "normalize_host",
    "registrable_domain",
    "extract_hosts",
    "scan_text",
    "RecordState",
    "Source",
    "SubdomainRecord",
    "SinkClient",
    "SyncError",
    "SyncProtocolError",
    "SyncTransportError",
    "JsonFileStore",
    "MemoryStore",
    "SyncOutcome",
    "SyncQueue",
    "SyncWorker",
]
