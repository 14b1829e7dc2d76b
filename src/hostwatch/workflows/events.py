"""Event bus between the page/document collaborator and the collector.

Events are queued and dispatched one at a time; each event type has exactly
one registered handler, and a handler (sync or async) runs to completion
before the next event is taken off the queue. Dispatchers sharing one bus
(the `serve` task, a final `run_until_idle`) take turns under a lock.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Type, Union

from .records import Source

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NavigationEvent:
    """The active page started loading ``url``."""

    url: str


@dataclass(frozen=True)
class RequestEvent:
    """An outgoing request to ``url`` was observed."""

    url: str
    page_url: Optional[str] = None


@dataclass(frozen=True)
class DocumentEvent:
    """A page finished loading; ``html`` is its markup."""

    html: str
    page_url: Optional[str] = None


@dataclass(frozen=True)
class MutationEvent:
    """Markup added to the live document after load."""

    html: str
    page_url: Optional[str] = None


@dataclass(frozen=True)
class CandidateEvent:
    """A raw candidate pushed from a separate scanning context."""

    candidate: str
    source: Source
    page_url: Optional[str] = None


Event = Union[NavigationEvent, RequestEvent, DocumentEvent, MutationEvent, CandidateEvent]
Handler = Callable[[Any], Union[None, Awaitable[None]]]


def event_from_dict(data: Dict[str, Any]) -> Event:
    """Decode one wire event, e.g. ``{"type": "navigation", "url": "..."}``."""

    kind = str(data.get("type") or "").lower()
    page_url = data.get("page_url")
    if kind == "navigation":
        return NavigationEvent(str(data["url"]))
    if kind == "request":
        return RequestEvent(str(data["url"]), page_url=page_url)
    if kind == "document":
        return DocumentEvent(str(data["html"]), page_url=page_url)
    if kind == "mutation":
        return MutationEvent(str(data["html"]), page_url=page_url)
    if kind == "candidate":
        return CandidateEvent(str(data["candidate"]), Source(data.get("source") or Source.CONTENT.value), page_url=page_url)
    raise ValueError(f"unknown event type: {kind!r}")


class EventBus:
    def __init__(self) -> None:
        self._handlers: Dict[type, Handler] = {}
        self._queue: Deque[Event] = deque()
        self._wakeup: Optional[asyncio.Event] = None
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self.processed = 0
        self.failed = 0

    def register(self, event_type: Type[Any], handler: Handler) -> None:
        if event_type in self._handlers:
            raise ValueError(f"handler already registered for {event_type.__name__}")
        self._handlers[event_type] = handler

    def publish(self, event: Event) -> None:
        if type(event) not in self._handlers:
            raise ValueError(f"no handler registered for {type(event).__name__}")
        self._queue.append(event)
        if self._wakeup is not None:
            self._wakeup.set()

    def __len__(self) -> int:
        return len(self._queue)

    async def dispatch_one(self) -> bool:
        """Run the handler for the oldest queued event; False when the queue is empty."""
        async with self._dispatch_lock():
            if not self._queue:
                return False
            event = self._queue.popleft()
            handler = self._handlers[type(event)]
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                self.failed += 1
                logger.exception("handler for %s failed", type(event).__name__)
            self.processed += 1
            return True

    def _dispatch_lock(self) -> asyncio.Lock:
        # one lock per event loop; the bus may outlive an asyncio.run()
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def run_until_idle(self) -> int:
        """Dispatch queued events (including ones published meanwhile) until none remain."""
        count = 0
        while await self.dispatch_one():
            count += 1
        return count

    async def serve(self) -> None:
        """Dispatch forever, sleeping while the queue is empty. Cancel to stop."""
        self._wakeup = asyncio.Event()
        try:
            while True:
                await self.run_until_idle()
                self._wakeup.clear()
                if not self._queue:
                    await self._wakeup.wait()
        finally:
            self._wakeup = None
