"""In-process row-level change feed.

Committed inserts, updates and deletes are published here by the capture hooks
in ``app.core.database``. Listeners bind to ``(table, event mask, equality
filter)`` and receive matching events, in commit order, on the asyncio loop
that created them.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum, Flag, auto
from typing import Any

from app.core.errors import TransportError

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class EventMask(Flag):
    INSERT = auto()
    UPDATE = auto()
    DELETE = auto()
    ALL = INSERT | UPDATE | DELETE

    def accepts(self, kind: EventKind) -> bool:
        return bool(self & EventMask[kind.value])


@dataclass(frozen=True)
class ChangeEvent:
    event_kind: EventKind
    table: str
    old: dict[str, Any] | None
    new: dict[str, Any] | None

    @property
    def record(self) -> dict[str, Any]:
        return self.new if self.new is not None else (self.old or {})


@dataclass(frozen=True)
class Binding:
    table: str
    mask: EventMask = EventMask.ALL
    column: str | None = None  # equality filter, e.g. conversation_id
    value: Any = None

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table or not self.mask.accepts(event.event_kind):
            return False
        if self.column is None:
            return True
        return event.record.get(self.column) == self.value


# Queue sentinels
_CLOSED = object()
_DROPPED = object()


class Listener:
    """One live connection to the feed. Created and consumed on a single loop."""

    def __init__(self, feed: "ChangeFeed", bindings: list[Binding], loop: asyncio.AbstractEventLoop):
        self._feed = feed
        self.bindings = bindings
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def matches(self, event: ChangeEvent) -> bool:
        return any(b.matches(event) for b in self.bindings)

    def deliver(self, item: Any) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, item)

    async def get(self) -> ChangeEvent:
        """Wait for the next event. Raises StopAsyncIteration once closed."""
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if item is _DROPPED:
            self.closed = True
            raise TransportError("Change feed connection dropped")
        return item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._feed.remove(self)
        self._queue.put_nowait(_CLOSED)


class ChangeFeed:
    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def listen(self, bindings: list[Binding]) -> Listener:
        """Open a listener on the running loop. Observes events from now on."""
        listener = Listener(self, bindings, asyncio.get_running_loop())
        with self._lock:
            self._listeners.append(listener)
        logger.debug(f"Feed listener opened ({len(bindings)} bindings)")
        return listener

    def remove(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def publish(self, events: list[ChangeEvent]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for event in events:
            for listener in listeners:
                if not listener.matches(event):
                    continue
                try:
                    listener.deliver(event)
                except RuntimeError:
                    # Owning loop is gone
                    logger.warning("Removing feed listener whose event loop is closed")
                    self.remove(listener)

    def close(self) -> None:
        """Drop every listener. Consumers see a TransportError."""
        with self._lock:
            listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener.deliver(_DROPPED)
            except RuntimeError:
                pass
        if listeners:
            logger.info(f"Change feed closed, dropped {len(listeners)} listeners")


feed = ChangeFeed()
