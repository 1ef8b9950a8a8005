"""
Event Bus - typed notifications about subagent and compaction activity.

The reporter and the compactor emit Pydantic events; a single dispatcher task
hands each one, in emission order, to every subscriber whose fnmatch pattern
matches its ``event_type``. ``emit()`` never blocks and handler failures are
logged, so a slow or broken subscriber cannot stall a running fleet.

    async with EventBus() as bus:
        bus.subscribe("subagent.*", print)
        ...
"""

from __future__ import annotations

import asyncio
import fnmatch
import re
import uuid
from typing import Any, Awaitable, Callable, Literal, Optional, Union

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

EventHandler = Callable[["ExtensionEvent"], Union[None, Awaitable[None]]]

# "FleetCompleted" -> ["Fleet", "Completed"], "NDJSONFrame" -> ["NDJSON", "Frame"]
_CAMEL_SPLIT_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z]|\d|\b)|[A-Z][a-z]*")


class ExtensionEvent(BaseModel):
    """Base class for every event on the bus.

    ``event_type`` is derived from the class name when not given:
    ``SubagentCompletedEvent`` becomes ``subagent.completed``.
    """

    event_type: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.event_type:
            name = type(self).__name__.removesuffix("Event")
            parts = _CAMEL_SPLIT_RE.findall(name)
            self.event_type = ".".join(p.lower() for p in parts) if parts else name.lower()


class EventBus:
    """Queue-backed fan-out with wildcard subscriptions ("subagent.*", "*")."""

    def __init__(self, max_queue_size: int = 1000, drain_timeout: float = 5.0) -> None:
        self._queue: asyncio.Queue[ExtensionEvent] = asyncio.Queue(maxsize=max_queue_size)
        self._handlers: dict[str, tuple[str, EventHandler]] = {}
        self._dispatcher: Optional[asyncio.Task[None]] = None
        self._drain_timeout = drain_timeout

    async def __aenter__(self) -> "EventBus":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    @property
    def is_running(self) -> bool:
        return self._dispatcher is not None

    async def start(self) -> None:
        if self._dispatcher is None:
            self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="event-bus-dispatcher")

    async def stop(self) -> None:
        """Deliver everything already queued, then stop the dispatcher."""
        if self._dispatcher is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self._drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("event_bus.drain_timeout", pending=self._queue.qsize())
        self._dispatcher.cancel()
        try:
            await self._dispatcher
        except asyncio.CancelledError:
            pass
        self._dispatcher = None

    def subscribe(self, pattern: str, handler: EventHandler) -> str:
        """Call *handler* for every event whose type matches *pattern*; returns an id."""
        sub_id = uuid.uuid4().hex[:12]
        self._handlers[sub_id] = (pattern, handler)
        return sub_id

    def unsubscribe(self, subscription_id: str) -> None:
        self._handlers.pop(subscription_id, None)

    def emit(self, event: ExtensionEvent) -> None:
        """Enqueue without blocking. A full queue drops the event with a warning."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("event_bus.queue_full", event_type=event.event_type, dropped=True)

    async def _dispatch_loop(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                for pattern, handler in list(self._handlers.values()):
                    if fnmatch.fnmatchcase(event.event_type, pattern):
                        await self._invoke(pattern, handler, event)
            finally:
                self._queue.task_done()

    @staticmethod
    async def _invoke(pattern: str, handler: EventHandler, event: ExtensionEvent) -> None:
        try:
            result = handler(event)
            if asyncio.iscoroutine(result) or asyncio.isfuture(result):
                await result
        except Exception:
            logger.error("event_bus.handler_error", pattern=pattern, event_type=event.event_type, exc_info=True)


# ---------------------------------------------------------------------------
# Event definitions
# ---------------------------------------------------------------------------


class SubagentUpdatedEvent(ExtensionEvent):
    """A running subagent produced new output or usage."""

    index: int
    model: str
    turns: int
    output_preview: str = ""


class SubagentCompletedEvent(ExtensionEvent):
    """A subagent process exited (successfully or not)."""

    index: int
    model: str
    exit_code: int
    stop_reason: Optional[str] = None
    is_error: bool = False


class FleetCompletedEvent(ExtensionEvent):
    """Every task of one tool invocation is done."""

    mode: Literal["single", "parallel"]
    total: int
    succeeded: int
    failed: int
    cost: float = 0.0


class CompactionCompletedEvent(ExtensionEvent):
    """A handoff summary replaced the default compaction."""

    messages_summarized: int
    tokens_before: int
    summary_chars: int
