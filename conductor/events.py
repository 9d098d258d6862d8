"""
Event Bus — lifecycle notifications for workers, jobs and workflows.

Typed event bus for decoupled publication of orchestration activity.
Events are Pydantic models emitted onto an asyncio.Queue-backed dispatcher
that fans out to pattern-matched subscribers (UI bridges, telemetry).

The bus is always optional: the orchestration core emits fire-and-forget and
never depends on delivery for correctness.

Concurrency model:
  - emit() enqueues — non-blocking, sync-safe
  - A dispatcher task dequeues and fans out to matching handlers
  - Handler exceptions are logged but do not propagate
  - Ordering guarantee: events dispatched in emission order
"""

from __future__ import annotations

import asyncio
import fnmatch as _fnmatch_mod
import re
import uuid
from typing import Any, Callable, Coroutine, Literal, Optional

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger(__name__)

EventHandler = (
    Callable[["ConductorEvent"], Any]
    | Callable[["ConductorEvent"], Coroutine[Any, Any, Any]]
)

# Splits CamelCase including consecutive capitals (acronyms).
_CAMEL_SPLIT_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z]|\d|\b)|[A-Z][a-z]*")


class ConductorEvent(BaseModel):
    """Base class for all typed orchestration events."""

    event_type: str = ""

    def model_post_init(self, __context: Any) -> None:
        if not self.event_type:
            name = type(self).__name__.removesuffix("Event")
            parts = _CAMEL_SPLIT_RE.findall(name)
            self.event_type = ".".join(p.lower() for p in parts) if parts else name.lower()


class _Subscription:
    """Internal subscription record."""

    __slots__ = ("sub_id", "pattern", "handler", "_compiled")

    def __init__(self, sub_id: str, pattern: str, handler: EventHandler) -> None:
        self.sub_id = sub_id
        self.pattern = pattern
        self.handler = handler
        self._compiled: re.Pattern[str] = re.compile(_fnmatch_mod.translate(pattern))

    def matches(self, event_type: str) -> bool:
        return self._compiled.match(event_type) is not None


_SENTINEL = object()


class EventBus:
    """Minimal async event bus with typed events and wildcard subscriptions.

    Pattern matching uses fnmatch-style wildcards:
      "worker.*"     matches "worker.spawned", "worker.ready"
      "workflow.*"   matches "workflow.step", "workflow.completed"
      "*"            matches everything
    """

    def __init__(self, max_queue_size: int = 10000) -> None:
        self._queue: asyncio.Queue[ConductorEvent | object] = asyncio.Queue(
            maxsize=max_queue_size,
        )
        self._subscriptions: dict[str, _Subscription] = {}
        self._dispatcher_task: asyncio.Task[None] | None = None
        self._running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the dispatcher task."""
        if self._running:
            return
        self._running = True
        self._dispatcher_task = asyncio.create_task(
            self._dispatch_loop(), name="conductor-event-dispatcher"
        )
        logger.info("event_bus.started")

    async def stop(self) -> None:
        """Drain the queue and cancel the dispatcher."""
        if not self._running:
            return
        self._running = False
        try:
            self._queue.put_nowait(_SENTINEL)
        except asyncio.QueueFull:
            logger.warning("event_bus.stop_queue_full_cancelling_directly")
            if self._dispatcher_task is not None:
                self._dispatcher_task.cancel()
        if self._dispatcher_task is not None:
            try:
                await asyncio.wait_for(self._dispatcher_task, timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("event_bus.stop_timeout_cancelling", timeout=5.0)
                self._dispatcher_task.cancel()
                try:
                    await self._dispatcher_task
                except asyncio.CancelledError:
                    pass
            except asyncio.CancelledError:
                pass
            self._dispatcher_task = None
        logger.info("event_bus.stopped")

    # ------------------------------------------------------------------
    # Subscribe / Unsubscribe
    # ------------------------------------------------------------------

    def subscribe(self, pattern: str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to events matching a fnmatch-style pattern.

        Returns an unsubscribe callable; calling it more than once is harmless.
        """
        sub_id = uuid.uuid4().hex[:12]
        self._subscriptions[sub_id] = _Subscription(sub_id, pattern, handler)
        logger.debug("event_bus.subscribed", pattern=pattern, sub_id=sub_id)
        return lambda: self._unsubscribe(sub_id)

    def _unsubscribe(self, subscription_id: str) -> None:
        removed = self._subscriptions.pop(subscription_id, None)
        if removed:
            logger.debug("event_bus.unsubscribed", sub_id=subscription_id)

    # ------------------------------------------------------------------
    # Emit
    # ------------------------------------------------------------------

    def emit(self, event: ConductorEvent) -> None:
        """Enqueue an event for dispatch — non-blocking, sync-safe.

        If the queue is full the event is dropped with a warning log.
        """
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "event_bus.queue_full",
                event_type=event.event_type,
                dropped=True,
            )

    async def drain(self) -> None:
        """Wait until every event queued so far has been dispatched."""
        if not self._running:
            return
        barrier = asyncio.Event()
        self._queue.put_nowait(barrier)
        await asyncio.wait_for(barrier.wait(), timeout=10.0)

    # ------------------------------------------------------------------
    # Dispatcher
    # ------------------------------------------------------------------

    async def _dispatch_loop(self) -> None:
        while self._running:
            try:
                item = await self._queue.get()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.error("event_bus.queue_get_error", exc_info=True)
                continue

            if item is _SENTINEL:
                break
            if isinstance(item, asyncio.Event):
                item.set()
                continue

            event: ConductorEvent = item  # type: ignore[assignment]
            await self._dispatch_event(event)

        while not self._queue.empty():
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if isinstance(item, asyncio.Event):
                item.set()
            elif item is not _SENTINEL:
                await self._dispatch_event(item)  # type: ignore[arg-type]

    async def _dispatch_event(self, event: ConductorEvent) -> None:
        event_type = event.event_type
        coros: list[Any] = []

        for sub in list(self._subscriptions.values()):
            if sub.matches(event_type):
                coros.append(self._invoke_handler(sub, event))

        if coros:
            await asyncio.gather(*coros, return_exceptions=True)

    @staticmethod
    async def _invoke_handler(sub: _Subscription, event: ConductorEvent) -> None:
        try:
            result = sub.handler(event)
            if asyncio.iscoroutine(result) or asyncio.isfuture(result):
                await result
        except Exception:
            logger.error(
                "event_bus.handler_error",
                pattern=sub.pattern,
                event_type=event.event_type,
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    @property
    def is_running(self) -> bool:
        return self._running


def create_event_bus(max_queue_size: int = 10000) -> EventBus:
    """Factory function to create an EventBus instance."""
    return EventBus(max_queue_size=max_queue_size)


def emit_safely(bus: Optional[EventBus], event: ConductorEvent) -> None:
    """Publish to an optional bus; a missing or failing sink is never fatal."""
    if bus is None:
        return
    try:
        bus.emit(event)
    except Exception:
        logger.debug("event_bus.emit_failed", event_type=event.event_type, exc_info=True)


# ---------------------------------------------------------------------------
# Event Definitions
# ---------------------------------------------------------------------------

class _WorkerLifecycleEvent(ConductorEvent):
    worker_id: str
    status: str
    worker: dict[str, Any] = Field(default_factory=dict)


class WorkerSpawnedEvent(_WorkerLifecycleEvent):
    """Emitted when a worker instance is first registered (status ``starting``)."""


class WorkerReadyEvent(_WorkerLifecycleEvent):
    """Emitted when a worker becomes ready to accept prompts."""


class WorkerBusyEvent(_WorkerLifecycleEvent):
    """Emitted while a worker is handling a prompt."""


class WorkerErrorEvent(_WorkerLifecycleEvent):
    """Emitted when a worker enters the error state."""

    error: str = "unknown"


class WorkerStoppedEvent(_WorkerLifecycleEvent):
    """Emitted when a worker is removed from the registry."""


class WorkerUpdatedEvent(_WorkerLifecycleEvent):
    """Emitted on every registry change for a worker."""


class WorkerReusedEvent(_WorkerLifecycleEvent):
    """Emitted when spawn() returns an already-registered worker."""


class ModelResolvedEvent(ConductorEvent):
    """Emitted when a symbolic model tag is resolved for a profile."""

    profile_id: str
    from_model: str
    to_model: str
    reason: str = ""


class WorkerJobEvent(ConductorEvent):
    """Emitted on job creation and each terminal transition."""

    job_id: str
    worker_id: str
    status: Literal["created", "succeeded", "failed", "canceled"]
    job: dict[str, Any] = Field(default_factory=dict)


class WorkflowStepEvent(ConductorEvent):
    """Emitted after each workflow step finishes."""

    workflow_id: str
    step_id: str
    worker_id: str
    status: Literal["success", "error"]
    duration_seconds: float = 0.0
    error: Optional[str] = None


class WorkflowCompletedEvent(ConductorEvent):
    """Emitted when a workflow run returns (successfully or halted)."""

    workflow_id: str
    steps_run: int
    succeeded: bool
