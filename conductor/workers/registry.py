"""
Worker Registry — the directory of live workers.

One WorkerInstance per worker id, kept in insertion order. Every status
change goes through update_status() so listeners (the manager's event
forwarding, ready-waiters) see a consistent stream of lifecycle events.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Literal, Optional

import structlog

from conductor.workers.models import WorkerInstance, WorkerStatus

logger = structlog.get_logger(__name__)

WorkerRegistryEvent = Literal[
    "spawn", "starting", "ready", "busy", "error", "stop", "stopped", "update"
]
WorkerRegistryCallback = Callable[[WorkerInstance], Any]


class WorkerRegistry:
    """In-memory map of worker id to WorkerInstance with lifecycle listeners."""

    def __init__(self) -> None:
        self._workers: dict[str, WorkerInstance] = {}
        self._listeners: dict[str, list[WorkerRegistryCallback]] = {}

    def __len__(self) -> int:
        return len(self._workers)

    def __contains__(self, worker_id: object) -> bool:
        return worker_id in self._workers

    def register(self, instance: WorkerInstance) -> None:
        self._workers[instance.profile.id] = instance
        logger.debug("workers.registry.register", worker_id=instance.profile.id)
        self._emit("spawn", instance)
        self._emit("update", instance)

    def unregister(self, worker_id: str) -> None:
        instance = self._workers.pop(worker_id, None)
        if instance is None:
            return
        logger.debug("workers.registry.unregister", worker_id=worker_id)
        self._emit("stop", instance)

    def get(self, worker_id: str) -> Optional[WorkerInstance]:
        return self._workers.get(worker_id)

    def list(self) -> list[WorkerInstance]:
        return list(self._workers.values())

    def get_workers_by_status(self, status: WorkerStatus) -> list[WorkerInstance]:
        return [w for w in self._workers.values() if w.status == status]

    def get_workers_by_capability(self, capability: str) -> list[WorkerInstance]:
        if capability == "vision":
            return [w for w in self._workers.values() if w.profile.supports_vision]
        if capability == "web":
            return [w for w in self._workers.values() if w.profile.supports_web]
        return []

    def get_vision_workers(self) -> list[WorkerInstance]:
        return self.get_workers_by_capability("vision")

    def get_active_workers(self) -> list[WorkerInstance]:
        return [w for w in self._workers.values() if w.status in ("ready", "busy")]

    def update_status(
        self,
        worker_id: str,
        status: WorkerStatus,
        error: Optional[str] = None,
    ) -> None:
        instance = self._workers.get(worker_id)
        if instance is None:
            return
        instance.status = status
        if error:
            instance.error = error
        self._emit(status, instance)
        self._emit("update", instance)

    async def wait_for_status(
        self,
        worker_id: str,
        status: WorkerStatus,
        timeout: float,
    ) -> bool:
        """Wait until ``worker_id`` reaches ``status``; False on timeout."""
        existing = self._workers.get(worker_id)
        if existing is not None and existing.status == status:
            return True

        loop = asyncio.get_running_loop()
        reached: asyncio.Future[bool] = loop.create_future()

        def on_update(instance: WorkerInstance) -> None:
            if instance.profile.id != worker_id or instance.status != status:
                return
            if not reached.done():
                reached.set_result(True)

        unsubscribe = self.on("update", on_update)
        try:
            return await asyncio.wait_for(reached, timeout=timeout)
        except asyncio.TimeoutError:
            return False
        finally:
            unsubscribe()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on(self, event: WorkerRegistryEvent, callback: WorkerRegistryCallback) -> Callable[[], None]:
        """Register a listener. Returns a callable that removes it."""
        self._listeners.setdefault(event, []).append(callback)
        return lambda: self.off(event, callback)

    def off(self, event: WorkerRegistryEvent, callback: WorkerRegistryCallback) -> None:
        callbacks = self._listeners.get(event)
        if not callbacks:
            return
        try:
            callbacks.remove(callback)
        except ValueError:
            return
        if not callbacks:
            del self._listeners[event]

    def _emit(self, event: str, instance: WorkerInstance) -> None:
        for callback in list(self._listeners.get(event, ())):
            try:
                callback(instance)
            except Exception:
                logger.error(
                    "workers.registry.listener_error",
                    registry_event=event,
                    worker_id=instance.profile.id,
                    exc_info=True,
                )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def to_json(self) -> list[dict[str, Any]]:
        return [w.snapshot() for w in self._workers.values()]

    def get_summary(self, max_workers: int = 12) -> str:
        """Markdown listing of registered workers for an orchestrator prompt."""
        workers = list(self._workers.values())[: max(0, max_workers)]
        if not workers:
            return "No workers currently registered."

        total = len(self._workers)
        lines = ["## Available Workers", ""]
        if total > len(workers):
            lines.extend([f"(showing {len(workers)} of {total})", ""])
        for w in workers:
            lines.append(f"- {w.profile.id} ({w.profile.name}) — {w.status}")
        lines.extend(
            ["", "Use ask_worker(worker_id=<id>, message=<text>) to message a worker."]
        )
        return "\n".join(lines)
