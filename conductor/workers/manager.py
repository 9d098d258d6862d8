"""
Worker Manager — the single entry point for callers.

Composes the registry, spawner, dispatcher and job registry behind one
surface used by tools, the workflow runner and any web bridge.

Key responsibilities:
  - Reuse an already-registered worker instead of spawning a second one
  - Coalesce concurrent spawns of the same profile into one in-flight attempt
  - Stop workers with guaranteed registry cleanup
  - Turn dispatches into tracked jobs when callers want async semantics
  - Forward lifecycle transitions to the optional event bus
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional, Sequence

import structlog

from conductor.config import WorkerConfig, WorkflowConfig
from conductor.events import (
    EventBus,
    WorkerBusyEvent,
    WorkerErrorEvent,
    WorkerReadyEvent,
    WorkerReusedEvent,
    WorkerSpawnedEvent,
    WorkerStoppedEvent,
    WorkerUpdatedEvent,
    emit_safely,
)
from conductor.workers.interfaces import (
    ModelResolver,
    PermissionTranslator,
    RepoContextProvider,
    WorkerTransport,
)
from conductor.workers.jobs import WorkerJob, WorkerJobRegistry
from conductor.workers.models import (
    WorkerAttachment,
    WorkerInstance,
    WorkerProfile,
    WorkerSendResult,
)
from conductor.workers.registry import WorkerRegistry
from conductor.workers.send import BeforePromptHook, send_worker_message
from conductor.workers.spawn import SpawnError, WorkerSpawner
from conductor.workflows.models import WorkflowLimits, WorkflowRunInput, WorkflowRunResult

if TYPE_CHECKING:
    from conductor.workflows.engine import WorkflowEngine

logger = structlog.get_logger(__name__)


class UnknownProfileError(KeyError):
    """No worker profile is configured under the requested id."""

    def __str__(self) -> str:
        return f"Unknown worker profile: {self.args[0]}" if self.args else "Unknown worker profile"


class WorkerManager:
    """Spawn, reuse, message and stop workers; track async jobs."""

    def __init__(
        self,
        transport: WorkerTransport,
        *,
        profiles: Mapping[str, WorkerProfile] | Sequence[WorkerProfile] = (),
        config: Optional[WorkerConfig] = None,
        workflow_config: Optional[WorkflowConfig] = None,
        model_resolver: Optional[ModelResolver] = None,
        permissions: Optional[PermissionTranslator] = None,
        repo_context: Optional[RepoContextProvider] = None,
        event_bus: Optional[EventBus] = None,
        before_prompt: Optional[BeforePromptHook] = None,
        jobs: Optional[WorkerJobRegistry] = None,
    ):
        self._config = config or WorkerConfig()
        self._workflow_config = workflow_config or WorkflowConfig()
        self._event_bus = event_bus
        self._before_prompt = before_prompt
        if isinstance(profiles, Mapping):
            self._profiles: dict[str, WorkerProfile] = dict(profiles)
        else:
            self._profiles = {p.id: p for p in profiles}

        self.registry = WorkerRegistry()
        self.jobs = jobs or WorkerJobRegistry(
            max_jobs=self._config.job_max_count,
            max_age=self._config.job_max_age,
            event_bus=event_bus,
        )
        self._spawner = WorkerSpawner(
            self.registry,
            transport,
            directory=self._config.directory,
            hostname=self._config.hostname,
            timeout=self._config.spawn_timeout,
            bootstrap_timeout=self._config.bootstrap_timeout,
            model_resolver=model_resolver,
            permissions=permissions,
            repo_context=repo_context,
            event_bus=event_bus,
        )

        self._in_flight: dict[str, asyncio.Task[WorkerInstance]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._unsubscribers: list[Callable[[], None]] = []
        if event_bus is not None:
            self._forward_registry_events()

        logger.info(
            "workers.manager.initialized",
            profiles=len(self._profiles),
            directory=self._config.directory,
        )

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, profile_id: str) -> Optional[WorkerProfile]:
        return self._profiles.get(profile_id)

    def list_profiles(self) -> list[WorkerProfile]:
        return list(self._profiles.values())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def spawn(
        self,
        profile: WorkerProfile,
        *,
        parent_session_id: Optional[str] = None,
    ) -> WorkerInstance:
        """Return the live worker for ``profile.id``, starting it if needed."""
        existing = self.registry.get(profile.id)
        if existing is not None:
            logger.debug("workers.manager.reuse", worker_id=profile.id, status=existing.status)
            emit_safely(
                self._event_bus,
                WorkerReusedEvent(
                    worker_id=profile.id, status=existing.status, worker=existing.snapshot()
                ),
            )
            return existing

        in_flight = self._in_flight.get(profile.id)
        if in_flight is None:
            in_flight = asyncio.create_task(
                self._spawner.spawn(profile, parent_session_id=parent_session_id),
                name=f"spawn-{profile.id}",
            )
            self._in_flight[profile.id] = in_flight
            in_flight.add_done_callback(lambda _t: self._in_flight.pop(profile.id, None))
        # Shield so one caller being cancelled does not abort the shared spawn.
        return await asyncio.shield(in_flight)

    async def spawn_by_id(
        self,
        profile_id: str,
        *,
        parent_session_id: Optional[str] = None,
    ) -> WorkerInstance:
        profile = self._profiles.get(profile_id)
        if profile is None:
            raise UnknownProfileError(profile_id)
        if not profile.enabled:
            raise SpawnError(f'Worker "{profile_id}" is disabled by configuration.')
        return await self.spawn(profile, parent_session_id=parent_session_id)

    async def ensure_worker(self, worker_id: str) -> WorkerInstance:
        existing = self.registry.get(worker_id)
        if existing is not None:
            return existing
        return await self.spawn_by_id(worker_id)

    async def start(self) -> list[WorkerInstance]:
        """Eagerly start configured workers when auto-spawn is on; failures are logged."""
        started: list[WorkerInstance] = []
        if not self._config.auto_spawn:
            return started
        for worker_id in self._config.spawn:
            try:
                started.append(await self.spawn_by_id(worker_id))
            except (SpawnError, UnknownProfileError) as exc:
                logger.warning("workers.manager.auto_spawn_failed", worker_id=worker_id, error=str(exc))
        return started

    async def stop_worker(self, worker_id: str) -> bool:
        """Stop and forget a worker. False if it was not registered."""
        instance = self.registry.get(worker_id)
        if instance is None:
            return False
        try:
            for pending in list(instance.pending_prompts):
                pending.cancel()
            instance.pending_prompts.clear()
            if instance.shutdown is not None:
                shutdown, instance.shutdown = instance.shutdown, None
                await shutdown()
        finally:
            instance.status = "stopped"
            self.registry.update_status(worker_id, "stopped")
            self.registry.unregister(worker_id)
            logger.info("workers.manager.stopped", worker_id=worker_id)
        return True

    async def stop_all(self) -> None:
        workers = self.registry.list()
        results = await asyncio.gather(
            *(self.stop_worker(w.id) for w in workers), return_exceptions=True
        )
        for worker, result in zip(workers, results):
            if isinstance(result, Exception):
                logger.warning("workers.manager.stop_failed", worker_id=worker.id, error=str(result))

    async def close(self) -> None:
        """Stop every worker, finish background dispatches, drop event forwarding."""
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.stop_all()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def send(
        self,
        worker_id: str,
        message: str,
        *,
        attachments: Optional[Sequence[WorkerAttachment]] = None,
        timeout: Optional[float] = None,
        job_id: Optional[str] = None,
        sender: Optional[str] = None,
    ) -> WorkerSendResult:
        return await send_worker_message(
            self.registry,
            worker_id,
            message,
            attachments=attachments,
            timeout=self._config.send_timeout if timeout is None else timeout,
            job_id=job_id,
            sender=sender,
            ready_wait_cap=self._config.ready_wait_cap,
            before_prompt=self._before_prompt,
        )

    def send_async(
        self,
        worker_id: str,
        message: str,
        *,
        attachments: Optional[Sequence[WorkerAttachment]] = None,
        timeout: Optional[float] = None,
        session_id: Optional[str] = None,
        requested_by: Optional[str] = None,
    ) -> WorkerJob:
        """Dispatch in the background and return the tracking job at once."""
        job = self.jobs.create(
            worker_id, message, session_id=session_id, requested_by=requested_by
        )

        async def _run() -> None:
            try:
                result = await self.send(
                    worker_id,
                    message,
                    attachments=attachments,
                    timeout=self._config.job_timeout if timeout is None else timeout,
                    job_id=job.id,
                    sender=requested_by,
                )
            except asyncio.CancelledError:
                self.jobs.cancel(job.id, "Dispatch cancelled")
                raise
            if result.success:
                self.jobs.set_result(job.id, result.response or "")
            else:
                self.jobs.set_error(job.id, result.error or "worker failed")

        task = asyncio.create_task(_run(), name=f"job-{job.id}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return job

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    async def run_workflow(
        self,
        engine: WorkflowEngine,
        workflow_id: str,
        task: str,
        *,
        attachments: Optional[Sequence[WorkerAttachment]] = None,
        auto_spawn: bool = True,
        limits: Optional[WorkflowLimits] = None,
    ) -> WorkflowRunResult:
        """Run a workflow whose steps dispatch through this manager."""
        run_input = WorkflowRunInput(
            workflow_id=workflow_id,
            task=task,
            limits=limits or self._workflow_config.to_limits(),
            attachments=list(attachments) if attachments else None,
            auto_spawn=auto_spawn,
        )

        async def resolve_worker(worker_id: str, spawn: bool) -> str:
            if spawn:
                existing = self.registry.get(worker_id)
                if existing is not None and existing.status in ("error", "stopped"):
                    await self.stop_worker(worker_id)
                await self.ensure_worker(worker_id)
            return worker_id

        async def send_to_worker(
            worker_id: str,
            message: str,
            *,
            timeout: float,
            attachments: Optional[Sequence[WorkerAttachment]] = None,
        ) -> WorkerSendResult:
            return await self.send(worker_id, message, attachments=attachments, timeout=timeout)

        return await engine.run(run_input, resolve_worker, send_to_worker)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_worker(self, worker_id: str) -> Optional[WorkerInstance]:
        return self.registry.get(worker_id)

    def list_workers(self) -> list[WorkerInstance]:
        return self.registry.list()

    def get_summary(self, max_workers: int = 12) -> str:
        return self.registry.get_summary(max_workers=max_workers)

    # ------------------------------------------------------------------
    # Event forwarding
    # ------------------------------------------------------------------

    def _forward_registry_events(self) -> None:
        def forward(event_cls: type) -> Callable[[WorkerInstance], None]:
            def _handler(instance: WorkerInstance) -> None:
                fields: dict[str, Any] = {
                    "worker_id": instance.id,
                    "status": instance.status,
                    "worker": instance.snapshot(),
                }
                if event_cls is WorkerErrorEvent:
                    fields["error"] = instance.error or "unknown"
                emit_safely(self._event_bus, event_cls(**fields))

            return _handler

        for registry_event, event_cls in (
            ("spawn", WorkerSpawnedEvent),
            ("ready", WorkerReadyEvent),
            ("busy", WorkerBusyEvent),
            ("error", WorkerErrorEvent),
            ("stop", WorkerStoppedEvent),
            ("update", WorkerUpdatedEvent),
        ):
            self._unsubscribers.append(self.registry.on(registry_event, forward(event_cls)))
