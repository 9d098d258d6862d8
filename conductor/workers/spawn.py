"""
Worker Spawner — turning a profile into a running, bootstrapped worker.

The spawn sequence is:

  1. register a ``starting`` instance so the attempt is visible immediately
  2. resolve the profile's model (explicit ids pass through; symbolic tags
     go to the external ModelResolver)
  3. start the worker server through the WorkerTransport
  4. open a conversation session on it
  5. inject the one-shot, no-reply identity prompt
  6. flip the instance to ``ready``

Any failure leaves the instance registered in ``error`` with the message
attached, shuts down whatever was partially started, and raises SpawnError.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import structlog

from conductor.events import EventBus, ModelResolvedEvent, emit_safely
from conductor.workers.interfaces import (
    ModelResolver,
    PermissionTranslator,
    RepoContextProvider,
    WorkerTransport,
)
from conductor.workers.models import WorkerInstance, WorkerProfile
from conductor.workers.prompt import build_bootstrap_prompt, is_valid_port
from conductor.workers.registry import WorkerRegistry

logger = structlog.get_logger(__name__)


class SpawnError(RuntimeError):
    """A worker could not be started (model resolution or transport failure)."""


class WorkerSpawner:
    """Starts worker servers and registers them in a WorkerRegistry."""

    def __init__(
        self,
        registry: WorkerRegistry,
        transport: WorkerTransport,
        *,
        directory: str,
        hostname: str = "127.0.0.1",
        timeout: float = 60.0,
        bootstrap_timeout: float = 15.0,
        model_resolver: Optional[ModelResolver] = None,
        permissions: Optional[PermissionTranslator] = None,
        repo_context: Optional[RepoContextProvider] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self._registry = registry
        self._transport = transport
        self._directory = directory
        self._hostname = hostname
        self._timeout = timeout
        self._bootstrap_timeout = bootstrap_timeout
        self._model_resolver = model_resolver
        self._permissions = permissions
        self._repo_context = repo_context
        self._event_bus = event_bus

    async def resolve_model(self, profile: WorkerProfile) -> tuple[WorkerProfile, str]:
        """Return the profile with a concrete model id and a provenance note."""
        spec = profile.model.strip()
        if profile.is_explicit_model:
            return profile, "configured"

        if self._model_resolver is None:
            raise SpawnError(
                f'Profile "{profile.id}" uses "{profile.model}", but model resolution '
                "is unavailable. Set a concrete provider/model ID for this profile."
            )

        try:
            resolution = await self._model_resolver.resolve(spec, profile_id=profile.id)
        except Exception as exc:
            raise SpawnError(f'Model resolution failed for "{spec}": {exc}') from exc

        if resolution.error or not resolution.full:
            message = resolution.error or "no model returned"
            if resolution.suggestions:
                message += f" (suggestions: {', '.join(resolution.suggestions)})"
            raise SpawnError(f'Could not resolve model "{spec}" for "{profile.id}": {message}')

        resolved = profile.model_copy(update={"model": resolution.full})
        logger.info(
            "workers.spawn.model_resolved",
            worker_id=profile.id,
            from_model=spec,
            to_model=resolution.full,
        )
        emit_safely(
            self._event_bus,
            ModelResolvedEvent(
                profile_id=profile.id,
                from_model=spec,
                to_model=resolution.full,
                reason=f"resolved from {spec}",
            ),
        )
        return resolved, f"resolved from {spec}"

    async def spawn(
        self,
        profile: WorkerProfile,
        *,
        parent_session_id: Optional[str] = None,
    ) -> WorkerInstance:
        """Start a worker for ``profile``. Callers handle de-duplication."""
        requested_port = profile.port if is_valid_port(profile.port) else 0
        instance = WorkerInstance(
            profile=profile,
            status="starting",
            port=requested_port,
            directory=self._directory,
            parent_session_id=parent_session_id,
        )
        self._registry.register(instance)
        logger.info("workers.spawn.start", worker_id=profile.id, port=requested_port)

        try:
            await self._start(instance, requested_port)
        except asyncio.CancelledError:
            await self._fail(instance, "Spawn cancelled")
            raise
        except asyncio.TimeoutError as exc:
            message = f'Timed out starting worker "{profile.id}" after {self._timeout}s'
            await self._fail(instance, message)
            raise SpawnError(message) from exc
        except SpawnError as exc:
            await self._fail(instance, str(exc))
            raise
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            await self._fail(instance, message)
            raise SpawnError(message) from exc

        logger.info(
            "workers.spawn.ready",
            worker_id=profile.id,
            server_url=instance.server_url,
            session_id=instance.session_id,
            model=instance.profile.model,
        )
        return instance

    async def _start(self, instance: WorkerInstance, requested_port: int) -> None:
        resolved, provenance = await self.resolve_model(instance.profile)
        self._ensure_registered(instance)
        instance.profile = resolved
        instance.model_resolution = provenance

        tool_config: Optional[dict[str, bool]] = dict(resolved.tools) or None
        permission_summary: Optional[str] = None
        if self._permissions is not None:
            tool_config = self._permissions.build_tool_config(resolved.permissions, dict(resolved.tools))
            permission_summary = self._permissions.summarize(resolved.permissions)

        bundle = await asyncio.wait_for(
            self._transport.create_server(
                hostname=self._hostname,
                port=requested_port,
                timeout=self._timeout,
                config=self._server_config(resolved, tool_config),
            ),
            timeout=self._timeout,
        )
        instance.client = bundle.client
        instance.server = bundle.server
        instance.server_url = bundle.server.url
        if bundle.server.port:
            instance.port = bundle.server.port
        instance.shutdown = bundle.server.close
        self._ensure_registered(instance)

        session_id = await asyncio.wait_for(
            bundle.client.create_session(
                title=f"Worker: {resolved.name}",
                directory=self._directory,
            ),
            timeout=self._timeout,
        )
        if not session_id:
            raise SpawnError(f'Failed to create session for worker "{resolved.id}"')
        instance.session_id = session_id
        self._ensure_registered(instance)

        repo_context = await self._load_repo_context(resolved)
        await self._bootstrap(instance, permission_summary, repo_context)
        self._ensure_registered(instance)

        instance.last_activity = time.time()
        self._registry.update_status(resolved.id, "ready")

    def _ensure_registered(self, instance: WorkerInstance) -> None:
        """Abort startup once the worker has been stopped from elsewhere."""
        if self._registry.get(instance.id) is not instance:
            raise SpawnError(f'Worker "{instance.id}" was stopped during startup')

    @staticmethod
    def _server_config(profile: WorkerProfile, tool_config: Optional[dict[str, bool]]) -> dict[str, Any]:
        config: dict[str, Any] = {"model": profile.model}
        if profile.temperature is not None:
            config["agent"] = {
                "general": {"model": profile.model, "temperature": profile.temperature}
            }
        if tool_config:
            config["tools"] = tool_config
        if profile.permissions:
            config["permissions"] = profile.permissions
        return config

    async def _load_repo_context(self, profile: WorkerProfile) -> Optional[str]:
        if not profile.inject_repo_context or self._repo_context is None:
            return None
        try:
            return await self._repo_context(self._directory)
        except Exception as exc:
            logger.warning("workers.spawn.repo_context_failed", worker_id=profile.id, error=str(exc))
            return None

    async def _bootstrap(
        self,
        instance: WorkerInstance,
        permission_summary: Optional[str],
        repo_context: Optional[str],
    ) -> None:
        """Send the identity prompt; a failure here only leaves a warning."""
        text = build_bootstrap_prompt(
            instance.profile,
            permission_summary=permission_summary,
            repo_context=repo_context,
        )
        timeout = min(self._timeout, self._bootstrap_timeout)
        try:
            await asyncio.wait_for(
                instance.client.prompt(
                    instance.session_id,
                    [{"type": "text", "text": text}],
                    directory=self._directory,
                    no_reply=True,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            instance.warning = f"Bootstrap prompt timed out after {timeout}s"
            logger.warning("workers.spawn.bootstrap_timeout", worker_id=instance.id, timeout=timeout)
        except Exception as exc:
            instance.warning = f"Bootstrap prompt failed: {exc}"
            logger.warning("workers.spawn.bootstrap_failed", worker_id=instance.id, error=str(exc))

    async def _fail(self, instance: WorkerInstance, message: str) -> None:
        instance.error = message
        if self._registry.get(instance.id) is instance:
            self._registry.update_status(instance.id, "error", message)
        logger.error("workers.spawn.failed", worker_id=instance.id, error=message)
        if instance.shutdown is None:
            return
        try:
            await instance.shutdown()
        except Exception as exc:
            logger.warning("workers.spawn.cleanup_failed", worker_id=instance.id, error=str(exc))
