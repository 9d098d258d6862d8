"""
Shared fixtures for the Conductor test suite.

Provides in-memory fakes for the worker transport, server and client so
individual test modules can drive spawn/send/stop without real processes.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import pytest

from conductor.config import WorkerConfig
from conductor.workers.interfaces import (
    ModelResolution,
    ModelResolver,
    ServerBundle,
    WorkerClient,
    WorkerServer,
    WorkerTransport,
)
from conductor.workers.manager import WorkerManager
from conductor.workers.models import WorkerProfile


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeServer(WorkerServer):
    def __init__(self, port: int) -> None:
        self.port = port
        self.url = f"http://127.0.0.1:{port}"
        self.closed = 0

    async def close(self) -> None:
        self.closed += 1


class FakeClient(WorkerClient):
    """Records every prompt; replies via ``responder`` or a canned text reply."""

    def __init__(self, session_id: Optional[str] = "ses-1") -> None:
        self.session_id = session_id
        self.sessions: list[dict[str, Any]] = []
        self.prompts: list[dict[str, Any]] = []
        self.reply_text = "ok"
        self.responder: Optional[Callable[[str, list[dict[str, Any]]], Any]] = None
        self.bootstrap_error: Optional[Exception] = None

    async def create_session(self, *, title: str, directory: str) -> Optional[str]:
        self.sessions.append({"title": title, "directory": directory})
        return self.session_id

    async def prompt(
        self,
        session_id: str,
        parts: list[dict[str, Any]],
        *,
        directory: str,
        no_reply: bool = False,
    ) -> Any:
        self.prompts.append({"session_id": session_id, "parts": parts, "no_reply": no_reply})
        if no_reply:
            if self.bootstrap_error is not None:
                raise self.bootstrap_error
            return None
        if self.responder is not None:
            result = self.responder(session_id, parts)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        return {"parts": [{"type": "text", "text": self.reply_text}]}

    @property
    def task_prompts(self) -> list[dict[str, Any]]:
        return [p for p in self.prompts if not p["no_reply"]]


class FakeTransport(WorkerTransport):
    """Hands out a FakeClient/FakeServer pair per create_server call."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[dict[str, Any]] = []
        self.clients: list[FakeClient] = []
        self.servers: list[FakeServer] = []
        self.error: Optional[Exception] = None
        self.session_id: Optional[str] = "ses-1"
        self._next_port = 4100

    async def create_server(
        self,
        *,
        hostname: str,
        port: int,
        timeout: float,
        config: dict[str, Any],
    ) -> ServerBundle:
        self.calls.append({"hostname": hostname, "port": port, "config": config})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if not port:
            port = self._next_port
            self._next_port += 1
        client = FakeClient(session_id=self.session_id)
        server = FakeServer(port)
        self.clients.append(client)
        self.servers.append(server)
        return ServerBundle(client=client, server=server)


class FakeResolver(ModelResolver):
    def __init__(self, resolution: ModelResolution) -> None:
        self.resolution = resolution
        self.calls: list[str] = []

    async def resolve(self, model_spec: str, *, profile_id: str) -> ModelResolution:
        self.calls.append(model_spec)
        return self.resolution


def make_profile(profile_id: str = "coder", **overrides: Any) -> WorkerProfile:
    fields: dict[str, Any] = {
        "id": profile_id,
        "name": profile_id.title(),
        "model": "anthropic/claude-sonnet",
        "purpose": f"{profile_id} work",
    }
    fields.update(overrides)
    return WorkerProfile(**fields)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def worker_config(tmp_path) -> WorkerConfig:
    """WorkerConfig with short timeouts, independent of the environment."""
    return WorkerConfig(
        CONDUCTOR_DIRECTORY=str(tmp_path),
        CONDUCTOR_SPAWN_TIMEOUT=5.0,
        CONDUCTOR_BOOTSTRAP_TIMEOUT=1.0,
        CONDUCTOR_SEND_TIMEOUT=2.0,
        CONDUCTOR_JOB_TIMEOUT=2.0,
        CONDUCTOR_READY_WAIT_CAP=1.0,
        CONDUCTOR_AUTO_SPAWN=False,
        CONDUCTOR_SPAWN=[],
    )


@pytest.fixture()
def profiles() -> dict[str, WorkerProfile]:
    return {
        pid: make_profile(pid)
        for pid in ("coder", "reviewer", "explorer", "w1")
    }


@pytest.fixture()
def manager(transport, worker_config, profiles) -> WorkerManager:
    return WorkerManager(transport, profiles=profiles, config=worker_config)
