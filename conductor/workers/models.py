"""
Worker Data Models — profiles, runtime instances and dispatch results.

WorkerProfile is static configuration: it describes *who* a worker is.
WorkerInstance is the live runtime record the registry tracks for a running
worker. WorkerSendResult is what a dispatch returns; failures are values,
not exceptions, so callers can branch without try/except.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

WorkerStatus = Literal["starting", "ready", "busy", "error", "stopped"]

# Symbolic model tags are resolved by an external catalog before spawning.
SYMBOLIC_MODEL_PREFIXES = ("auto", "node")


class WorkerProfile(BaseModel):
    """Static description of a worker: model, purpose and permissions."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    model: str
    purpose: str = ""
    when_to_use: str = ""
    system_prompt: Optional[str] = None
    port: Optional[int] = None
    supports_vision: bool = False
    supports_web: bool = False
    tools: dict[str, bool] = Field(default_factory=dict)
    permissions: Optional[dict[str, Any]] = None
    temperature: Optional[float] = None
    enabled: bool = True
    inject_repo_context: bool = False
    tags: list[str] = Field(default_factory=list)

    @property
    def is_symbolic_model(self) -> bool:
        return self.model.strip().startswith(SYMBOLIC_MODEL_PREFIXES)

    @property
    def is_explicit_model(self) -> bool:
        """True for concrete ``provider/model`` ids that need no resolution."""
        return not self.is_symbolic_model and "/" in self.model


class WorkerAttachment(BaseModel):
    """An image or file forwarded to a worker with a prompt."""

    type: Literal["image", "file"]
    path: Optional[str] = None
    base64: Optional[str] = None
    mime_type: Optional[str] = None


class WorkerLastResult(BaseModel):
    """Summary of the most recent successful prompt on a worker."""

    at: float
    response: str
    duration_seconds: float
    job_id: Optional[str] = None


class WorkerSendResult(BaseModel):
    """Outcome of a single dispatch to a worker."""

    success: bool
    response: Optional[str] = None
    error: Optional[str] = None
    duration_seconds: Optional[float] = None


@dataclass
class WorkerInstance:
    """Runtime state of one live worker.

    Created by the spawner, mutated by the dispatcher (status, activity,
    last result) and discarded when the worker is stopped.
    """

    profile: WorkerProfile
    status: WorkerStatus = "starting"
    port: int = 0
    directory: str = ""
    started_at: float = field(default_factory=time.time)
    server_url: Optional[str] = None
    session_id: Optional[str] = None
    client: Any = None
    server: Any = None
    parent_session_id: Optional[str] = None
    model_resolution: str = "configured"
    last_activity: Optional[float] = None
    current_task: Optional[str] = None
    error: Optional[str] = None
    warning: Optional[str] = None
    last_result: Optional[WorkerLastResult] = None
    shutdown: Optional[Callable[[], Awaitable[None]]] = field(default=None, repr=False)
    # Prompts that outlived their caller's timeout; cancelled on stop.
    pending_prompts: set[Any] = field(default_factory=set, repr=False)

    @property
    def id(self) -> str:
        return self.profile.id

    def snapshot(self) -> dict[str, Any]:
        """JSON-friendly view of the instance (no live handles)."""
        return {
            "id": self.profile.id,
            "name": self.profile.name,
            "model": self.profile.model,
            "model_resolution": self.model_resolution,
            "purpose": self.profile.purpose,
            "when_to_use": self.profile.when_to_use,
            "status": self.status,
            "port": self.port,
            "server_url": self.server_url,
            "session_id": self.session_id,
            "supports_vision": self.profile.supports_vision,
            "supports_web": self.profile.supports_web,
            "started_at": self.started_at,
            "last_activity": self.last_activity,
            "current_task": self.current_task,
            "error": self.error,
            "warning": self.warning,
            "last_result": self.last_result.model_dump() if self.last_result else None,
        }
