"""
Collaborator interfaces consumed by the orchestration core.

Starting a worker's server, resolving symbolic model tags and translating
permissions all live outside this package. The core only talks to them
through the abstract classes below, so tests can substitute fakes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, Field


class WorkerServer(ABC):
    """Handle to a running worker server process."""

    url: Optional[str] = None
    port: Optional[int] = None

    @abstractmethod
    async def close(self) -> None:
        """Terminate the server process."""


class WorkerClient(ABC):
    """Session-capable client bound to one worker server."""

    @abstractmethod
    async def create_session(self, *, title: str, directory: str) -> Optional[str]:
        """Create a conversation session and return its id."""

    @abstractmethod
    async def prompt(
        self,
        session_id: str,
        parts: list[dict[str, Any]],
        *,
        directory: str,
        no_reply: bool = False,
    ) -> Any:
        """Send prompt parts to a session and return the raw reply payload.

        The reply is either a mapping with ``parts`` (or ``message.parts``),
        a mapping with an ``error`` entry, or an exception raised directly.
        """


@dataclass
class ServerBundle:
    client: WorkerClient
    server: WorkerServer


class WorkerTransport(ABC):
    """Starts worker servers."""

    @abstractmethod
    async def create_server(
        self,
        *,
        hostname: str,
        port: int,
        timeout: float,
        config: dict[str, Any],
    ) -> ServerBundle:
        """Start a worker server bound to ``hostname:port`` (0 = ephemeral)."""


class ModelResolution(BaseModel):
    """Result of resolving a model spec; ``error`` set on failure."""

    full: Optional[str] = None
    provider_id: Optional[str] = None
    model_id: Optional[str] = None
    capabilities: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    suggestions: list[str] = Field(default_factory=list)


class ModelResolver(ABC):
    """Turns symbolic tags such as ``auto:fast`` into ``provider/model`` ids."""

    @abstractmethod
    async def resolve(self, model_spec: str, *, profile_id: str) -> ModelResolution:
        """Resolve ``model_spec`` for the given profile."""


class PermissionTranslator(ABC):
    """Shapes a worker's tool surface from its permission settings."""

    @abstractmethod
    def build_tool_config(
        self,
        permissions: Optional[dict[str, Any]],
        base_tools: dict[str, bool],
    ) -> Optional[dict[str, bool]]:
        """Return tool flags for the worker server config."""

    @abstractmethod
    def summarize(self, permissions: Optional[dict[str, Any]]) -> Optional[str]:
        """Return a one-line human-readable permission summary."""


RepoContextProvider = Callable[[str], Awaitable[Optional[str]]]
