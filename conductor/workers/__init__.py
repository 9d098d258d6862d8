"""
Workers — spawning, tracking and messaging worker agents.

The public entry point is conductor.workers.manager.WorkerManager; the
modules below it are usable on their own for tests and custom wiring.
"""

from __future__ import annotations

from conductor.workers.models import (
    WorkerAttachment,
    WorkerInstance,
    WorkerProfile,
    WorkerSendResult,
    WorkerStatus,
)

__all__ = [
    "WorkerAttachment",
    "WorkerInstance",
    "WorkerProfile",
    "WorkerSendResult",
    "WorkerStatus",
]
