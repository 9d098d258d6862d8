"""
Dispatcher — delivering one message to one worker.

Expected failures (unknown worker, worker in error, timeout, reply error) are
returned as ``WorkerSendResult(success=False, ...)`` rather than raised.

A prompt that outlives its caller's timeout is left running: the worker may
still finish it, in which case ``last_result`` is updated for inspection.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, Sequence

import structlog

from conductor.workers.models import (
    WorkerAttachment,
    WorkerInstance,
    WorkerLastResult,
    WorkerSendResult,
)
from conductor.workers.prompt import (
    build_prompt_parts,
    build_task_text,
    extract_reply_error,
    extract_text_from_reply,
    unwrap_reply,
)
from conductor.workers.registry import WorkerRegistry

logger = structlog.get_logger(__name__)

DEFAULT_SEND_TIMEOUT = 120.0
READY_WAIT_CAP = 300.0
CURRENT_TASK_PREVIEW_CHARS = 140

BeforePromptHook = Callable[[WorkerInstance], Awaitable[None]]


class WorkerReplyError(RuntimeError):
    """The worker answered with an error payload."""


def _parse_reply(reply: Any) -> str:
    error = extract_reply_error(reply)
    if error:
        raise WorkerReplyError(error)
    return extract_text_from_reply(unwrap_reply(reply)).strip()


def _record_late_result(
    instance: WorkerInstance,
    started: float,
    job_id: Optional[str],
    task: asyncio.Task,
) -> None:
    """Done-callback for prompts whose caller already gave up."""
    instance.pending_prompts.discard(task)
    if task.cancelled() or task.exception() is not None:
        return
    try:
        response = _parse_reply(task.result())
    except WorkerReplyError:
        return
    now = time.time()
    instance.last_result = WorkerLastResult(
        at=now,
        response=response,
        duration_seconds=round(now - started, 3),
        job_id=job_id,
    )
    instance.last_activity = now
    logger.info("workers.send.late_result", worker_id=instance.id, job_id=job_id)


async def send_worker_message(
    registry: WorkerRegistry,
    worker_id: str,
    message: str,
    *,
    attachments: Optional[Sequence[WorkerAttachment]] = None,
    timeout: Optional[float] = None,
    job_id: Optional[str] = None,
    sender: Optional[str] = None,
    ready_wait_cap: float = READY_WAIT_CAP,
    before_prompt: Optional[BeforePromptHook] = None,
) -> WorkerSendResult:
    """Send ``message`` to ``worker_id`` and wait up to ``timeout`` seconds."""
    instance = registry.get(worker_id)
    if instance is None:
        return WorkerSendResult(success=False, error=f'Worker "{worker_id}" not found')

    if instance.status in ("error", "stopped"):
        return WorkerSendResult(
            success=False, error=f'Worker "{worker_id}" is {instance.status}'
        )

    timeout = DEFAULT_SEND_TIMEOUT if timeout is None else timeout

    if instance.status != "ready":
        wait = min(timeout, ready_wait_cap)
        if not await registry.wait_for_status(worker_id, "ready", wait):
            return WorkerSendResult(
                success=False,
                error=f'Worker "{worker_id}" did not become ready within {wait}s',
            )

    if instance.client is None or not instance.session_id:
        return WorkerSendResult(
            success=False, error=f'Worker "{worker_id}" not properly initialized'
        )

    started = time.time()
    registry.update_status(worker_id, "busy")
    instance.current_task = message[:CURRENT_TASK_PREVIEW_CHARS]
    logger.info("workers.send.start", worker_id=worker_id, job_id=job_id, timeout=timeout)

    if before_prompt is not None:
        try:
            await before_prompt(instance)
        except Exception as exc:
            instance.warning = f"Pre-prompt hook failed: {exc}"
            logger.warning("workers.send.before_prompt_failed", worker_id=worker_id, error=str(exc))

    parts = build_prompt_parts(
        build_task_text(message, job_id=job_id, sender=sender),
        attachments,
    )
    prompt_task = asyncio.ensure_future(
        instance.client.prompt(instance.session_id, parts, directory=instance.directory)
    )

    try:
        reply = await asyncio.wait_for(asyncio.shield(prompt_task), timeout=timeout)
        response = _parse_reply(reply)
    except asyncio.TimeoutError:
        instance.pending_prompts.add(prompt_task)
        prompt_task.add_done_callback(
            lambda t: _record_late_result(instance, started, job_id, t)
        )
        error = f"Worker prompt timeout after {timeout}s"
        return _fail(registry, instance, error, started)
    except asyncio.CancelledError:
        prompt_task.cancel()
        _fail(registry, instance, "Worker prompt cancelled", started)
        raise
    except Exception as exc:
        if isinstance(exc, WorkerReplyError):
            instance.warning = f"Last request failed: {exc}"
        return _fail(registry, instance, str(exc) or type(exc).__name__, started)
    finally:
        instance.current_task = None

    finished = time.time()
    duration = round(finished - started, 3)
    instance.last_result = WorkerLastResult(
        at=finished, response=response, duration_seconds=duration, job_id=job_id
    )
    instance.last_activity = finished
    registry.update_status(worker_id, "ready")
    logger.info("workers.send.complete", worker_id=worker_id, job_id=job_id, duration=duration)
    return WorkerSendResult(success=True, response=response, duration_seconds=duration)


def _fail(
    registry: WorkerRegistry,
    instance: WorkerInstance,
    error: str,
    started: float,
) -> WorkerSendResult:
    instance.error = error
    instance.last_activity = time.time()
    registry.update_status(instance.id, "error", error)
    logger.warning("workers.send.failed", worker_id=instance.id, error=error)
    return WorkerSendResult(
        success=False,
        error=error,
        duration_seconds=round(time.time() - started, 3),
    )
