"""
Workflow Engine — fail-fast pipelines across workers.

Steps run strictly in order because each prompt may depend on what earlier
steps produced. The engine never talks to workers directly: callers inject
``resolve_worker`` and ``send_to_worker`` so runs are easy to drive from
tests or from any dispatcher with the same shape.
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Optional, Protocol, Sequence

import structlog

from conductor.events import (
    EventBus,
    WorkflowCompletedEvent,
    WorkflowStepEvent,
    emit_safely,
)
from conductor.workers.models import WorkerAttachment
from conductor.workflows.builtins import build_builtin_workflows
from conductor.workflows.models import (
    WorkflowDefinition,
    WorkflowLimits,
    WorkflowRunInput,
    WorkflowRunResult,
    WorkflowStepDefinition,
    WorkflowStepResult,
)

logger = structlog.get_logger(__name__)


class WorkflowValidationError(ValueError):
    """A run was rejected before any step executed."""


class ResolveWorker(Protocol):
    def __call__(self, worker_id: str, auto_spawn: bool) -> Awaitable[str]: ...


class SendToWorker(Protocol):
    def __call__(
        self,
        worker_id: str,
        message: str,
        *,
        timeout: float,
        attachments: Optional[Sequence[WorkerAttachment]] = None,
    ) -> Awaitable[Any]: ...


def apply_template(template: str, variables: dict[str, str]) -> str:
    """Literal replace-all of ``{name}`` placeholders, applied in mapping order."""
    out = template
    for key, value in variables.items():
        out = out.replace("{" + key + "}", value)
    return out


def append_carry(existing: str, block: str, max_chars: int) -> str:
    """Append ``block`` and keep only the most recent ``max_chars`` characters."""
    combined = f"{existing}\n\n{block}" if existing else block
    if len(combined) <= max_chars:
        return combined
    if max_chars <= 0:
        return ""
    return combined[-max_chars:]


def build_step_prompt(step: WorkflowStepDefinition, task: str, carry: str) -> str:
    return apply_template(step.prompt, {"task": task, "carry": carry})


def resolve_step_timeout(step: WorkflowStepDefinition, limits: WorkflowLimits) -> float:
    """A positive per-step timeout can shorten the run limit, never extend it."""
    if step.timeout is not None and step.timeout > 0:
        return min(step.timeout, limits.per_step_timeout)
    return limits.per_step_timeout


def _result_field(result: Any, name: str) -> Any:
    if isinstance(result, dict):
        return result.get(name)
    return getattr(result, name, None)


class WorkflowEngine:
    """Registry of workflow definitions plus the sequential runner."""

    def __init__(self, event_bus: Optional[EventBus] = None):
        self._workflows: dict[str, WorkflowDefinition] = {}
        self._event_bus = event_bus

    def register(self, definition: WorkflowDefinition) -> None:
        if definition.id in self._workflows:
            logger.debug("workflow.replaced", workflow_id=definition.id)
        self._workflows[definition.id] = definition

    def list(self) -> list[WorkflowDefinition]:
        return sorted(self._workflows.values(), key=lambda wf: wf.id)

    def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._workflows.get(workflow_id)

    def load_builtins(self) -> None:
        for definition in build_builtin_workflows():
            self.register(definition)

    def clear(self) -> None:
        self._workflows.clear()

    def validate(self, run_input: WorkflowRunInput) -> WorkflowDefinition:
        """Pre-flight checks; raises WorkflowValidationError."""
        workflow = self.get(run_input.workflow_id)
        if workflow is None:
            raise WorkflowValidationError(f'Unknown workflow "{run_input.workflow_id}".')
        limits = run_input.limits
        if len(run_input.task) > limits.max_task_chars:
            raise WorkflowValidationError(
                f"Task exceeds maxTaskChars ({limits.max_task_chars})."
            )
        if len(workflow.steps) > limits.max_steps:
            raise WorkflowValidationError(
                f"Workflow has {len(workflow.steps)} steps (maxSteps={limits.max_steps})."
            )
        return workflow

    async def run(
        self,
        run_input: WorkflowRunInput,
        resolve_worker: ResolveWorker,
        send_to_worker: SendToWorker,
    ) -> WorkflowRunResult:
        workflow = self.validate(run_input)
        limits = run_input.limits
        started = time.time()
        steps: list[WorkflowStepResult] = []
        carry = ""

        logger.info("workflow.start", workflow_id=workflow.id, steps=len(workflow.steps))

        for index, step in enumerate(workflow.steps):
            step_started = time.time()
            worker_id = await resolve_worker(step.worker_id, run_input.auto_spawn)
            prompt = build_step_prompt(step, run_input.task, carry)
            result = await send_to_worker(
                worker_id,
                prompt,
                timeout=resolve_step_timeout(step, limits),
                attachments=run_input.attachments if index == 0 else None,
            )
            step_finished = time.time()
            timing = {
                "started_at": step_started,
                "finished_at": step_finished,
                "duration_seconds": round(step_finished - step_started, 3),
            }

            if not _result_field(result, "success"):
                error = _result_field(result, "error") or "unknown_error"
                steps.append(
                    WorkflowStepResult(
                        id=step.id,
                        title=step.title,
                        worker_id=worker_id,
                        status="error",
                        error=error,
                        **timing,
                    )
                )
                logger.warning(
                    "workflow.step.failed",
                    workflow_id=workflow.id,
                    step_id=step.id,
                    worker_id=worker_id,
                    error=error,
                )
                self._emit_step(workflow.id, steps[-1])
                break

            response = _result_field(result, "response") or ""
            steps.append(
                WorkflowStepResult(
                    id=step.id,
                    title=step.title,
                    worker_id=worker_id,
                    status="success",
                    response=response,
                    **timing,
                )
            )
            logger.info(
                "workflow.step.complete",
                workflow_id=workflow.id,
                step_id=step.id,
                worker_id=worker_id,
                duration=timing["duration_seconds"],
            )
            self._emit_step(workflow.id, steps[-1])

            if step.carry:
                carry = append_carry(
                    carry, f"### {step.title}\n{response}", limits.max_carry_chars
                )

        run_result = WorkflowRunResult(
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            started_at=started,
            finished_at=time.time(),
            steps=steps,
        )
        logger.info(
            "workflow.finished",
            workflow_id=workflow.id,
            steps_run=len(steps),
            succeeded=run_result.succeeded,
        )
        emit_safely(
            self._event_bus,
            WorkflowCompletedEvent(
                workflow_id=workflow.id,
                steps_run=len(steps),
                succeeded=run_result.succeeded,
            ),
        )
        return run_result

    def _emit_step(self, workflow_id: str, step: WorkflowStepResult) -> None:
        emit_safely(
            self._event_bus,
            WorkflowStepEvent(
                workflow_id=workflow_id,
                step_id=step.id,
                worker_id=step.worker_id,
                status=step.status,
                duration_seconds=step.duration_seconds,
                error=step.error,
            ),
        )
