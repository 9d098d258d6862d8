"""
Workflow Data Models — pipelines of worker steps.

A WorkflowDefinition is an ordered list of steps, each naming the worker
that handles it and a prompt template. Templates use two literal
placeholders: ``{task}`` (the original task text) and ``{carry}`` (output
accumulated from earlier carry-flagged steps).
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from conductor.workers.models import WorkerAttachment


class WorkflowStepDefinition(BaseModel):
    id: str
    title: str
    worker_id: str
    prompt: str
    carry: bool = False
    # Seconds; capped by WorkflowLimits.per_step_timeout.
    timeout: Optional[float] = None


class WorkflowDefinition(BaseModel):
    id: str
    name: str
    description: str = ""
    steps: list[WorkflowStepDefinition] = Field(default_factory=list)

    @field_validator("steps")
    @classmethod
    def _unique_step_ids(cls, steps: list[WorkflowStepDefinition]) -> list[WorkflowStepDefinition]:
        seen: set[str] = set()
        for step in steps:
            if step.id in seen:
                raise ValueError(f"Duplicate step id {step.id!r}")
            seen.add(step.id)
        return steps


class WorkflowLimits(BaseModel):
    """Per-run safety limits (sizes in characters, timeout in seconds)."""

    max_steps: int = 4
    max_task_chars: int = 12000
    max_carry_chars: int = 24000
    per_step_timeout: float = 120.0


class WorkflowRunInput(BaseModel):
    workflow_id: str
    task: str
    limits: WorkflowLimits = Field(default_factory=WorkflowLimits)
    attachments: Optional[list[WorkerAttachment]] = None
    auto_spawn: bool = True


class WorkflowStepResult(BaseModel):
    id: str
    title: str
    worker_id: str
    status: Literal["success", "error"]
    response: Optional[str] = None
    error: Optional[str] = None
    started_at: float
    finished_at: float
    duration_seconds: float


class WorkflowRunResult(BaseModel):
    workflow_id: str
    workflow_name: str
    started_at: float
    finished_at: float
    steps: list[WorkflowStepResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return all(step.status == "success" for step in self.steps)
