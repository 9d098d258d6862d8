"""
Workflows — sequential multi-worker pipelines.

A workflow runs its steps in order, feeding selected step outputs forward
as context, and stops at the first failing step.
"""

from __future__ import annotations

from conductor.workflows.models import (
    WorkflowDefinition,
    WorkflowLimits,
    WorkflowRunInput,
    WorkflowRunResult,
    WorkflowStepDefinition,
    WorkflowStepResult,
)

__all__ = [
    "WorkflowDefinition",
    "WorkflowLimits",
    "WorkflowRunInput",
    "WorkflowRunResult",
    "WorkflowStepDefinition",
    "WorkflowStepResult",
]
