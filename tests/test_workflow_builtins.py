"""Tests for built-in workflows and running workflows through the manager."""

from __future__ import annotations

import pytest

from conductor.workflows.builtins import build_builtin_workflows
from conductor.workflows.engine import WorkflowEngine
from conductor.workflows.models import WorkflowDefinition, WorkflowLimits


class TestBuiltins:
    def test_expected_ids(self):
        ids = {wf.id for wf in build_builtin_workflows()}
        assert ids == {
            "bug-triage",
            "security-audit",
            "qa-regression",
            "spec-to-implementation",
            "data-digest",
        }

    def test_fit_default_step_limit(self):
        limits = WorkflowLimits()
        for wf in build_builtin_workflows():
            assert 1 <= len(wf.steps) <= limits.max_steps

    def test_last_step_does_not_carry(self):
        for wf in build_builtin_workflows():
            assert wf.steps[-1].carry is False

    def test_first_step_uses_task(self):
        for wf in build_builtin_workflows():
            assert "{task}" in wf.steps[0].prompt

    def test_bug_triage_roles(self):
        wf = next(w for w in build_builtin_workflows() if w.id == "bug-triage")
        assert [s.worker_id for s in wf.steps] == ["explorer", "coder", "reviewer"]

    def test_duplicate_step_ids_rejected(self):
        with pytest.raises(ValueError, match="Duplicate step id"):
            WorkflowDefinition.model_validate(
                {
                    "id": "dup",
                    "name": "Dup",
                    "steps": [
                        {"id": "s", "title": "A", "worker_id": "w", "prompt": "p"},
                        {"id": "s", "title": "B", "worker_id": "w", "prompt": "p"},
                    ],
                }
            )


class TestRunThroughManager:
    @pytest.mark.asyncio
    async def test_bug_triage_spawns_and_runs(self, manager, transport):
        engine = WorkflowEngine()
        engine.load_builtins()

        result = await manager.run_workflow(engine, "bug-triage", "login fails on Safari")

        assert result.succeeded
        assert [s.worker_id for s in result.steps] == ["explorer", "coder", "reviewer"]
        assert {w.id for w in manager.list_workers()} == {"explorer", "coder", "reviewer"}
        assert len(transport.calls) == 3

    @pytest.mark.asyncio
    async def test_without_auto_spawn_missing_worker_fails_fast(self, manager, transport):
        engine = WorkflowEngine()
        engine.load_builtins()

        result = await manager.run_workflow(engine, "bug-triage", "t", auto_spawn=False)

        assert not result.succeeded
        assert len(result.steps) == 1
        assert "not found" in result.steps[0].error
        assert transport.calls == []
