"""Workflow definitions that ship with Conductor."""

from __future__ import annotations

from conductor.workflows.models import WorkflowDefinition, WorkflowStepDefinition


def _step(id: str, title: str, worker_id: str, prompt: str, carry: bool = False) -> WorkflowStepDefinition:
    return WorkflowStepDefinition(id=id, title=title, worker_id=worker_id, prompt=prompt, carry=carry)


def build_builtin_workflows() -> list[WorkflowDefinition]:
    return [
        WorkflowDefinition(
            id="bug-triage",
            name="Bug Triage",
            description="Collect context, propose a fix, and review for risks.",
            steps=[
                _step(
                    "triage-scan",
                    "Scan Context",
                    "explorer",
                    "Scan the repo for context related to: {task}.\n"
                    "Return relevant files, symbols, and a brief summary of findings.",
                    carry=True,
                ),
                _step(
                    "triage-fix",
                    "Propose Fix",
                    "coder",
                    "Propose a fix for: {task}.\n"
                    "Use this context if helpful:\n{carry}\n"
                    "Return a concise plan and any code-level guidance.",
                    carry=True,
                ),
                _step(
                    "triage-review",
                    "Risk Review",
                    "reviewer",
                    "Review the proposed fix for risks, regressions, or missing tests.\n"
                    "Context:\n{carry}\n"
                    "Return actionable review feedback.",
                ),
            ],
        ),
        WorkflowDefinition(
            id="security-audit",
            name="Security Audit",
            description="Identify security risks and recommend mitigations.",
            steps=[
                _step(
                    "security-findings",
                    "Threat Scan",
                    "security",
                    "Analyze security risks for: {task}.\n"
                    "Identify threats, vulnerable patterns, and data exposure concerns.",
                    carry=True,
                ),
                _step(
                    "security-review",
                    "Review Findings",
                    "reviewer",
                    "Review the security findings for clarity and completeness.\n"
                    "Context:\n{carry}\n"
                    "Suggest any missing risks or mitigations.",
                    carry=True,
                ),
                _step(
                    "security-mitigations",
                    "Mitigation Plan",
                    "architect",
                    "Propose a mitigation plan based on the security findings.\n"
                    "Context:\n{carry}\n"
                    "Return prioritized mitigation steps.",
                ),
            ],
        ),
        WorkflowDefinition(
            id="qa-regression",
            name="QA Regression",
            description="Design test plan, propose fixes, and verify outcomes.",
            steps=[
                _step(
                    "qa-plan",
                    "Test Plan",
                    "qa",
                    "Draft a focused regression test plan for: {task}.\n"
                    "Include repro steps and expected outcomes.",
                    carry=True,
                ),
                _step(
                    "qa-fix",
                    "Implementation Notes",
                    "coder",
                    "Given this QA plan, propose implementation or fixes for: {task}.\n"
                    "Context:\n{carry}\n"
                    "Return a concise plan.",
                    carry=True,
                ),
                _step(
                    "qa-verify",
                    "Verification",
                    "qa",
                    "Verify expected behavior based on the plan and notes.\n"
                    "Context:\n{carry}\n"
                    "Return a checklist of verifications.",
                ),
            ],
        ),
        WorkflowDefinition(
            id="spec-to-implementation",
            name="Spec to Implementation",
            description="Turn requirements into an implementation plan with review.",
            steps=[
                _step(
                    "spec",
                    "Requirements",
                    "product",
                    "Turn this task into a short spec with acceptance criteria:\n{task}\n"
                    "Be explicit about scope and edge cases.",
                    carry=True,
                ),
                _step(
                    "architecture",
                    "Architecture Plan",
                    "architect",
                    "Design an implementation approach for the spec.\n"
                    "Context:\n{carry}\n"
                    "Return a high-level plan and risks.",
                    carry=True,
                ),
                _step(
                    "implementation",
                    "Implementation Steps",
                    "coder",
                    "Outline concrete implementation steps based on the plan.\n"
                    "Context:\n{carry}\n"
                    "Include tests to add or update.",
                    carry=True,
                ),
                _step(
                    "review",
                    "Review Plan",
                    "reviewer",
                    "Review the implementation steps for gaps and missing tests.\n"
                    "Context:\n{carry}\n"
                    "Return review notes.",
                ),
            ],
        ),
        WorkflowDefinition(
            id="data-digest",
            name="Data Digest",
            description="Summarize metrics, research context, and validate insights.",
            steps=[
                _step(
                    "insights",
                    "Insights",
                    "analyst",
                    "Summarize the key insights for: {task}.\n"
                    "Call out trends, anomalies, and likely drivers.",
                    carry=True,
                ),
                _step(
                    "context",
                    "Context Research",
                    "docs",
                    "Provide supporting context or references for the insights.\n"
                    "Context:\n{carry}\n"
                    "Cite sources or internal references if available.",
                    carry=True,
                ),
                _step(
                    "validation",
                    "Validation",
                    "reviewer",
                    "Validate the insights for accuracy and missing data.\n"
                    "Context:\n{carry}\n"
                    "Return any concerns or follow-ups.",
                ),
            ],
        ),
    ]
