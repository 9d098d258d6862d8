"""Shared config loading for CLI commands."""

from __future__ import annotations

import click

from conductor.config import WorkflowConfig
from conductor.config_file import (
    ConfigFileError,
    find_config,
    load_config,
    load_profiles,
    load_workflows,
)
from conductor.workers.models import WorkerProfile
from conductor.workflows.engine import WorkflowEngine


def _load_data() -> dict:
    path = find_config()
    if path is None:
        return {}
    try:
        return load_config(path)
    except (OSError, ValueError) as exc:
        raise click.ClickException(f"Could not read {path}: {exc}") from exc


def load_profiles_or_fail() -> dict[str, WorkerProfile]:
    try:
        return load_profiles(_load_data())
    except ConfigFileError as exc:
        raise click.ClickException(str(exc)) from exc


def build_engine() -> WorkflowEngine:
    """Engine holding the built-in workflows (when enabled) plus conductor.toml ones."""
    config = WorkflowConfig()
    engine = WorkflowEngine()
    if not config.enabled:
        return engine
    if config.builtins:
        engine.load_builtins()
    try:
        for workflow in load_workflows(_load_data()):
            engine.register(workflow)
    except ConfigFileError as exc:
        raise click.ClickException(str(exc)) from exc
    return engine
