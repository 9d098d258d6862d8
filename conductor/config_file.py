"""TOML configuration file utilities.

Worker profiles and custom workflows live in conductor.toml:

    [profiles.coder]
    name = "Coder"
    model = "anthropic/claude-sonnet"
    purpose = "Writes and edits code"

    [[workflows]]
    id = "review-only"
    name = "Review Only"
    steps = [{ id = "r", title = "Review", worker_id = "reviewer", prompt = "{task}" }]

Reading: uses tomllib (stdlib, Python >=3.11)
Writing: uses tomli-w (only write dependency needed)
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from conductor.workers.models import WorkerProfile
from conductor.workflows.models import WorkflowDefinition

logger = structlog.get_logger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_FILENAME = "conductor.toml"


class ConfigFileError(ValueError):
    """conductor.toml content failed validation."""


def find_config() -> Path | None:
    """Search for conductor.toml in standard locations.

    Search order:
    0. $CONDUCTOR_CONFIG, when set
    1. Current working directory
    2. ~/.config/conductor/conductor.toml
    3. Project root (where the conductor package lives)

    Returns None if not found.
    """
    explicit = os.environ.get("CONDUCTOR_CONFIG", "").strip()
    if explicit:
        path = Path(explicit).expanduser()
        return path if path.is_file() else None

    cwd = Path.cwd() / CONFIG_FILENAME
    if cwd.is_file():
        return cwd

    xdg = Path.home() / ".config" / "conductor" / CONFIG_FILENAME
    if xdg.is_file():
        return xdg

    project = _PROJECT_ROOT / CONFIG_FILENAME
    if project.is_file():
        return project

    return None


def load_config(path: Path) -> dict:
    """Load and parse a conductor.toml file."""
    import tomllib

    with open(path, "rb") as f:
        return tomllib.load(f)


def write_config(path: Path, data: dict) -> None:
    """Atomic write with tempfile + rename.

    Creates parent directories if needed.
    """
    import tomli_w

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=path.parent, suffix=".tmp", prefix=".conductor_config_"
    )
    try:
        with os.fdopen(fd, "wb") as f:
            tomli_w.dump(data, f)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def load_profiles(data: dict[str, Any]) -> dict[str, WorkerProfile]:
    """Build WorkerProfiles from the ``[profiles.<id>]`` tables.

    The table key is the profile id; an ``id`` inside the table must agree.
    ``name`` defaults to the id.
    """
    raw = data.get("profiles") or {}
    if not isinstance(raw, dict):
        raise ConfigFileError("[profiles] must be a table of tables")

    profiles: dict[str, WorkerProfile] = {}
    for profile_id, table in raw.items():
        if not isinstance(table, dict):
            raise ConfigFileError(f"[profiles.{profile_id}] must be a table")
        declared = table.get("id", profile_id)
        if declared != profile_id:
            raise ConfigFileError(
                f"[profiles.{profile_id}] declares mismatched id {declared!r}"
            )
        fields = {"name": profile_id, **table, "id": profile_id}
        try:
            profiles[profile_id] = WorkerProfile.model_validate(fields)
        except ValidationError as exc:
            raise ConfigFileError(f"Invalid profile {profile_id!r}: {exc}") from exc

    logger.debug("config_file.profiles_loaded", count=len(profiles))
    return profiles


def load_workflows(data: dict[str, Any]) -> list[WorkflowDefinition]:
    """Build WorkflowDefinitions from the ``[[workflows]]`` array."""
    raw = data.get("workflows") or []
    if not isinstance(raw, list):
        raise ConfigFileError("workflows must be an array of tables ([[workflows]])")

    workflows: list[WorkflowDefinition] = []
    seen: set[str] = set()
    for index, table in enumerate(raw):
        try:
            workflow = WorkflowDefinition.model_validate(table)
        except ValidationError as exc:
            raise ConfigFileError(f"Invalid workflow at index {index}: {exc}") from exc
        if workflow.id in seen:
            raise ConfigFileError(f"Duplicate workflow id {workflow.id!r}")
        seen.add(workflow.id)
        workflows.append(workflow)

    logger.debug("config_file.workflows_loaded", count=len(workflows))
    return workflows


def generate_template() -> dict[str, Any]:
    """Starter conductor.toml with one profile per built-in workflow role."""
    from conductor.workflows.builtins import build_builtin_workflows

    roles: dict[str, None] = {}
    for workflow in build_builtin_workflows():
        for step in workflow.steps:
            roles.setdefault(step.worker_id)

    return {
        "profiles": {
            role: {
                "name": role.replace("-", " ").title(),
                "model": "auto",
                "purpose": "",
                "enabled": True,
            }
            for role in roles
        },
    }
