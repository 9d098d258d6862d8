# conductor/config.py
"""
Configuration for the Conductor orchestration engine.

Runtime settings are loaded from environment variables (and a .env file at
the project root) and validated with Pydantic. Worker profiles and workflow
definitions are structured data and live in conductor.toml instead; see
conductor.config_file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal

import structlog
from pydantic import BeforeValidator, Field, model_validator
from pydantic_settings import BaseSettings

from conductor.workflows.models import WorkflowLimits

logger = structlog.get_logger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


def _coerce_str_list(value: object) -> list[str]:
    """Coerce env-var values into a list of stripped, non-empty strings.

    Accepts:
      - A single str         → ["value"]
      - Comma-separated str  → ["a", "b"]
      - JSON array str       → (parsed by pydantic-settings before this runs)
      - An existing list     → passthrough with str coercion
    """
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return []
        if "," in stripped:
            return [part.strip() for part in stripped.split(",") if part.strip()]
        return [stripped]
    return []


StrList = Annotated[list[str], BeforeValidator(_coerce_str_list)]


class WorkerConfig(BaseSettings):
    """Worker lifecycle, dispatch and job-retention settings."""

    directory: str = Field(default_factory=lambda: str(Path.cwd()), alias="CONDUCTOR_DIRECTORY")
    hostname: str = Field("127.0.0.1", alias="CONDUCTOR_HOSTNAME")
    spawn_timeout: float = Field(60.0, alias="CONDUCTOR_SPAWN_TIMEOUT")
    bootstrap_timeout: float = Field(15.0, alias="CONDUCTOR_BOOTSTRAP_TIMEOUT")
    send_timeout: float = Field(120.0, alias="CONDUCTOR_SEND_TIMEOUT")
    job_timeout: float = Field(600.0, alias="CONDUCTOR_JOB_TIMEOUT")
    ready_wait_cap: float = Field(300.0, alias="CONDUCTOR_READY_WAIT_CAP")
    job_max_count: int = Field(200, alias="CONDUCTOR_JOB_MAX_COUNT")
    job_max_age: float = Field(24 * 60 * 60, alias="CONDUCTOR_JOB_MAX_AGE")
    auto_spawn: bool = Field(False, alias="CONDUCTOR_AUTO_SPAWN")
    spawn: StrList = Field(default_factory=list, alias="CONDUCTOR_SPAWN")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "WorkerConfig":
        self.spawn_timeout = max(1.0, float(self.spawn_timeout))
        self.bootstrap_timeout = max(0.1, float(self.bootstrap_timeout))
        self.send_timeout = max(0.001, float(self.send_timeout))
        self.job_timeout = max(0.001, float(self.job_timeout))
        self.ready_wait_cap = max(0.0, float(self.ready_wait_cap))
        self.job_max_count = max(1, int(self.job_max_count))
        self.job_max_age = max(0.0, float(self.job_max_age))
        return self


class WorkflowConfig(BaseSettings):
    """Workflow engine switches and per-run safety limits."""

    enabled: bool = Field(True, alias="CONDUCTOR_WORKFLOWS_ENABLED")
    builtins: bool = Field(True, alias="CONDUCTOR_WORKFLOW_BUILTINS")
    max_steps: int = Field(4, alias="CONDUCTOR_WORKFLOW_MAX_STEPS")
    max_task_chars: int = Field(12000, alias="CONDUCTOR_WORKFLOW_MAX_TASK_CHARS")
    max_carry_chars: int = Field(24000, alias="CONDUCTOR_WORKFLOW_MAX_CARRY_CHARS")
    per_step_timeout: float = Field(120.0, alias="CONDUCTOR_WORKFLOW_STEP_TIMEOUT")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="after")
    def normalize_limits(self) -> "WorkflowConfig":
        self.max_steps = max(1, int(self.max_steps))
        self.max_task_chars = max(1, int(self.max_task_chars))
        self.max_carry_chars = max(0, int(self.max_carry_chars))
        self.per_step_timeout = max(0.001, float(self.per_step_timeout))
        return self

    def to_limits(self) -> WorkflowLimits:
        return WorkflowLimits(
            max_steps=self.max_steps,
            max_task_chars=self.max_task_chars,
            max_carry_chars=self.max_carry_chars,
            per_step_timeout=self.per_step_timeout,
        )


class LoggingConfig(BaseSettings):
    """Log verbosity and rendering."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        "WARNING", alias="CONDUCTOR_LOG_LEVEL"
    )
    json_logs: bool = Field(False, alias="CONDUCTOR_LOG_JSON")
    max_field_chars: int = Field(500, alias="CONDUCTOR_LOG_MAX_FIELD_CHARS")

    model_config = {"env_file": _ENV_FILE, "extra": "ignore", "populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def normalize_level(cls, data: object) -> object:
        if isinstance(data, dict):
            for key in ("CONDUCTOR_LOG_LEVEL", "level"):
                if isinstance(data.get(key), str):
                    data[key] = data[key].strip().upper()
        return data
