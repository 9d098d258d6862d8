"""
Main — logging setup shared by every Conductor entry point.

Library code only ever calls ``structlog.get_logger(__name__)``; whoever owns
the process (the CLI, an embedding service, tests) calls
``configure_logging()`` once to decide where and how events are rendered.
"""

from __future__ import annotations

import logging
from typing import Optional

import structlog

from conductor.config import LoggingConfig

# Fields that may carry whole prompts or worker replies.
_LONG_TEXT_KEYS = ("message", "response", "prompt", "task", "carry", "error")

_logging_configured = False


def _make_truncator(max_chars: int):
    def _truncate_long_fields(logger, method_name, event_dict):
        """Structlog processor that clips prompt/response text in log output."""
        for key in _LONG_TEXT_KEYS:
            val = event_dict.get(key)
            if isinstance(val, str) and len(val) > max_chars:
                event_dict[key] = val[:max_chars] + "... [truncated]"
        return event_dict

    return _truncate_long_fields


def configure_logging(config: Optional[LoggingConfig] = None, *, force: bool = False) -> None:
    """Configure structlog and standard-library logging.

    Safe to call more than once; later calls are no-ops unless ``force``.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured and not force:
        return
    _logging_configured = True

    config = config or LoggingConfig()
    level = getattr(logging, config.level)
    logging.basicConfig(format="%(message)s", level=level, force=force)
    logging.getLogger().setLevel(level)

    renderer = (
        structlog.processors.JSONRenderer()
        if config.json_logs
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _make_truncator(config.max_field_chars),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )
