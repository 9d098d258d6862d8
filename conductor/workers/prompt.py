"""Prompt construction and reply parsing for worker sessions."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Optional, Sequence

from conductor.workers.models import WorkerAttachment, WorkerProfile

_DATA_URL_RE = re.compile(r"^data:.*?;base64,(.*)$", re.DOTALL)

_IMAGE_MIME_BY_SUFFIX = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
    ".gif": "image/gif",
}


def is_valid_port(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 65535


def normalize_base64_image(data: str) -> str:
    """Strip a ``data:<mime>;base64,`` prefix if present."""
    match = _DATA_URL_RE.match(data)
    return match.group(1) if match else data


def infer_image_mime_type(path: str) -> str:
    return _IMAGE_MIME_BY_SUFFIX.get(Path(path).suffix.lower(), "image/png")


def build_task_text(
    message: str,
    *,
    job_id: Optional[str] = None,
    sender: Optional[str] = None,
) -> str:
    """Wrap a message in the source envelope workers expect."""
    source = sender or "orchestrator"
    described = "the orchestrator" if source == "orchestrator" else f'worker "{source}"'
    text = (
        f'<message-source from="{source}" jobId="{job_id or "none"}">\n'
        f"This message was sent by {described}.\n"
        f"</message-source>\n\n"
        f"{message}"
    )
    if job_id:
        text += (
            f'\n\n<orchestrator-job id="{job_id}">\n'
            "IMPORTANT: Reply with your full answer as plain text.\n"
            "</orchestrator-job>"
        )
    else:
        text += (
            "\n\n<orchestrator-sync>\n"
            "IMPORTANT: Reply with your final answer as plain text.\n"
            "</orchestrator-sync>"
        )
    return text


def build_prompt_parts(
    message: str,
    attachments: Optional[Sequence[WorkerAttachment]] = None,
) -> list[dict[str, Any]]:
    """Convert a message plus image attachments into session prompt parts.

    Non-image attachments are skipped; images become ``file`` parts pointing
    at a ``file://`` URL or an inline ``data:`` URL.
    """
    parts: list[dict[str, Any]] = [{"type": "text", "text": message}]
    for attachment in attachments or ():
        if attachment.type != "image":
            continue
        mime = attachment.mime_type or (
            infer_image_mime_type(attachment.path) if attachment.path else "image/png"
        )
        if attachment.path:
            if attachment.path.startswith("file://"):
                url = attachment.path
            else:
                url = Path(attachment.path).resolve().as_uri()
            part = {"type": "file", "mime": mime, "url": url}
            filename = Path(attachment.path).name
            if filename:
                part["filename"] = filename
            parts.append(part)
            continue
        if attachment.base64:
            payload = normalize_base64_image(attachment.base64)
            if payload:
                parts.append(
                    {"type": "file", "mime": mime, "url": f"data:{mime};base64,{payload}"}
                )
    return parts


def build_bootstrap_prompt(
    profile: WorkerProfile,
    *,
    permission_summary: Optional[str] = None,
    repo_context: Optional[str] = None,
) -> str:
    """Identity and instruction context injected once into a fresh session."""
    capabilities = json.dumps(
        {"vision": profile.supports_vision, "web": profile.supports_web},
        separators=(",", ":"),
    )
    sections: list[str] = []
    if profile.system_prompt:
        sections.append(f"<system-context>\n{profile.system_prompt}\n</system-context>\n\n")
    if repo_context:
        sections.append(f"\n\n{repo_context}\n")
    sections.append(
        "<worker-identity>\n"
        f'You are worker "{profile.id}" ({profile.name}).\n'
        f"Your capabilities: {capabilities}\n"
        "</worker-identity>\n\n"
    )
    if permission_summary:
        sections.append(f"<worker-permissions>\n{permission_summary}\n</worker-permissions>\n\n")
    sections.append(
        "<orchestrator-instructions>\n"
        "- Always reply with a direct plain-text answer.\n"
        "- If a jobId is provided, include it in your response if relevant.\n"
        "</orchestrator-instructions>"
    )
    return "".join(sections)


def _read_parts(value: Any) -> Optional[list[dict[str, Any]]]:
    if not isinstance(value, dict):
        return None
    parts = value.get("parts")
    if isinstance(parts, list):
        return [p for p in parts if isinstance(p, dict)]
    return None


def unwrap_reply(value: Any) -> Any:
    """Unwrap replies that nest their payload under ``data``."""
    if isinstance(value, dict) and "data" in value:
        return value["data"] if value["data"] is not None else value
    return value


def extract_reply_error(value: Any) -> Optional[str]:
    """Return a readable message if the reply carries an ``error`` entry."""
    if not isinstance(value, dict) or not value.get("error"):
        return None
    error = value["error"]
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        data = error.get("data")
        if isinstance(data, dict) and isinstance(data.get("message"), str):
            return data["message"]
        if isinstance(error.get("message"), str):
            return error["message"]
    try:
        return json.dumps(error)
    except (TypeError, ValueError):
        return str(error)


def extract_text_from_reply(data: Any) -> str:
    """Concatenate text parts of a reply, falling back to reasoning parts."""
    if isinstance(data, str):
        return data
    message = data.get("message") if isinstance(data, dict) else None
    parts = _read_parts(data) or _read_parts(message) or []
    text = ""
    reasoning = ""
    for part in parts:
        kind = part.get("type")
        body = part.get("text")
        if not isinstance(body, str):
            continue
        if kind == "text":
            text += body
        elif kind == "reasoning":
            reasoning += body
    return text or reasoning
