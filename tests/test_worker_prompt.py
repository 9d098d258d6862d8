"""Tests for conductor.workers.prompt — prompt building and reply parsing."""

from __future__ import annotations

from conductor.workers.models import WorkerAttachment
from conductor.workers.prompt import (
    build_bootstrap_prompt,
    build_prompt_parts,
    build_task_text,
    extract_reply_error,
    extract_text_from_reply,
    infer_image_mime_type,
    is_valid_port,
    normalize_base64_image,
    unwrap_reply,
)

from conftest import make_profile


class TestTaskText:
    def test_sync_envelope(self):
        text = build_task_text("do it")
        assert text.startswith('<message-source from="orchestrator" jobId="none">')
        assert "This message was sent by the orchestrator." in text
        assert "do it" in text
        assert "<orchestrator-sync>" in text
        assert "<orchestrator-job" not in text

    def test_job_envelope(self):
        text = build_task_text("do it", job_id="j1", sender="reviewer")
        assert 'from="reviewer" jobId="j1"' in text
        assert 'worker "reviewer"' in text
        assert '<orchestrator-job id="j1">' in text


class TestPromptParts:
    def test_text_only(self):
        assert build_prompt_parts("hi") == [{"type": "text", "text": "hi"}]

    def test_image_path_becomes_file_url(self, tmp_path):
        img = tmp_path / "shot.jpg"
        img.write_bytes(b"x")
        parts = build_prompt_parts("look", [WorkerAttachment(type="image", path=str(img))])
        assert parts[1]["type"] == "file"
        assert parts[1]["mime"] == "image/jpeg"
        assert parts[1]["url"].startswith("file://")
        assert parts[1]["filename"] == "shot.jpg"

    def test_base64_image_strips_data_prefix(self):
        attachment = WorkerAttachment(type="image", base64="data:image/png;base64,QUJD")
        parts = build_prompt_parts("look", [attachment])
        assert parts[1]["url"] == "data:image/png;base64,QUJD"

    def test_non_image_attachments_skipped(self):
        parts = build_prompt_parts("x", [WorkerAttachment(type="file", path="/tmp/a.txt")])
        assert len(parts) == 1


class TestHelpers:
    def test_port_validation(self):
        assert is_valid_port(0)
        assert is_valid_port(65535)
        assert not is_valid_port(70000)
        assert not is_valid_port(None)
        assert not is_valid_port(True)

    def test_mime_inference(self):
        assert infer_image_mime_type("a.WEBP") == "image/webp"
        assert infer_image_mime_type("a.bmp") == "image/png"

    def test_normalize_base64(self):
        assert normalize_base64_image("QUJD") == "QUJD"
        assert normalize_base64_image("data:image/gif;base64,R0lG") == "R0lG"


class TestBootstrapPrompt:
    def test_identity_and_instructions(self):
        text = build_bootstrap_prompt(make_profile("coder", supports_vision=True))
        assert 'You are worker "coder" (Coder).' in text
        assert '{"vision":true,"web":false}' in text
        assert "<orchestrator-instructions>" in text
        assert "<system-context>" not in text

    def test_optional_sections(self):
        text = build_bootstrap_prompt(
            make_profile("coder", system_prompt="Be terse."),
            permission_summary="read-only",
            repo_context="## Repo\nsrc/",
        )
        assert text.startswith("<system-context>\nBe terse.")
        assert "<worker-permissions>\nread-only" in text
        assert "## Repo" in text


class TestReplyParsing:
    def test_text_parts_concatenated(self):
        reply = {"parts": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}
        assert extract_text_from_reply(reply) == "ab"

    def test_reasoning_fallback(self):
        reply = {"parts": [{"type": "reasoning", "text": "thinking"}]}
        assert extract_text_from_reply(reply) == "thinking"

    def test_nested_message_parts(self):
        reply = {"message": {"parts": [{"type": "text", "text": "hi"}]}}
        assert extract_text_from_reply(reply) == "hi"

    def test_string_passthrough(self):
        assert extract_text_from_reply("plain") == "plain"

    def test_unwrap_data(self):
        assert unwrap_reply({"data": {"parts": []}}) == {"parts": []}
        assert unwrap_reply({"parts": []}) == {"parts": []}

    def test_error_shapes(self):
        assert extract_reply_error({"error": "bad"}) == "bad"
        assert extract_reply_error({"error": {"data": {"message": "deep"}}}) == "deep"
        assert extract_reply_error({"error": {"message": "shallow"}}) == "shallow"
        assert extract_reply_error({"error": {"code": 1}}) == '{"code": 1}'
        assert extract_reply_error({"parts": []}) is None
