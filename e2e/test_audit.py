"""Audit sink tests."""

import json
import logging

from core.audit import JsonlAuditSink, read_entries
from core.config import Settings
from schemas.audit import AuditEntry


def _entry(tool="web_search", call_id="tc1", **overrides):
    fields = {
        "ts": "2026-01-15T10:30:00.000Z",
        "tool": tool,
        "args": {"q": "nvda"},
        "resultSummary": "found it",
        "sourceUrls": ["https://example.com"],
        "toolCallId": call_id,
        "duration": 120,
    }
    fields.update(overrides)
    return AuditEntry.model_validate(fields)


class TestJsonlAuditSink:
    def test_writes_one_camel_case_line_per_entry(self, tmp_path):
        path = tmp_path / "scratchpad" / "audit.jsonl"
        sink = JsonlAuditSink(path)

        sink.record(_entry(call_id="a"))
        sink.record(_entry(call_id="b"))

        lines = path.read_text().splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["toolCallId"] == "a"
        assert first["resultSummary"] == "found it"
        assert first["sourceUrls"] == ["https://example.com"]
        assert json.loads(lines[1])["toolCallId"] == "b"

    def test_appends_to_existing_file(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        path.write_text('{"existing": true}\n')

        JsonlAuditSink(path).record(_entry())

        assert len(path.read_text().splitlines()) == 2

    def test_disabled_sink_writes_nothing(self, tmp_path):
        path = tmp_path / "audit.jsonl"

        JsonlAuditSink(path, enabled=False).record(_entry())

        assert not path.exists()

    def test_unwritable_path_logs_instead_of_raising(self, tmp_path, caplog):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("")
        sink = JsonlAuditSink(blocker / "audit.jsonl")

        with caplog.at_level(logging.ERROR, logger="core.audit"):
            sink.record(_entry())

        assert "Failed to write audit entry" in caplog.text

    def test_from_settings_respects_ephemeral_flag(self, tmp_path):
        settings = Settings.from_env({"ALPHA_SENTRY_AUDIT_DIR": str(tmp_path), "VERCEL": "1"})
        sink = JsonlAuditSink.from_settings(settings)

        assert sink.path == tmp_path / "audit.jsonl"
        assert sink.enabled is False


class TestReadEntries:
    def test_missing_file_is_empty(self, tmp_path):
        assert read_entries(tmp_path / "nope.jsonl") == []

    def test_round_trips_recorded_entries(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        sink = JsonlAuditSink(path)
        sink.record(_entry(call_id="a"))

        assert read_entries(path) == [_entry(call_id="a")]

    def test_limit_returns_most_recent(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        sink = JsonlAuditSink(path)
        for i in range(5):
            sink.record(_entry(call_id=f"tc{i}"))

        assert [e.tool_call_id for e in read_entries(path, limit=2)] == ["tc3", "tc4"]

    def test_bad_lines_are_skipped(self, tmp_path):
        path = tmp_path / "audit.jsonl"
        JsonlAuditSink(path).record(_entry(call_id="good"))
        with open(path, "a") as f:
            f.write("not json\n")
            f.write('{"tool": "missing fields"}\n')

        assert [e.tool_call_id for e in read_entries(path)] == ["good"]
