"""Audit sink.

An append-only newline-delimited JSON log of every externally visible tool
call. The event bridge hands entries to an injected AuditRecorder and never
reads them back.

Audit logging must never abort a run, so JsonlAuditSink.record() never
raises. Failures go to the module logger instead. Each entry is written with
a single append, so concurrent runs in one server process can share the file
without locking.
"""

import json
import logging
import pathlib
from typing import Protocol

from pydantic import ValidationError

from core.config import Settings
from schemas.audit import AuditEntry

logger = logging.getLogger(__name__)


class AuditRecorder(Protocol):
    """Capability the bridge depends on for its audit side channel."""

    def record(self, entry: AuditEntry) -> None:
        """Persist one entry. Must not raise."""


class JsonlAuditSink:
    """Appends AuditEntry objects as JSON lines to a single file.

    Attributes:
        path: The audit.jsonl file. Its parent directory is created on the
            first write.
        enabled: When False the sink discards everything. Used in hosted
            environments with no durable local filesystem.
    """

    def __init__(self, path: pathlib.Path, enabled: bool = True) -> None:
        self.path = pathlib.Path(path)
        self.enabled = enabled
        self._dir_ensured = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "JsonlAuditSink":
        return cls(settings.audit_file, enabled=settings.audit_enabled)

    def record(self, entry: AuditEntry) -> None:
        """Append one entry to the log.

        Never raises. I/O and serialization failures are logged at ERROR
        and the entry is dropped.
        """
        if not self.enabled:
            return
        try:
            if not self._dir_ensured:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self._dir_ensured = True
            line = entry.model_dump_json(by_alias=True) + "\n"
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to write audit entry for tool '%s': %s", entry.tool, exc)

    append = record


def read_entries(path: pathlib.Path, limit: int | None = None) -> list[AuditEntry]:
    """Load audit entries from a log file, oldest first.

    Lines that are not valid entries are skipped with a warning. A missing
    file yields an empty list.

    Args:
        path: The audit.jsonl file.
        limit: When given, only the last `limit` entries are returned.
    """
    path = pathlib.Path(path)
    if not path.exists():
        return []

    entries: list[AuditEntry] = []
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(AuditEntry.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as exc:
                logger.warning("Skipping unreadable audit line %d in %s: %s", lineno, path, exc)

    if limit is not None:
        return entries[-limit:] if limit > 0 else []
    return entries
