"""Append-only JSONL log of analysis runs.

Every finished run (done, skipped, or failed) is appended to a monthly JSONL
file. Entries are never modified or deleted; the log is for auditing how a
day's score came about, not a source of truth for scoring.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from align_engine.config import RUN_LOG_DIR
from align_engine.models import RunResult


@dataclass
class RunLogEntry:
    message_id: str = ""
    logged_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    state: str = ""
    day: str | None = None
    skipped: bool = False
    error: str | None = None
    inferred: dict[str, float] = field(default_factory=dict)
    resolved: dict[str, float] = field(default_factory=dict)
    display_score: int | None = None
    priority: str | None = None

    @classmethod
    def from_result(cls, result: RunResult) -> RunLogEntry:
        snap = result.snapshot
        return cls(
            message_id=result.message_id,
            state=result.state.value,
            day=result.day.isoformat() if result.day else None,
            skipped=result.skipped,
            error=result.error,
            inferred=dict(result.inferred),
            resolved=dict(result.resolved),
            display_score=snap.display_score if snap else None,
            priority=snap.priority if snap else None,
        )


class RunLogger:
    """Append-only JSONL logger for analysis runs."""

    def __init__(self, log_dir: Path | None = None) -> None:
        self.log_dir = log_dir or RUN_LOG_DIR
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def _month_path(self, logged_at: str) -> Path:
        return self.log_dir / f"{logged_at[:7]}.jsonl"

    def append(self, result: RunResult) -> tuple[str, int]:
        """Append a run and return (file_path, byte_offset)."""
        entry = RunLogEntry.from_result(result)
        path = self._month_path(entry.logged_at)
        line = json.dumps(entry.__dict__, ensure_ascii=False) + "\n"
        byte_offset = path.stat().st_size if path.exists() else 0
        with open(path, "a", encoding="utf-8") as f:
            f.write(line)
        return str(path), byte_offset

    def iter_month(self, month: str):
        """Yield all entries for a ``YYYY-MM`` month in order."""
        path = self.log_dir / f"{month}.jsonl"
        if not path.exists():
            return
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield RunLogEntry(**json.loads(line))

    def for_message(self, message_id: str) -> list[RunLogEntry]:
        """Every logged run triggered by a message, across all months."""
        results = []
        for month in self.list_months():
            for entry in self.iter_month(month):
                if entry.message_id == message_id:
                    results.append(entry)
        return results

    def list_months(self) -> list[str]:
        return [p.stem for p in sorted(self.log_dir.glob("*.jsonl"))]
