"""Data models for the Align scoring engine."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _uuid() -> str:
    return str(uuid.uuid4())


@dataclass
class ChatMessage:
    id: str = field(default_factory=_uuid)
    chat_id: str = "default_chat"
    role: str = "user"  # user | assistant
    content: str = ""
    timestamp: str = field(default_factory=_now)
    processed: bool = False

    @property
    def is_user(self) -> bool:
        return self.role == "user"

    @property
    def sent_at(self) -> datetime:
        # fromisoformat() only accepts a trailing "Z" from Python 3.11
        ts = self.timestamp
        if ts.endswith(("Z", "z")):
            ts = ts[:-1] + "+00:00"
        return datetime.fromisoformat(ts)

    @property
    def sent_at_utc(self) -> str:
        """Fixed-width UTC ISO timestamp that sorts in real time order. Naive is UTC."""
        sent = self.sent_at
        if sent.tzinfo is None:
            sent = sent.replace(tzinfo=timezone.utc)
        return sent.astimezone(timezone.utc).isoformat(timespec="microseconds")


@dataclass
class ScoreSnapshot:
    """Scores for one calendar day. Rewritten in full whenever the day is rescored."""
    day: date
    scores: dict[str, float] = field(default_factory=dict)
    display_score: int = 0
    priority: str = ""
    updated_at: str = field(default_factory=_now)


class RunState(str, Enum):
    IDLE = "idle"
    FETCHING_CONTEXT = "fetching_context"
    RESOLVING_VALUES = "resolving_values"
    PERSISTING_RAW = "persisting_raw"
    SCORING = "scoring"
    PERSISTING_SCORES = "persisting_scores"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RunContext:
    """Per-run working state. Never persisted."""
    message_id: str
    text: str
    timestamp: datetime
    day: date
    last_known: dict[str, float] = field(default_factory=dict)
    last_day: date | None = None
    days_elapsed: int = 0


@dataclass
class RunResult:
    message_id: str
    state: RunState = RunState.IDLE
    day: date | None = None
    inferred: dict[str, float] = field(default_factory=dict)
    resolved: dict[str, float] = field(default_factory=dict)
    snapshot: ScoreSnapshot | None = None
    error: str | None = None
    skipped: bool = False
    transitions: list[RunState] = field(default_factory=list)

    def advance(self, state: RunState) -> None:
        self.state = state
        self.transitions.append(state)

    @property
    def ok(self) -> bool:
        return self.state == RunState.DONE


@dataclass
class EngineStatus:
    """What the presentation layer is allowed to see."""
    day: date | None = None
    display_score: int = 0
    priority: str = ""
    recommendation: str = ""
    scores: dict[str, float] = field(default_factory=dict)
