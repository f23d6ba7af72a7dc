"""SQLite storage for chat messages, daily raw values, and daily scores."""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Iterable

import aiosqlite

from align_engine.config import DB_PATH
from align_engine.models import ChatMessage, ScoreSnapshot

_SCHEMA = """
CREATE TABLE IF NOT EXISTS chat_messages (
    id          TEXT PRIMARY KEY,
    chat_id     TEXT NOT NULL DEFAULT 'default_chat',
    role        TEXT NOT NULL,
    content     TEXT NOT NULL,
    timestamp   TEXT NOT NULL,
    sent_utc    TEXT NOT NULL,
    processed   INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_messages_pending ON chat_messages(processed, sent_utc);

CREATE TABLE IF NOT EXISTS raw_values (
    day         TEXT NOT NULL,
    category    TEXT NOT NULL,
    value       REAL NOT NULL,
    PRIMARY KEY (day, category)
);

CREATE TABLE IF NOT EXISTS category_scores (
    day         TEXT NOT NULL,
    category    TEXT NOT NULL,
    score       REAL NOT NULL,
    PRIMARY KEY (day, category)
);

CREATE TABLE IF NOT EXISTS daily_scores (
    day             TEXT PRIMARY KEY,
    display_score   INTEGER NOT NULL,
    priority        TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);
"""


class SQLiteStore:
    """Async SQLite store for one user's analysis data."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or DB_PATH
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "SQLiteStore not initialized, call initialize() first"
        return self._db

    # ── Chat messages ──

    async def save_message(self, msg: ChatMessage) -> None:
        await self.db.execute(
            "INSERT OR REPLACE INTO chat_messages "
            "(id, chat_id, role, content, timestamp, sent_utc, processed) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (msg.id, msg.chat_id, msg.role, msg.content, msg.timestamp,
             msg.sent_at_utc, int(msg.processed)),
        )
        await self.db.commit()

    async def get_message(self, message_id: str) -> ChatMessage | None:
        async with self.db.execute(
            "SELECT * FROM chat_messages WHERE id = ?", (message_id,)
        ) as cur:
            row = await cur.fetchone()
            return _row_to_message(dict(row)) if row else None

    async def mark_message_processed(self, message_id: str) -> None:
        await self.db.execute(
            "UPDATE chat_messages SET processed = 1 WHERE id = ?", (message_id,)
        )
        await self.db.commit()

    async def list_unprocessed_message_ids(self, limit: int = 100) -> list[str]:
        """Ids of messages not yet analysed, oldest first by UTC send time."""
        async with self.db.execute(
            "SELECT id FROM chat_messages WHERE processed = 0 ORDER BY sent_utc ASC, id ASC LIMIT ?",
            (limit,),
        ) as cur:
            return [row["id"] async for row in cur]

    # ── Raw values ──

    async def save_raw_values(self, day: date, values: dict[str, float]) -> None:
        """Upsert one day's raw values; categories not in ``values`` are left alone."""
        await self.db.executemany(
            "INSERT OR REPLACE INTO raw_values (day, category, value) VALUES (?, ?, ?)",
            [(day.isoformat(), cat, float(v)) for cat, v in values.items()],
        )
        await self.db.commit()

    async def get_latest_raw_values(self) -> tuple[date, dict[str, float]] | None:
        """Most recent day holding any raw value, with that day's values."""
        async with self.db.execute("SELECT MAX(day) AS day FROM raw_values") as cur:
            row = await cur.fetchone()
            if not row or row["day"] is None:
                return None
            latest = row["day"]

        async with self.db.execute(
            "SELECT category, value FROM raw_values WHERE day = ?", (latest,)
        ) as cur:
            values = {r["category"]: r["value"] async for r in cur}
        return date.fromisoformat(latest), values

    async def get_raw_values(self, days: Iterable[date]) -> dict[date, dict[str, float]]:
        """Raw values for the given days. Days with no rows are absent from the result."""
        keys = [d.isoformat() for d in days]
        if not keys:
            return {}
        placeholders = ",".join("?" for _ in keys)
        result: dict[date, dict[str, float]] = {}
        async with self.db.execute(
            f"SELECT day, category, value FROM raw_values WHERE day IN ({placeholders})",
            keys,
        ) as cur:
            async for row in cur:
                result.setdefault(date.fromisoformat(row["day"]), {})[row["category"]] = row["value"]
        return result

    # ── Scores ──

    async def save_snapshot(self, snap: ScoreSnapshot) -> None:
        """Replace a day's scores in a single transaction.

        Either the category scores, display score, and priority are all
        written, or none of them are.
        """
        day = snap.day.isoformat()
        try:
            await self.db.execute("DELETE FROM category_scores WHERE day = ?", (day,))
            await self.db.executemany(
                "INSERT INTO category_scores (day, category, score) VALUES (?, ?, ?)",
                [(day, cat, float(score)) for cat, score in snap.scores.items()],
            )
            await self.db.execute(
                "INSERT OR REPLACE INTO daily_scores (day, display_score, priority, updated_at) "
                "VALUES (?, ?, ?, ?)",
                (day, snap.display_score, snap.priority, snap.updated_at),
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def get_snapshot(self, day: date) -> ScoreSnapshot | None:
        async with self.db.execute(
            "SELECT * FROM daily_scores WHERE day = ?", (day.isoformat(),)
        ) as cur:
            row = await cur.fetchone()
            if not row:
                return None
            head = dict(row)
        return await self._load_snapshot(head)

    async def get_latest_snapshot(self) -> ScoreSnapshot | None:
        async with self.db.execute(
            "SELECT * FROM daily_scores ORDER BY day DESC LIMIT 1"
        ) as cur:
            row = await cur.fetchone()
            if not row:
                return None
            head = dict(row)
        return await self._load_snapshot(head)

    async def get_category_scores(self, day: date) -> dict[str, float]:
        async with self.db.execute(
            "SELECT category, score FROM category_scores WHERE day = ?", (day.isoformat(),)
        ) as cur:
            return {row["category"]: row["score"] async for row in cur}

    async def _load_snapshot(self, head: dict) -> ScoreSnapshot:
        day = date.fromisoformat(head["day"])
        return ScoreSnapshot(
            day=day,
            scores=await self.get_category_scores(day),
            display_score=head["display_score"],
            priority=head["priority"],
            updated_at=head["updated_at"],
        )


def _row_to_message(row: dict) -> ChatMessage:
    """Convert a SQLite row dict to a ChatMessage dataclass."""
    return ChatMessage(
        id=row["id"],
        chat_id=row["chat_id"],
        role=row["role"],
        content=row["content"],
        timestamp=row["timestamp"],
        processed=bool(row.get("processed", 0)),
    )
