"""Analysis Manager: turns one chat message into a day's scores.

This is the primary interface for the app runtime. For a message id it
fetches context, infers category values, resolves and persists today's raw
row, scores the trailing window, and persists the day's snapshot.

Run states::

    IDLE -> FETCHING_CONTEXT -> RESOLVING_VALUES -> PERSISTING_RAW
         -> SCORING -> PERSISTING_SCORES -> DONE

with FAILED reachable from any state. A run never raises for I/O errors;
the outcome is reported on the returned RunResult. The chat exchange that
triggered the run does not depend on it.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from datetime import date
from pathlib import Path
from typing import Awaitable, Callable, Mapping

from align_engine.config import DATA_DIR, ENGINE_CONFIG
from align_engine.core.composite import apply_derived_scores, display_score
from align_engine.core.decay import day_of, elapsed_days
from align_engine.core.priority import select_priority
from align_engine.core.registry import CategoryRegistry, default_registry
from align_engine.core.resolver import resolve_values
from align_engine.core.window import compute_window_scores
from align_engine.inference.extractor import infer_values
from align_engine.models import EngineStatus, RunContext, RunResult, RunState, ScoreSnapshot
from align_engine.storage.run_log import RunLogger
from align_engine.storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)

InferFn = Callable[[str, Mapping[str, float]], Awaitable[dict[str, float]]]


class AnalysisManager:
    """Top-level orchestrator for the scoring engine.

    One manager owns one user's store. Runs are serialized by an internal
    lock so two messages never read and write the same day concurrently.
    """

    def __init__(
        self,
        data_dir: Path | None = None,
        registry: CategoryRegistry | None = None,
        infer: InferFn | None = None,
        config: dict | None = None,
    ) -> None:
        self.data_dir = data_dir or DATA_DIR
        self.config = {**ENGINE_CONFIG, **(config or {})}
        self.registry = registry or default_registry()
        self.infer: InferFn = infer or functools.partial(infer_values, registry=self.registry)

        # Storage backends
        self.sqlite = SQLiteStore(self.data_dir / "align.db")
        self.run_log = RunLogger(self.data_dir / "logs" / "runs")

        self._run_lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize storage. Must be called before any operations."""
        await self.sqlite.initialize()
        self._initialized = True

    async def close(self) -> None:
        await self.sqlite.close()
        self._initialized = False

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("AnalysisManager not initialized, call initialize() first")

    # ── Core operations ──

    async def process_message(self, message_id: str) -> RunResult:
        """Run the full analysis pipeline for one message.

        Cancelling the caller is honoured up to the point where today's raw
        row is written; from there the run is shielded and completes.
        """
        self._require_initialized()
        async with self._run_lock:
            result = RunResult(message_id=message_id)
            try:
                ctx = await self._fetch_context(message_id, result)
                if ctx is not None:
                    await self._resolve(ctx, result)
                    await self._run_shielded(ctx, result)
            except asyncio.CancelledError:
                if result.state not in (RunState.DONE, RunState.FAILED):
                    logger.info("Run for message %s cancelled before any write", message_id)
                raise
            except Exception as exc:
                self._fail(result, exc)

            self._log_run(result)
            return result

    async def _run_shielded(self, ctx: RunContext, result: RunResult) -> None:
        # Once writes start the run must reach DONE or FAILED, and the lock
        # stays held until it does.
        task = asyncio.ensure_future(self._persist_and_score(ctx, result))
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.info("Run for message %s cancelled mid-write; finishing it first", ctx.message_id)
            await asyncio.wait({task})
            if task.exception() is not None:
                self._fail(result, task.exception())
            self._log_run(result)
            raise

    def _fail(self, result: RunResult, exc: BaseException) -> None:
        logger.error(
            "Analysis failed for message %s in state %s",
            result.message_id, result.state.value, exc_info=exc,
        )
        result.error = f"{type(exc).__name__}: {exc}"
        result.advance(RunState.FAILED)

    async def process_pending(self, limit: int = 100) -> list[RunResult]:
        """Analyse every unprocessed message, oldest first."""
        self._require_initialized()
        ids = await self.sqlite.list_unprocessed_message_ids(limit=limit)
        if ids:
            logger.info("Processing %d pending messages", len(ids))
        return [await self.process_message(mid) for mid in ids]

    async def get_status(self) -> EngineStatus:
        """Latest display score, per-category scores, and priority."""
        self._require_initialized()
        snap = await self.sqlite.get_latest_snapshot()
        if snap is None:
            priority = self.registry.default_priority
            return EngineStatus(
                priority=priority,
                recommendation=self.registry.recommendation(priority),
            )
        return EngineStatus(
            day=snap.day,
            display_score=snap.display_score,
            priority=snap.priority,
            recommendation=self.registry.recommendation(snap.priority),
            scores=dict(snap.scores),
        )

    # ── Stages ──

    async def _fetch_context(self, message_id: str, result: RunResult) -> RunContext | None:
        result.advance(RunState.FETCHING_CONTEXT)
        message = await self.sqlite.get_message(message_id)
        if message is None:
            logger.warning("Message %s not found, aborting analysis", message_id)
            result.error = "message not found"
            result.advance(RunState.FAILED)
            return None

        if message.processed or not message.is_user:
            logger.info(
                "Skipping analysis for %s message %s",
                "already processed" if message.processed else "non-user", message_id,
            )
            if not message.processed:
                await self.sqlite.mark_message_processed(message_id)
            result.skipped = True
            result.advance(RunState.DONE)
            return None

        sent_at = message.sent_at
        today = day_of(sent_at, self.config["timezone"])
        result.day = today

        latest = await self.sqlite.get_latest_raw_values()
        last_day, last_known = latest if latest else (None, {})
        days = elapsed_days(last_day, today)
        logger.info(
            "Analysing message %s for %s (last data %s, %d days elapsed)",
            message_id, today.isoformat(),
            last_day.isoformat() if last_day else "none", days,
        )
        return RunContext(
            message_id=message_id,
            text=message.content,
            timestamp=sent_at,
            day=today,
            last_known=dict(last_known),
            last_day=last_day,
            days_elapsed=days,
        )

    async def _resolve(self, ctx: RunContext, result: RunResult) -> None:
        result.advance(RunState.RESOLVING_VALUES)
        try:
            inferred = await self.infer(ctx.text, dict(ctx.last_known))
        except Exception:
            logger.exception("Inference failed for message %s, decaying all categories", ctx.message_id)
            inferred = {}
        result.inferred = dict(inferred or {})
        logger.debug("Inferred values: %s", result.inferred)

        result.resolved = resolve_values(
            result.inferred,
            ctx.last_known,
            ctx.days_elapsed,
            self.registry,
            self.config["decay_factor"],
        )

    async def _persist_and_score(self, ctx: RunContext, result: RunResult) -> None:
        result.advance(RunState.PERSISTING_RAW)
        await self.sqlite.save_raw_values(ctx.day, result.resolved)

        result.advance(RunState.SCORING)
        snapshot = await self.score_day(ctx.day, result.resolved)

        result.advance(RunState.PERSISTING_SCORES)
        await self.sqlite.save_snapshot(snapshot)
        result.snapshot = snapshot
        await self.sqlite.mark_message_processed(ctx.message_id)

        result.advance(RunState.DONE)
        logger.info(
            "Scored %s: display=%d priority=%s",
            ctx.day.isoformat(), snapshot.display_score, snapshot.priority,
        )

    async def score_day(self, day: date, today_values: Mapping[str, float]) -> ScoreSnapshot:
        """Compute (without persisting) the full snapshot for ``day``."""
        leaf = await compute_window_scores(
            self.sqlite, self.registry, day, today_values, self.config["window_days"],
        )
        scores = apply_derived_scores(leaf, self.registry)
        levers = {cid: scores[cid] for cid in self.registry.core_levers if cid in scores}
        return ScoreSnapshot(
            day=day,
            scores=scores,
            display_score=display_score(scores, self.registry),
            priority=select_priority(
                levers, self.registry.core_levers, self.registry.default_priority,
            ),
        )

    def _log_run(self, result: RunResult) -> None:
        try:
            self.run_log.append(result)
        except OSError:
            logger.exception("Failed to append run log for message %s", result.message_id)
