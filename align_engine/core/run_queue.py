"""Single-writer queue of analysis runs.

Messages are analysed one at a time, in the order they were submitted, by a
single background worker. Callers get a future for each submission and are
never blocked on the analysis itself, so a slow or failing run cannot hold up
the chat exchange that triggered it.
"""

from __future__ import annotations

import asyncio
import logging

from align_engine.core.analysis_manager import AnalysisManager
from align_engine.models import RunResult

logger = logging.getLogger(__name__)


class RunQueue:
    """FIFO queue feeding one AnalysisManager from a single worker task."""

    def __init__(self, manager: AnalysisManager) -> None:
        self.manager = manager
        self._queue: asyncio.Queue[tuple[str, asyncio.Future[RunResult]]] = asyncio.Queue()
        self._worker: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._work_loop())

    def submit(self, message_id: str) -> asyncio.Future[RunResult]:
        """Enqueue a message and return a future resolving to its RunResult."""
        self.start()
        future: asyncio.Future[RunResult] = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((message_id, future))
        logger.debug("Queued message %s (%d pending)", message_id, self._queue.qsize())
        return future

    async def join(self) -> None:
        """Wait until every submitted message has been processed."""
        await self._queue.join()

    async def close(self) -> None:
        """Finish the backlog, then stop the worker."""
        if self._worker is None:
            return
        await self._queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def _work_loop(self) -> None:
        while True:
            message_id, future = await self._queue.get()
            try:
                result = await self.manager.process_message(message_id)
                if not future.done():
                    future.set_result(result)
            except Exception as exc:
                logger.exception("Queued run for message %s raised", message_id)
                if not future.done():
                    future.set_exception(exc)
            finally:
                self._queue.task_done()
