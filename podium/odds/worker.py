"""Background odds recomputation, decoupled from the request path."""

import asyncio
import logging
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from podium.errors import PodiumError
from podium.odds.engine import OddsEngine

logger = logging.getLogger(__name__)


class OddsRecomputeWorker:
    """Single consumer of recompute requests.

    Requests for a week already waiting in the queue are coalesced: the
    recompute reads the latest ratings when it runs, so one pending job
    covers any number of races ingested before it starts.
    """

    def __init__(self, session_factory: Optional[Callable[[], AsyncSession]] = None, **engine_kwargs):
        if session_factory is None:
            from podium.models.database import async_session

            session_factory = async_session
        self._session_factory = session_factory
        self._engine_kwargs = engine_kwargs
        self._queue: asyncio.Queue[tuple[str, str]] = asyncio.Queue()
        self._pending: set[str] = set()
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="odds-recompute-worker")
            logger.info("Odds recompute worker started")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Odds recompute worker stopped")

    def request(self, week_id: str, trigger: str) -> bool:
        """Queue a recompute; returns False if one is already pending for the week."""
        if week_id in self._pending:
            return False
        self._pending.add(week_id)
        self._queue.put_nowait((week_id, trigger))
        return True

    async def drain(self) -> None:
        """Wait until every queued recompute has finished."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            week_id, trigger = await self._queue.get()
            self._pending.discard(week_id)
            try:
                async with self._session_factory() as db:
                    await OddsEngine(db, **self._engine_kwargs).recompute(week_id, trigger)
            except PodiumError as e:
                logger.warning(f"Odds recompute skipped for {week_id}: {e}")
            except Exception as e:
                logger.error(f"Odds recompute failed for {week_id}: {e}")
            finally:
                self._queue.task_done()


# Global worker instance
odds_worker = OddsRecomputeWorker()
