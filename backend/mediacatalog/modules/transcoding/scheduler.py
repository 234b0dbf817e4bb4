"""Long-lived polling loop around the transcode worker."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediacatalog.core.logging import log_error, log_warning
from mediacatalog.core.metrics import SCHEDULER_ERRORS_TOTAL
from mediacatalog.modules.transcoding.repository import VideoFileRepository
from mediacatalog.modules.transcoding.worker import TranscodeWorker

logger = logging.getLogger(__name__)


class TranscodeScheduler:
    """Drains the queue one job per tick until stopped.

    Waits ``poll_interval`` after every tick. An exception escaping the
    worker (e.g. the store is unreachable) is logged and the next wait is
    ``error_backoff`` instead; the loop itself never dies from it.
    """

    def __init__(
        self,
        worker: TranscodeWorker,
        poll_interval: float = 10.0,
        error_backoff: float = 30.0,
        stale_after: Optional[timedelta] = None,
        session_maker: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        """Initialize scheduler.

        Args:
            worker: Worker invoked once per tick
            poll_interval: Seconds to wait between ticks
            error_backoff: Seconds to wait after a systemic error
            stale_after: Report jobs processing longer than this at start-up
            session_maker: Session factory for the start-up report
                (defaults to the worker's)
        """
        self.worker = worker
        self.poll_interval = poll_interval
        self.error_backoff = error_backoff
        self.stale_after = stale_after
        self.session_maker = session_maker or worker.session_maker
        self._stop_event = asyncio.Event()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Request shutdown; the loop exits at its next wait or tick boundary."""
        self._stop_event.set()

    async def tick(self) -> float:
        """Run one worker iteration.

        Returns:
            Seconds to wait before the next tick
        """
        try:
            await self.worker.run_once()
        except Exception as e:
            SCHEDULER_ERRORS_TOTAL.inc()
            log_error(logger, f"Transcode iteration failed; backing off {self.error_backoff}s", e)
            return self.error_backoff
        return self.poll_interval

    async def report_stale_jobs(self) -> list[int]:
        """Warn about jobs stuck in processing. They are not reclaimed."""
        if self.stale_after is None:
            return []

        cutoff = datetime.utcnow() - self.stale_after
        async with self.session_maker() as session:
            stale = await VideoFileRepository(session).find_stale_processing(cutoff)

        ids = [video.id for video in stale]
        if ids:
            log_warning(
                logger,
                f"{len(ids)} video file(s) processing since before {cutoff.isoformat()}; "
                "re-enqueue them manually if their worker is gone",
                video_ids=ids,
            )
        return ids

    async def run(self) -> None:
        """Loop until ``stop()`` is called."""
        logger.info(
            "Transcode scheduler started (poll=%ss, backoff=%ss)",
            self.poll_interval, self.error_backoff,
        )

        try:
            await self.report_stale_jobs()
        except Exception as e:
            log_error(logger, "Stale job report failed", e)

        while not self.stopped:
            delay = await self.tick()
            if self.stopped:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        logger.info("Transcode scheduler stopped")
