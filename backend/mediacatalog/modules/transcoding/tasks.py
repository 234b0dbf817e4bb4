"""Celery tasks for the transcoding pipeline.

``process_pending_transcodes`` runs one worker iteration and can be nudged
right after an upload. ``cleanup_transcoded_outputs`` runs daily from beat.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from celery import Task
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediacatalog.core.celery_app import celery_app
from mediacatalog.core.config import settings
from mediacatalog.core.database import create_engine, create_session_maker
from mediacatalog.modules.transcoding.service import TranscodingService
from mediacatalog.modules.transcoding.worker import create_worker

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _task_session_maker() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    # Each task runs in a fresh event loop; pooled connections must not outlive it
    engine = create_engine(settings.DATABASE_URL)
    try:
        yield create_session_maker(engine)
    finally:
        await engine.dispose()


class TranscodeTask(Task):
    """Base task for transcoding operations."""
    abstract = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Log task failure; job rows are updated by the worker itself."""
        logger.error("Task %s (%s) failed: %s", self.name, task_id, exc)


@celery_app.task(bind=True, base=TranscodeTask)
def process_pending_transcodes(self: TranscodeTask, max_jobs: int = 1) -> dict:
    """Process up to ``max_jobs`` pending video files.

    Args:
        max_jobs: Upper bound of jobs drained by this invocation

    Returns:
        dict: Per-job outcome summaries
    """
    return asyncio.run(_process_pending_async(max_jobs))


async def _process_pending_async(max_jobs: int) -> dict:
    """Async implementation of queue draining."""
    processed = []
    async with _task_session_maker() as session_maker:
        worker = create_worker(settings, session_maker)
        for _ in range(max(1, max_jobs)):
            result = await worker.run_once()
            if result is None:
                break
            processed.append({
                "video_id": result.video_id,
                "status": result.status.value,
                "hls_path": result.hls_path,
                "failed_qualities": result.failed_qualities,
            })

    return {"processed": len(processed), "jobs": processed}


@celery_app.task(bind=True, base=TranscodeTask)
def cleanup_transcoded_outputs(self: TranscodeTask, days: Optional[int] = None) -> dict:
    """Remove output trees of completed jobs older than ``days``.

    Args:
        days: Age threshold (defaults to TRANSCODE_CLEANUP_DAYS)

    Returns:
        dict: Cleanup summary
    """
    return asyncio.run(_cleanup_async(days))


async def _cleanup_async(days: Optional[int]) -> dict:
    """Async implementation of output cleanup."""
    async with _task_session_maker() as session_maker:
        async with session_maker() as session:
            service = TranscodingService(session)
            result = await service.cleanup_old_outputs(days)

    return {
        "days": result.days,
        "scanned": result.scanned,
        "removed": result.removed,
        "removed_ids": result.removed_ids,
    }


# Celery beat schedule for transcoding maintenance
TRANSCODE_BEAT_SCHEDULE = {
    "cleanup-transcoded-outputs": {
        "task": "mediacatalog.modules.transcoding.tasks.cleanup_transcoded_outputs",
        "schedule": 86400.0,  # Every 24 hours
    },
}

celery_app.conf.beat_schedule.update(TRANSCODE_BEAT_SCHEDULE)
