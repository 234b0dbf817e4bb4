"""Run the transcode scheduler as a long-lived process.

Usage:
    cd backend
    python -m scripts.run_transcode_worker

Stops cleanly on SIGINT/SIGTERM after the current job finishes.
"""

import asyncio
import signal
import sys
from datetime import timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from mediacatalog.core.config import settings
from mediacatalog.core.database import async_session_maker, engine, init_db
from mediacatalog.core.logging import setup_logging
from mediacatalog.core.metrics import start_metrics_server
from mediacatalog.modules.transcoding.scheduler import TranscodeScheduler
from mediacatalog.modules.transcoding.worker import create_worker


async def main():
    """Run the scheduler loop until signalled."""
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

    await init_db()
    Path(settings.MEDIA_DIR).mkdir(parents=True, exist_ok=True)

    if settings.METRICS_PORT:
        start_metrics_server(settings.METRICS_PORT)

    stale_after = None
    if settings.TRANSCODE_STALE_AFTER_MINUTES:
        stale_after = timedelta(minutes=settings.TRANSCODE_STALE_AFTER_MINUTES)

    scheduler = TranscodeScheduler(
        worker=create_worker(settings, async_session_maker),
        poll_interval=settings.TRANSCODE_POLL_INTERVAL_SECONDS,
        error_backoff=settings.TRANSCODE_ERROR_BACKOFF_SECONDS,
        stale_after=stale_after,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except NotImplementedError:
            # Windows event loops
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(scheduler.stop))

    try:
        await scheduler.run()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
