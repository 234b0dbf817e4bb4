"""Repository for the video file job store."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mediacatalog.modules.transcoding.exceptions import StoreError
from mediacatalog.modules.transcoding.models import TranscodeStatus, VideoFile

logger = logging.getLogger(__name__)

# Candidates examined per claim round and rounds before giving up
CLAIM_BATCH_SIZE = 5
CLAIM_MAX_ROUNDS = 10


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (SQLAlchemyError, OSError) as e:
        raise StoreError(f"Job store {operation} failed: {e}") from e


class VideoFileRepository:
    """Repository for VideoFile operations.

    All status transitions are conditional updates, so a row only moves
    ``pending -> processing -> completed|failed`` and two callers can never
    both win the same transition.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        original_filename: str,
        file_path: str,
        movie_id: Optional[int] = None,
        episode_id: Optional[int] = None,
        file_size: Optional[int] = None,
        mime_type: Optional[str] = None,
    ) -> VideoFile:
        """Create a new pending video file.

        Args:
            original_filename: Name of the uploaded file
            file_path: Location of the source file
            movie_id: Owning movie (exclusive with episode_id)
            episode_id: Owning episode (exclusive with movie_id)
            file_size: Source size in bytes
            mime_type: Source MIME type

        Returns:
            Created VideoFile
        """
        video = VideoFile(
            original_filename=original_filename,
            file_path=file_path,
            movie_id=movie_id,
            episode_id=episode_id,
            file_size=file_size,
            mime_type=mime_type,
            transcoding_status=TranscodeStatus.PENDING.value,
        )
        with _store_errors("create"):
            self.session.add(video)
            await self.session.flush()
        return video

    async def get_by_id(self, video_id: int) -> Optional[VideoFile]:
        """Get a video file by ID, always reflecting the stored row."""
        with _store_errors("get"):
            result = await self.session.execute(
                select(VideoFile)
                .where(VideoFile.id == video_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

    async def _claim(self, video_id: int) -> bool:
        now = datetime.utcnow()
        result = await self.session.execute(
            update(VideoFile)
            .where(
                VideoFile.id == video_id,
                VideoFile.transcoding_status == TranscodeStatus.PENDING.value,
            )
            .values(
                transcoding_status=TranscodeStatus.PROCESSING.value,
                started_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def fetch_next_pending(self) -> Optional[VideoFile]:
        """Atomically claim the oldest pending video file.

        The claim is a conditional ``pending -> processing`` update that only
        counts when exactly one row was affected; it is committed before
        returning. A lost race moves on to the next candidate.

        Returns:
            The claimed VideoFile (status ``processing``), or None if the
            queue is empty

        Raises:
            StoreError: If the store is unreachable
        """
        with _store_errors("claim"):
            for _ in range(CLAIM_MAX_ROUNDS):
                result = await self.session.execute(
                    select(VideoFile.id)
                    .where(VideoFile.transcoding_status == TranscodeStatus.PENDING.value)
                    .order_by(VideoFile.created_at, VideoFile.id)
                    .limit(CLAIM_BATCH_SIZE)
                )
                candidates = list(result.scalars().all())
                if not candidates:
                    return None

                for video_id in candidates:
                    if await self._claim(video_id):
                        logger.debug("Claimed video file %s", video_id)
                        return await self.get_by_id(video_id)
                    logger.debug("Lost claim race for video file %s", video_id)

        logger.warning("Gave up claiming after %d contended rounds", CLAIM_MAX_ROUNDS)
        return None

    async def _transition(self, video_id: int, expected: TranscodeStatus, **values) -> bool:
        values.setdefault("updated_at", datetime.utcnow())
        result = await self.session.execute(
            update(VideoFile)
            .where(
                VideoFile.id == video_id,
                VideoFile.transcoding_status == expected.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_processing(self, video_id: int) -> bool:
        """Move a pending row to processing. Returns False if it was not pending."""
        with _store_errors("mark_processing"):
            return await self._transition(
                video_id,
                TranscodeStatus.PENDING,
                transcoding_status=TranscodeStatus.PROCESSING.value,
                started_at=datetime.utcnow(),
            )

    async def mark_completed(
        self,
        video_id: int,
        hls_path: str,
        duration: Optional[int] = None,
        resolution: Optional[str] = None,
    ) -> bool:
        """Record a successful transcode.

        Args:
            video_id: Video file ID
            hls_path: Master manifest path relative to the media root
            duration: Source duration in whole seconds
            resolution: Source resolution, e.g. ``1920x1080``

        Returns:
            False if the row was not in ``processing``
        """
        with _store_errors("mark_completed"):
            return await self._transition(
                video_id,
                TranscodeStatus.PROCESSING,
                transcoding_status=TranscodeStatus.COMPLETED.value,
                hls_path=hls_path,
                dash_path=None,
                duration=duration,
                resolution=resolution,
                error_message=None,
            )

    async def mark_failed(
        self,
        video_id: int,
        error_message: Optional[str] = None,
        duration: Optional[int] = None,
        resolution: Optional[str] = None,
    ) -> bool:
        """Record a failed transcode; clears any manifest path."""
        with _store_errors("mark_failed"):
            return await self._transition(
                video_id,
                TranscodeStatus.PROCESSING,
                transcoding_status=TranscodeStatus.FAILED.value,
                hls_path=None,
                dash_path=None,
                duration=duration,
                resolution=resolution,
                error_message=error_message[:1000] if error_message else None,
            )

    async def get_completed_older_than(self, cutoff: datetime) -> list[VideoFile]:
        """Get completed video files created before ``cutoff``, oldest first."""
        with _store_errors("get_completed_older_than"):
            result = await self.session.execute(
                select(VideoFile)
                .where(
                    VideoFile.transcoding_status == TranscodeStatus.COMPLETED.value,
                    VideoFile.created_at < cutoff,
                )
                .order_by(VideoFile.created_at, VideoFile.id)
            )
            return list(result.scalars().all())

    async def list_by_status(
        self,
        status: Optional[TranscodeStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[VideoFile]:
        """List video files, newest first, optionally filtered by status."""
        query = select(VideoFile)
        if status is not None:
            query = query.where(VideoFile.transcoding_status == TranscodeStatus(status).value)
        query = query.order_by(VideoFile.created_at.desc(), VideoFile.id.desc()).offset(offset).limit(limit)

        with _store_errors("list_by_status"):
            result = await self.session.execute(query)
            return list(result.scalars().all())

    async def count_by_status(self) -> dict[str, int]:
        """Count video files per status; every status is present."""
        counts = {status.value: 0 for status in TranscodeStatus}
        with _store_errors("count_by_status"):
            result = await self.session.execute(
                select(VideoFile.transcoding_status, func.count(VideoFile.id))
                .group_by(VideoFile.transcoding_status)
            )
            for status, count in result.all():
                counts[status] = count
        return counts

    async def find_stale_processing(self, older_than: datetime) -> list[VideoFile]:
        """Find rows stuck in ``processing`` since before ``older_than``."""
        started = func.coalesce(VideoFile.started_at, VideoFile.updated_at)
        with _store_errors("find_stale_processing"):
            result = await self.session.execute(
                select(VideoFile)
                .where(
                    VideoFile.transcoding_status == TranscodeStatus.PROCESSING.value,
                    started < older_than,
                )
                .order_by(started)
            )
            return list(result.scalars().all())
