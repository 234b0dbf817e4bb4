"""Service layer for transcoding operations.

Entry points used by the rest of the catalog: recording an upload as a
pending job, resolving streaming paths and URLs, cleaning up old outputs and
reporting queue state.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mediacatalog.core.config import settings
from mediacatalog.core.logging import log_error, log_info
from mediacatalog.core.metrics import record_queue_depth
from mediacatalog.modules.transcoding.exceptions import (
    StreamNotAvailableError,
    UnknownQualityError,
    VideoFileNotFoundError,
)
from mediacatalog.modules.transcoding.ladder import QUALITY_LADDER
from mediacatalog.modules.transcoding.models import TranscodeStatus, VideoFile
from mediacatalog.modules.transcoding.repository import VideoFileRepository
from mediacatalog.modules.transcoding.schemas import (
    CleanupResult,
    QueueStats,
    StreamInfo,
    VideoFileCreate,
)
from mediacatalog.modules.transcoding.storage import OutputLayout

logger = logging.getLogger(__name__)

AUTO_QUALITY = "auto"


class TranscodingService:
    """Service for managing transcoded video files."""

    def __init__(
        self,
        session: AsyncSession,
        layout: Optional[OutputLayout] = None,
        streaming_base_url: Optional[str] = None,
    ):
        """Initialize service with database session.

        Args:
            session: Database session
            layout: Output layout (defaults to MEDIA_DIR)
            streaming_base_url: URL prefix for stream paths (defaults to STREAMING_BASE_URL)
        """
        self.session = session
        self.repo = VideoFileRepository(session)
        self.layout = layout or OutputLayout(settings.MEDIA_DIR)
        self.streaming_base_url = (streaming_base_url or settings.STREAMING_BASE_URL).rstrip("/")

    async def enqueue_upload(self, data: VideoFileCreate, dispatch: bool = False) -> VideoFile:
        """Record an uploaded source file as a pending transcode job.

        Args:
            data: Upload details
            dispatch: Also ask a Celery worker to drain the queue now

        Returns:
            Created VideoFile
        """
        video = await self.repo.create(
            original_filename=data.original_filename,
            file_path=data.file_path,
            movie_id=data.movie_id,
            episode_id=data.episode_id,
            file_size=data.file_size,
            mime_type=data.mime_type,
        )
        await self.session.commit()

        log_info(logger, f"Queued video file {video.id} for transcoding", video_id=video.id)

        if dispatch:
            from mediacatalog.modules.transcoding.tasks import process_pending_transcodes
            process_pending_transcodes.delay()

        return video

    async def get_video(self, video_id: int) -> VideoFile:
        video = await self.repo.get_by_id(video_id)
        if video is None:
            raise VideoFileNotFoundError(video_id)
        return video

    async def get_stream_path(self, video_id: int, quality: str = AUTO_QUALITY) -> str:
        """Resolve a media-root relative stream path.

        Args:
            video_id: Video file ID
            quality: ``auto`` for the master manifest, or a ladder label for
                that rendition's playlist

        Returns:
            Relative path of the manifest or playlist

        Raises:
            VideoFileNotFoundError: Unknown video file
            UnknownQualityError: Label is not part of the ladder
            StreamNotAvailableError: Job not completed or outputs missing
        """
        video = await self.get_video(video_id)
        requested = (quality or AUTO_QUALITY).strip().lower()

        if requested != AUTO_QUALITY and requested not in QUALITY_LADDER:
            raise UnknownQualityError(quality)

        if not video.is_completed() or not video.hls_path:
            raise StreamNotAvailableError(
                f"Video file {video_id} is {video.transcoding_status}, not streamable"
            )

        if requested == AUTO_QUALITY:
            if not self.layout.resolve(video.hls_path).is_file():
                raise StreamNotAvailableError(f"Master manifest of video file {video_id} is missing")
            return video.hls_path

        if not self.layout.has_quality_playlist(video_id, requested):
            raise StreamNotAvailableError(f"Video file {video_id} has no {requested} rendition")
        return self.layout.relative(self.layout.quality_playlist(video_id, requested))

    async def get_streaming_url(self, video_id: int, quality: str = AUTO_QUALITY) -> StreamInfo:
        """Resolve a full streaming URL; same rules as ``get_stream_path``."""
        path = await self.get_stream_path(video_id, quality)
        return StreamInfo(
            video_id=video_id,
            quality=(quality or AUTO_QUALITY).strip().lower(),
            path=path,
            url=f"{self.streaming_base_url}/{path}",
        )

    async def get_available_qualities(self, video_id: int) -> list[str]:
        """Ladder-ordered labels that have a playlist on disk."""
        video = await self.get_video(video_id)
        if not video.is_completed():
            return []
        return [
            label for label in QUALITY_LADDER
            if self.layout.has_quality_playlist(video_id, label)
        ]

    async def cleanup_old_outputs(self, days: Optional[int] = None) -> CleanupResult:
        """Remove output trees of completed jobs older than ``days``.

        Rows keep their status; a missing directory counts as already clean.

        Args:
            days: Age threshold (defaults to TRANSCODE_CLEANUP_DAYS)

        Returns:
            CleanupResult with scanned and removed counts
        """
        if days is None:
            days = settings.TRANSCODE_CLEANUP_DAYS
        if days < 0:
            raise ValueError("days must not be negative")

        cutoff = datetime.utcnow() - timedelta(days=days)
        videos = await self.repo.get_completed_older_than(cutoff)
        result = CleanupResult(days=days, cutoff=cutoff, scanned=len(videos))

        for video in videos:
            try:
                removed = self.layout.remove_job_dir(video.id)
            except OSError as e:
                log_error(logger, f"Could not remove outputs of video file {video.id}", e, video_id=video.id)
                continue
            if removed:
                result.removed += 1
                result.removed_ids.append(video.id)

        log_info(
            logger,
            f"Cleanup removed {result.removed} of {result.scanned} output tree(s)",
            days=days,
            removed_ids=result.removed_ids,
        )
        return result

    async def get_queue_stats(self) -> QueueStats:
        counts = await self.repo.count_by_status()
        record_queue_depth(counts)
        return QueueStats(**counts)

    async def list_videos(
        self,
        status: Optional[TranscodeStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[VideoFile]:
        return await self.repo.list_by_status(status=status, limit=limit, offset=offset)
