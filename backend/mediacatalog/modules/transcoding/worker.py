"""Transcode worker: claims one pending job and drives it to a final state."""

import asyncio
import logging
import time
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediacatalog.core.config import Settings
from mediacatalog.core.logging import correlation_scope, log_error, log_info
from mediacatalog.core.metrics import TRANSCODE_JOB_DURATION_SECONDS, TRANSCODE_JOBS_TOTAL
from mediacatalog.modules.transcoding.exceptions import StoreError
from mediacatalog.modules.transcoding.ffmpeg import ProbeInspector, QualityEncoder, SegmentPackager
from mediacatalog.modules.transcoding.ladder import build_ladder
from mediacatalog.modules.transcoding.manifest import ManifestBuilder
from mediacatalog.modules.transcoding.models import TranscodeStatus
from mediacatalog.modules.transcoding.pipeline import PipelineResult, TranscodePipeline
from mediacatalog.modules.transcoding.process import ProcessRunner, SubprocessRunner
from mediacatalog.modules.transcoding.repository import VideoFileRepository
from mediacatalog.modules.transcoding.schemas import RenditionSummary, TranscodeRunResult
from mediacatalog.modules.transcoding.storage import OutputLayout

logger = logging.getLogger(__name__)


class TranscodeWorker:
    """Processes the job queue one video file at a time.

    Probe and empty-manifest failures are recorded on the row as ``failed``.
    Store failures are not caught here; they reach the scheduler, which
    backs off.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        pipeline: TranscodePipeline,
        layout: OutputLayout,
        keep_failed_outputs: bool = False,
    ):
        self.session_maker = session_maker
        self.pipeline = pipeline
        self.layout = layout
        self.keep_failed_outputs = keep_failed_outputs

    async def run_once(self) -> Optional[TranscodeRunResult]:
        """Claim and process the next pending job.

        Returns:
            Result of the processed job, or None if the queue was empty

        Raises:
            StoreError: If the job store is unreachable
        """
        async with self.session_maker() as session:
            repo = VideoFileRepository(session)
            video = await repo.fetch_next_pending()
            if video is None:
                return None

            with correlation_scope(f"video-{video.id}"):
                return await self._process(repo, video.id, video.file_path)

    async def _process(self, repo: VideoFileRepository, video_id: int, source_path: str) -> TranscodeRunResult:
        log_info(logger, f"Transcoding video file {video_id}", video_id=video_id, source_path=source_path)
        started = time.monotonic()

        try:
            result = await asyncio.to_thread(self.pipeline.run, video_id, source_path)
        except Exception as e:
            # Probe, empty manifest or anything else escaping the pipeline ends the job
            return await self._fail(repo, video_id, e, started)

        return await self._complete(repo, video_id, result, started)

    async def _complete(
        self,
        repo: VideoFileRepository,
        video_id: int,
        result: PipelineResult,
        started: float,
    ) -> TranscodeRunResult:
        hls_path = self.layout.relative(result.master_path)
        duration = int(round(result.probe.duration_seconds))

        try:
            applied = await repo.mark_completed(
                video_id,
                hls_path=hls_path,
                duration=duration,
                resolution=result.probe.resolution,
            )
            await repo.session.commit()
        except StoreError:
            # No row will ever point at these outputs
            self._discard_outputs(video_id)
            raise

        if not applied:
            return await self._superseded(repo, video_id, started)

        elapsed = time.monotonic() - started
        TRANSCODE_JOBS_TOTAL.labels(status=TranscodeStatus.COMPLETED.value).inc()
        TRANSCODE_JOB_DURATION_SECONDS.observe(elapsed)
        log_info(
            logger,
            f"Completed video file {video_id} with {len(result.renditions)} rendition(s)",
            video_id=video_id,
            qualities=result.qualities,
            failed_qualities=sorted(result.failures),
            elapsed_seconds=round(elapsed, 2),
        )

        return TranscodeRunResult(
            video_id=video_id,
            status=TranscodeStatus.COMPLETED,
            hls_path=hls_path,
            duration=duration,
            resolution=result.probe.resolution,
            renditions=[
                RenditionSummary(
                    quality=p.quality,
                    resolution=p.rendition.resolution,
                    bitrate_kbps=p.rendition.bitrate_kbps,
                    playlist_path=self.layout.relative(p.playlist_path),
                )
                for p in result.renditions
            ],
            skipped_qualities=[p.label for p in result.skipped],
            failed_qualities=sorted(result.failures),
            elapsed_seconds=elapsed,
        )

    async def _superseded(
        self,
        repo: VideoFileRepository,
        video_id: int,
        started: float,
    ) -> TranscodeRunResult:
        """Report the stored state of a row that left ``processing`` mid-run."""
        video = await repo.get_by_id(video_id)
        # A completed row owns the job directory again
        if video is None or video.transcoding_status != TranscodeStatus.COMPLETED.value:
            self._discard_outputs(video_id)

        elapsed = time.monotonic() - started
        if video is None:
            logger.warning("Video file %s was deleted while transcoding", video_id, extra={"video_id": video_id})
            return TranscodeRunResult(
                video_id=video_id,
                status=TranscodeStatus.FAILED,
                error_message="Video file no longer exists",
                elapsed_seconds=elapsed,
            )

        logger.warning(
            "Video file %s moved to %s before completion was recorded",
            video_id, video.transcoding_status,
            extra={"video_id": video_id},
        )
        return TranscodeRunResult(
            video_id=video_id,
            status=TranscodeStatus(video.transcoding_status),
            hls_path=video.hls_path,
            duration=video.duration,
            resolution=video.resolution,
            error_message=video.error_message,
            elapsed_seconds=elapsed,
        )

    async def _fail(
        self,
        repo: VideoFileRepository,
        video_id: int,
        error: Exception,
        started: float,
    ) -> TranscodeRunResult:
        self._discard_outputs(video_id)

        message = str(error) or type(error).__name__
        await repo.mark_failed(video_id, error_message=message)
        await repo.session.commit()

        elapsed = time.monotonic() - started
        TRANSCODE_JOBS_TOTAL.labels(status=TranscodeStatus.FAILED.value).inc()
        TRANSCODE_JOB_DURATION_SECONDS.observe(elapsed)
        log_error(logger, f"Transcoding video file {video_id} failed", error, video_id=video_id)

        return TranscodeRunResult(
            video_id=video_id,
            status=TranscodeStatus.FAILED,
            error_message=message,
            elapsed_seconds=elapsed,
        )

    def _discard_outputs(self, video_id: int) -> None:
        if self.keep_failed_outputs:
            logger.info("Keeping partial outputs of video file %s", video_id)
            return
        try:
            self.layout.remove_job_dir(video_id)
        except OSError as e:
            log_error(logger, f"Could not remove outputs of video file {video_id}", e, video_id=video_id)


def create_pipeline(settings: Settings, runner: Optional[ProcessRunner] = None) -> TranscodePipeline:
    """Build a pipeline wired from settings."""
    runner = runner or SubprocessRunner(timeout=settings.TRANSCODE_PROCESS_TIMEOUT_SECONDS)
    return TranscodePipeline(
        inspector=ProbeInspector(settings.FFPROBE_PATH, runner),
        encoder=QualityEncoder(settings.FFMPEG_PATH, runner),
        packager=SegmentPackager(settings.FFMPEG_PATH, runner),
        manifest_builder=ManifestBuilder(),
        layout=OutputLayout(settings.MEDIA_DIR),
        ladder=build_ladder(settings.quality_labels),
        max_parallel_encodes=settings.TRANSCODE_MAX_PARALLEL_ENCODES,
    )


def create_worker(
    settings: Settings,
    session_maker: async_sessionmaker[AsyncSession],
    runner: Optional[ProcessRunner] = None,
) -> TranscodeWorker:
    """Build a worker wired from settings."""
    pipeline = create_pipeline(settings, runner)
    return TranscodeWorker(
        session_maker=session_maker,
        pipeline=pipeline,
        layout=pipeline.layout,
        keep_failed_outputs=settings.TRANSCODE_KEEP_FAILED_OUTPUTS,
    )
