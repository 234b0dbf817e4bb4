"""Tests for the transcoding service entry points."""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from mediacatalog.modules.transcoding.exceptions import (
    StreamNotAvailableError,
    UnknownQualityError,
    VideoFileNotFoundError,
)
from mediacatalog.modules.transcoding.models import TranscodeStatus
from mediacatalog.modules.transcoding.schemas import VideoFileCreate
from mediacatalog.modules.transcoding.service import TranscodingService
from mediacatalog.modules.transcoding.worker import TranscodeWorker

BASE_URL = "https://cdn.example.test/media"


@pytest.fixture
def transcoded_video(session_maker, layout, make_pipeline, make_runner, create_video):
    """Factory producing a completed 640x360 job (240p + 360p renditions)."""
    async def _make(created_at=None):
        video = await create_video(created_at=created_at)
        worker = TranscodeWorker(session_maker, make_pipeline(make_runner(width=640, height=360)), layout)
        result = await worker.run_once()
        assert result.video_id == video.id
        return video
    return _make


class TestEnqueueUpload:
    """Tests for recording uploads as pending jobs."""

    @pytest.mark.asyncio
    async def test_creates_pending_job(self, session_maker, layout) -> None:
        async with session_maker() as session:
            service = TranscodingService(session, layout=layout, streaming_base_url=BASE_URL)
            video = await service.enqueue_upload(
                VideoFileCreate(movie_id=3, original_filename="film.mp4", file_path="/uploads/film.mp4")
            )
            stats = await service.get_queue_stats()

        assert video.is_pending()
        assert stats.pending == 1
        assert stats.total == 1

    @pytest.mark.asyncio
    async def test_dispatch_nudges_worker_task(self, session_maker, layout) -> None:
        from mediacatalog.modules.transcoding import tasks

        with patch.object(tasks.process_pending_transcodes, "delay") as delay:
            async with session_maker() as session:
                service = TranscodingService(session, layout=layout, streaming_base_url=BASE_URL)
                await service.enqueue_upload(
                    VideoFileCreate(episode_id=5, original_filename="e1.mp4", file_path="/uploads/e1.mp4"),
                    dispatch=True,
                )

        delay.assert_called_once_with()

    @pytest.mark.parametrize(
        "owners",
        [{}, {"movie_id": 1, "episode_id": 2}],
    )
    def test_exactly_one_owner_required(self, owners) -> None:
        with pytest.raises(ValidationError):
            VideoFileCreate(original_filename="a.mp4", file_path="/a.mp4", **owners)


class TestStreamingUrls:
    """Tests for resolving stream paths and URLs."""

    @pytest.mark.asyncio
    async def test_auto_resolves_master_manifest(self, session_maker, layout, transcoded_video) -> None:
        video = await transcoded_video()

        async with session_maker() as session:
            service = TranscodingService(session, layout=layout, streaming_base_url=BASE_URL + "/")
            info = await service.get_streaming_url(video.id)

        assert info.path == f"{video.id}/hls/master.m3u8"
        assert info.url == f"{BASE_URL}/{video.id}/hls/master.m3u8"
        assert info.quality == "auto"

    @pytest.mark.asyncio
    async def test_quality_resolves_rendition_playlist(self, session_maker, layout, transcoded_video) -> None:
        video = await transcoded_video()

        async with session_maker() as session:
            service = TranscodingService(session, layout=layout, streaming_base_url=BASE_URL)
            path = await service.get_stream_path(video.id, "360P")

        assert path == f"{video.id}/hls/360p/playlist.m3u8"

    @pytest.mark.asyncio
    async def test_skipped_quality_not_available(self, session_maker, layout, transcoded_video) -> None:
        video = await transcoded_video()

        async with session_maker() as session:
            service = TranscodingService(session, layout=layout, streaming_base_url=BASE_URL)
            with pytest.raises(StreamNotAvailableError):
                await service.get_stream_path(video.id, "1080p")

    @pytest.mark.asyncio
    async def test_unknown_quality(self, session_maker, layout, transcoded_video) -> None:
        video = await transcoded_video()

        async with session_maker() as session:
            service = TranscodingService(session, layout=layout, streaming_base_url=BASE_URL)
            with pytest.raises(UnknownQualityError):
                await service.get_stream_path(video.id, "4k")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [TranscodeStatus.PENDING, TranscodeStatus.PROCESSING, TranscodeStatus.FAILED])
    async def test_unfinished_jobs_do_not_resolve(self, session_maker, layout, create_video, status) -> None:
        video = await create_video(status=status)

        async with session_maker() as session:
            service = TranscodingService(session, layout=layout, streaming_base_url=BASE_URL)
            with pytest.raises(StreamNotAvailableError):
                await service.get_stream_path(video.id)

    @pytest.mark.asyncio
    async def test_unknown_video(self, session_maker, layout) -> None:
        async with session_maker() as session:
            service = TranscodingService(session, layout=layout, streaming_base_url=BASE_URL)
            with pytest.raises(VideoFileNotFoundError):
                await service.get_stream_path(404)

    @pytest.mark.asyncio
    async def test_available_qualities(self, session_maker, layout, transcoded_video, create_video) -> None:
        video = await transcoded_video()
        pending = await create_video()

        async with session_maker() as session:
            service = TranscodingService(session, layout=layout, streaming_base_url=BASE_URL)
            assert await service.get_available_qualities(video.id) == ["240p", "360p"]
            assert await service.get_available_qualities(pending.id) == []


class TestCleanup:
    """Tests for removing outputs of old completed jobs."""

    @pytest.mark.asyncio
    async def test_removes_only_old_completed_outputs(self, session_maker, layout, transcoded_video) -> None:
        old = await transcoded_video(created_at=datetime.utcnow() - timedelta(days=45))
        recent = await transcoded_video()

        async with session_maker() as session:
            service = TranscodingService(session, layout=layout, streaming_base_url=BASE_URL)
            result = await service.cleanup_old_outputs(days=30)
            old_row = await service.get_video(old.id)

        assert result.scanned == 1
        assert result.removed_ids == [old.id]
        assert not layout.job_dir(old.id).exists()
        assert layout.job_dir(recent.id).exists()
        # Status is untouched
        assert old_row.transcoding_status == TranscodeStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_cleanup_is_idempotent(self, session_maker, layout, transcoded_video) -> None:
        """Re-running cleanup on an already cleaned directory is a no-op."""
        await transcoded_video(created_at=datetime.utcnow() - timedelta(days=45))

        async with session_maker() as session:
            service = TranscodingService(session, layout=layout, streaming_base_url=BASE_URL)
            first = await service.cleanup_old_outputs(days=30)
            second = await service.cleanup_old_outputs(days=30)

        assert first.removed == 1
        assert second.scanned == 1
        assert second.removed == 0

    @pytest.mark.asyncio
    async def test_cleaned_job_no_longer_streams(self, session_maker, layout, transcoded_video) -> None:
        video = await transcoded_video(created_at=datetime.utcnow() - timedelta(days=45))

        async with session_maker() as session:
            service = TranscodingService(session, layout=layout, streaming_base_url=BASE_URL)
            await service.cleanup_old_outputs(days=30)
            with pytest.raises(StreamNotAvailableError):
                await service.get_stream_path(video.id)

    @pytest.mark.asyncio
    async def test_negative_days_rejected(self, session_maker, layout) -> None:
        async with session_maker() as session:
            service = TranscodingService(session, layout=layout, streaming_base_url=BASE_URL)
            with pytest.raises(ValueError):
                await service.cleanup_old_outputs(days=-1)


class TestListing:
    """Tests for status listing and stats."""

    @pytest.mark.asyncio
    async def test_list_and_stats(self, session_maker, layout, transcoded_video, create_video) -> None:
        done = await transcoded_video()
        waiting = await create_video()

        async with session_maker() as session:
            service = TranscodingService(session, layout=layout, streaming_base_url=BASE_URL)
            completed = await service.list_videos(TranscodeStatus.COMPLETED)
            everything = await service.list_videos()
            stats = await service.get_queue_stats()

        assert [v.id for v in completed] == [done.id]
        assert {v.id for v in everything} == {done.id, waiting.id}
        assert (stats.completed, stats.pending, stats.failed) == (1, 1, 0)
