"""Shared fixtures for transcoding tests.

No real ffmpeg/ffprobe is invoked: ``FakeMediaRunner`` answers probe
commands with canned JSON and fakes encoder/segmenter outputs on disk.
"""

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

import pytest
import pytest_asyncio

from mediacatalog.core.database import create_engine, create_session_maker, init_db
from mediacatalog.modules.transcoding.ffmpeg import ProbeInspector, QualityEncoder, SegmentPackager
from mediacatalog.modules.transcoding.ladder import build_ladder
from mediacatalog.modules.transcoding.manifest import ManifestBuilder
from mediacatalog.modules.transcoding.models import TranscodeStatus, VideoFile
from mediacatalog.modules.transcoding.pipeline import TranscodePipeline
from mediacatalog.modules.transcoding.process import ProcessResult, ProcessRunner
from mediacatalog.modules.transcoding.storage import OutputLayout


class FakeMediaRunner:
    """Stands in for ffprobe and ffmpeg.

    Encodes are recognised by ``-movflags`` and write a small file at the
    output path; segmenting is recognised by ``-f hls`` and writes a
    playlist plus segment files. Labels in ``fail_encode``/``fail_package``
    exit nonzero instead.
    """

    def __init__(
        self,
        width: int = 1920,
        height: int = 1080,
        duration: float = 42.4,
        probe_exit: int = 0,
        probe_stdout: Optional[str] = None,
        fail_encode: Sequence[str] = (),
        fail_package: Sequence[str] = (),
        segments: int = 3,
    ):
        self.width = width
        self.height = height
        self.duration = duration
        self.probe_exit = probe_exit
        self.probe_stdout = probe_stdout
        self.fail_encode = set(fail_encode)
        self.fail_package = set(fail_package)
        self.segments = segments
        self.calls: list[list[str]] = []
        self._lock = threading.Lock()

    def _probe(self) -> ProcessResult:
        if self.probe_exit != 0:
            return ProcessResult(self.probe_exit, "", "Invalid data found when processing input")
        if self.probe_stdout is not None:
            return ProcessResult(0, self.probe_stdout, "")
        payload = {
            "format": {"duration": str(self.duration), "bit_rate": "6000000"},
            "streams": [
                {"codec_type": "audio", "codec_name": "aac"},
                {"codec_type": "video", "codec_name": "h264", "width": self.width, "height": self.height},
            ],
        }
        return ProcessResult(0, json.dumps(payload), "")

    def _encode(self, args: list[str]) -> ProcessResult:
        output = Path(args[-1])
        if output.stem in self.fail_encode:
            return ProcessResult(1, "", f"Error while encoding {output.stem}")
        output.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64)
        return ProcessResult(0, "", "")

    def _segment(self, args: list[str]) -> ProcessResult:
        playlist = Path(args[-1])
        quality = playlist.parent.name
        if quality in self.fail_package:
            return ProcessResult(1, "", f"Error while muxing {quality}")

        lines = [
            "#EXTM3U",
            "#EXT-X-VERSION:3",
            "#EXT-X-TARGETDURATION:10",
            "#EXT-X-MEDIA-SEQUENCE:0",
            "#EXT-X-PLAYLIST-TYPE:VOD",
        ]
        for i in range(self.segments):
            name = f"segment{i:03d}.ts"
            (playlist.parent / name).write_bytes(b"\x47" * 188)
            lines.extend(["#EXTINF:10.000000,", name])
        lines.append("#EXT-X-ENDLIST")
        playlist.write_text("\n".join(lines) + "\n")
        return ProcessResult(0, "", "")

    def run(self, args: Sequence[str]) -> ProcessResult:
        args = [str(a) for a in args]
        with self._lock:
            self.calls.append(args)

        if "ffprobe" in Path(args[0]).name:
            return self._probe()
        if "-movflags" in args:
            return self._encode(args)
        if "hls" in args:
            return self._segment(args)
        return ProcessResult(1, "", "unexpected command")

    @property
    def encode_calls(self) -> list[list[str]]:
        return [c for c in self.calls if "-movflags" in c]

    @property
    def encoded_qualities(self) -> list[str]:
        return sorted(Path(c[-1]).stem for c in self.encode_calls)


@pytest.fixture
def make_runner():
    """Factory for fake ffmpeg/ffprobe runners."""
    return FakeMediaRunner


@pytest.fixture
def media_root(tmp_path: Path) -> Path:
    root = tmp_path / "media"
    root.mkdir()
    return root


@pytest.fixture
def layout(media_root: Path) -> OutputLayout:
    return OutputLayout(media_root)


@pytest.fixture
def make_pipeline(layout: OutputLayout):
    """Factory for a pipeline around a runner, normally a fake one."""
    def _make(
        runner: ProcessRunner,
        labels=None,
        max_parallel_encodes: int = 1,
        ffprobe_path: str = "ffprobe",
    ) -> TranscodePipeline:
        return TranscodePipeline(
            inspector=ProbeInspector(ffprobe_path, runner),
            encoder=QualityEncoder("ffmpeg", runner),
            packager=SegmentPackager("ffmpeg", runner),
            manifest_builder=ManifestBuilder(),
            layout=layout,
            ladder=build_ladder(labels),
            max_parallel_encodes=max_parallel_encodes,
        )
    return _make


@pytest_asyncio.fixture
async def db_engine(tmp_path: Path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(db_engine):
    return create_session_maker(db_engine)


@pytest.fixture
def create_video(session_maker):
    """Factory inserting a video file row directly."""
    async def _create(
        file_path: str = "/uploads/source.mp4",
        status: TranscodeStatus = TranscodeStatus.PENDING,
        created_at: Optional[datetime] = None,
        started_at: Optional[datetime] = None,
        hls_path: Optional[str] = None,
        movie_id: Optional[int] = 1,
        episode_id: Optional[int] = None,
    ) -> VideoFile:
        async with session_maker() as session:
            video = VideoFile(
                movie_id=movie_id,
                episode_id=episode_id,
                original_filename=Path(file_path).name,
                file_path=file_path,
                transcoding_status=status.value,
                hls_path=hls_path,
                started_at=started_at,
            )
            if created_at is not None:
                video.created_at = created_at
            session.add(video)
            await session.commit()
            return video
    return _create
