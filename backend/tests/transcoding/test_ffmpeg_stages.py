"""Tests for the probe, encode and segment stages."""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from hypothesis import given, settings, strategies as st

from mediacatalog.modules.transcoding.exceptions import EncodeError, PackageError, ProbeError
from mediacatalog.modules.transcoding.ffmpeg import (
    ProbeInspector,
    QualityEncoder,
    SegmentPackager,
    parse_probe_output,
    read_playlist_segments,
)
from mediacatalog.modules.transcoding.ladder import QUALITY_LADDER
from mediacatalog.modules.transcoding.process import (
    EXIT_NOT_FOUND,
    EXIT_TIMEOUT,
    ProcessResult,
    SubprocessRunner,
)


def probe_payload(width=1280, height=720, duration="63.2", bit_rate="2500000") -> dict:
    return {
        "format": {"duration": duration, "bit_rate": bit_rate},
        "streams": [
            {"codec_type": "audio"},
            {"codec_type": "video", "width": width, "height": height},
        ],
    }


class TestProbeParsing:
    """Tests for ffprobe JSON parsing."""

    @given(
        width=st.integers(min_value=2, max_value=7680),
        height=st.integers(min_value=2, max_value=4320),
        duration=st.floats(min_value=0, max_value=36000, allow_nan=False),
    )
    @settings(max_examples=100)
    def test_dimensions_and_duration_extracted(self, width: int, height: int, duration: float) -> None:
        """Any valid probe output yields its video dimensions and duration."""
        info = parse_probe_output(probe_payload(width, height, str(duration)))

        assert (info.width, info.height) == (width, height)
        assert info.duration_seconds == pytest.approx(duration)
        assert info.resolution == f"{width}x{height}"

    def test_stream_duration_used_when_format_has_none(self) -> None:
        raw = probe_payload()
        del raw["format"]["duration"]
        raw["streams"][1]["duration"] = "12.5"

        assert parse_probe_output(raw).duration_seconds == 12.5

    def test_bitrate_optional(self) -> None:
        raw = probe_payload()
        del raw["format"]["bit_rate"]

        assert parse_probe_output(raw).bitrate is None

    def test_audio_only_rejected(self) -> None:
        with pytest.raises(ProbeError, match="no video stream"):
            parse_probe_output({"format": {"duration": "3"}, "streams": [{"codec_type": "audio"}]})

    def test_missing_dimensions_rejected(self) -> None:
        raw = probe_payload()
        raw["streams"][1].pop("height")

        with pytest.raises(ProbeError):
            parse_probe_output(raw)

    def test_missing_duration_rejected(self) -> None:
        raw = probe_payload()
        del raw["format"]["duration"]

        with pytest.raises(ProbeError, match="duration"):
            parse_probe_output(raw)

    @pytest.mark.parametrize("duration", ["inf", "-inf", "nan", "N/A"])
    def test_non_finite_duration_rejected(self, duration: str) -> None:
        with pytest.raises(ProbeError, match="duration"):
            parse_probe_output(probe_payload(duration=duration))


class TestProbeInspector:
    """Tests for invoking ffprobe through a runner."""

    def test_probe_command(self) -> None:
        runner = MagicMock()
        runner.run.return_value = ProcessResult(0, json.dumps(probe_payload()), "")

        info = ProbeInspector("/opt/ffprobe", runner).probe("/uploads/a.mkv")

        args = runner.run.call_args[0][0]
        assert args[0] == "/opt/ffprobe"
        assert args[-1] == "/uploads/a.mkv"
        assert "-show_streams" in args and "-show_format" in args
        assert info.height == 720

    def test_nonzero_exit_raises(self) -> None:
        runner = MagicMock()
        runner.run.return_value = ProcessResult(1, "", "moov atom not found")

        with pytest.raises(ProbeError) as exc_info:
            ProbeInspector("ffprobe", runner).probe("/uploads/broken.mp4")

        assert "moov atom not found" in exc_info.value.stderr

    def test_unparseable_output_raises(self) -> None:
        runner = MagicMock()
        runner.run.return_value = ProcessResult(0, "not json", "")

        with pytest.raises(ProbeError, match="unparseable"):
            ProbeInspector("ffprobe", runner).probe("/uploads/a.mp4")


class TestQualityEncoder:
    """Tests for per-rendition encoding."""

    def test_encode_command(self) -> None:
        profile = QUALITY_LADDER["480p"]
        args = QualityEncoder("ffmpeg").build_encode_command("/in.mov", "/out/480p.mp4", profile)

        assert args[0] == "ffmpeg"
        assert args[args.index("-i") + 1] == "/in.mov"
        assert args[args.index("-c:v") + 1] == "libx264"
        assert args[args.index("-preset") + 1] == "fast"
        assert args[args.index("-crf") + 1] == "23"
        assert args[args.index("-maxrate") + 1] == "1200k"
        assert args[args.index("-c:a") + 1] == "aac"
        assert args[args.index("-b:a") + 1] == "128k"
        assert args[args.index("-movflags") + 1] == "+faststart"
        assert "scale=854:480" in args[args.index("-vf") + 1]
        assert args[-1] == "/out/480p.mp4"

    def test_encode_success(self, tmp_path: Path, make_runner) -> None:
        runner = make_runner()
        output = tmp_path / "1" / "720p.mp4"

        result = QualityEncoder("ffmpeg", runner).encode("/in.mp4", output, QUALITY_LADDER["720p"])

        assert result.output_path == output
        assert result.quality == "720p"
        assert result.resolution == "1280x720"
        assert output.stat().st_size > 0

    def test_nonzero_exit_raises_with_quality(self, tmp_path: Path, make_runner) -> None:
        runner = make_runner(fail_encode=["720p"])

        with pytest.raises(EncodeError) as exc_info:
            QualityEncoder("ffmpeg", runner).encode("/in.mp4", tmp_path / "720p.mp4", QUALITY_LADDER["720p"])

        assert exc_info.value.quality == "720p"
        assert not (tmp_path / "720p.mp4").exists()

    def test_missing_output_raises(self, tmp_path: Path) -> None:
        runner = MagicMock()
        runner.run.return_value = ProcessResult(0, "", "")

        with pytest.raises(EncodeError, match="no output"):
            QualityEncoder("ffmpeg", runner).encode("/in.mp4", tmp_path / "240p.mp4", QUALITY_LADDER["240p"])


class TestSegmentPackager:
    """Tests for HLS segmenting."""

    def test_segment_command_uses_stream_copy(self, tmp_path: Path) -> None:
        args = SegmentPackager("ffmpeg").build_segment_command("/out/240p.mp4", tmp_path / "240p")

        assert args[args.index("-c") + 1] == "copy"
        assert args[args.index("-f") + 1] == "hls"
        assert args[args.index("-hls_time") + 1] == "10"
        assert args[args.index("-hls_list_size") + 1] == "0"
        assert args[args.index("-hls_segment_filename") + 1].endswith("segment%03d.ts")
        assert args[-1] == str(tmp_path / "240p" / "playlist.m3u8")

    def test_package_writes_playlist(self, tmp_path: Path, make_runner) -> None:
        runner = make_runner(segments=4)
        out_dir = tmp_path / "hls" / "360p"

        playlist = SegmentPackager("ffmpeg", runner).package_to_segments(tmp_path / "360p.mp4", out_dir)

        assert playlist == out_dir / "playlist.m3u8"
        assert read_playlist_segments(playlist) == [f"segment{i:03d}.ts" for i in range(4)]

    def test_failure_removes_partial_dir(self, tmp_path: Path, make_runner) -> None:
        runner = make_runner(fail_package=["360p"])
        out_dir = tmp_path / "hls" / "360p"

        with pytest.raises(PackageError) as exc_info:
            SegmentPackager("ffmpeg", runner).package_to_segments(tmp_path / "360p.mp4", out_dir)

        assert exc_info.value.quality == "360p"
        assert not out_dir.exists()

    def test_playlist_without_segments_rejected(self, tmp_path: Path, make_runner) -> None:
        runner = make_runner(segments=0)

        with pytest.raises(PackageError, match="no playlist segments"):
            SegmentPackager("ffmpeg", runner).package_to_segments(tmp_path / "a.mp4", tmp_path / "hls" / "240p")


class TestSubprocessRunner:
    """Tests for the real process runner."""

    def test_exit_code_and_stderr_captured(self) -> None:
        result = SubprocessRunner().run(
            [sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"]
        )

        assert result.exit_code == 3
        assert not result.ok
        assert "boom" in result.stderr

    def test_missing_binary(self, tmp_path: Path) -> None:
        result = SubprocessRunner().run([str(tmp_path / "no-such-ffmpeg"), "-version"])

        assert result.exit_code == EXIT_NOT_FOUND

    def test_timeout(self) -> None:
        result = SubprocessRunner(timeout=0.2).run([sys.executable, "-c", "import time; time.sleep(5)"])

        assert result.exit_code == EXIT_TIMEOUT
        assert "timed out" in result.stderr

    def test_non_utf8_output_is_replaced(self) -> None:
        """Latin-1 filenames in stderr do not break decoding."""
        result = SubprocessRunner().run(
            [sys.executable, "-c", "import sys; sys.stderr.buffer.write(b'caf\\xe9.mp4: No such file'); sys.exit(1)"]
        )

        assert result.exit_code == 1
        assert result.stderr.startswith("caf")
        assert "No such file" in result.stderr
