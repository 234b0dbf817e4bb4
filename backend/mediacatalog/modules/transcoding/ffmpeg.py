"""FFmpeg/ffprobe stages of the transcoding pipeline.

ProbeInspector reads source metadata, QualityEncoder produces one MP4
rendition per ladder entry and SegmentPackager splits a rendition into HLS
transport segments with its own playlist.
"""

import json
import logging
import math
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from mediacatalog.modules.transcoding.exceptions import EncodeError, PackageError, ProbeError
from mediacatalog.modules.transcoding.ladder import QualityProfile
from mediacatalog.modules.transcoding.process import ProcessRunner, SubprocessRunner

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]

HLS_SEGMENT_DURATION = 10  # seconds
HLS_PLAYLIST_NAME = "playlist.m3u8"
HLS_SEGMENT_PATTERN = "segment%03d.ts"


@dataclass
class ProbeResult:
    """Source metadata needed by the rest of the pipeline."""
    duration_seconds: float
    width: int
    height: int
    bitrate: Optional[int] = None  # bps

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass
class RenditionResult:
    """One successfully encoded rendition (ephemeral, per job run)."""
    profile: QualityProfile
    output_path: Path

    @property
    def quality(self) -> str:
        return self.profile.label

    @property
    def resolution(self) -> str:
        return self.profile.resolution

    @property
    def bitrate_kbps(self) -> int:
        return self.profile.bitrate_kbps


@dataclass
class PackagedRendition:
    """A rendition that was also segmented into HLS."""
    rendition: RenditionResult
    playlist_path: Path

    @property
    def quality(self) -> str:
        return self.rendition.quality


def _to_float(value: Any) -> Optional[float]:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_probe_output(raw: dict, source_path: str = "") -> ProbeResult:
    """Extract duration, dimensions and bitrate from ffprobe JSON.

    Args:
        raw: Parsed ``-print_format json -show_format -show_streams`` output
        source_path: Source path, for error messages

    Returns:
        ProbeResult

    Raises:
        ProbeError: If there is no usable video stream or duration
    """
    if not isinstance(raw, dict):
        raise ProbeError(source_path, "probe output is not a JSON object")

    streams = raw.get("streams") or []
    video_stream = next(
        (s for s in streams if isinstance(s, dict) and s.get("codec_type") == "video"),
        None,
    )
    if video_stream is None:
        raise ProbeError(source_path, "no video stream found")

    width = _to_int(video_stream.get("width"))
    height = _to_int(video_stream.get("height"))
    if not width or not height or width <= 0 or height <= 0:
        raise ProbeError(source_path, "video stream has no valid dimensions")

    format_info = raw.get("format") or {}

    # Some containers only report duration on the stream
    duration = _to_float(format_info.get("duration"))
    if duration is None:
        duration = _to_float(video_stream.get("duration"))
    if duration is None or duration < 0:
        raise ProbeError(source_path, "duration is missing or invalid")

    bitrate = _to_int(format_info.get("bit_rate"))
    if bitrate is None:
        bitrate = _to_int(video_stream.get("bit_rate"))

    return ProbeResult(
        duration_seconds=duration,
        width=width,
        height=height,
        bitrate=bitrate,
    )


class ProbeInspector:
    """Reads source metadata with ffprobe."""

    def __init__(self, ffprobe_path: str = "ffprobe", runner: Optional[ProcessRunner] = None):
        """Initialize inspector.

        Args:
            ffprobe_path: Path to ffprobe binary
            runner: Process runner (defaults to a blocking subprocess runner)
        """
        self.ffprobe_path = ffprobe_path
        self.runner = runner or SubprocessRunner()

    def build_probe_command(self, source_path: PathLike) -> list[str]:
        return [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(source_path),
        ]

    def probe(self, source_path: PathLike) -> ProbeResult:
        """Probe a source file.

        Raises:
            ProbeError: On nonzero exit or unparseable output
        """
        source = str(source_path)
        result = self.runner.run(self.build_probe_command(source))

        if not result.ok:
            raise ProbeError(source, f"ffprobe exited with code {result.exit_code}", result.stderr)

        try:
            raw = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ProbeError(source, f"unparseable ffprobe output: {e}", result.stderr) from e

        info = parse_probe_output(raw, source)
        logger.info(
            "Probed %s: %s, %.1fs, bitrate=%s",
            source, info.resolution, info.duration_seconds, info.bitrate,
        )
        return info


class QualityEncoder:
    """Encodes one ladder entry from a source file with ffmpeg.

    Uses capped constant quality (CRF with a VBV ceiling at the ladder
    bitrate) and writes fast-start MP4 so renditions also play progressively.
    """

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        runner: Optional[ProcessRunner] = None,
        preset: str = "fast",
        crf: int = 23,
        audio_bitrate: str = "128k",
        keyframe_interval: int = HLS_SEGMENT_DURATION,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.runner = runner or SubprocessRunner()
        self.preset = preset
        self.crf = crf
        self.audio_bitrate = audio_bitrate
        self.keyframe_interval = keyframe_interval

    def build_encode_command(
        self,
        source_path: PathLike,
        output_path: PathLike,
        profile: QualityProfile,
    ) -> list[str]:
        """Build the ffmpeg command for one rendition."""
        width, height = profile.width, profile.height
        bitrate = profile.bitrate_kbps

        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-y",  # Overwrite output
            "-i", str(source_path),
            "-map", "0:v:0",
            "-map", "0:a:0?",
            # Video settings
            "-c:v", "libx264",
            "-preset", self.preset,
            "-crf", str(self.crf),
            "-maxrate", f"{bitrate}k",
            "-bufsize", f"{bitrate * 2}k",
            "-vf", (
                f"scale={width}:{height}:force_original_aspect_ratio=decrease:force_divisible_by=2,"
                f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2"
            ),
            "-pix_fmt", "yuv420p",
            # Keyframes on segment boundaries so stream-copy segmentation stays exact
            "-force_key_frames", f"expr:gte(t,n_forced*{self.keyframe_interval})",
            # Audio settings
            "-c:a", "aac",
            "-b:a", self.audio_bitrate,
            "-ac", "2",
            # Output format
            "-movflags", "+faststart",
            "-f", "mp4",
            str(output_path),
        ]

    def encode(
        self,
        source_path: PathLike,
        output_path: PathLike,
        profile: QualityProfile,
    ) -> RenditionResult:
        """Encode one rendition, blocking until ffmpeg exits.

        Raises:
            EncodeError: On nonzero exit or missing/empty output
        """
        output = Path(output_path)
        output.parent.mkdir(parents=True, exist_ok=True)

        result = self.runner.run(self.build_encode_command(source_path, output, profile))

        if not result.ok:
            output.unlink(missing_ok=True)
            raise EncodeError(profile.label, f"ffmpeg exited with code {result.exit_code}", result.stderr)

        if not output.exists() or output.stat().st_size == 0:
            output.unlink(missing_ok=True)
            raise EncodeError(profile.label, f"encoder produced no output at {output}", result.stderr)

        logger.info("Encoded %s (%s @ %dk) -> %s", profile.label, profile.resolution, profile.bitrate_kbps, output)
        return RenditionResult(profile=profile, output_path=output)


def read_playlist_segments(playlist_path: PathLike) -> list[str]:
    """Return the segment URIs listed in a media playlist, in order."""
    lines = Path(playlist_path).read_text().splitlines()
    return [line.strip() for line in lines if line.strip() and not line.startswith("#")]


class SegmentPackager:
    """Splits an encoded rendition into fixed-length HLS segments.

    Uses stream copy; the rendition is already in the target codec.
    """

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        runner: Optional[ProcessRunner] = None,
        segment_duration: int = HLS_SEGMENT_DURATION,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.runner = runner or SubprocessRunner()
        self.segment_duration = segment_duration

    def build_segment_command(self, rendition_path: PathLike, output_dir: PathLike) -> list[str]:
        output_dir = Path(output_dir)
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-y",
            "-i", str(rendition_path),
            "-c", "copy",
            "-map", "0",
            "-f", "hls",
            "-hls_time", str(self.segment_duration),
            "-hls_list_size", "0",
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", str(output_dir / HLS_SEGMENT_PATTERN),
            str(output_dir / HLS_PLAYLIST_NAME),
        ]

    def package_to_segments(self, rendition_path: PathLike, output_dir: PathLike) -> Path:
        """Segment one rendition into ``output_dir``.

        Returns:
            Path of the per-rendition playlist

        Raises:
            PackageError: On nonzero exit or a playlist without segments.
                The partial output directory is removed.
        """
        output_dir = Path(output_dir)
        quality = output_dir.name
        playlist = output_dir / HLS_PLAYLIST_NAME

        if output_dir.exists():
            shutil.rmtree(output_dir)
        output_dir.mkdir(parents=True)

        result = self.runner.run(self.build_segment_command(rendition_path, output_dir))

        if not result.ok:
            shutil.rmtree(output_dir, ignore_errors=True)
            raise PackageError(quality, f"segmenter exited with code {result.exit_code}", result.stderr)

        if not playlist.exists() or not read_playlist_segments(playlist):
            shutil.rmtree(output_dir, ignore_errors=True)
            raise PackageError(quality, "segmenter produced no playlist segments", result.stderr)

        logger.info("Packaged %s into %s", rendition_path, playlist)
        return playlist
