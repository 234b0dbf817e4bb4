"""Error taxonomy of the transcoding pipeline.

Per-quality errors (encode, package) are contained inside their stage and
only drop one rendition. Job-level errors (probe, empty manifest, store)
propagate to the worker, which records the job as failed.
"""

from typing import Optional

STDERR_TAIL_CHARS = 2000


def _tail(text: Optional[str], limit: int = STDERR_TAIL_CHARS) -> str:
    if not text:
        return ""
    text = text.strip()
    return text[-limit:]


class TranscodeError(Exception):
    """Base class for transcoding errors."""


class ProbeError(TranscodeError):
    """Source is unreadable or the probe output cannot be parsed."""

    def __init__(self, source_path: str, reason: str, stderr: Optional[str] = None):
        self.source_path = source_path
        self.reason = reason
        self.stderr = _tail(stderr)
        super().__init__(f"Probe failed for {source_path}: {reason}")


class EncodeError(TranscodeError):
    """The encoder failed to produce one rendition."""

    def __init__(self, quality: str, reason: str, stderr: Optional[str] = None):
        self.quality = quality
        self.reason = reason
        self.stderr = _tail(stderr)
        super().__init__(f"Encoding {quality} failed: {reason}")


class PackageError(TranscodeError):
    """The segmenter failed to package one rendition into HLS."""

    def __init__(self, quality: str, reason: str, stderr: Optional[str] = None):
        self.quality = quality
        self.reason = reason
        self.stderr = _tail(stderr)
        super().__init__(f"Packaging {quality} failed: {reason}")


class ManifestEmptyError(TranscodeError):
    """No rendition survived encoding and packaging."""

    def __init__(self, message: str = "No renditions survived; refusing to write an empty manifest"):
        super().__init__(message)


class StoreError(TranscodeError):
    """The job store is unreachable or rejected an operation."""


class VideoFileNotFoundError(TranscodeError):
    """No video file row with the given id."""

    def __init__(self, video_id: int):
        self.video_id = video_id
        super().__init__(f"Video file {video_id} not found")


class StreamNotAvailableError(TranscodeError):
    """The requested stream is not (or not yet) available."""


class UnknownQualityError(TranscodeError, ValueError):
    """The requested quality label is not part of the ladder."""

    def __init__(self, quality: str):
        self.quality = quality
        super().__init__(f"Unknown quality {quality!r}")
