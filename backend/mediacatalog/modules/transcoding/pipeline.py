"""Stage orchestration for one transcode job.

Probe -> encode every attempted ladder entry -> package every encoded
rendition -> write the master manifest. Each per-quality stage maps over its
inputs producing a ``StageOutcome`` and only the successes flow into the next
stage. Probe errors and an empty survivor set abort the job.
"""

import contextvars
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Generic, Optional, TypeVar

from mediacatalog.core.metrics import RENDITIONS_TOTAL
from mediacatalog.modules.transcoding.exceptions import (
    EncodeError,
    ManifestEmptyError,
    PackageError,
    TranscodeError,
)
from mediacatalog.modules.transcoding.ffmpeg import (
    PackagedRendition,
    ProbeInspector,
    ProbeResult,
    QualityEncoder,
    RenditionResult,
    SegmentPackager,
)
from mediacatalog.modules.transcoding.ladder import QualityProfile, build_ladder, select_profiles
from mediacatalog.modules.transcoding.manifest import ManifestBuilder, ManifestEntry
from mediacatalog.modules.transcoding.storage import OutputLayout

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class StageOutcome(Generic[T]):
    """Result of one per-quality stage: a value or the error that dropped it."""
    profile: QualityProfile
    value: Optional[T] = None
    error: Optional[TranscodeError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.value is not None


@dataclass
class PipelineResult:
    """Everything a completed job run produced."""
    probe: ProbeResult
    master_path: Path
    renditions: list[PackagedRendition]
    skipped: list[QualityProfile] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)  # quality -> reason

    @property
    def qualities(self) -> list[str]:
        return [r.quality for r in self.renditions]


def successes(outcomes: list[StageOutcome[T]]) -> list[T]:
    """Values of the successful outcomes, in input order."""
    return [o.value for o in outcomes if o.succeeded]


class TranscodePipeline:
    """Runs every stage for one source file (blocking)."""

    def __init__(
        self,
        inspector: ProbeInspector,
        encoder: QualityEncoder,
        packager: SegmentPackager,
        manifest_builder: ManifestBuilder,
        layout: OutputLayout,
        ladder: Optional[list[QualityProfile]] = None,
        max_parallel_encodes: int = 1,
    ):
        """Initialize pipeline.

        Args:
            inspector: Probe stage
            encoder: Per-quality encode stage
            packager: Per-rendition HLS segmenting stage
            manifest_builder: Master manifest writer
            layout: Output path layout
            ladder: Ladder entries to attempt (default: full ladder)
            max_parallel_encodes: Concurrent encodes per job; 1 runs them in order
        """
        self.inspector = inspector
        self.encoder = encoder
        self.packager = packager
        self.manifest_builder = manifest_builder
        self.layout = layout
        self.ladder = ladder if ladder is not None else build_ladder()
        self.max_parallel_encodes = max(1, max_parallel_encodes)

    def _map(self, func: Callable[..., StageOutcome], items: list) -> list[StageOutcome]:
        if self.max_parallel_encodes == 1 or len(items) <= 1:
            return [func(item) for item in items]

        # Threads keep the job's correlation id
        contexts = [contextvars.copy_context() for _ in items]

        # Join: every attempt finishes before results are aggregated
        with ThreadPoolExecutor(max_workers=self.max_parallel_encodes) as executor:
            return list(executor.map(lambda ctx, item: ctx.run(func, item), contexts, items))

    def _encode_one(self, video_id: int, source_path: str, profile: QualityProfile) -> StageOutcome[RenditionResult]:
        output = self.layout.rendition_path(video_id, profile.label)
        try:
            rendition = self.encoder.encode(source_path, output, profile)
        except EncodeError as e:
            logger.warning("Dropping %s: %s", profile.label, e, extra={"video_id": video_id, "quality": profile.label})
            RENDITIONS_TOTAL.labels(quality=profile.label, stage="encode", result="failure").inc()
            return StageOutcome(profile, error=e)

        RENDITIONS_TOTAL.labels(quality=profile.label, stage="encode", result="success").inc()
        return StageOutcome(profile, value=rendition)

    def _package_one(self, video_id: int, rendition: RenditionResult) -> StageOutcome[PackagedRendition]:
        quality_dir = self.layout.quality_dir(video_id, rendition.quality)
        try:
            playlist = self.packager.package_to_segments(rendition.output_path, quality_dir)
        except PackageError as e:
            logger.warning("Dropping %s: %s", rendition.quality, e, extra={"video_id": video_id, "quality": rendition.quality})
            RENDITIONS_TOTAL.labels(quality=rendition.quality, stage="package", result="failure").inc()
            # Only surviving renditions keep their MP4
            rendition.output_path.unlink(missing_ok=True)
            return StageOutcome(rendition.profile, error=e)

        RENDITIONS_TOTAL.labels(quality=rendition.quality, stage="package", result="success").inc()
        return StageOutcome(rendition.profile, value=PackagedRendition(rendition, playlist))

    def run(self, video_id: int, source_path: str) -> PipelineResult:
        """Transcode one source into HLS renditions plus a master manifest.

        Args:
            video_id: Job ID, names the output directory
            source_path: Source file location

        Returns:
            PipelineResult with the surviving renditions

        Raises:
            ProbeError: Source could not be probed; nothing was written
            ManifestEmptyError: No rendition survived
        """
        probe = self.inspector.probe(source_path)

        attempted, skipped = select_profiles(self.ladder, probe.height)
        for profile in skipped:
            RENDITIONS_TOTAL.labels(quality=profile.label, stage="encode", result="skipped").inc()
        if skipped:
            logger.info(
                "Skipping %s (source height %d)",
                ", ".join(p.label for p in skipped), probe.height,
                extra={"video_id": video_id},
            )
        if not attempted:
            raise ManifestEmptyError(
                f"Source height {probe.height} is below every configured ladder entry"
            )

        self.layout.job_dir(video_id).mkdir(parents=True, exist_ok=True)

        encoded = self._map(lambda p: self._encode_one(video_id, source_path, p), attempted)
        packaged = [self._package_one(video_id, r) for r in successes(encoded)]

        failures = {o.profile.label: str(o.error) for o in encoded + packaged if o.error is not None}
        survivors = successes(packaged)

        entries = [
            ManifestEntry(
                quality=p.quality,
                playlist_rel_path=self.layout.playlist_rel_to_hls(p.quality),
                bitrate_kbps=p.rendition.bitrate_kbps,
                resolution=p.rendition.resolution,
                position=p.rendition.profile.position,
            )
            for p in survivors
        ]
        if not entries:
            raise ManifestEmptyError(
                f"All {len(attempted)} attempted rendition(s) failed: "
                + "; ".join(f"{q}: {reason}" for q, reason in failures.items())
            )

        master_path = self.manifest_builder.build_master(entries, self.layout.hls_dir(video_id))

        return PipelineResult(
            probe=probe,
            master_path=master_path,
            renditions=survivors,
            skipped=skipped,
            failures=failures,
        )
