"""Quality ladder configuration and source-aware rendition selection.

The ladder is a fixed table of label -> (width, height, bitrate) ordered from
smallest to largest. A deployment may narrow it with a comma separated label
list; the result is always returned in ascending ladder order so encoding and
manifest order stay predictable.
"""

from dataclasses import dataclass
from typing import Iterable, Union


@dataclass(frozen=True)
class QualityProfile:
    """A single entry of the quality ladder."""
    label: str
    width: int
    height: int
    bitrate_kbps: int
    position: int  # index in the full ladder, ascending quality

    @property
    def resolution(self) -> str:
        """Resolution string as written to manifests, e.g. ``1280x720``."""
        return f"{self.width}x{self.height}"

    @property
    def bandwidth(self) -> int:
        """Approximate bandwidth in bits per second."""
        return self.bitrate_kbps * 1000


QUALITY_LADDER: dict[str, QualityProfile] = {
    profile.label: profile
    for profile in (
        QualityProfile("240p", 426, 240, 400, 0),
        QualityProfile("360p", 640, 360, 800, 1),
        QualityProfile("480p", 854, 480, 1200, 2),
        QualityProfile("720p", 1280, 720, 2500, 3),
        QualityProfile("1080p", 1920, 1080, 5000, 4),
    )
}

DEFAULT_QUALITY_LABELS = list(QUALITY_LADDER)


def parse_quality_labels(value: Union[str, Iterable[str]]) -> list[str]:
    """Parse a ladder override into known labels in ascending ladder order.

    Args:
        value: Comma separated string (``"720p,240p"``) or iterable of labels

    Returns:
        De-duplicated labels sorted by ladder position

    Raises:
        ValueError: If a label is unknown or the result is empty
    """
    if isinstance(value, str):
        raw = value.split(",")
    else:
        raw = list(value)

    labels = [label.strip().lower() for label in raw if label and label.strip()]
    unknown = [label for label in labels if label not in QUALITY_LADDER]
    if unknown:
        raise ValueError(
            f"Unknown quality label(s) {', '.join(unknown)}; "
            f"expected any of {', '.join(DEFAULT_QUALITY_LABELS)}"
        )
    if not labels:
        raise ValueError("Quality ladder must contain at least one label")

    return sorted(set(labels), key=lambda label: QUALITY_LADDER[label].position)


def build_ladder(labels: Union[str, Iterable[str], None] = None) -> list[QualityProfile]:
    """Build the ordered list of profiles for the given labels (default: all)."""
    if labels is None:
        labels = DEFAULT_QUALITY_LABELS
    return [QUALITY_LADDER[label] for label in parse_quality_labels(labels)]


def should_attempt(source_height: int, profile: QualityProfile) -> bool:
    """Whether a ladder entry is attempted for a source; never upscale."""
    return source_height >= profile.height


def select_profiles(
    ladder: list[QualityProfile],
    source_height: int,
) -> tuple[list[QualityProfile], list[QualityProfile]]:
    """Split a ladder into entries to encode and entries skipped as upscales.

    Args:
        ladder: Ordered ladder entries
        source_height: Probed source height in pixels

    Returns:
        Tuple of (attempted, skipped), both in ladder order
    """
    attempted = [p for p in ladder if should_attempt(source_height, p)]
    skipped = [p for p in ladder if not should_attempt(source_height, p)]
    return attempted, skipped

