"""HLS master manifest generation."""

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Union

from mediacatalog.modules.transcoding.exceptions import ManifestEmptyError

logger = logging.getLogger(__name__)

MASTER_MANIFEST_NAME = "master.m3u8"
HLS_VERSION = 3


@dataclass(frozen=True)
class ManifestEntry:
    """One variant stream referenced by the master manifest."""
    quality: str
    playlist_rel_path: str
    bitrate_kbps: int
    resolution: str
    position: int = 0  # ladder position, ascending quality

    @property
    def bandwidth(self) -> int:
        return self.bitrate_kbps * 1000


def render_master(entries: Iterable[ManifestEntry]) -> str:
    """Render master manifest text.

    Entries are written in ascending ladder order regardless of input order.

    Raises:
        ManifestEmptyError: If there are no entries
    """
    ordered = sorted(entries, key=lambda e: e.position)
    if not ordered:
        raise ManifestEmptyError()

    lines = ["#EXTM3U", f"#EXT-X-VERSION:{HLS_VERSION}", ""]
    for entry in ordered:
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={entry.bandwidth},RESOLUTION={entry.resolution}"
        )
        lines.append(entry.playlist_rel_path)
        lines.append("")

    return "\n".join(lines)


def parse_master(text: str) -> list[dict]:
    """Parse the variant entries of a master manifest.

    Returns:
        List of dicts with ``bandwidth``, ``resolution`` and ``uri`` in file order
    """
    variants = []
    pending = None

    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith("#EXT-X-STREAM-INF:"):
            attrs = {}
            for pair in line.split(":", 1)[1].split(","):
                if "=" in pair:
                    key, value = pair.split("=", 1)
                    attrs[key.strip()] = value.strip()
            pending = {
                "bandwidth": int(attrs.get("BANDWIDTH", 0)),
                "resolution": attrs.get("RESOLUTION"),
            }
        elif line and not line.startswith("#") and pending is not None:
            pending["uri"] = line
            variants.append(pending)
            pending = None

    return variants


class ManifestBuilder:
    """Writes the master manifest for a job's HLS directory."""

    def build_master(
        self,
        entries: list[ManifestEntry],
        hls_dir: Union[str, os.PathLike],
    ) -> Path:
        """Write ``master.m3u8`` into ``hls_dir``.

        The file is written to a temporary name and renamed into place, so a
        reader never observes a partially written manifest.

        Args:
            entries: Surviving renditions
            hls_dir: Job HLS directory (rendition playlists are relative to it)

        Returns:
            Path of the master manifest

        Raises:
            ManifestEmptyError: If ``entries`` is empty; nothing is written
        """
        content = render_master(entries)

        hls_dir = Path(hls_dir)
        hls_dir.mkdir(parents=True, exist_ok=True)
        master_path = hls_dir / MASTER_MANIFEST_NAME

        fd, tmp_name = tempfile.mkstemp(dir=hls_dir, prefix=".master-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.replace(tmp_name, master_path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info("Wrote master manifest %s with %d variant(s)", master_path, len(entries))
        return master_path
