"""On-disk layout of transcoded outputs.

Every job owns one directory under the media root::

    {media_root}/{id}/{quality}.mp4
    {media_root}/{id}/hls/{quality}/playlist.m3u8 (+ segmentNNN.ts)
    {media_root}/{id}/hls/master.m3u8

Paths stored in the database are relative to the media root.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Union

from mediacatalog.modules.transcoding.ffmpeg import HLS_PLAYLIST_NAME
from mediacatalog.modules.transcoding.manifest import MASTER_MANIFEST_NAME

logger = logging.getLogger(__name__)


class OutputLayout:
    """Resolves per-job output paths under a media root."""

    def __init__(self, media_root: Union[str, os.PathLike]):
        self.media_root = Path(media_root)

    def job_dir(self, video_id: int) -> Path:
        return self.media_root / str(video_id)

    def rendition_path(self, video_id: int, quality: str) -> Path:
        return self.job_dir(video_id) / f"{quality}.mp4"

    def hls_dir(self, video_id: int) -> Path:
        return self.job_dir(video_id) / "hls"

    def quality_dir(self, video_id: int, quality: str) -> Path:
        return self.hls_dir(video_id) / quality

    def quality_playlist(self, video_id: int, quality: str) -> Path:
        return self.quality_dir(video_id, quality) / HLS_PLAYLIST_NAME

    def master_path(self, video_id: int) -> Path:
        return self.hls_dir(video_id) / MASTER_MANIFEST_NAME

    def relative(self, path: Union[str, os.PathLike]) -> str:
        """Media-root relative path in POSIX form, as stored and served."""
        return Path(path).relative_to(self.media_root).as_posix()

    def resolve(self, relative_path: str) -> Path:
        return self.media_root / relative_path

    def playlist_rel_to_hls(self, quality: str) -> str:
        """Rendition playlist URI as referenced from the master manifest."""
        return f"{quality}/{HLS_PLAYLIST_NAME}"

    def has_quality_playlist(self, video_id: int, quality: str) -> bool:
        return self.quality_playlist(video_id, quality).is_file()

    def remove_job_dir(self, video_id: int) -> bool:
        """Remove a job's whole output tree.

        Returns:
            True if something was removed, False if the directory did not exist
        """
        path = self.job_dir(video_id)
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return False

        logger.info("Removed output directory %s", path)
        return True
