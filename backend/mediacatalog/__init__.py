"""Media Catalog transcoding backend.

Turns uploaded source videos into multi-quality HLS renditions and tracks
per-file transcode status for the catalog.

Modules:
    - core: Configuration, database, logging, metrics, Celery setup
    - modules.transcoding: Job store, ffmpeg pipeline, worker and scheduler
"""

__version__ = "0.1.0"
