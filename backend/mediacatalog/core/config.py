"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
Every value has a default so the transcoding worker can start without any
configuration on a development machine.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from mediacatalog.modules.transcoding.ladder import parse_quality_labels


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Media Catalog Transcoder"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./mediacatalog.db"

    # Media output
    MEDIA_DIR: str = "./media"
    STREAMING_BASE_URL: str = "http://localhost:3001/media"

    # External binaries
    FFMPEG_PATH: str = "ffmpeg"
    FFPROBE_PATH: str = "ffprobe"

    # Quality ladder override (comma separated labels)
    VIDEO_QUALITIES: str = "240p,360p,480p,720p,1080p"

    # Worker / scheduler
    TRANSCODE_POLL_INTERVAL_SECONDS: float = Field(default=10.0, gt=0)
    TRANSCODE_ERROR_BACKOFF_SECONDS: float = Field(default=30.0, gt=0)
    TRANSCODE_PROCESS_TIMEOUT_SECONDS: Optional[float] = Field(default=None, gt=0)
    TRANSCODE_MAX_PARALLEL_ENCODES: int = Field(default=1, ge=1, le=8)
    TRANSCODE_KEEP_FAILED_OUTPUTS: bool = False
    TRANSCODE_STALE_AFTER_MINUTES: Optional[int] = Field(default=None, gt=0)
    TRANSCODE_CLEANUP_DAYS: int = Field(default=30, ge=0)

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Metrics (Prometheus endpoint of the worker process, disabled when unset)
    METRICS_PORT: Optional[int] = Field(default=None, gt=0, lt=65536)

    @field_validator("VIDEO_QUALITIES")
    @classmethod
    def validate_video_qualities(cls, v: str) -> str:
        # Raises ValueError for unknown labels or an empty list
        parse_quality_labels(v)
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level {v!r}")
        return level

    @property
    def quality_labels(self) -> list[str]:
        """Configured ladder labels in ascending ladder order."""
        return parse_quality_labels(self.VIDEO_QUALITIES)

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
