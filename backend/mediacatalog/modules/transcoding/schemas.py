"""Pydantic schemas for the transcoding service."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from mediacatalog.modules.transcoding.models import TranscodeStatus


class VideoFileCreate(BaseModel):
    """Schema for recording a freshly uploaded source file."""
    movie_id: Optional[int] = Field(None, gt=0, description="Owning movie")
    episode_id: Optional[int] = Field(None, gt=0, description="Owning episode")
    original_filename: str = Field(..., min_length=1, max_length=255)
    file_path: str = Field(..., min_length=1, max_length=500, description="Path to source video file")
    file_size: Optional[int] = Field(None, ge=0, description="Source size in bytes")
    mime_type: Optional[str] = Field(None, max_length=100)

    @model_validator(mode="after")
    def check_single_owner(self) -> "VideoFileCreate":
        if (self.movie_id is None) == (self.episode_id is None):
            raise ValueError("Exactly one of movie_id or episode_id must be set")
        return self


class VideoFileResponse(BaseModel):
    """Schema for a video file row."""
    id: int
    movie_id: Optional[int]
    episode_id: Optional[int]
    original_filename: str
    file_path: str
    file_size: Optional[int]
    mime_type: Optional[str]
    duration: Optional[int]
    resolution: Optional[str]
    transcoding_status: TranscodeStatus
    error_message: Optional[str]
    hls_path: Optional[str]
    dash_path: Optional[str]
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime]

    class Config:
        from_attributes = True


class RenditionSummary(BaseModel):
    """One rendition that made it into the master manifest."""
    quality: str
    resolution: str
    bitrate_kbps: int
    playlist_path: str


class TranscodeRunResult(BaseModel):
    """Outcome of one worker iteration for one job."""
    video_id: int
    status: TranscodeStatus
    hls_path: Optional[str] = None
    duration: Optional[int] = None
    resolution: Optional[str] = None
    renditions: list[RenditionSummary] = Field(default_factory=list)
    skipped_qualities: list[str] = Field(default_factory=list)
    failed_qualities: list[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    elapsed_seconds: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.status == TranscodeStatus.COMPLETED


class StreamInfo(BaseModel):
    """Resolved stream location for a video."""
    video_id: int
    quality: str = Field(..., description="'auto' or a ladder label")
    path: str = Field(..., description="Path relative to the media root")
    url: str


class CleanupResult(BaseModel):
    """Summary of a cleanup run."""
    days: int
    cutoff: datetime
    scanned: int = 0
    removed: int = 0
    removed_ids: list[int] = Field(default_factory=list)


class QueueStats(BaseModel):
    """Job counts per status."""
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.completed + self.failed
