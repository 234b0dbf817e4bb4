"""Database models for the transcoding job store."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from mediacatalog.core.database import Base


class TranscodeStatus(str, Enum):
    """Status of a video file's transcode lifecycle."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class VideoFile(Base):
    """One uploaded source asset and its transcode state.

    Created by the upload flow with status ``pending``; afterwards mutated
    only by the transcode worker. ``hls_path`` is set if and only if the
    status is ``completed``.
    """

    __tablename__ = "video_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Catalog ownership (exactly one is set)
    movie_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    episode_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

    # Source file
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    file_size: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    mime_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Filled in by the probe
    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # seconds
    resolution: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Status tracking
    transcoding_status: Mapped[str] = mapped_column(
        String(20), default=TranscodeStatus.PENDING.value, nullable=False
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Outputs, relative to the media root
    hls_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    dash_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(movie_id IS NULL) <> (episode_id IS NULL)",
            name="ck_video_files_single_owner",
        ),
        CheckConstraint(
            "transcoding_status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_video_files_status",
        ),
        Index("ix_video_files_status_created", "transcoding_status", "created_at", "id"),
    )

    def __repr__(self) -> str:
        return f"<VideoFile(id={self.id}, status={self.transcoding_status})>"

    @property
    def status(self) -> TranscodeStatus:
        return TranscodeStatus(self.transcoding_status)

    def is_pending(self) -> bool:
        return self.transcoding_status == TranscodeStatus.PENDING.value

    def is_completed(self) -> bool:
        return self.transcoding_status == TranscodeStatus.COMPLETED.value
