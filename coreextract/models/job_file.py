from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coreextract.models.base import Base, JSONType, TimestampMixin, UUIDPrimaryKeyMixin, enum_column

if TYPE_CHECKING:
    from coreextract.models.job import Job


class UploadStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


class StageStatus(str, Enum):
    """Shared by the extraction and processing pipelines."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StageStatus.COMPLETED, StageStatus.FAILED)


class JobFile(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "job_files"
    __table_args__ = (
        sa.Index("ix_job_files_job_id", "job_id"),
        sa.Index("ix_job_files_extraction_status", "extraction_status"),
        sa.Index("ix_job_files_processing_status", "processing_status"),
        sa.CheckConstraint("retry_count >= 0", name="ck_job_files_retry_count_non_negative"),
    )

    job_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
    )

    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    file_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    storage_key: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    # Upload
    upload_status: Mapped[UploadStatus] = mapped_column(
        enum_column(UploadStatus, "upload_status"),
        nullable=False,
        default=UploadStatus.PENDING,
        server_default=UploadStatus.PENDING.value,
    )
    upload_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=sa.text("0")
    )
    last_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Extraction
    extraction_status: Mapped[StageStatus] = mapped_column(
        enum_column(StageStatus, "extraction_status"),
        nullable=False,
        default=StageStatus.PENDING,
        server_default=StageStatus.PENDING.value,
    )
    extracted_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    extracted_tables: Mapped[Any | None] = mapped_column(JSONType, nullable=True)
    markdown: Mapped[str | None] = mapped_column(Text, nullable=True)
    pages: Mapped[Any | None] = mapped_column(JSONType, nullable=True)
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    extraction_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    extraction_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    extraction_time_seconds: Mapped[float | None] = mapped_column(Numeric(10, 3, asdecimal=False), nullable=True)

    # Processing
    processing_status: Mapped[StageStatus] = mapped_column(
        enum_column(StageStatus, "processing_status"),
        nullable=False,
        default=StageStatus.PENDING,
        server_default=StageStatus.PENDING.value,
    )
    result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    # Write-once: the unmodified AI output from the first successful completion.
    actual_result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    source_locations: Mapped[Any | None] = mapped_column(JSONType, nullable=True)
    processing_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_processing_time_seconds: Mapped[float | None] = mapped_column(Numeric(10, 3, asdecimal=False), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    flagged_for_review: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sa.false()
    )

    job: Mapped[Job] = relationship(back_populates="files")
