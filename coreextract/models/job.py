from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coreextract.models.base import Base, JSONType, TimestampMixin, UUIDPrimaryKeyMixin, enum_column

if TYPE_CHECKING:
    from coreextract.models.job_file import JobFile


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


DEFAULT_EXTRACTION_MODE = "full_extraction"


def default_processing_config() -> dict[str, Any]:
    return {
        "extraction": {"method": "mineru", "options": {}},
        "processing": {"method": "openai", "model": "gpt-4o", "options": {}},
    }


class Job(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "jobs"
    __table_args__ = (sa.Index("ix_jobs_created_at", "created_at"),)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        enum_column(JobStatus, "job_status"),
        nullable=False,
        default=JobStatus.QUEUED,
        server_default=JobStatus.QUEUED.value,
        index=True,
    )

    extraction_mode: Mapped[str] = mapped_column(
        String(50), nullable=False, default=DEFAULT_EXTRACTION_MODE
    )
    processing_schema: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    processing_config: Mapped[dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=default_processing_config
    )

    # Fixed at creation; gates the enrichment chain.
    enrichment_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sa.false()
    )

    summary: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    files: Mapped[list[JobFile]] = relationship(
        back_populates="job",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
