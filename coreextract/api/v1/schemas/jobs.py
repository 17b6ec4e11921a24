from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from coreextract.models.job import DEFAULT_EXTRACTION_MODE, JobStatus
from coreextract.models.job_file import StageStatus, UploadStatus


class SchemaBase(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")


class JobCreate(SchemaBase):
    name: str | None = Field(default=None, max_length=255)
    processing_schema: dict[str, Any]
    extraction_mode: str = Field(default=DEFAULT_EXTRACTION_MODE, min_length=1, max_length=50)
    processing_config: dict[str, Any] | None = None
    enrichment_enabled: bool = False

    @field_validator("processing_schema")
    @classmethod
    def _schema_not_empty(cls, value: dict[str, Any]) -> dict[str, Any]:
        if not value:
            raise ValueError("processing_schema must not be empty")
        return value


class JobFileOut(SchemaBase):
    id: UUID
    job_id: UUID
    filename: str
    size: int
    file_hash: str | None = None
    storage_key: str | None = None

    upload_status: UploadStatus
    upload_error: str | None = None
    retry_count: int
    last_retry_at: datetime | None = None

    extraction_status: StageStatus
    extraction_error: str | None = None
    page_count: int | None = None
    extraction_metadata: dict[str, Any] | None = None
    extraction_time_seconds: float | None = None

    processing_status: StageStatus
    processing_error: str | None = None
    result: dict[str, Any] | None = None
    actual_result: dict[str, Any] | None = None
    source_locations: Any = None
    processing_metadata: dict[str, Any] | None = None
    ai_processing_time_seconds: float | None = None
    processed_at: datetime | None = None
    flagged_for_review: bool

    created_at: datetime
    updated_at: datetime


class JobOut(SchemaBase):
    id: UUID
    name: str
    status: JobStatus
    extraction_mode: str
    processing_schema: dict[str, Any]
    processing_config: dict[str, Any]
    enrichment_enabled: bool
    summary: dict[str, Any] | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class JobDetailOut(JobOut):
    files: list[JobFileOut] = Field(default_factory=list)


class ResultUpdate(SchemaBase):
    result: dict[str, Any]


class SummaryOut(SchemaBase):
    job_id: UUID
    status: JobStatus
    summary: dict[str, Any]


class ReprocessRequest(SchemaBase):
    re_extract: bool = True
    re_process: bool = True
    force_extraction: bool = False


class ReprocessOut(SchemaBase):
    file_id: UUID
    job_id: UUID
    will_extract: bool
    will_process: bool
