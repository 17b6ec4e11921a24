"""Durable job and file records.

Every function takes the caller's session. Reads never lock; ``lock_file``
takes the row lock that serializes all status writes to one file.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from coreextract.db import store_errors
from coreextract.models import Job, JobFile
from coreextract.models.job import DEFAULT_EXTRACTION_MODE, JobStatus, default_processing_config
from coreextract.services.error_codes import ErrorCode
from coreextract.services.exceptions import NotFoundError
from coreextract.storage.base import StorageAdapter
from coreextract.storage.factory import get_storage

logger = structlog.get_logger(__name__)


def as_uuid(value: Any) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _job_not_found(job_id: Any) -> NotFoundError:
    return NotFoundError(ErrorCode.JOB_NOT_FOUND.value, f"job {job_id} not found")


def _file_not_found(file_id: Any) -> NotFoundError:
    return NotFoundError(ErrorCode.FILE_NOT_FOUND.value, f"file {file_id} not found")


def create_job(
    db: Session,
    name: str | None,
    processing_schema: dict[str, Any],
    extraction_mode: str = DEFAULT_EXTRACTION_MODE,
    processing_config: dict[str, Any] | None = None,
    enrichment_enabled: bool = False,
) -> Job:
    job = Job(
        name=name or f"Job {datetime.now(timezone.utc).isoformat()}",
        status=JobStatus.QUEUED,
        extraction_mode=extraction_mode,
        processing_schema=processing_schema,
        processing_config=processing_config or default_processing_config(),
        enrichment_enabled=enrichment_enabled,
    )
    with store_errors(db):
        db.add(job)
        db.commit()
        db.refresh(job)

    logger.info("job_created", job_id=str(job.id), enrichment_enabled=enrichment_enabled)
    return job


def get_job(db: Session, job_id: Any) -> Job:
    key = as_uuid(job_id)
    if key is None:
        raise _job_not_found(job_id)
    with store_errors(db):
        job = db.get(Job, key)
    if not job:
        raise _job_not_found(job_id)
    return job


def get_file(db: Session, file_id: Any) -> JobFile:
    key = as_uuid(file_id)
    if key is None:
        raise _file_not_found(file_id)
    with store_errors(db):
        job_file = db.get(JobFile, key)
    if not job_file:
        raise _file_not_found(file_id)
    return job_file


def lock_file(db: Session, file_id: Any) -> JobFile:
    """Load a file with a row lock held until the caller commits or rolls back."""
    key = as_uuid(file_id)
    if key is None:
        raise _file_not_found(file_id)
    with store_errors(db):
        job_file = db.scalar(
            select(JobFile)
            .where(JobFile.id == key)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    if not job_file:
        raise _file_not_found(file_id)
    return job_file


def list_job_files(db: Session, job_id: Any) -> list[JobFile]:
    key = as_uuid(job_id)
    if key is None:
        return []
    with store_errors(db):
        return list(
            db.scalars(
                select(JobFile)
                .where(JobFile.job_id == key)
                .order_by(JobFile.created_at, JobFile.id)
                .execution_options(populate_existing=True)
            )
        )


def cancel_job(db: Session, job_id: Any) -> Job:
    key = as_uuid(job_id)
    if key is None:
        raise _job_not_found(job_id)
    with store_errors(db):
        job = db.scalar(select(Job).where(Job.id == key).with_for_update())
        if not job:
            raise _job_not_found(job_id)

        if job.cancelled_at is None:
            job.cancelled_at = datetime.now(timezone.utc)
        job.status = JobStatus.FAILED
        db.add(job)
        db.commit()
        db.refresh(job)

    logger.info("job_cancelled", job_id=str(job.id))
    return job


def delete_job(db: Session, job_id: Any, storage: StorageAdapter | None = None) -> None:
    """Delete the job, its files (FK cascade) and then their blobs."""
    job = get_job(db, job_id)
    keys = [f.storage_key for f in list_job_files(db, job.id) if f.storage_key]
    with store_errors(db):
        db.delete(job)
        db.commit()

    blob_store = storage or get_storage()
    for key in keys:
        try:
            blob_store.delete(key)
        except (OSError, ValueError) as exc:
            # Rows are gone already; a leftover blob is only wasted space.
            logger.warning("blob_delete_failed", job_id=str(job_id), key=key, error=str(exc))

    logger.info("job_deleted", job_id=str(job_id), blobs=len(keys))
