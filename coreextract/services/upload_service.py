from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy.orm import Session

from coreextract.db import store_errors
from coreextract.models import JobFile
from coreextract.models.job_file import StageStatus, UploadStatus
from coreextract.services.error_codes import ErrorCode
from coreextract.services.exceptions import InvalidStateError
from coreextract.services.stores import get_job, lock_file

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class UploadRetryPlan:
    allowed: bool
    attempts_used: int
    not_before: datetime | None


def register_file(
    db: Session,
    job_id: Any,
    filename: str,
    size: int,
    file_hash: str | None,
    storage_key: str | None = None,
    file_id: Any = None,
) -> JobFile:
    job = get_job(db, job_id)

    job_file = JobFile(
        job_id=job.id,
        filename=filename,
        size=size,
        file_hash=file_hash,
        storage_key=storage_key,
        upload_status=UploadStatus.PENDING,
        extraction_status=StageStatus.PENDING,
        processing_status=StageStatus.PENDING,
        retry_count=0,
    )
    if file_id is not None:
        job_file.id = file_id

    with store_errors(db):
        db.add(job_file)
        db.commit()
        db.refresh(job_file)

    logger.info("file_registered", job_id=str(job.id), file_id=str(job_file.id), size=size)
    return job_file


def record_upload_outcome(
    db: Session,
    file_id: Any,
    outcome: UploadStatus,
    error: str | None = None,
    storage_key: str | None = None,
    file_hash: str | None = None,
    size: int | None = None,
    now: datetime | None = None,
) -> JobFile:
    """Apply one upload attempt's outcome.

    ``storage_key``, ``file_hash`` and ``size`` describe the bytes just written
    and replace the registered values when given.
    """
    outcome = UploadStatus(outcome)
    if outcome == UploadStatus.PENDING:
        raise InvalidStateError(
            ErrorCode.INVALID_UPLOAD_OUTCOME.value, "upload outcome cannot be pending"
        )

    job_file = lock_file(db, file_id)

    job_file.upload_status = outcome
    # Stamped on every outcome so it always reflects the latest upload activity.
    job_file.last_retry_at = now or datetime.now(timezone.utc)
    if error is not None:
        job_file.upload_error = error
    if storage_key is not None:
        job_file.storage_key = storage_key
    if file_hash is not None:
        job_file.file_hash = file_hash
    if size is not None:
        job_file.size = size
    if outcome == UploadStatus.FAILED:
        # Incremented in SQL so concurrent failures are never lost.
        job_file.retry_count = JobFile.retry_count + 1

    with store_errors(db):
        db.add(job_file)
        db.commit()
        db.refresh(job_file)

    logger.info(
        "upload_outcome_recorded",
        file_id=str(file_id),
        upload_status=outcome.value,
        retry_count=job_file.retry_count,
    )
    return job_file


def upload_retry_plan(
    job_file: JobFile,
    max_retries: int,
    base_delay_seconds: float,
) -> UploadRetryPlan:
    """Whether another upload attempt is allowed, and the earliest time for it.

    Backoff doubles per failed attempt: base, 2*base, 4*base, ...
    """
    attempts = job_file.retry_count or 0
    if job_file.upload_status != UploadStatus.FAILED:
        return UploadRetryPlan(allowed=False, attempts_used=attempts, not_before=None)
    if attempts >= max_retries:
        return UploadRetryPlan(allowed=False, attempts_used=attempts, not_before=None)

    not_before = None
    if job_file.last_retry_at is not None:
        delay = base_delay_seconds * (2 ** max(attempts - 1, 0))
        not_before = job_file.last_retry_at + timedelta(seconds=delay)
    return UploadRetryPlan(allowed=True, attempts_used=attempts, not_before=not_before)
