"""Sends a file back through extraction and/or AI processing.

The chosen stages are reset to ``pending`` under the row lock; the worker then
runs whatever is not ``completed``. A completed extraction is only redone when
forced, so a re-run of AI processing never pays for extraction again.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy.orm import Session

from coreextract.db import store_errors
from coreextract.models.job_file import StageStatus, UploadStatus
from coreextract.services.error_codes import ErrorCode
from coreextract.services.exceptions import InvalidStateError
from coreextract.services.stores import get_job, lock_file

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ReprocessPlan:
    file_id: Any
    job_id: Any
    will_extract: bool
    will_process: bool


def _refuse(db: Session, code: ErrorCode, message: str) -> InvalidStateError:
    db.rollback()
    return InvalidStateError(code.value, message)


def reprocess_file(
    db: Session,
    file_id: Any,
    re_extract: bool = True,
    re_process: bool = True,
    force_extraction: bool = False,
) -> ReprocessPlan:
    if not re_extract and not re_process:
        raise InvalidStateError(
            ErrorCode.NOTHING_TO_REPROCESS.value, "at least one of re_extract or re_process is required"
        )

    job_file = lock_file(db, file_id)
    job = get_job(db, job_file.job_id)

    if job.cancelled_at is not None:
        raise _refuse(db, ErrorCode.JOB_CANCELLED, "job was cancelled")
    if job_file.upload_status != UploadStatus.COMPLETED:
        raise _refuse(db, ErrorCode.UPLOAD_INCOMPLETE, "file upload has not completed")

    extraction = StageStatus(job_file.extraction_status)
    processing = StageStatus(job_file.processing_status)
    if StageStatus.PROCESSING in (extraction, processing):
        raise _refuse(db, ErrorCode.FILE_BUSY, "file is currently being worked on")

    if re_extract and not force_extraction and extraction == StageStatus.COMPLETED:
        raise _refuse(
            db,
            ErrorCode.EXTRACTION_ALREADY_COMPLETED,
            "extraction already completed; use force_extraction to redo it",
        )

    will_extract = re_extract
    has_content = bool(job_file.extracted_text or job_file.markdown)
    if re_process and not will_extract and not has_content:
        raise _refuse(
            db, ErrorCode.NO_EXTRACTED_CONTENT, "no extracted content available for processing"
        )

    if will_extract:
        job_file.extraction_status = StageStatus.PENDING
        job_file.extraction_error = None
    if re_process:
        job_file.processing_status = StageStatus.PENDING
        job_file.processing_error = None

    with store_errors(db):
        db.add(job_file)
        db.commit()
        db.refresh(job_file)

    logger.info(
        "file_reprocess_requested",
        file_id=str(job_file.id),
        job_id=str(job.id),
        will_extract=will_extract,
        will_process=re_process,
        forced=force_extraction,
    )
    return ReprocessPlan(
        file_id=job_file.id,
        job_id=job.id,
        will_extract=will_extract,
        will_process=re_process,
    )
