from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Sequence
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from coreextract.db import store_errors
from coreextract.models import Job, JobFile
from coreextract.models.job import JobStatus
from coreextract.models.job_file import StageStatus
from coreextract.services.error_codes import ErrorCode
from coreextract.services.exceptions import NotFoundError
from coreextract.services.stores import get_job, list_job_files

logger = structlog.get_logger(__name__)


def _stage(value: Any) -> StageStatus:
    return StageStatus(value)


def compute_summary(files: Iterable[JobFile]) -> dict[str, Any]:
    summary: dict[str, Any] = {"total": 0}
    for stage in ("extraction", "processing"):
        for status in StageStatus:
            summary[f"{stage}_{status.value}"] = 0
    summary["processing"] = 0
    summary["pending"] = 0
    summary["review_flagged"] = 0

    combinations: Counter[str] = Counter()
    for job_file in files:
        extraction = _stage(job_file.extraction_status)
        processing = _stage(job_file.processing_status)

        summary["total"] += 1
        summary[f"extraction_{extraction.value}"] += 1
        summary[f"processing_{processing.value}"] += 1
        if StageStatus.PROCESSING in (extraction, processing):
            summary["processing"] += 1
        if extraction == StageStatus.PENDING and processing == StageStatus.PENDING:
            summary["pending"] += 1
        if job_file.flagged_for_review:
            summary["review_flagged"] += 1
        combinations[f"{extraction.value}/{processing.value}"] += 1

    summary["by_status"] = dict(sorted(combinations.items()))
    return summary


def derive_job_status(processing_statuses: Sequence[StageStatus]) -> JobStatus:
    if not processing_statuses:
        return JobStatus.QUEUED
    if any(not _stage(s).is_terminal for s in processing_statuses):
        return JobStatus.PROCESSING
    if any(_stage(s) == StageStatus.COMPLETED for s in processing_statuses):
        return JobStatus.COMPLETED
    return JobStatus.FAILED


def recompute_summary(db: Session, job_id: Any) -> dict[str, Any]:
    """Rebuild a job's rollup from its files; writes only the job row."""
    job = get_job(db, job_id)
    files = list_job_files(db, job.id)

    summary = compute_summary(files)
    status = derive_job_status([f.processing_status for f in files])

    with store_errors(db):
        locked = db.scalar(
            select(Job)
            .where(Job.id == job.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if locked is None:
            raise NotFoundError(ErrorCode.JOB_NOT_FOUND.value, f"job {job_id} not found")
        # Cancellation is sticky.
        if locked.cancelled_at is not None:
            status = JobStatus.FAILED
        locked.summary = summary
        locked.status = status
        db.add(locked)
        db.commit()

    logger.info(
        "job_summary_recomputed",
        job_id=str(job.id),
        status=status.value,
        total=summary["total"],
    )
    return summary
