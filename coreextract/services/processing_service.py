"""Records AI processing outcomes on job files.

``actual_result`` keeps the first successful AI output exactly as produced.
It is written by a conditional UPDATE (``WHERE actual_result IS NULL``) in the
same transaction as the rest of the outcome, so of any number of racing
workers exactly one captures it. ``result`` is the working copy: enrichment,
re-processing and manual edits overwrite it freely.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from coreextract.db import store_errors
from coreextract.models import JobFile
from coreextract.models.job_file import StageStatus
from coreextract.services.enrichment import (
    EnrichmentLookup,
    EnrichmentReport,
    get_enrichment_lookup,
    run_enrichment,
)
from coreextract.services.error_codes import ErrorCode
from coreextract.services.exceptions import InvalidStateError
from coreextract.services.stores import get_file, get_job, lock_file

logger = structlog.get_logger(__name__)

SOURCE_LOCATIONS_KEY = "source_locations"


@dataclass(frozen=True)
class ProcessingOutcome:
    file: JobFile
    captured: bool
    enrichment: EnrichmentReport | None


def split_source_locations(result: dict[str, Any]) -> tuple[dict[str, Any], Any]:
    if SOURCE_LOCATIONS_KEY not in result:
        return result, None
    rest = {k: v for k, v in result.items() if k != SOURCE_LOCATIONS_KEY}
    return rest, result[SOURCE_LOCATIONS_KEY]


def _capture_actual_result(db: Session, file_id: Any, value: dict[str, Any]) -> bool:
    outcome = db.execute(
        update(JobFile)
        .where(JobFile.id == file_id, JobFile.actual_result.is_(None))
        .values(actual_result=value)
        .execution_options(synchronize_session=False)
    )
    return outcome.rowcount == 1


def record_processing(
    db: Session,
    file_id: Any,
    status: StageStatus,
    result: dict[str, Any] | None = None,
    error: str | None = None,
    metadata: dict[str, Any] | None = None,
    lookup: EnrichmentLookup | None = None,
    ai_processing_time_seconds: float | None = None,
    now: datetime | None = None,
) -> ProcessingOutcome:
    status = StageStatus(status)
    job_file = get_file(db, file_id)
    if status == StageStatus.COMPLETED and result is None:
        raise InvalidStateError(
            ErrorCode.RESULT_REQUIRED.value, "completed processing requires a result"
        )

    job = get_job(db, job_file.job_id)
    filename = job_file.filename

    original: dict[str, Any] | None = None
    final_result: dict[str, Any] | None = None
    source_locations: Any = None
    report: EnrichmentReport | None = None

    if status == StageStatus.COMPLETED:
        original, source_locations = split_source_locations(copy.deepcopy(result))
        final_result = copy.deepcopy(original)
        # Runs before the row lock is taken; the lookup may be slow.
        if job.enrichment_enabled:
            report = run_enrichment(final_result, filename, lookup or get_enrichment_lookup())
            final_result = report.result

    job_file = lock_file(db, file_id)
    entering_terminal = status.is_terminal and (
        not StageStatus(job_file.processing_status).is_terminal or job_file.processed_at is None
    )

    job_file.processing_status = status
    job_file.processing_error = error
    job_file.processing_metadata = metadata
    if ai_processing_time_seconds is not None:
        job_file.ai_processing_time_seconds = ai_processing_time_seconds
    if entering_terminal:
        job_file.processed_at = now or datetime.now(timezone.utc)

    if status == StageStatus.COMPLETED:
        job_file.result = final_result
        job_file.source_locations = source_locations
        if report is not None and report.flagged_for_review:
            job_file.flagged_for_review = True

    captured = False
    with store_errors(db):
        db.add(job_file)
        db.flush()
        if status == StageStatus.COMPLETED:
            captured = _capture_actual_result(db, job_file.id, original)
        db.commit()
        db.refresh(job_file)

    if captured:
        logger.info("actual_result_captured", file_id=str(job_file.id))
    logger.info(
        "processing_recorded",
        file_id=str(job_file.id),
        job_id=str(job.id),
        processing_status=status.value,
        enriched=report is not None,
        flagged_for_review=job_file.flagged_for_review,
    )
    return ProcessingOutcome(file=job_file, captured=captured, enrichment=report)


def update_result(db: Session, file_id: Any, result: dict[str, Any]) -> JobFile:
    """Manual edit of the working result; ``actual_result`` is never touched."""
    job_file = lock_file(db, file_id)
    if job_file.processing_status != StageStatus.COMPLETED:
        db.rollback()
        raise InvalidStateError(
            ErrorCode.RESULT_NOT_EDITABLE.value, "result can only be edited after processing completes"
        )

    job_file.result = copy.deepcopy(result)
    with store_errors(db):
        db.add(job_file)
        db.commit()
        db.refresh(job_file)

    logger.info("result_edited", file_id=str(job_file.id))
    return job_file
