from __future__ import annotations

import time

from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from coreextract.db import SessionLocal
from coreextract.models.job_file import StageStatus, UploadStatus
from coreextract.services.aggregation_service import recompute_summary
from coreextract.services.collaborators import get_extraction_engine, get_processing_engine
from coreextract.services.error_codes import ErrorCode
from coreextract.services.exceptions import CollaboratorError, TransientStoreError
from coreextract.services.extraction_service import record_extraction
from coreextract.services.processing_service import record_processing
from coreextract.services.stores import get_file, get_job
from coreextract.storage.factory import get_storage
from coreextract.worker.celery_app import celery_app

logger = get_task_logger(__name__)


def _extract(job_file, extraction_mode: str):
    storage = get_storage()
    if not job_file.storage_key or not storage.exists(job_file.storage_key):
        raise CollaboratorError(ErrorCode.BLOB_READ_FAILED.value, "file has no stored blob")
    try:
        fh = storage.open(job_file.storage_key)
    except (OSError, ValueError) as exc:
        raise CollaboratorError(ErrorCode.BLOB_READ_FAILED.value, str(exc)) from exc
    with fh:
        return get_extraction_engine().extract(fh, job_file.filename, extraction_mode)


def _outcome(job_file, **extra) -> dict:
    return {
        "file_id": str(job_file.id),
        "extraction_status": StageStatus(job_file.extraction_status).value,
        "processing_status": StageStatus(job_file.processing_status).value,
        **extra,
    }


def _run_pipeline(db: Session, job_file, run_processing: bool = True) -> dict:
    file_id = str(job_file.id)
    job = get_job(db, job_file.job_id)

    if job.cancelled_at is not None:
        logger.info("process_job_file skipped cancelled job_id=%s file_id=%s", job.id, file_id)
        return {"file_id": file_id, "skipped": "job_cancelled"}
    if job_file.upload_status != UploadStatus.COMPLETED:
        logger.info("process_job_file skipped file_id=%s upload_status=%s", file_id, job_file.upload_status)
        return {"file_id": file_id, "skipped": "upload_incomplete"}

    # Completed stages are never redone here.
    if job_file.extraction_status == StageStatus.COMPLETED:
        logger.info("extraction already completed file_id=%s, reusing stored content", file_id)
    else:
        record_extraction(db, file_id, StageStatus.PROCESSING)
        try:
            payload = _extract(job_file, job.extraction_mode)
        except CollaboratorError as exc:
            logger.warning("extraction failed file_id=%s code=%s error=%s", file_id, exc.code, exc.message)
            job_file = record_extraction(db, file_id, StageStatus.FAILED, error=exc.message)
            # Processing cannot start without extracted content.
            if run_processing or not StageStatus(job_file.processing_status).is_terminal:
                job_file = record_processing(
                    db, file_id, StageStatus.FAILED, error=f"extraction failed: {exc.message}"
                ).file
            return _outcome(job_file)

        job_file = record_extraction(db, file_id, StageStatus.COMPLETED, payload=payload)

    if not run_processing:
        return _outcome(job_file)
    if job_file.processing_status == StageStatus.COMPLETED:
        logger.info("processing already completed file_id=%s", file_id)
        return _outcome(job_file, skipped="processing_completed")

    content = job_file.markdown or job_file.extracted_text
    if not content:
        job_file = record_processing(
            db, file_id, StageStatus.FAILED, error="no extracted content"
        ).file
        return _outcome(job_file)

    record_processing(db, file_id, StageStatus.PROCESSING)
    started = time.monotonic()
    try:
        result = get_processing_engine().process(
            content, job.processing_schema, job.processing_config
        )
    except CollaboratorError as exc:
        logger.warning("processing failed file_id=%s code=%s error=%s", file_id, exc.code, exc.message)
        job_file = record_processing(
            db,
            file_id,
            StageStatus.FAILED,
            error=exc.message,
            ai_processing_time_seconds=round(time.monotonic() - started, 3),
        ).file
        return _outcome(job_file)

    outcome = record_processing(
        db,
        file_id,
        StageStatus.COMPLETED,
        result=result,
        ai_processing_time_seconds=round(time.monotonic() - started, 3),
    )
    return _outcome(
        outcome.file,
        captured=outcome.captured,
        flagged_for_review=outcome.file.flagged_for_review,
    )


@celery_app.task(
    name="process_job_file",
    autoretry_for=(TransientStoreError,),
    retry_backoff=True,
    max_retries=3,
)
def process_job_file(file_id: str, run_processing: bool = True) -> dict:
    db: Session = SessionLocal()
    try:
        logger.info("process_job_file started file_id=%s run_processing=%s", file_id, run_processing)
        job_file = get_file(db, file_id)
        job_id = job_file.job_id
        try:
            outcome = _run_pipeline(db, job_file, run_processing=run_processing)
        except Exception:
            db.rollback()
            # The job rollup still settles, but the pipeline error is the one reported.
            try:
                recompute_summary(db, job_id)
            except Exception:
                logger.exception("summary recompute failed after pipeline error job_id=%s", job_id)
                db.rollback()
            raise

        recompute_summary(db, job_id)
        logger.info("process_job_file finished file_id=%s outcome=%s", file_id, outcome)
        return outcome
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
