"""Upload plumbing shared by the job and file routes."""

from __future__ import annotations

import hashlib
import tempfile
from typing import BinaryIO

import structlog
from fastapi import HTTPException, UploadFile
from sqlalchemy.orm import Session

from coreextract.core.config import settings
from coreextract.models import JobFile
from coreextract.models.job_file import UploadStatus
from coreextract.services.upload_service import record_upload_outcome
from coreextract.storage.factory import get_storage
from coreextract.worker.celery_app import celery_app

logger = structlog.get_logger(__name__)

CHUNK_SIZE = 1024 * 1024


def _validation_error(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=422, detail={"code": code, "message": message})


def buffer_upload(file: UploadFile) -> tuple[BinaryIO, str, int]:
    """Spool the upload, enforcing the size cap; returns (buffer, sha256, size)."""
    hasher = hashlib.sha256()
    total_size = 0
    max_size = settings.upload_max_bytes
    buffered = tempfile.SpooledTemporaryFile(max_size=8 * 1024 * 1024, mode="w+b")
    try:
        while True:
            chunk = file.file.read(CHUNK_SIZE)
            if not chunk:
                break
            total_size += len(chunk)
            if total_size > max_size:
                raise _validation_error(
                    "FILE_TOO_LARGE",
                    f"file exceeds max size of {max_size} bytes",
                )
            hasher.update(chunk)
            buffered.write(chunk)
    except Exception:
        buffered.close()
        raise
    finally:
        file.file.close()

    if total_size == 0:
        buffered.close()
        raise _validation_error("EMPTY_FILE", "uploaded file is empty")

    buffered.seek(0)
    return buffered, hasher.hexdigest(), total_size


def enqueue_file(file_id, run_processing: bool = True) -> None:
    """Queue ``process_job_file`` for one file; raises a 500 when the broker refuses."""
    try:
        celery_app.send_task(
            "process_job_file",
            args=[str(file_id)],
            kwargs={"run_processing": run_processing},
        )
    except Exception as exc:
        logger.error("enqueue_failed", file_id=str(file_id), error=str(exc))
        raise HTTPException(
            status_code=500,
            detail={"code": "QUEUE_ERROR", "message": "failed to enqueue processing"},
        ) from exc


def store_and_enqueue(db: Session, job_file: JobFile, buffered: BinaryIO) -> JobFile:
    """Write the blob, record the upload outcome and queue the file for processing."""
    try:
        blob = get_storage().put_file(job_file.storage_key, buffered)
    except (OSError, ValueError) as exc:
        logger.warning("blob_write_failed", file_id=str(job_file.id), error=str(exc))
        record_upload_outcome(db, job_file.id, UploadStatus.FAILED, error=str(exc))
        raise HTTPException(
            status_code=500,
            detail={"code": "STORAGE_WRITE_FAILED", "message": "failed to store uploaded file"},
        ) from exc

    job_file = record_upload_outcome(
        db,
        job_file.id,
        UploadStatus.COMPLETED,
        storage_key=blob.key,
        file_hash=blob.sha256,
        size=blob.size,
    )
    enqueue_file(job_file.id)
    return job_file
