from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, File, Response, UploadFile
from sqlalchemy.orm import Session

from coreextract.api.errors import http_error_from_service
from coreextract.api.v1.schemas import JobCreate, JobDetailOut, JobFileOut, JobOut, SummaryOut
from coreextract.api.v1.uploads import buffer_upload, store_and_enqueue
from coreextract.db import get_db
from coreextract.services import stores
from coreextract.services.aggregation_service import recompute_summary
from coreextract.services.exceptions import ServiceError
from coreextract.services.upload_service import register_file
from coreextract.storage import blob_key, safe_filename

router = APIRouter(prefix="/jobs", tags=["jobs"])

DBSession = Annotated[Session, Depends(get_db)]


@router.post("", response_model=JobOut, status_code=201)
def create_job(payload: JobCreate, db: DBSession):
    try:
        return stores.create_job(
            db,
            name=payload.name,
            processing_schema=payload.processing_schema,
            extraction_mode=payload.extraction_mode,
            processing_config=payload.processing_config,
            enrichment_enabled=payload.enrichment_enabled,
        )
    except ServiceError as err:
        raise http_error_from_service(err) from err


@router.get("/{job_id}", response_model=JobDetailOut)
def get_job(job_id: uuid.UUID, db: DBSession):
    try:
        job = stores.get_job(db, job_id)
        files = stores.list_job_files(db, job.id)
    except ServiceError as err:
        raise http_error_from_service(err) from err

    return JobDetailOut(
        **JobOut.model_validate(job).model_dump(),
        files=[JobFileOut.model_validate(f) for f in files],
    )


@router.post("/{job_id}/cancel", response_model=JobOut)
def cancel_job(job_id: uuid.UUID, db: DBSession):
    try:
        return stores.cancel_job(db, job_id)
    except ServiceError as err:
        raise http_error_from_service(err) from err


@router.delete("/{job_id}", status_code=204)
def delete_job(job_id: uuid.UUID, db: DBSession):
    try:
        stores.delete_job(db, job_id)
    except ServiceError as err:
        raise http_error_from_service(err) from err
    return Response(status_code=204)


@router.post("/{job_id}/summary", response_model=SummaryOut)
def recompute_job_summary(job_id: uuid.UUID, db: DBSession):
    try:
        summary = recompute_summary(db, job_id)
        job = stores.get_job(db, job_id)
    except ServiceError as err:
        raise http_error_from_service(err) from err
    return SummaryOut(job_id=job.id, status=job.status, summary=summary)


@router.post("/{job_id}/files", response_model=JobFileOut, status_code=202)
def upload_job_file(
    job_id: uuid.UUID,
    db: DBSession,
    file: UploadFile = File(...),
):
    try:
        job = stores.get_job(db, job_id)
    except ServiceError as err:
        raise http_error_from_service(err) from err

    filename = safe_filename(file.filename)
    buffered, sha256, size = buffer_upload(file)
    try:
        file_id = uuid.uuid4()
        job_file = register_file(
            db,
            job.id,
            filename=filename,
            size=size,
            file_hash=sha256,
            storage_key=blob_key(job.id, file_id, filename),
            file_id=file_id,
        )
        return store_and_enqueue(db, job_file, buffered)
    except ServiceError as err:
        raise http_error_from_service(err) from err
    finally:
        buffered.close()
