from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from coreextract.api.errors import http_error_from_service
from coreextract.api.v1.schemas import JobFileOut, ReprocessOut, ReprocessRequest, ResultUpdate
from coreextract.api.v1.uploads import buffer_upload, enqueue_file, store_and_enqueue
from coreextract.core.config import settings
from coreextract.db import get_db
from coreextract.services import stores
from coreextract.services.aggregation_service import recompute_summary
from coreextract.services.exceptions import ServiceError
from coreextract.services.processing_service import update_result
from coreextract.services.reprocess_service import reprocess_file
from coreextract.services.upload_service import upload_retry_plan

router = APIRouter(prefix="/files", tags=["files"])

DBSession = Annotated[Session, Depends(get_db)]


def _as_aware(value: datetime) -> datetime:
    # sqlite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@router.get("/{file_id}", response_model=JobFileOut)
def get_file(file_id: uuid.UUID, db: DBSession):
    try:
        return stores.get_file(db, file_id)
    except ServiceError as err:
        raise http_error_from_service(err) from err


@router.patch("/{file_id}/result", response_model=JobFileOut)
def edit_result(file_id: uuid.UUID, payload: ResultUpdate, db: DBSession):
    try:
        return update_result(db, file_id, payload.result)
    except ServiceError as err:
        raise http_error_from_service(err) from err


@router.post("/{file_id}/upload", response_model=JobFileOut, status_code=202)
def retry_upload(
    file_id: uuid.UUID,
    db: DBSession,
    file: UploadFile = File(...),
):
    try:
        job_file = stores.get_file(db, file_id)
    except ServiceError as err:
        raise http_error_from_service(err) from err

    plan = upload_retry_plan(
        job_file,
        max_retries=settings.upload_max_retries,
        base_delay_seconds=settings.upload_retry_base_delay_seconds,
    )
    if not plan.allowed:
        raise HTTPException(
            status_code=409,
            detail={"code": "UPLOAD_RETRY_NOT_ALLOWED", "message": "upload cannot be retried"},
        )
    if plan.not_before is not None and _as_aware(plan.not_before) > datetime.now(timezone.utc):
        raise HTTPException(
            status_code=429,
            detail={
                "code": "UPLOAD_RETRY_TOO_SOON",
                "message": f"retry allowed after {_as_aware(plan.not_before).isoformat()}",
            },
        )

    # Hash and size of the new bytes come back from the blob store.
    buffered, _, _ = buffer_upload(file)
    try:
        return store_and_enqueue(db, job_file, buffered)
    except ServiceError as err:
        raise http_error_from_service(err) from err
    finally:
        buffered.close()


@router.post("/{file_id}/reprocess", response_model=ReprocessOut, status_code=202)
def reprocess(file_id: uuid.UUID, payload: ReprocessRequest, db: DBSession):
    try:
        plan = reprocess_file(
            db,
            file_id,
            re_extract=payload.re_extract,
            re_process=payload.re_process,
            force_extraction=payload.force_extraction,
        )
        recompute_summary(db, plan.job_id)
    except ServiceError as err:
        raise http_error_from_service(err) from err

    enqueue_file(plan.file_id, run_processing=plan.will_process)
    return ReprocessOut(
        file_id=plan.file_id,
        job_id=plan.job_id,
        will_extract=plan.will_extract,
        will_process=plan.will_process,
    )
