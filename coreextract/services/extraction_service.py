from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.orm import Session

from coreextract.core.config import settings
from coreextract.db import store_errors
from coreextract.models import JobFile
from coreextract.models.job_file import StageStatus
from coreextract.services.error_codes import ErrorCode
from coreextract.services.exceptions import InvalidStateError
from coreextract.services.stores import lock_file

logger = structlog.get_logger(__name__)

TRUNCATION_MARKER = "...[truncated]"


@dataclass
class ExtractionPayload:
    text: str | None = None
    tables: Any = None
    markdown: str | None = None
    pages: Any = None
    page_count: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    elapsed_seconds: float | None = None


def truncate_text(value: str | None, max_chars: int) -> tuple[str | None, bool]:
    if value is None or len(value) <= max_chars:
        return value, False
    return value[:max_chars] + TRUNCATION_MARKER, True


def _page_count(value: Any) -> int | None:
    if value is None:
        return None
    try:
        count = int(value)
    except (TypeError, ValueError):
        return None
    return count if count >= 0 else None


def record_extraction(
    db: Session,
    file_id: Any,
    status: StageStatus,
    payload: ExtractionPayload | None = None,
    error: str | None = None,
    max_text_chars: int | None = None,
) -> JobFile:
    status = StageStatus(status)
    if status == StageStatus.COMPLETED and payload is None:
        raise InvalidStateError(
            ErrorCode.PAYLOAD_REQUIRED.value, "completed extraction requires a payload"
        )

    limit = max_text_chars if max_text_chars is not None else settings.extraction_text_max_chars
    job_file = lock_file(db, file_id)
    job_file.extraction_status = status

    if status == StageStatus.COMPLETED:
        text, text_truncated = truncate_text(payload.text, limit)
        markdown, markdown_truncated = truncate_text(payload.markdown, limit)

        metadata = dict(payload.metadata or {})
        truncated_fields = [
            name
            for name, flagged in (("extracted_text", text_truncated), ("markdown", markdown_truncated))
            if flagged
        ]
        if truncated_fields:
            metadata["truncated_fields"] = truncated_fields
            logger.warning(
                "extraction_text_truncated",
                file_id=str(job_file.id),
                fields=truncated_fields,
                max_chars=limit,
            )

        job_file.extracted_text = text
        job_file.extracted_tables = payload.tables
        job_file.markdown = markdown
        job_file.pages = payload.pages
        job_file.extraction_metadata = metadata or None
        job_file.extraction_time_seconds = payload.elapsed_seconds
        page_count = _page_count(payload.page_count)
        if page_count is not None:
            job_file.page_count = page_count
        job_file.extraction_error = None
    elif status == StageStatus.FAILED:
        # Prior payload fields stay as they are.
        job_file.extraction_error = error

    with store_errors(db):
        db.add(job_file)
        db.commit()
        db.refresh(job_file)

    logger.info("extraction_recorded", file_id=str(job_file.id), extraction_status=status.value)
    return job_file
