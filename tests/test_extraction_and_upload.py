from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from coreextract.models.job_file import StageStatus, UploadStatus
from coreextract.services.exceptions import InvalidStateError, NotFoundError
from coreextract.services.extraction_service import (
    TRUNCATION_MARKER,
    ExtractionPayload,
    record_extraction,
    truncate_text,
)
from coreextract.services.upload_service import (
    record_upload_outcome,
    register_file,
    upload_retry_plan,
)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def test_truncate_text_leaves_short_text_untouched():
    assert truncate_text("abc", 3) == ("abc", False)
    assert truncate_text(None, 3) == (None, False)
    assert truncate_text("abcd", 3) == ("abc" + TRUNCATION_MARKER, True)


def test_long_extraction_text_is_truncated_with_marker(db_session, make_job, make_file):
    job_file = make_file(make_job())
    payload = ExtractionPayload(
        text="x" * 50,
        markdown="# short",
        tables=[{"rows": 2}],
        page_count=3,
        metadata={"engine": "test"},
        elapsed_seconds=1.25,
    )

    stored = record_extraction(
        db_session, job_file.id, StageStatus.COMPLETED, payload=payload, max_text_chars=10
    )

    assert stored.extraction_status == StageStatus.COMPLETED
    assert stored.extracted_text == "x" * 10 + TRUNCATION_MARKER
    assert stored.markdown == "# short"
    assert stored.page_count == 3
    assert stored.extraction_time_seconds == pytest.approx(1.25)
    assert stored.extraction_metadata == {"engine": "test", "truncated_fields": ["extracted_text"]}


def test_text_at_the_limit_is_stored_unchanged(db_session, make_job, make_file):
    job_file = make_file(make_job())
    text = "línea uno\nline two ✓"

    stored = record_extraction(
        db_session,
        job_file.id,
        StageStatus.COMPLETED,
        payload=ExtractionPayload(text=text),
        max_text_chars=len(text),
    )

    assert stored.extracted_text == text
    assert stored.extraction_metadata is None


def test_failed_extraction_keeps_previous_payload(db_session, make_job, make_file):
    job_file = make_file(make_job())
    record_extraction(
        db_session, job_file.id, StageStatus.COMPLETED, payload=ExtractionPayload(text="kept")
    )

    stored = record_extraction(db_session, job_file.id, StageStatus.FAILED, error="engine down")

    assert stored.extraction_status == StageStatus.FAILED
    assert stored.extraction_error == "engine down"
    assert stored.extracted_text == "kept"


def test_completed_extraction_requires_payload(db_session, make_job, make_file):
    job_file = make_file(make_job())

    with pytest.raises(InvalidStateError) as exc:
        record_extraction(db_session, job_file.id, StageStatus.COMPLETED)
    assert exc.value.code == "PAYLOAD_REQUIRED"


def test_three_failed_uploads_count_retries(db_session, make_job, make_file):
    job_file = make_file(make_job(), uploaded=False)
    base = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
    calls = [base, base + timedelta(seconds=30), base + timedelta(seconds=90)]

    for now in calls:
        stored = record_upload_outcome(
            db_session, job_file.id, UploadStatus.FAILED, error="connection reset", now=now
        )

    assert stored.retry_count == 3
    assert _aware(stored.last_retry_at) == calls[-1]
    assert stored.upload_status == UploadStatus.FAILED
    assert stored.upload_error == "connection reset"


def test_successful_upload_does_not_count_as_retry(db_session, make_job, make_file):
    job_file = make_file(make_job(), uploaded=False)

    stored = record_upload_outcome(db_session, job_file.id, UploadStatus.COMPLETED)

    assert stored.retry_count == 0
    assert stored.upload_status == UploadStatus.COMPLETED
    assert stored.last_retry_at is not None


def test_pending_is_not_an_upload_outcome(db_session, make_job, make_file):
    job_file = make_file(make_job(), uploaded=False)

    with pytest.raises(InvalidStateError):
        record_upload_outcome(db_session, job_file.id, UploadStatus.PENDING)


def test_retry_plan_backs_off_and_stops_at_limit(db_session, make_job, make_file):
    job_file = make_file(make_job(), uploaded=False)
    now = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)

    stored = record_upload_outcome(db_session, job_file.id, UploadStatus.FAILED, now=now)
    plan = upload_retry_plan(stored, max_retries=3, base_delay_seconds=5)
    assert plan.allowed is True
    assert _aware(plan.not_before) == now + timedelta(seconds=5)

    stored = record_upload_outcome(db_session, job_file.id, UploadStatus.FAILED, now=now)
    plan = upload_retry_plan(stored, max_retries=3, base_delay_seconds=5)
    assert _aware(plan.not_before) == now + timedelta(seconds=10)

    stored = record_upload_outcome(db_session, job_file.id, UploadStatus.FAILED, now=now)
    plan = upload_retry_plan(stored, max_retries=3, base_delay_seconds=5)
    assert plan.allowed is False
    assert plan.attempts_used == 3


def test_replaying_completed_extraction_leaves_state_unchanged(db_session, make_job, make_file):
    job_file = make_file(make_job())
    payload = ExtractionPayload(
        text="Permit 12", markdown="# Permit 12", pages=[{"n": 1}], page_count=1, metadata={"k": "v"}
    )

    def snapshot(stored):
        return (
            stored.extraction_status,
            stored.extracted_text,
            stored.markdown,
            stored.pages,
            stored.page_count,
            stored.extraction_metadata,
            stored.extraction_error,
        )

    before = snapshot(record_extraction(db_session, job_file.id, StageStatus.COMPLETED, payload=payload))
    after = snapshot(record_extraction(db_session, job_file.id, StageStatus.COMPLETED, payload=payload))

    assert after == before


def test_register_file_starts_all_lanes_pending(db_session, make_job):
    job = make_job()

    job_file = register_file(db_session, job.id, filename="w.pdf", size=10, file_hash="ab" * 32)

    assert job_file.upload_status == UploadStatus.PENDING
    assert job_file.extraction_status == StageStatus.PENDING
    assert job_file.processing_status == StageStatus.PENDING
    assert job_file.retry_count == 0
    assert job_file.actual_result is None
    assert job_file.flagged_for_review is False


def test_register_file_for_unknown_job_is_not_found(db_session):
    with pytest.raises(NotFoundError) as exc:
        register_file(
            db_session, "00000000-0000-0000-0000-000000000000", filename="w.pdf", size=1, file_hash=None
        )
    assert exc.value.code == "JOB_NOT_FOUND"


def test_outcomes_for_unknown_file_are_not_found(db_session):
    missing = "00000000-0000-0000-0000-000000000000"

    with pytest.raises(NotFoundError):
        record_upload_outcome(db_session, missing, UploadStatus.FAILED)
    with pytest.raises(NotFoundError):
        record_extraction(db_session, missing, StageStatus.FAILED, error="x")


def test_upload_outcome_replaces_blob_description(db_session, make_job, make_file):
    job_file = make_file(make_job(), uploaded=False)

    stored = record_upload_outcome(
        db_session,
        job_file.id,
        UploadStatus.COMPLETED,
        storage_key="jobs/x/y/new.pdf",
        file_hash="f" * 64,
        size=2048,
    )

    assert stored.storage_key == "jobs/x/y/new.pdf"
    assert stored.file_hash == "f" * 64
    assert stored.size == 2048
