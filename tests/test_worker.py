from __future__ import annotations

import io

import pytest

from coreextract.models import Job, JobFile
from coreextract.models.job import JobStatus
from coreextract.models.job_file import StageStatus
from coreextract.services.enrichment import NoMatch
from coreextract.services.error_codes import ErrorCode
from coreextract.services.exceptions import CollaboratorError, TransientStoreError
from coreextract.services.extraction_service import ExtractionPayload, record_extraction
from coreextract.services.reprocess_service import reprocess_file
from coreextract.storage.local import LocalStorageAdapter
from coreextract.worker import tasks


class FakeExtraction:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.seen = []

    def extract(self, fileobj, filename, mode):
        self.seen.append((fileobj.read(), filename, mode))
        if self.fail:
            raise CollaboratorError(ErrorCode.EXTRACTION_FAILED.value, "engine offline")
        return ExtractionPayload(text="Permit 0042", markdown="# Permit 0042", page_count=1)


class FakeProcessing:
    def __init__(self, result=None, fail: bool = False):
        self.result = result or {"permit_number": "0042"}
        self.fail = fail
        self.seen = []

    def process(self, content, schema, config=None):
        self.seen.append((content, schema))
        if self.fail:
            raise CollaboratorError(ErrorCode.PROCESSING_FAILED.value, "model timeout")
        return self.result


@pytest.fixture
def storage(tmp_path, monkeypatch):
    adapter = LocalStorageAdapter(tmp_path / "blobs")
    monkeypatch.setattr(tasks, "get_storage", lambda: adapter)
    return adapter


@pytest.fixture
def engines(monkeypatch):
    extraction = FakeExtraction()
    processing = FakeProcessing()
    monkeypatch.setattr(tasks, "get_extraction_engine", lambda: extraction)
    monkeypatch.setattr(tasks, "get_processing_engine", lambda: processing)
    return extraction, processing


def _stored_file(make_job, make_file, storage, **job_overrides) -> JobFile:
    job_file = make_file(make_job(**job_overrides), filename="permit_42.pdf")
    storage.put_file(job_file.storage_key, io.BytesIO(b"pdf-bytes"))
    return job_file


def _reload(db_session, job_file):
    db_session.expire_all()
    return db_session.get(JobFile, job_file.id), db_session.get(Job, job_file.job_id)


def test_pipeline_runs_both_stages_and_settles_job(
    db_session, make_job, make_file, storage, engines
):
    extraction, processing = engines
    job_file = _stored_file(make_job, make_file, storage)

    outcome = tasks.process_job_file(str(job_file.id))

    assert outcome["processing_status"] == "completed"
    assert outcome["captured"] is True
    assert extraction.seen == [(b"pdf-bytes", "permit_42.pdf", "full_extraction")]
    assert processing.seen[0][0] == "# Permit 0042"

    stored, job = _reload(db_session, job_file)
    assert stored.extraction_status == StageStatus.COMPLETED
    assert stored.extracted_text == "Permit 0042"
    assert stored.processing_status == StageStatus.COMPLETED
    assert stored.actual_result == {"permit_number": "0042"}
    assert job.status == JobStatus.COMPLETED
    assert job.summary["processing_completed"] == 1


def test_enrichment_runs_for_enabled_jobs(
    db_session, make_job, make_file, storage, engines, monkeypatch
):
    job_file = _stored_file(make_job, make_file, storage, enrichment_enabled=True)

    class NoMatchLookup:
        def lookup(self, identifier):
            return NoMatch()

    monkeypatch.setattr(
        "coreextract.services.processing_service.get_enrichment_lookup", lambda: NoMatchLookup()
    )

    tasks.process_job_file(str(job_file.id))

    stored, _job = _reload(db_session, job_file)
    assert stored.result == {"permit_number": "42"}
    assert stored.actual_result == {"permit_number": "0042"}
    assert stored.flagged_for_review is False


def test_extraction_failure_fails_both_stages(
    db_session, make_job, make_file, storage, monkeypatch
):
    monkeypatch.setattr(tasks, "get_extraction_engine", lambda: FakeExtraction(fail=True))
    processing = FakeProcessing()
    monkeypatch.setattr(tasks, "get_processing_engine", lambda: processing)
    job_file = _stored_file(make_job, make_file, storage)

    outcome = tasks.process_job_file(str(job_file.id))

    assert outcome["extraction_status"] == "failed"
    assert processing.seen == []
    stored, job = _reload(db_session, job_file)
    assert stored.extraction_status == StageStatus.FAILED
    assert stored.extraction_error == "engine offline"
    assert stored.processing_status == StageStatus.FAILED
    assert job.status == JobStatus.FAILED


def test_missing_blob_is_an_extraction_failure(db_session, make_job, make_file, storage, engines):
    job_file = make_file(make_job())

    tasks.process_job_file(str(job_file.id))

    stored, _job = _reload(db_session, job_file)
    assert stored.extraction_status == StageStatus.FAILED
    assert stored.processing_status == StageStatus.FAILED


def test_processing_failure_is_recorded(db_session, make_job, make_file, storage, monkeypatch):
    monkeypatch.setattr(tasks, "get_extraction_engine", lambda: FakeExtraction())
    monkeypatch.setattr(tasks, "get_processing_engine", lambda: FakeProcessing(fail=True))
    job_file = _stored_file(make_job, make_file, storage)

    tasks.process_job_file(str(job_file.id))

    stored, job = _reload(db_session, job_file)
    assert stored.extraction_status == StageStatus.COMPLETED
    assert stored.processing_status == StageStatus.FAILED
    assert stored.processing_error == "model timeout"
    assert stored.actual_result is None
    assert stored.processed_at is not None
    assert job.status == JobStatus.FAILED


def test_file_without_completed_upload_is_skipped(
    db_session, make_job, make_file, storage, engines
):
    extraction, _processing = engines
    job_file = make_file(make_job(), uploaded=False)

    outcome = tasks.process_job_file(str(job_file.id))

    assert outcome["skipped"] == "upload_incomplete"
    assert extraction.seen == []
    _stored, job = _reload(db_session, job_file)
    assert job.status == JobStatus.PROCESSING


def test_completed_extraction_is_reused(db_session, make_job, make_file, storage, engines):
    extraction, processing = engines
    job_file = _stored_file(make_job, make_file, storage)
    record_extraction(
        db_session,
        job_file.id,
        StageStatus.COMPLETED,
        payload=ExtractionPayload(text="Permit 7", markdown="# Permit 7"),
    )

    outcome = tasks.process_job_file(str(job_file.id))

    assert outcome["processing_status"] == "completed"
    assert extraction.seen == []
    assert processing.seen[0][0] == "# Permit 7"


def test_redelivered_task_does_not_run_engines_twice(
    db_session, make_job, make_file, storage, engines
):
    extraction, processing = engines
    job_file = _stored_file(make_job, make_file, storage)

    tasks.process_job_file(str(job_file.id))
    stored_before, _job = _reload(db_session, job_file)
    processed_at = stored_before.processed_at
    second = tasks.process_job_file(str(job_file.id))

    assert second["skipped"] == "processing_completed"
    assert len(extraction.seen) == 1
    assert len(processing.seen) == 1
    stored, _job = _reload(db_session, job_file)
    assert stored.processed_at == processed_at


def test_reprocess_then_worker_runs_only_processing(
    db_session, make_job, make_file, storage, engines
):
    extraction, processing = engines
    job_file = _stored_file(make_job, make_file, storage)
    tasks.process_job_file(str(job_file.id))

    processing.result = {"permit_number": "0042", "lease_name": "Smith"}
    reprocess_file(db_session, job_file.id, re_extract=False)
    tasks.process_job_file(str(job_file.id))

    assert len(extraction.seen) == 1
    assert len(processing.seen) == 2
    stored, job = _reload(db_session, job_file)
    assert stored.result == {"permit_number": "0042", "lease_name": "Smith"}
    assert stored.actual_result == {"permit_number": "0042"}
    assert job.status == JobStatus.COMPLETED


def test_extraction_only_run_leaves_processing_alone(
    db_session, make_job, make_file, storage, engines
):
    extraction, processing = engines
    job_file = _stored_file(make_job, make_file, storage)

    outcome = tasks.process_job_file(str(job_file.id), run_processing=False)

    assert outcome["extraction_status"] == "completed"
    assert outcome["processing_status"] == "pending"
    assert len(extraction.seen) == 1
    assert processing.seen == []


def test_pipeline_error_wins_over_summary_error(
    db_session, make_job, make_file, storage, monkeypatch
):
    class CrashingExtraction:
        def extract(self, fileobj, filename, mode):
            raise RuntimeError("engine crashed")

    def failing_recompute(db, job_id):
        raise TransientStoreError("database unavailable")

    monkeypatch.setattr(tasks, "get_extraction_engine", lambda: CrashingExtraction())
    monkeypatch.setattr(tasks, "recompute_summary", failing_recompute)
    job_file = _stored_file(make_job, make_file, storage)

    with pytest.raises(RuntimeError, match="engine crashed"):
        tasks.process_job_file(str(job_file.id))
