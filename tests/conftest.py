from __future__ import annotations

import os
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import delete

# Settings are read at import time, so the environment goes first
_TMP_ROOT = Path(tempfile.mkdtemp(prefix="coreextract-tests-"))
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP_ROOT / 'coreextract.db'}")
os.environ.setdefault("STORAGE_ROOT", str(_TMP_ROOT / "blobs"))
os.environ.setdefault("ENRICHMENT_RECORDS_PATH", str(_TMP_ROOT / "missing.csv"))
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

from coreextract.db import SessionLocal, init_db  # noqa: E402
from coreextract.main import app  # noqa: E402
from coreextract.models import Job, JobFile  # noqa: E402
from coreextract.models.job_file import UploadStatus  # noqa: E402
from coreextract.services.stores import create_job  # noqa: E402
from coreextract.services.upload_service import record_upload_outcome, register_file  # noqa: E402

init_db()

SCHEMA = {"permit_number": "string", "lease_name": "string", "county": "string"}


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def clean_db():
    # Ensure a clean slate for each test
    db = SessionLocal()
    try:
        db.execute(delete(JobFile))
        db.execute(delete(Job))
        db.commit()
    finally:
        db.close()
    yield


@pytest.fixture
def make_job(db_session):
    def _make(**overrides) -> Job:
        params = {"name": "Test Job", "processing_schema": SCHEMA}
        params.update(overrides)
        return create_job(db_session, **params)

    return _make


@pytest.fixture
def make_file(db_session):
    def _make(job: Job, filename: str = "report.pdf", uploaded: bool = True) -> JobFile:
        job_file = register_file(
            db_session,
            job.id,
            filename=filename,
            size=1024,
            file_hash="0" * 64,
            storage_key=f"jobs/{job.id}/{filename}",
        )
        if uploaded:
            job_file = record_upload_outcome(db_session, job_file.id, UploadStatus.COMPLETED)
        return job_file

    return _make
