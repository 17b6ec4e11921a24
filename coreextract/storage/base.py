from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO

FILENAME_SANITIZE_RE = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class StoredBlob:
    key: str
    uri: str
    sha256: str
    size: int


def safe_filename(raw_filename: str | None, fallback: str = "document") -> str:
    candidate = Path((raw_filename or fallback).strip()).name
    candidate = FILENAME_SANITIZE_RE.sub("_", candidate)
    candidate = candidate.strip("._") or fallback
    if len(candidate) > 200:
        stem = Path(candidate).stem[:160] or fallback
        suffix = Path(candidate).suffix[:20]
        candidate = f"{stem}{suffix}"
    return candidate


def blob_key(job_id: Any, file_id: Any, filename: str) -> str:
    return f"jobs/{job_id}/{file_id}/{safe_filename(filename)}"


class StorageAdapter(ABC):
    """Blob store holding uploaded document bytes under opaque keys."""

    @abstractmethod
    def put_file(self, key: str, fileobj: BinaryIO) -> StoredBlob:
        """Store content under key; returns its URI, sha256 and size."""

    @abstractmethod
    def open(self, key: str) -> BinaryIO:
        """Open key for reading in binary mode."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete key if it exists."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Return whether key exists."""
