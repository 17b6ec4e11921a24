from __future__ import annotations

from functools import lru_cache
from pathlib import Path

import structlog

from coreextract.core.config import settings
from coreextract.storage.base import StorageAdapter
from coreextract.storage.local import LocalStorageAdapter

logger = structlog.get_logger(__name__)

SUPPORTED_BACKENDS = ("local",)


def create_storage(
    backend: str | None = None,
    root: str | Path | None = None,
) -> StorageAdapter:
    """Build the blob store for uploaded job files."""
    selected = (backend or settings.storage_backend).strip().lower()
    if selected not in SUPPORTED_BACKENDS:
        raise ValueError(
            f"unsupported storage backend: {selected} (expected one of {', '.join(SUPPORTED_BACKENDS)})"
        )

    blob_root = Path(root or settings.storage_root)
    logger.info("blob_store_configured", backend=selected, root=str(blob_root))
    return LocalStorageAdapter(blob_root)


@lru_cache(maxsize=1)
def get_storage() -> StorageAdapter:
    return create_storage()
