from __future__ import annotations

import hashlib
import os
from pathlib import Path, PurePosixPath
from typing import BinaryIO

from coreextract.storage.base import StorageAdapter, StoredBlob

CHUNK_SIZE = 1024 * 1024


class LocalStorageAdapter(StorageAdapter):
    def __init__(self, root: Path) -> None:
        self._root = root.resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    def _normalize_key(self, key: str) -> str:
        normalized = key.strip().lstrip("/")
        path_key = PurePosixPath(normalized)
        if not normalized or path_key.is_absolute() or ".." in path_key.parts:
            raise ValueError(f"invalid storage key: {key!r}")
        return str(path_key)

    def _path_for_key(self, key: str) -> Path:
        normalized = self._normalize_key(key)
        return self._root.joinpath(*PurePosixPath(normalized).parts)

    def put_file(self, key: str, fileobj: BinaryIO) -> StoredBlob:
        normalized = self._normalize_key(key)
        path = self._path_for_key(normalized)
        path.parent.mkdir(parents=True, exist_ok=True)

        hasher = hashlib.sha256()
        size = 0
        # Write-then-rename so readers never see a partial blob.
        partial = path.with_name(f".{path.name}.partial")
        with partial.open("wb") as out:
            while True:
                chunk = fileobj.read(CHUNK_SIZE)
                if not chunk:
                    break
                hasher.update(chunk)
                size += len(chunk)
                out.write(chunk)
        os.replace(partial, path)

        return StoredBlob(
            key=normalized,
            uri=f"local://{normalized}",
            sha256=hasher.hexdigest(),
            size=size,
        )

    def open(self, key: str) -> BinaryIO:
        return self._path_for_key(key).open("rb")

    def delete(self, key: str) -> None:
        path = self._path_for_key(key)
        if path.exists():
            path.unlink()

    def exists(self, key: str) -> bool:
        return self._path_for_key(key).exists()
