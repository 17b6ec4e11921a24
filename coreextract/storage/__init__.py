from coreextract.storage.base import StorageAdapter, StoredBlob, blob_key, safe_filename
from coreextract.storage.factory import create_storage, get_storage
from coreextract.storage.local import LocalStorageAdapter

__all__ = [
    "StorageAdapter",
    "StoredBlob",
    "LocalStorageAdapter",
    "blob_key",
    "safe_filename",
    "create_storage",
    "get_storage",
]
