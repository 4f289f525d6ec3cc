"""Protocol interfaces for storage areas."""

from kv_storage.protocols.storage_area import (
    AsyncStorageArea,
    Entry,
    EntryRecord,
    check_key,
)

__all__ = [
    "AsyncStorageArea",
    "Entry",
    "EntryRecord",
    "check_key",
]
