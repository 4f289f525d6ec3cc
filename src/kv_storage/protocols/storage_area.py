"""AsyncStorageArea protocol for key-value storage areas."""

from collections.abc import AsyncIterator, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from kv_storage.values import ValueType

# Dot segments would be collapsed out of the request path
RESERVED_KEYS = frozenset({".", ".."})


def check_key(key: Any) -> str:
    """Validate a key name.

    Raises:
        ValueError: If the key is empty, not a string, or "." or ".."
    """
    if not isinstance(key, str) or not key:
        raise ValueError("Keys must be non-empty strings")
    if key in RESERVED_KEYS:
        raise ValueError(f"{key!r} is not allowed as a key name")
    return key


@dataclass
class Entry:
    """A key/value pair to write, with optional expiry.

    A value of None means the entry should not exist.
    """

    key: str
    value: Any = None
    expiration: int | None = None  # seconds since epoch
    ttl: int | None = None  # seconds from now

    def __post_init__(self) -> None:
        check_key(self.key)

    @classmethod
    def from_record(cls, record: "Entry | Mapping[str, Any]") -> "Entry":
        """Build an entry from an ``Entry`` or a ``{key, value, ...}`` mapping."""
        if isinstance(record, Entry):
            return record
        return cls(
            key=record["key"],
            value=record.get("value"),
            expiration=record.get("expiration"),
            ttl=record.get("ttl", record.get("expiration_ttl")),
        )


EntryRecord = Entry | Mapping[str, Any]


@runtime_checkable
class AsyncStorageArea(Protocol):
    """Protocol for asynchronous map-like storage areas."""

    async def set(
        self,
        key: str | Iterable[EntryRecord],
        value: Any = None,
        *,
        expiration: int | None = None,
        ttl: int | None = None,
    ) -> None:
        """Store a value, or several entries when ``key`` is an iterable.

        Storing None deletes the key.
        """
        ...

    async def get(self, key: str, *, value_type: ValueType | str = ValueType.TEXT) -> Any | None:
        """Get a value by key. Returns None if not found."""
        ...

    async def delete(self, key: str | Iterable[str]) -> None:
        """Delete one or several keys. No-op for keys that don't exist."""
        ...

    async def clear(self) -> None:
        """Delete every entry."""
        ...

    def keys(self, *, limit: int | None = None, prefix: str | None = None) -> AsyncIterator[str]:
        """Iterate over keys in ascending order."""
        ...

    def values(
        self,
        *,
        limit: int | None = None,
        prefix: str | None = None,
        value_type: ValueType | str = ValueType.TEXT,
    ) -> AsyncIterator[Any]:
        """Iterate over values in key order."""
        ...

    def entries(
        self,
        *,
        limit: int | None = None,
        prefix: str | None = None,
        value_type: ValueType | str = ValueType.TEXT,
    ) -> AsyncIterator[tuple[str, Any]]:
        """Iterate over (key, value) pairs in key order."""
        ...
