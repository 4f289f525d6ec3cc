"""In-memory storage area."""

import asyncio
import time
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from typing import Any

from kv_storage.protocols import Entry, EntryRecord, check_key
from kv_storage.values import ValueType, decode_value, encode_value


@dataclass
class StoredValue:
    """An encoded value with optional expiration."""

    body: bytes
    expires_at: float | None = None

    def is_expired(self) -> bool:
        """Check if this value has expired."""
        if self.expires_at is None:
            return False
        return time.time() >= self.expires_at


def _expires_at(expiration: int | None, ttl: int | None) -> float | None:
    if ttl is not None:
        return time.time() + ttl
    if expiration is not None:
        return float(expiration)
    return None


async def _body(value: Any) -> bytes:
    content = encode_value(value).content
    if isinstance(content, bytes):
        return content
    return b"".join([chunk async for chunk in content])


async def _single_chunk(body: bytes) -> AsyncIterator[bytes]:
    yield body


class MemoryStorageArea:
    """In-memory storage area with the same interface as ``StorageArea``.

    Suitable for development and testing. Data is lost on restart.
    """

    def __init__(self, name: str = "memory", **kwargs: Any) -> None:
        """Initialize the memory storage area.

        Args:
            name: Logical name (informational only)
            **kwargs: Ignored (for compatibility with other backends)
        """
        self.name = name
        self._data: dict[str, StoredValue] = {}
        self._lock = asyncio.Lock()

    async def set(
        self,
        key: str | Iterable[EntryRecord],
        value: Any = None,
        *,
        expiration: int | None = None,
        ttl: int | None = None,
    ) -> None:
        """Store a value; None deletes the key."""
        if not isinstance(key, str):
            await self.set_many(key, expiration=expiration, ttl=ttl)
            return
        await self.set_many([Entry(key, value)], expiration=expiration, ttl=ttl)

    async def set_many(
        self,
        entries: Iterable[EntryRecord],
        *,
        expiration: int | None = None,
        ttl: int | None = None,
    ) -> None:
        """Store several entries."""
        records = [Entry.from_record(record) for record in entries]
        encoded: list[tuple[Entry, bytes | None]] = []
        for entry in records:
            if entry.value is None:
                encoded.append((entry, None))
            else:
                encoded.append((entry, await _body(entry.value)))

        async with self._lock:
            for entry, body in encoded:
                if body is None:
                    self._data.pop(entry.key, None)
                    continue
                self._data[entry.key] = StoredValue(
                    body=body,
                    expires_at=_expires_at(
                        entry.expiration if entry.expiration is not None else expiration,
                        entry.ttl if entry.ttl is not None else ttl,
                    ),
                )

    async def get(self, key: str, *, value_type: ValueType | str = ValueType.TEXT) -> Any | None:
        """Get a value by key."""
        check_key(key)
        value_type = ValueType(value_type)
        async with self._lock:
            stored = self._data.get(key)
            if stored is None:
                return None
            if stored.is_expired():
                del self._data[key]
                return None
            body = stored.body

        if value_type is ValueType.STREAM:
            return _single_chunk(body)
        return decode_value(body, value_type)

    async def delete(self, key: str | Iterable[str]) -> None:
        """Delete one or several keys."""
        keys = [check_key(k) for k in ([key] if isinstance(key, str) else key)]
        async with self._lock:
            for k in keys:
                self._data.pop(k, None)

    async def delete_many(self, keys: Iterable[str]) -> None:
        """Delete several keys."""
        await self.delete(list(keys))

    async def clear(self) -> None:
        """Clear all data."""
        async with self._lock:
            self._data.clear()

    async def _snapshot(self, prefix: str | None) -> list[tuple[str, bytes]]:
        async with self._lock:
            expired = [k for k, v in self._data.items() if v.is_expired()]
            for k in expired:
                del self._data[k]

            return sorted(
                (k, v.body)
                for k, v in self._data.items()
                if not prefix or k.startswith(prefix)
            )

    async def keys(
        self,
        *,
        limit: int | None = None,
        prefix: str | None = None,
    ) -> AsyncIterator[str]:
        """Iterate over keys in ascending order."""
        for key, _ in await self._snapshot(prefix):
            yield key

    async def values(
        self,
        *,
        limit: int | None = None,
        prefix: str | None = None,
        value_type: ValueType | str = ValueType.TEXT,
    ) -> AsyncIterator[Any]:
        """Iterate over values, ordered by their keys."""
        async for _, value in self.entries(limit=limit, prefix=prefix, value_type=value_type):
            yield value

    async def entries(
        self,
        *,
        limit: int | None = None,
        prefix: str | None = None,
        value_type: ValueType | str = ValueType.TEXT,
    ) -> AsyncIterator[tuple[str, Any]]:
        """Iterate over (key, value) pairs, ordered by key."""
        value_type = ValueType(value_type)
        if value_type is ValueType.STREAM:
            raise ValueError("stream values are only supported by get()")
        for key, body in await self._snapshot(prefix):
            yield key, decode_value(body, value_type)

    def __aiter__(self) -> AsyncIterator[str]:
        return self.keys()
