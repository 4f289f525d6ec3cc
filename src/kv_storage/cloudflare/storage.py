"""Storage area backed by a Cloudflare Workers KV namespace."""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any, TypeVar

import httpx

from kv_storage.caching import SharedTask
from kv_storage.cloudflare.client import KVApiClient, namespace_path, value_path
from kv_storage.cloudflare.fetcher import EntryFetcher
from kv_storage.cloudflare.namespaces import Namespace, NamespaceResolver
from kv_storage.cloudflare.pagination import KeyPager
from kv_storage.config import StorageConfig, build_api_settings
from kv_storage.exceptions import (
    KEY_NOT_FOUND,
    ClearError,
    DeleteError,
    ReadError,
    RemoteError,
    WriteError,
)
from kv_storage.observability import OperationContext, get_logger
from kv_storage.protocols import Entry, EntryRecord, check_key
from kv_storage.values import ValueType, encode_bulk_value, encode_value

logger = get_logger(__name__)

T = TypeVar("T")


def _batches(items: Sequence[T], size: int) -> list[Sequence[T]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


def _expiry_params(expiration: int | None, ttl: int | None) -> dict[str, int]:
    """Query parameters for an entry's expiry; a TTL wins over an absolute time."""
    if ttl is not None:
        return {"expiration_ttl": ttl}
    if expiration is not None:
        return {"expiration": expiration}
    return {}


async def _gather_writes(
    action: str,
    requests: Iterable[Awaitable[None]],
    error_cls: type[WriteError],
) -> None:
    """Run write requests concurrently and report every failure at once."""
    results = await asyncio.gather(*requests, return_exceptions=True)

    failures: list[RemoteError] = []
    for result in results:
        if isinstance(result, WriteError) and result.failures:
            failures.extend(result.failures)
        elif isinstance(result, RemoteError):
            failures.append(result)
        elif isinstance(result, BaseException):
            raise result

    if failures:
        error = error_cls.aggregate(action, failures)
        logger.error(action + " failed", context={"failed": len(failures)}, error=error)
        raise error


class StorageArea:
    """An asynchronous map over one remote KV namespace.

    The namespace is looked up by ``name`` (and created if missing) the
    first time an operation needs it. The resolution is memoized for the
    lifetime of the instance and forgotten after ``clear()``.

    Example:
        async with StorageArea("sessions", {"key_filename": "cf.json"}) as area:
            await area.set("user:1", {"theme": "dark"}, ttl=3600)
            settings = await area.get("user:1", value_type="json")
            async for key, value in area.entries(prefix="user:"):
                ...
    """

    def __init__(
        self,
        name: str,
        config: StorageConfig | Mapping[str, Any] | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        environ: Mapping[str, str] | None = None,
        cwd: str | Path | None = None,
    ) -> None:
        """Initialize the storage area.

        Args:
            name: Logical name, used as the namespace title
            config: Storage configuration (model or mapping)
            client: Optional HTTP client to send requests with
            environ: Environment for credential lookup (defaults to os.environ)
            cwd: Directory holding the default credentials file

        Raises:
            ValueError: If name is empty
            ConfigError: If no credentials can be resolved
        """
        if not name:
            raise ValueError("StorageArea requires a non-empty name")

        if config is None:
            config = StorageConfig()
        elif not isinstance(config, StorageConfig):
            config = StorageConfig.from_dict(dict(config))

        self.name = name
        self.config = config
        self._api = KVApiClient(
            build_api_settings(config, environ=environ, cwd=cwd),
            client=client,
            timeout=config.timeout,
        )
        self._resolver = NamespaceResolver(self._api)
        self._fetcher = EntryFetcher(self._api)
        self._namespace: SharedTask[Namespace | None] = SharedTask()

    @property
    def namespace(self) -> Namespace | None:
        """The resolved namespace, or None if not resolved yet."""
        return self._namespace.peek()

    async def _ensure_namespace(self, create: bool = True) -> Namespace | None:
        """Resolve the namespace once, sharing any resolution in flight."""
        return await self._namespace.get(
            lambda: self._resolver.resolve(self.name, create_if_missing=create)
        )

    async def _namespace_id(self) -> str:
        """Id of the namespace, creating it if needed."""
        namespace = await self._ensure_namespace()
        while namespace is None:
            # Joined an existence-only lookup that found nothing
            namespace = await self._ensure_namespace()
        return namespace.id

    def _page_limit(self, limit: int | None) -> int | None:
        return limit if limit is not None else self.config.page_limit

    # Writes

    async def set(
        self,
        key: str | Iterable[EntryRecord],
        value: Any = None,
        *,
        expiration: int | None = None,
        ttl: int | None = None,
    ) -> None:
        """Store ``value`` under ``key``.

        Setting None deletes the key. Passing an iterable of entries as
        ``key`` writes them all; see ``set_many``.

        Args:
            key: Key, or iterable of ``Entry`` / ``{key, value, ...}`` records
            value: Value to store
            expiration: Absolute expiry, seconds since epoch
            ttl: Expiry in seconds from now (wins over ``expiration``)

        Raises:
            WriteError: If the write fails
            NamespaceCreationError: If the namespace cannot be created
        """
        if not isinstance(key, str):
            await self.set_many(key, expiration=expiration, ttl=ttl)
            return

        check_key(key)
        if value is None:
            await self.delete(key)
            return

        async with OperationContext(self.name, "set"):
            namespace_id = await self._namespace_id()
            await self._write(namespace_id, key, value, expiration, ttl)

    async def _write(
        self,
        namespace_id: str,
        key: str,
        value: Any,
        expiration: int | None,
        ttl: int | None,
    ) -> None:
        body = encode_value(value)
        await self._api.call(
            "PUT",
            value_path(namespace_id, key),
            WriteError,
            f"Write {key!r}",
            params=_expiry_params(expiration, ttl),
            content=body.content,
            content_type=body.content_type,
        )

    async def set_many(
        self,
        entries: Iterable[EntryRecord],
        *,
        expiration: int | None = None,
        ttl: int | None = None,
    ) -> None:
        """Store several entries.

        Entries with a None value are deleted. Per-entry expiry overrides
        the call-level ``expiration`` / ``ttl``. With ``use_bulk`` the
        writes go through the bulk endpoint in batches, otherwise one
        request per entry is issued concurrently.

        Raises:
            WriteError: Aggregating every failed request
        """
        records = [Entry.from_record(record) for record in entries]
        if not records:
            return

        writes = [entry for entry in records if entry.value is not None]
        removals = [entry.key for entry in records if entry.value is None]

        async with OperationContext(self.name, "set"):
            namespace_id = await self._namespace_id()
            requests: list[Awaitable[None]] = []

            if writes and self.config.use_bulk:
                requests.extend(
                    self._bulk_write(namespace_id, batch, expiration, ttl)
                    for batch in _batches(writes, self.config.bulk_batch_size)
                )
            else:
                requests.extend(
                    self._write(
                        namespace_id,
                        entry.key,
                        entry.value,
                        entry.expiration if entry.expiration is not None else expiration,
                        entry.ttl if entry.ttl is not None else ttl,
                    )
                    for entry in writes
                )

            if removals:
                requests.append(self._delete_keys(namespace_id, removals))

            await _gather_writes(f"Write of {len(records)} entries", requests, WriteError)

    async def _bulk_write(
        self,
        namespace_id: str,
        batch: Sequence[Entry],
        expiration: int | None,
        ttl: int | None,
    ) -> None:
        items = []
        for entry in batch:
            value, is_base64 = encode_bulk_value(entry.value)
            item: dict[str, Any] = {"key": entry.key, "value": value}
            if is_base64:
                item["base64"] = True
            item.update(
                _expiry_params(
                    entry.expiration if entry.expiration is not None else expiration,
                    entry.ttl if entry.ttl is not None else ttl,
                )
            )
            items.append(item)

        action = f"Bulk write of {len(items)} entries"
        payload = await self._api.call(
            "PUT",
            f"{namespace_path(namespace_id)}/bulk",
            WriteError,
            action,
            json=items,
        )

        result = payload.get("result")
        unsuccessful = result.get("unsuccessful_keys") if isinstance(result, dict) else None
        if unsuccessful:
            raise WriteError(
                f"{action} failed for keys: {', '.join(map(str, unsuccessful))}",
                errors=[{"code": None, "message": f"unsuccessful key {key!r}"} for key in unsuccessful],
            )

    async def delete(self, key: str | Iterable[str]) -> None:
        """Delete ``key``, or every key of an iterable.

        Succeeds when the key does not exist.

        Raises:
            DeleteError: If the delete fails
        """
        if not isinstance(key, str):
            await self.delete_many(key)
            return

        check_key(key)
        async with OperationContext(self.name, "delete"):
            namespace_id = await self._namespace_id()
            await self._delete_one(namespace_id, key)

    async def delete_many(self, keys: Iterable[str]) -> None:
        """Delete several keys.

        Raises:
            DeleteError: Aggregating every failed request
        """
        keys = [check_key(key) for key in keys]
        if not keys:
            return

        async with OperationContext(self.name, "delete"):
            namespace_id = await self._namespace_id()
            await self._delete_keys(namespace_id, keys)

    async def _delete_keys(self, namespace_id: str, keys: Sequence[str]) -> None:
        if self.config.use_bulk:
            requests = [
                self._api.call(
                    "DELETE",
                    f"{namespace_path(namespace_id)}/bulk",
                    DeleteError,
                    f"Bulk delete of {len(batch)} keys",
                    json=list(batch),
                )
                for batch in _batches(keys, self.config.bulk_batch_size)
            ]
        else:
            requests = [self._delete_one(namespace_id, key) for key in keys]

        await _gather_writes(f"Delete of {len(keys)} keys", requests, DeleteError)

    async def _delete_one(self, namespace_id: str, key: str) -> None:
        try:
            await self._api.call(
                "DELETE",
                value_path(namespace_id, key),
                DeleteError,
                f"Delete {key!r}",
            )
        except DeleteError as e:
            if e.has_code(KEY_NOT_FOUND):
                return
            raise

    async def clear(self) -> None:
        """Delete every entry by deleting the namespace itself.

        Does not create a namespace that doesn't exist yet. The next
        operation after a successful clear creates a fresh one.

        Raises:
            ClearError: If the namespace cannot be deleted
        """
        async with OperationContext(self.name, "clear"):
            namespace = await self._ensure_namespace(create=False)
            if namespace is None:
                logger.debug("No namespace to clear", context={"title": self.name})
                return

            try:
                await self._api.call(
                    "DELETE",
                    namespace_path(namespace.id),
                    ClearError,
                    f"Delete namespace {self.name!r}",
                )
            except ClearError as e:
                logger.error("Clear failed", context={"namespace_id": namespace.id}, error=e)
                raise

            self._namespace.reset()
            logger.info("Namespace deleted", context={"namespace_id": namespace.id})

    # Reads

    async def get(self, key: str, *, value_type: ValueType | str = ValueType.TEXT) -> Any | None:
        """Get the value stored at ``key``.

        Args:
            key: Key to read
            value_type: ``text``, ``json``, ``bytes`` or ``stream``; a stream
                is an async iterator of body chunks

        Returns:
            The decoded value, or None if there is no value at ``key``

        Raises:
            ReadError: On any failure other than a missing key
        """
        check_key(key)
        value_type = ValueType(value_type)
        async with OperationContext(self.name, "get"):
            namespace_id = await self._namespace_id()
            return await self._fetcher.read(namespace_id, key, value_type, error_cls=ReadError)

    async def keys(
        self,
        *,
        limit: int | None = None,
        prefix: str | None = None,
    ) -> AsyncIterator[str]:
        """Iterate over keys in ascending order.

        Args:
            limit: Page size requested from the service
            prefix: Only yield keys starting with this prefix

        Raises:
            ListingError: If a page cannot be listed
        """
        operation = OperationContext(self.name, "keys")
        with operation:
            namespace_id = await self._namespace_id()
        pager = KeyPager(self._api, namespace_id, limit=self._page_limit(limit), prefix=prefix)

        while True:
            # Entered per request only, never across a yield
            with operation:
                page = await pager.next_page()
            if page is None:
                return
            for key in page.keys:
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
        """Iterate over (key, value) pairs, ordered by key.

        Each page's values are fetched concurrently before any of the page
        is yielded. Keys deleted between listing and fetching yield None.

        Raises:
            ListingError: If a page cannot be listed
            FetchError: If a value in the page cannot be fetched
        """
        value_type = ValueType(value_type)
        if value_type is ValueType.STREAM:
            raise ValueError("stream values are only supported by get()")

        operation = OperationContext(self.name, "entries")
        with operation:
            namespace_id = await self._namespace_id()
        pager = KeyPager(self._api, namespace_id, limit=self._page_limit(limit), prefix=prefix)

        while True:
            with operation:
                page = await pager.next_page()
                if page is None:
                    return
                values = await self._fetcher.fetch_values(namespace_id, page.keys, value_type)
            for item in zip(page.keys, values):
                yield item

    def __aiter__(self) -> AsyncIterator[str]:
        return self.keys()

    async def aclose(self) -> None:
        """Release the HTTP client if this storage area owns it."""
        await self._api.aclose()

    async def __aenter__(self) -> "StorageArea":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
