"""Concurrent retrieval of entry values."""

import asyncio
from collections.abc import Sequence
from typing import Any

import httpx

from kv_storage.cloudflare.client import KVApiClient, parse_envelope, value_path
from kv_storage.exceptions import KEY_NOT_FOUND, FetchError, RemoteError
from kv_storage.values import ValueType, decode_value, stream_body


def is_not_found(payload: dict[str, Any]) -> bool:
    """Whether an error envelope reports a missing key."""
    return any(error.get("code") == KEY_NOT_FOUND for error in payload.get("errors") or [])


class EntryFetcher:
    """Reads values of a namespace, one request per key."""

    def __init__(self, api: KVApiClient) -> None:
        self.api = api

    async def read(
        self,
        namespace_id: str,
        key: str,
        value_type: ValueType = ValueType.TEXT,
        error_cls: type[RemoteError] = FetchError,
    ) -> Any | None:
        """Read one value.

        Args:
            namespace_id: Namespace holding the key
            key: Key to read
            value_type: How to decode the body
            error_cls: Error raised on failure

        Returns:
            The decoded value, or None if the key does not exist

        Raises:
            RemoteError: ``error_cls`` on transport, API or decoding failures
        """
        action = f"Read {key!r}"
        stream = value_type is ValueType.STREAM
        try:
            response = await self.api.send("GET", value_path(namespace_id, key), stream=stream)
            if stream and not response.is_success:
                await response.aread()
                await response.aclose()
        except httpx.HTTPError as e:
            raise error_cls(f"{action} failed: {e}") from e

        if not response.is_success:
            payload = parse_envelope(response)
            if is_not_found(payload):
                return None
            raise error_cls.from_payload(action, payload, response.status_code)

        if stream:
            return stream_body(response)

        try:
            return decode_value(response.content, value_type)
        except ValueError as e:
            raise error_cls(
                f"{action} failed: body is not valid {value_type.value}: {e}",
                status_code=response.status_code,
            ) from e

    async def fetch_values(
        self,
        namespace_id: str,
        keys: Sequence[str],
        value_type: ValueType = ValueType.TEXT,
    ) -> list[Any | None]:
        """Read the values of ``keys`` concurrently.

        The result is in the same order as ``keys`` regardless of the order
        the requests complete in. Missing keys yield None.

        Raises:
            FetchError: If any read fails for a reason other than "not found";
                the reads still in flight are cancelled
        """
        if value_type is ValueType.STREAM:
            raise ValueError("stream values cannot be fetched in batches")

        tasks = [
            asyncio.ensure_future(self.read(namespace_id, key, value_type))
            for key in keys
        ]
        try:
            values = await asyncio.gather(*tasks)
        except BaseException:
            # One failed read ends the batch; stop the others
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return list(values)
