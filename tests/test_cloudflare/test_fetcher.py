"""Tests for value fetching."""

import asyncio

import pytest

from kv_storage.cloudflare.fetcher import EntryFetcher, is_not_found
from kv_storage.exceptions import FetchError, ReadError
from kv_storage.values import ValueType


@pytest.fixture
def fetcher(api) -> EntryFetcher:
    """Fetcher using the fake service."""
    return EntryFetcher(api)


@pytest.fixture
def namespace(service):
    """Namespace with a few values."""
    return service.add_namespace(
        "test-area",
        {"a": b"va", "b": b"vb", "c": b"vc", "doc": b'{"x": 1}', "a/b": b"slash"},
    )


class TestIsNotFound:
    """Tests for is_not_found."""

    def test_detects_key_not_found_code(self) -> None:
        assert is_not_found({"errors": [{"code": 10009, "message": "key not found"}]})
        assert not is_not_found({"errors": [{"code": 10000, "message": "auth"}]})
        assert not is_not_found({})


class TestEntryFetcher:
    """Tests for EntryFetcher."""

    @pytest.mark.asyncio
    async def test_order_follows_input_not_completion(self, fetcher, service, namespace) -> None:
        """Values come back in key order even when fetches finish out of order."""
        service.delays = {"a": 0.06, "b": 0.03, "c": 0.0}

        values = await fetcher.fetch_values(namespace.id, ["a", "b", "c"])

        assert values == ["va", "vb", "vc"]
        assert len(service.calls("get_value")) == 3

    @pytest.mark.asyncio
    async def test_missing_keys_are_none(self, fetcher, namespace) -> None:
        """Missing keys yield None rather than failing the batch."""
        values = await fetcher.fetch_values(namespace.id, ["a", "missing", "c"])
        assert values == ["va", None, "vc"]

    @pytest.mark.asyncio
    async def test_hard_failure_fails_batch(self, fetcher, service, namespace) -> None:
        """Any other error fails the whole batch."""
        service.fail("get_value", errors=[{"code": 10001, "message": "service unavailable"}], status=503)

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch_values(namespace.id, ["a", "b"])

        assert exc_info.value.code == 10001

    @pytest.mark.asyncio
    async def test_failure_cancels_pending_reads(self, fetcher, service, namespace) -> None:
        """Reads still in flight are cancelled once one read fails."""
        service.delays = {"b": 0.2, "c": 0.2}
        service.fail("get_value", status=500)

        with pytest.raises(FetchError):
            await fetcher.fetch_values(namespace.id, ["a", "b", "c"])

        pending = [
            task for task in asyncio.all_tasks()
            if task is not asyncio.current_task() and not task.done()
        ]
        assert pending == []

    @pytest.mark.asyncio
    async def test_empty_batch(self, fetcher, service, namespace) -> None:
        """An empty batch issues no requests."""
        assert await fetcher.fetch_values(namespace.id, []) == []
        assert service.calls("get_value") == []

    @pytest.mark.asyncio
    async def test_read_decodes_requested_type(self, fetcher, namespace) -> None:
        """read() decodes the body as requested."""
        assert await fetcher.read(namespace.id, "doc", ValueType.JSON) == {"x": 1}
        assert await fetcher.read(namespace.id, "doc", ValueType.BYTES) == b'{"x": 1}'
        assert await fetcher.read(namespace.id, "a/b") == "slash"

    @pytest.mark.asyncio
    async def test_read_invalid_body_raises(self, fetcher, namespace) -> None:
        """An undecodable body raises the requested error class."""
        with pytest.raises(ReadError, match="not valid json"):
            await fetcher.read(namespace.id, "a", ValueType.JSON, error_cls=ReadError)

    @pytest.mark.asyncio
    async def test_read_stream(self, fetcher, namespace) -> None:
        """Stream reads yield the body in chunks."""
        stream = await fetcher.read(namespace.id, "b", ValueType.STREAM)
        body = b"".join([chunk async for chunk in stream])
        assert body == b"vb"

    @pytest.mark.asyncio
    async def test_read_stream_missing_key(self, fetcher, namespace) -> None:
        """Stream reads of missing keys return None."""
        assert await fetcher.read(namespace.id, "missing", ValueType.STREAM) is None

    @pytest.mark.asyncio
    async def test_batches_reject_streams(self, fetcher, namespace) -> None:
        """Batches can't be fetched as streams."""
        with pytest.raises(ValueError):
            await fetcher.fetch_values(namespace.id, ["a"], ValueType.STREAM)
