"""Tests for key listing pagination."""

import pytest

from kv_storage.cloudflare.pagination import KeyPage, KeyPager, list_keys
from kv_storage.exceptions import ListingError


@pytest.fixture
def namespace(service):
    """Namespace holding five keys."""
    return service.add_namespace("test-area", {f"k{i}": b"v" for i in range(5)})


class TestKeyPage:
    """Tests for KeyPage."""

    def test_page_without_cursor_is_last(self) -> None:
        assert KeyPage(keys=["a"], cursor=None).is_last
        assert KeyPage(keys=["a"], cursor="").is_last
        assert not KeyPage(keys=["a"], cursor="c1").is_last


class TestKeyPager:
    """Tests for KeyPager."""

    @pytest.mark.asyncio
    async def test_follows_cursors_in_order(self, api, service, namespace) -> None:
        """Scripted pages are yielded in order, passing each cursor on."""
        service.script_pages([(["a", "b"], "c1"), (["c"], "c2"), (["d", "e"], None)])

        keys = [key async for key in list_keys(api, namespace.id)]

        assert keys == ["a", "b", "c", "d", "e"]
        requests = service.calls("list_keys")
        assert len(requests) == 3
        assert "cursor" not in requests[0].url.params
        assert requests[1].url.params["cursor"] == "c1"
        assert requests[2].url.params["cursor"] == "c2"

    @pytest.mark.asyncio
    async def test_limit_combines_with_cursor(self, api, service, namespace) -> None:
        """The page size is sent with every request, alongside the cursor."""
        pager = KeyPager(api, namespace.id, limit=2)

        pages = [page async for page in pager.pages()]

        assert [page.keys for page in pages] == [["k0", "k1"], ["k2", "k3"], ["k4"]]
        params = [dict(r.url.params) for r in service.calls("list_keys")]
        assert params == [{"limit": "2"}, {"limit": "2", "cursor": "2"}, {"limit": "2", "cursor": "4"}]
        assert pager.done
        assert pager.pages_fetched == 3

    @pytest.mark.asyncio
    async def test_nothing_requested_until_pulled(self, api, service, namespace) -> None:
        """Creating a pager issues no request; each pull issues one."""
        pager = KeyPager(api, namespace.id, limit=2)
        assert service.calls("list_keys") == []

        assert pager.pages_fetched == 0

        first = await pager.next_page()

        assert first.keys == ["k0", "k1"]
        assert pager.pages_fetched == 1
        assert len(service.calls("list_keys")) == 1

    @pytest.mark.asyncio
    async def test_exhausted_pager_returns_none(self, api, service, namespace) -> None:
        """After the last page, next_page returns None without a request."""
        pager = KeyPager(api, namespace.id)

        assert (await pager.next_page()).keys == [f"k{i}" for i in range(5)]
        assert await pager.next_page() is None
        assert len(service.calls("list_keys")) == 1
        assert pager.pages_fetched == 1

    @pytest.mark.asyncio
    async def test_prefix_is_forwarded(self, api, service) -> None:
        """Only keys with the prefix are listed."""
        ns = service.add_namespace("prefixed", {"user:1": b"", "user:2": b"", "team:1": b""})

        keys = [key async for key in list_keys(api, ns.id, prefix="user:")]

        assert keys == ["user:1", "user:2"]
        assert service.calls("list_keys")[0].url.params["prefix"] == "user:"

    @pytest.mark.asyncio
    async def test_failure_aborts_traversal(self, api, service, namespace) -> None:
        """A failed page raises ListingError after earlier keys were yielded."""
        service.script_pages([(["a", "b"], "c1"), (["c"], None)])
        seen = []

        with pytest.raises(ListingError):
            async for key in list_keys(api, namespace.id):
                seen.append(key)
                if key == "b":
                    service.fail("list_keys")

        assert seen == ["a", "b"]

    @pytest.mark.asyncio
    async def test_fresh_pager_restarts(self, api, service, namespace) -> None:
        """Each traversal starts again from the first page."""
        first = [key async for key in list_keys(api, namespace.id, limit=3)]
        second = [key async for key in list_keys(api, namespace.id, limit=3)]

        assert first == second == [f"k{i}" for i in range(5)]
