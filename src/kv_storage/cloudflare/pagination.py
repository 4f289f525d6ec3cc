"""Cursor-based traversal of a namespace's keys."""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from kv_storage.cloudflare.client import KVApiClient, namespace_path
from kv_storage.exceptions import ListingError


@dataclass
class KeyPage:
    """One page of a key listing."""

    keys: list[str] = field(default_factory=list)
    cursor: str | None = None

    @property
    def is_last(self) -> bool:
        """A page without a cursor ends the traversal."""
        return not self.cursor


class KeyPager:
    """Pull-based iterator over the pages of one key listing.

    Each instance is a single forward-only traversal; create a new one to
    start again from the first page. Nothing is requested until
    ``next_page()`` is called.

    Example:
        pager = KeyPager(api, namespace.id, limit=100)
        page = await pager.next_page()
        while page is not None:
            handle(page.keys)
            page = await pager.next_page()
    """

    def __init__(
        self,
        api: KVApiClient,
        namespace_id: str,
        limit: int | None = None,
        prefix: str | None = None,
    ) -> None:
        """Initialize the pager.

        Args:
            api: API client
            namespace_id: Namespace to list
            limit: Page size hint passed to the service
            prefix: Only list keys starting with this prefix
        """
        self.api = api
        self.namespace_id = namespace_id
        self.limit = limit
        self.prefix = prefix
        self._cursor: str | None = None
        self._done = False
        self.pages_fetched = 0

    @property
    def done(self) -> bool:
        """Whether the last page has been returned."""
        return self._done

    def _params(self) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if self.limit:
            params["limit"] = self.limit
        if self.prefix:
            params["prefix"] = self.prefix
        if self._cursor:
            params["cursor"] = self._cursor
        return params

    async def next_page(self) -> KeyPage | None:
        """Fetch the next page, or return None once the listing is exhausted.

        Raises:
            ListingError: If the listing request fails; the traversal ends
        """
        if self._done:
            return None

        try:
            payload = await self.api.call(
                "GET",
                f"{namespace_path(self.namespace_id)}/keys",
                ListingError,
                "List keys",
                params=self._params(),
            )
        except ListingError:
            self._done = True
            raise

        self.pages_fetched += 1
        cursor = (payload.get("result_info") or {}).get("cursor") or None
        page = KeyPage(
            keys=[item["name"] for item in payload.get("result") or []],
            cursor=cursor,
        )

        self._cursor = cursor
        self._done = page.is_last
        return page

    async def pages(self) -> AsyncIterator[KeyPage]:
        """Yield the remaining pages in server order."""
        while True:
            page = await self.next_page()
            if page is None:
                return
            yield page


async def list_keys(
    api: KVApiClient,
    namespace_id: str,
    limit: int | None = None,
    prefix: str | None = None,
) -> AsyncIterator[str]:
    """Yield every key name of a namespace in server order."""
    async for page in KeyPager(api, namespace_id, limit=limit, prefix=prefix).pages():
        for key in page.keys:
            yield key
