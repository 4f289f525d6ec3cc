"""Find-or-create resolution of KV namespaces by title."""

from dataclasses import dataclass
from typing import Any

from kv_storage.cloudflare.client import NAMESPACES_PATH, KVApiClient
from kv_storage.exceptions import ListingError, NamespaceCreationError
from kv_storage.observability import get_logger

logger = get_logger(__name__)

NAMESPACES_PER_PAGE = 100


@dataclass(frozen=True)
class Namespace:
    """A remote KV namespace."""

    id: str
    title: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Namespace":
        """Build from an API ``result`` item."""
        return cls(id=str(data["id"]), title=str(data.get("title", "")))


class NamespaceResolver:
    """Maps logical storage-area names to namespaces.

    Stateless; memoizing the result is up to the caller.
    """

    def __init__(self, api: KVApiClient) -> None:
        self.api = api

    async def find(self, title: str) -> Namespace | None:
        """Find the namespace titled ``title``.

        Walks the paged namespace listing until a match is found. A failed
        listing is logged and treated as "not found".
        """
        page = 1
        while True:
            try:
                payload = await self.api.call(
                    "GET",
                    NAMESPACES_PATH,
                    ListingError,
                    "List namespaces",
                    params={"page": page, "per_page": NAMESPACES_PER_PAGE},
                )
            except ListingError as e:
                logger.warning(
                    "Namespace listing failed, treating as not found",
                    context={"title": title},
                    error=e,
                )
                return None

            results = payload.get("result") or []
            for item in results:
                if item.get("title") == title:
                    return Namespace.from_api(item)

            total_pages = (payload.get("result_info") or {}).get("total_pages") or 1
            if not results or page >= total_pages:
                return None
            page += 1

    async def create(self, title: str) -> Namespace:
        """Create a namespace titled ``title``.

        Raises:
            NamespaceCreationError: If the API rejects the request
        """
        try:
            payload = await self.api.call(
                "POST",
                NAMESPACES_PATH,
                NamespaceCreationError,
                f"Create namespace {title!r}",
                json={"title": title},
            )
        except NamespaceCreationError as e:
            logger.error("Namespace creation failed", context={"title": title}, error=e)
            raise

        result = payload.get("result")
        if not isinstance(result, dict) or "id" not in result:
            raise NamespaceCreationError(
                f"Create namespace {title!r} failed: response carried no namespace",
                errors=payload.get("errors"),
            )

        namespace = Namespace.from_api(result)
        logger.info("Namespace created", context={"title": title, "namespace_id": namespace.id})
        return namespace

    async def resolve(self, title: str, create_if_missing: bool = True) -> Namespace | None:
        """Return the namespace for ``title``, creating it if allowed.

        Args:
            title: Logical storage-area name (exact, case-sensitive match)
            create_if_missing: Create the namespace when none exists

        Returns:
            The namespace, or None when missing and creation is not allowed

        Raises:
            NamespaceCreationError: If creation fails
        """
        namespace = await self.find(title)
        if namespace is not None or not create_if_missing:
            return namespace
        return await self.create(title)
