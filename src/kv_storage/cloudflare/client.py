"""HTTP client for the Cloudflare Workers KV API."""

from typing import Any
from urllib.parse import quote

import httpx

from kv_storage.config import ApiSettings
from kv_storage.exceptions import RemoteError
from kv_storage.observability import Timer, emit_timer, get_logger
from kv_storage.protocols import check_key

logger = get_logger(__name__)

NAMESPACES_PATH = "/storage/kv/namespaces"


def namespace_path(namespace_id: str) -> str:
    """Path of one namespace resource."""
    return f"{NAMESPACES_PATH}/{namespace_id}"


def value_path(namespace_id: str, key: str) -> str:
    """Path of one entry; the key is percent-encoded.

    Raises:
        ValueError: For keys that cannot be addressed, such as ".."
    """
    return f"{namespace_path(namespace_id)}/values/{quote(check_key(key), safe='')}"


def parse_envelope(response: httpx.Response) -> dict[str, Any]:
    """Parse the ``{success, errors, result}`` envelope of a response.

    Bodies that are not a JSON object are reported as a failed envelope
    carrying the HTTP status.
    """
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if not isinstance(payload, dict):
        return {
            "success": False,
            "errors": [{"code": None, "message": f"HTTP {response.status_code} {response.reason_phrase}".strip()}],
        }

    payload.setdefault("errors", [])
    payload.setdefault("success", response.is_success and not payload["errors"])
    return payload


class KVApiClient:
    """Account-scoped client for the KV REST endpoints.

    Wraps an ``httpx.AsyncClient``. A client passed in is borrowed and left
    open; one created here is closed by ``aclose()``.
    """

    def __init__(
        self,
        settings: ApiSettings,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the API client.

        Args:
            settings: Account base URL and auth headers
            client: Optional pre-configured HTTP client
            timeout: Request timeout in seconds for an owned client
        """
        self.settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def url(self, path: str) -> str:
        """Absolute URL for an account-relative path."""
        return f"{self.settings.base_url}{path}"

    async def send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: Any = None,
        content_type: str | None = None,
        stream: bool = False,
    ) -> httpx.Response:
        """Issue one request and return the raw response.

        Raises:
            httpx.HTTPError: On transport failures
        """
        headers = dict(self.settings.headers)
        if content_type:
            headers["Content-Type"] = content_type

        request = self._client.build_request(
            method,
            self.url(path),
            params=params,
            json=json,
            content=content,
            headers=headers,
        )

        with Timer() as timer:
            response = await self._client.send(request, stream=stream)

        logger.debug(
            "KV API request",
            context={"method": method, "path": path, "status": response.status_code},
            duration_ms=timer.duration_ms,
        )
        emit_timer(
            "kv_storage.api.request",
            timer.duration_ms,
            {"method": method, "status": response.status_code},
        )
        return response

    async def call(
        self,
        method: str,
        path: str,
        error_cls: type[RemoteError],
        action: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        content: Any = None,
        content_type: str | None = None,
    ) -> dict[str, Any]:
        """Issue a request and return its envelope, raising on failure.

        Args:
            method: HTTP method
            path: Account-relative path
            error_cls: Error raised for transport or API failures
            action: Human readable description used in error messages

        Returns:
            The parsed envelope of a successful response

        Raises:
            RemoteError: ``error_cls`` when the request fails
        """
        try:
            response = await self.send(
                method,
                path,
                params=params,
                json=json,
                content=content,
                content_type=content_type,
            )
        except httpx.HTTPError as e:
            raise error_cls(f"{action} failed: {e}") from e

        payload = parse_envelope(response)
        if not payload.get("success"):
            raise error_cls.from_payload(action, payload, response.status_code)
        return payload

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()
