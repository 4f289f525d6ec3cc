"""Pytest configuration and fixtures."""

import asyncio
import base64
import json
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import unquote

import httpx
import pytest

from kv_storage.cloudflare.client import KVApiClient
from kv_storage.cloudflare.storage import StorageArea
from kv_storage.config import StorageConfig, build_api_settings

ACCOUNT_ID = "acct-1"
BASE_URL = f"https://api.cloudflare.com/client/v4/accounts/{ACCOUNT_ID}"
NAMESPACES_PATH = "/client/v4/accounts/acct-1/storage/kv/namespaces"


@dataclass
class FakeNamespace:
    id: str
    title: str
    data: dict[str, bytes] = field(default_factory=dict)
    writes: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class Failure:
    status: int
    errors: list[dict[str, Any]]
    times: int | None


class FakeKVService:
    """In-memory stand-in for the Cloudflare KV REST API.

    Requests are classified into kinds (``list_namespaces``, ``get_value``,
    ...) and recorded so tests can count and inspect them.
    """

    def __init__(self, namespaces_per_page: int | None = None) -> None:
        self.namespaces: dict[str, FakeNamespace] = {}
        self.requests: list[tuple[str, httpx.Request]] = []
        self.delays: dict[str, float] = {}
        self.create_delay = 0.0
        self.namespaces_per_page = namespaces_per_page
        self._failures: dict[str, Failure] = {}
        self._scripted_pages: list[tuple[list[str], str | None]] | None = None
        self._next_id = 1

    # Test helpers

    def add_namespace(self, title: str, data: dict[str, bytes] | None = None) -> FakeNamespace:
        namespace = FakeNamespace(id=f"ns-{self._next_id}", title=title, data=dict(data or {}))
        self._next_id += 1
        self.namespaces[namespace.id] = namespace
        return namespace

    def by_title(self, title: str) -> FakeNamespace | None:
        for namespace in self.namespaces.values():
            if namespace.title == title:
                return namespace
        return None

    def fail(
        self,
        kind: str,
        errors: list[dict[str, Any]] | None = None,
        status: int = 400,
        times: int | None = None,
    ) -> None:
        self._failures[kind] = Failure(
            status=status,
            errors=errors or [{"code": 10000, "message": "Authentication error"}],
            times=times,
        )

    def script_pages(self, pages: list[tuple[list[str], str | None]]) -> None:
        self._scripted_pages = list(pages)

    def calls(self, kind: str) -> list[httpx.Request]:
        return [request for k, request in self.requests if k == kind]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # Request handling

    @staticmethod
    def _ok(result: Any = None, result_info: dict[str, Any] | None = None) -> httpx.Response:
        body: dict[str, Any] = {"success": True, "errors": [], "messages": [], "result": result}
        if result_info is not None:
            body["result_info"] = result_info
        return httpx.Response(200, json=body)

    @staticmethod
    def _error(status: int, code: int, message: str) -> httpx.Response:
        return httpx.Response(
            status,
            json={"success": False, "errors": [{"code": code, "message": message}], "result": None},
        )

    def _classify(self, method: str, segments: list[str]) -> str:
        if not segments:
            return {"GET": "list_namespaces", "POST": "create_namespace"}[method]
        if len(segments) == 1:
            return "delete_namespace"
        if segments[1] == "keys":
            return "list_keys"
        if segments[1] == "bulk":
            return {"PUT": "bulk_write", "DELETE": "bulk_delete"}[method]
        return {"GET": "get_value", "PUT": "put_value", "DELETE": "delete_value"}[method]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        raw_path = request.url.raw_path.decode("ascii").split("?")[0]
        assert raw_path.startswith(NAMESPACES_PATH), raw_path
        segments = [unquote(s) for s in raw_path[len(NAMESPACES_PATH):].split("/") if s]

        kind = self._classify(request.method, segments)
        self.requests.append((kind, request))

        if kind == "get_value" and segments[-1] in self.delays:
            await asyncio.sleep(self.delays[segments[-1]])
        if kind == "create_namespace" and self.create_delay:
            await asyncio.sleep(self.create_delay)

        failure = self._failures.get(kind)
        if failure is not None:
            if failure.times is not None:
                failure.times -= 1
                if failure.times <= 0:
                    del self._failures[kind]
            return httpx.Response(
                failure.status,
                json={"success": False, "errors": failure.errors, "result": None},
            )

        if kind == "list_namespaces":
            return self._list_namespaces(request)
        if kind == "create_namespace":
            title = json.loads(request.content)["title"]
            if self.by_title(title) is not None:
                return self._error(400, 10014, "a namespace with this account ID and title already exists")
            namespace = self.add_namespace(title)
            return self._ok({"id": namespace.id, "title": namespace.title})

        namespace = self.namespaces.get(segments[0])
        if namespace is None:
            return self._error(404, 10013, "namespace not found")

        if kind == "delete_namespace":
            del self.namespaces[namespace.id]
            return self._ok()
        if kind == "list_keys":
            return self._list_keys(request, namespace)
        if kind == "bulk_write":
            for item in json.loads(request.content):
                value = item["value"]
                body = base64.b64decode(value) if item.get("base64") else value.encode("utf-8")
                namespace.data[item["key"]] = body
                namespace.writes.append(item)
            return self._ok({"successful_key_count": len(namespace.writes), "unsuccessful_keys": []})
        if kind == "bulk_delete":
            for key in json.loads(request.content):
                namespace.data.pop(key, None)
            return self._ok()

        key = segments[-1]
        if kind == "get_value":
            if key not in namespace.data:
                return self._error(404, 10009, "get: 'key not found'")
            return httpx.Response(200, content=namespace.data[key])
        if kind == "put_value":
            namespace.data[key] = request.content
            namespace.writes.append({"key": key, **dict(request.url.params)})
            return self._ok()
        namespace.data.pop(key, None)
        return self._ok()

    def _list_namespaces(self, request: httpx.Request) -> httpx.Response:
        items = [{"id": ns.id, "title": ns.title} for ns in self.namespaces.values()]
        per_page = self.namespaces_per_page or int(request.url.params.get("per_page", 20))
        page = int(request.url.params.get("page", 1))
        total_pages = max(1, -(-len(items) // per_page))
        chunk = items[(page - 1) * per_page:page * per_page]
        return self._ok(
            chunk,
            {"page": page, "per_page": per_page, "count": len(chunk), "total_pages": total_pages},
        )

    def _list_keys(self, request: httpx.Request, namespace: FakeNamespace) -> httpx.Response:
        if self._scripted_pages is not None:
            names, cursor = self._scripted_pages.pop(0)
            return self._ok([{"name": n} for n in names], {"count": len(names), "cursor": cursor or ""})

        params = request.url.params
        limit = int(params.get("limit", 1000))
        start = int(params.get("cursor", "0") or 0)
        prefix = params.get("prefix", "")
        names = sorted(k for k in namespace.data if k.startswith(prefix))
        chunk = names[start:start + limit]
        end = start + len(chunk)
        cursor = str(end) if end < len(names) else ""
        return self._ok([{"name": n} for n in chunk], {"count": len(chunk), "cursor": cursor})


@pytest.fixture
def credentials_dict() -> dict[str, str]:
    """Sample credentials as exported from the dashboard."""
    return {"id": ACCOUNT_ID, "email": "john@doe.com", "key": "123ABC"}


@pytest.fixture
def storage_config(credentials_dict) -> StorageConfig:
    """Storage configuration with explicit credentials."""
    return StorageConfig.from_dict({"credentials": credentials_dict})


@pytest.fixture
def service() -> FakeKVService:
    """Fake KV service."""
    return FakeKVService()


@pytest.fixture
def http_client(service) -> httpx.AsyncClient:
    """HTTP client routed to the fake service."""
    return httpx.AsyncClient(transport=service.transport())


@pytest.fixture
def area(storage_config, http_client) -> StorageArea:
    """Storage area named "test-area" talking to the fake service."""
    return StorageArea("test-area", storage_config, client=http_client)


@pytest.fixture
def api(storage_config, http_client) -> KVApiClient:
    """API client routed to the fake service."""
    return KVApiClient(build_api_settings(storage_config, environ={}), client=http_client)
