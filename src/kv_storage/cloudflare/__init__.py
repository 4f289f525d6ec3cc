"""Cloudflare Workers KV backend."""

from kv_storage.cloudflare.client import KVApiClient
from kv_storage.cloudflare.fetcher import EntryFetcher
from kv_storage.cloudflare.namespaces import Namespace, NamespaceResolver
from kv_storage.cloudflare.pagination import KeyPage, KeyPager, list_keys
from kv_storage.cloudflare.storage import StorageArea

__all__ = [
    "EntryFetcher",
    "KVApiClient",
    "KeyPage",
    "KeyPager",
    "Namespace",
    "NamespaceResolver",
    "StorageArea",
    "list_keys",
]
