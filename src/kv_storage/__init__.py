"""kv-storage - Cloudflare Workers KV namespaces as asynchronous storage areas."""

from kv_storage.caching import SharedTask
from kv_storage.cloudflare import Namespace, StorageArea
from kv_storage.config import Credentials, StorageConfig, resolve_credentials
from kv_storage.exceptions import (
    ClearError,
    ConfigError,
    DeleteError,
    FetchError,
    KVStorageError,
    ListingError,
    NamespaceCreationError,
    ReadError,
    RemoteError,
    WriteError,
)
from kv_storage.memory import MemoryStorageArea
from kv_storage.observability import (
    LogLevel,
    OperationContext,
    StructuredLogger,
    Timer,
    configure_logging,
    emit_metric,
    emit_timer,
    get_logger,
    register_metric_callback,
)
from kv_storage.protocols import AsyncStorageArea, Entry
from kv_storage.values import ValueType

__version__ = "0.1.0"
__all__ = [
    # Core
    "AsyncStorageArea",
    "Entry",
    "MemoryStorageArea",
    "Namespace",
    "StorageArea",
    "ValueType",
    # Configuration
    "Credentials",
    "StorageConfig",
    "resolve_credentials",
    # Caching
    "SharedTask",
    # Errors
    "ClearError",
    "ConfigError",
    "DeleteError",
    "FetchError",
    "KVStorageError",
    "ListingError",
    "NamespaceCreationError",
    "ReadError",
    "RemoteError",
    "WriteError",
    # Observability
    "LogLevel",
    "OperationContext",
    "StructuredLogger",
    "Timer",
    "configure_logging",
    "emit_metric",
    "emit_timer",
    "get_logger",
    "register_metric_callback",
]
