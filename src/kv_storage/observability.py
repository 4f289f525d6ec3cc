"""Structured logging and observability utilities.

Log records carry the storage area and public operation they were emitted
under, API calls are timed, and timings are handed to metric callbacks.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from enum import Enum
from typing import IO, Any, Callable, MutableMapping

from kv_storage.exceptions import RemoteError


class LogLevel(str, Enum):
    """Log levels matching Python's logging module."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


_current_operation: ContextVar["OperationContext | None"] = ContextVar(
    "kv_storage_operation", default=None
)


def current_operation() -> "OperationContext | None":
    """The innermost operation context active in this task, if any."""
    return _current_operation.get()


class OperationContext:
    """Marks a block of code as one storage operation.

    Log records and metrics emitted inside the block are tagged with the
    storage area, the operation name and a per-operation id. A nested
    context inherits the storage area of the enclosing one.

    Example:
        async with OperationContext(storage_area="sessions", operation="set"):
            logger.info("Writing entry")
    """

    def __init__(
        self,
        storage_area: str | None = None,
        operation: str | None = None,
        operation_id: str | None = None,
    ) -> None:
        self.operation_id = operation_id or uuid.uuid4().hex[:12]
        self.storage_area = storage_area
        self.operation = operation
        self._token: Token | None = None

    def to_dict(self) -> dict[str, str]:
        """Fields to attach to log records, skipping unset ones."""
        fields = {
            "operation_id": self.operation_id,
            "storage_area": self.storage_area,
            "operation": self.operation,
        }
        return {name: value for name, value in fields.items() if value}

    def __enter__(self) -> "OperationContext":
        parent = _current_operation.get()
        if parent is not None and self.storage_area is None:
            self.storage_area = parent.storage_area
        self._token = _current_operation.set(self)
        return self

    def __exit__(self, *args: Any) -> None:
        if self._token is not None:
            _current_operation.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "OperationContext":
        return self.__enter__()

    async def __aexit__(self, *args: Any) -> None:
        self.__exit__(*args)


def _describe_error(exc: BaseException) -> dict[str, Any]:
    error: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, RemoteError):
        if exc.code is not None:
            error["code"] = exc.code
        if exc.status_code is not None:
            error["status_code"] = exc.status_code
    return error


class StructuredFormatter(logging.Formatter):
    """Formats log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        operation = current_operation()
        context = operation.to_dict() if operation is not None else {}
        context.update(getattr(record, "context", None) or {})

        data: dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "logger": record.name,
        }
        if context:
            data["context"] = context
        if record.exc_info and record.exc_info[1] is not None:
            data["error"] = _describe_error(record.exc_info[1])
        duration_ms = getattr(record, "duration_ms", None)
        if duration_ms is not None:
            data["duration_ms"] = round(duration_ms, 3)

        return json.dumps(data, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """Logger accepting ``context``, ``error`` and ``duration_ms`` keywords.

    Example:
        logger = get_logger(__name__)
        logger.info("Namespace created", context={"namespace_id": "abc"})
        logger.error("Write failed", error=exc)
    """

    def __init__(self, name: str, level: LogLevel | None = None) -> None:
        """Initialize structured logger.

        Args:
            name: Logger name (typically module name)
            level: Minimum log level; inherited from the parent logger if omitted
        """
        super().__init__(logging.getLogger(name), {})
        if level is not None:
            self.logger.setLevel(level.value)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})

        context = kwargs.pop("context", None)
        if context:
            extra["context"] = context
        duration_ms = kwargs.pop("duration_ms", None)
        if duration_ms is not None:
            extra["duration_ms"] = duration_ms
        error = kwargs.pop("error", None)
        if error is not None:
            kwargs["exc_info"] = (type(error), error, error.__traceback__)

        kwargs["extra"] = extra
        return msg, kwargs


class Timer:
    """Measures wall-clock time of a block.

    Example:
        with Timer() as t:
            response = await client.send(request)
        logger.debug("Request sent", duration_ms=t.duration_ms)
    """

    def __init__(self) -> None:
        self.start_time: float | None = None
        self.end_time: float | None = None

    @property
    def duration_ms(self) -> float:
        """Elapsed milliseconds; still counting while the block runs."""
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else time.perf_counter()
        return (end - self.start_time) * 1000

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        self.end_time = None
        return self

    def __exit__(self, *args: Any) -> None:
        self.end_time = time.perf_counter()


# Receives (name, value, labels)
MetricCallback = Callable[[str, float, dict[str, Any]], None]

_metric_callbacks: list[MetricCallback] = []

_logger = StructuredLogger(__name__)


def register_metric_callback(callback: MetricCallback) -> None:
    """Register a callback to receive metric events."""
    if callback not in _metric_callbacks:
        _metric_callbacks.append(callback)


def unregister_metric_callback(callback: MetricCallback) -> None:
    """Remove a previously registered metric callback."""
    if callback in _metric_callbacks:
        _metric_callbacks.remove(callback)


def emit_metric(name: str, value: float, labels: dict[str, Any] | None = None) -> None:
    """Emit a metric to all registered callbacks.

    The storage area of the current operation is added as a label. A
    callback that raises is logged and skipped.

    Args:
        name: Metric name
        value: Metric value
        labels: Optional labels/dimensions
    """
    labels = dict(labels or {})

    operation = current_operation()
    if operation is not None and operation.storage_area:
        labels.setdefault("storage_area", operation.storage_area)

    for callback in list(_metric_callbacks):
        try:
            callback(name, value, labels)
        except Exception as e:
            _logger.warning("Metric callback failed", context={"metric": name}, error=e)


def emit_timer(name: str, duration_ms: float, labels: dict[str, Any] | None = None) -> None:
    """Emit a timer metric."""
    emit_metric(name, duration_ms, labels)


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    format: str = "json",
    stream: IO[str] | None = None,
) -> None:
    """Install a single handler on the ``kv_storage`` logger.

    The library never adds handlers on its own; applications call this (or
    configure ``logging`` themselves) to see its records.

    Args:
        level: Minimum log level
        format: Output format ("json" or "text")
        stream: Output stream, stderr by default
    """
    library_logger = logging.getLogger("kv_storage")
    library_logger.setLevel(LogLevel(level).value)

    for handler in list(library_logger.handlers):
        library_logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    if format == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))

    library_logger.addHandler(handler)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for a module."""
    return StructuredLogger(name)
