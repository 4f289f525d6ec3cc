"""Value encoding and decoding for stored entries."""

import base64
import json
from collections.abc import AsyncIterable, AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

OCTET_STREAM = "application/octet-stream"
TEXT_PLAIN = "text/plain; charset=utf-8"
APPLICATION_JSON = "application/json"


class ValueType(str, Enum):
    """How a stored value is returned to the caller."""

    TEXT = "text"
    JSON = "json"
    BYTES = "bytes"
    STREAM = "stream"


@dataclass
class EncodedValue:
    """A request body ready to be sent."""

    content: bytes | AsyncIterable[bytes]
    content_type: str


def encode_value(value: Any) -> EncodedValue:
    """Encode a value for a single-entry write.

    Bytes-like values are sent raw, strings as UTF-8 text, async iterables
    of bytes are streamed, and anything else is serialized as JSON.

    Raises:
        TypeError: If the value is not JSON serializable
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return EncodedValue(bytes(value), OCTET_STREAM)
    if isinstance(value, str):
        return EncodedValue(value.encode("utf-8"), TEXT_PLAIN)
    if isinstance(value, AsyncIterable):
        return EncodedValue(value, OCTET_STREAM)
    return EncodedValue(json.dumps(value).encode("utf-8"), APPLICATION_JSON)


def encode_bulk_value(value: Any) -> tuple[str, bool]:
    """Encode a value for a bulk write item.

    Returns:
        Tuple of (value string, whether it is base64 encoded)

    Raises:
        TypeError: If the value cannot be embedded in a bulk request
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii"), True
    if isinstance(value, str):
        return value, False
    if isinstance(value, AsyncIterable):
        raise TypeError("streamed values cannot be written in bulk")
    return json.dumps(value), False


def decode_value(body: bytes, value_type: ValueType) -> Any:
    """Decode a fetched body as ``value_type``.

    Raises:
        ValueError: If the body is not valid for the requested type
    """
    if value_type is ValueType.BYTES:
        return body
    if value_type is ValueType.TEXT:
        return body.decode("utf-8")
    if value_type is ValueType.JSON:
        return json.loads(body)
    raise ValueError(f"{value_type.value} values cannot be decoded from a buffered body")


async def stream_body(response: httpx.Response) -> AsyncIterator[bytes]:
    """Yield a streamed response body, closing the response afterwards."""
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    finally:
        await response.aclose()
