"""
Response reader for keepwire.

Drains a response, or any async byte stream, into memory while enforcing
size and idle-time limits, then optionally gunzips and JSON-decodes the
result.
"""

import asyncio
import json as jsonlib
import logging
import re
import zlib
from typing import Any, AsyncIterable, AsyncIterator, List, Mapping, Optional, Union

from typing_extensions import Literal

from .exceptions import (
    ConnectionError,
    DecompressionError,
    HTTPClientError,
    NotAcceptableError,
    PayloadError,
    PayloadParseError,
    PayloadTooLargeError,
    ProtocolError,
    RequestTimeoutError,
    StreamError,
)
from .http_primitives import Response

logger = logging.getLogger(__name__)

JsonMode = Union[bool, Literal["strict", "force"]]
GunzipMode = Union[bool, Literal["force"]]

_GZIP_ENCODING = re.compile(r"^(x-)?gzip(\s*,\s*identity)?$", re.IGNORECASE)
_JSON_CONTENT_TYPE = re.compile(r"^application/([a-z0-9.!#$&^_-]+\+)?json$", re.IGNORECASE)

# Errors that mean the stream ended early rather than a classified failure.
_TRANSPORT_ERRORS = (ConnectionError, ProtocolError, StreamError)


class _Accumulator:
    """Chunks collected by one read call."""

    def __init__(self, max_bytes: int) -> None:
        self.max_bytes = max_bytes
        self.length = 0
        self.chunks: List[bytes] = []

    def add(self, chunk: bytes) -> bool:
        """Append ``chunk``; False when it would exceed ``max_bytes``."""
        if self.max_bytes and self.length + len(chunk) > self.max_bytes:
            return False
        self.chunks.append(chunk)
        self.length += len(chunk)
        return True

    def payload(self) -> bytes:
        return b"".join(self.chunks)


async def read(
    source: Union[Response, AsyncIterable[bytes]],
    *,
    timeout: Optional[float] = None,
    max_bytes: int = 0,
    json: JsonMode = False,
    gunzip: GunzipMode = False,
) -> Any:
    """
    Read a response body or byte stream into memory.

    Args:
        source: A Response, or any async iterable of bytes
        timeout: Seconds to wait for each next chunk; None or <= 0 disables it
        max_bytes: Maximum payload size; 0 means unlimited
        json: False for raw bytes, True to decode JSON content types,
              "strict" to reject other content types, "force" to always decode
        gunzip: True to decompress gzip-encoded payloads, "force" to always
                decompress

    Returns:
        The raw or decompressed bytes, or the decoded JSON value.

    Raises:
        RequestTimeoutError: No data arrived within ``timeout``
        PayloadTooLargeError: The payload exceeded ``max_bytes``
        PayloadError: The stream closed prematurely
        DecompressionError: The payload is not valid gzip
        NotAcceptableError: Strict JSON mode with a non-JSON content type
        PayloadParseError: The payload is not valid JSON
    """
    if isinstance(source, Response):
        stream = source.stream
        headers: Mapping[str, str] = source.headers
        status_code: Optional[int] = source.status_code
    else:
        stream = source
        headers = getattr(source, "headers", None) or {}
        status_code = getattr(source, "status_code", None)

    accumulator = _Accumulator(max_bytes)
    if stream is not None:
        await _drain(stream, accumulator, timeout)
    payload = accumulator.payload()

    encoding = headers.get("content-encoding", "")
    if payload and (gunzip == "force" or (gunzip and _GZIP_ENCODING.match(encoding.strip()))):
        payload = _decompress(payload, status_code)

    if not json:
        return payload

    if not payload:
        return None

    if json != "force" and not is_json_content_type(headers.get("content-type")):
        if json == "strict":
            raise NotAcceptableError(
                f"The content-type is not JSON compatible: {headers.get('content-type')}"
            )
        return payload

    return _parse_json(payload)


async def _drain(
    stream: AsyncIterable[bytes],
    accumulator: _Accumulator,
    timeout: Optional[float],
) -> None:
    iterator = stream.__aiter__()
    while True:
        try:
            chunk = await _next_chunk(iterator, timeout)
        except StopAsyncIteration:
            return
        except asyncio.TimeoutError:
            await _destroy(stream)
            raise RequestTimeoutError("Client read timeout", timeout=timeout) from None
        except asyncio.CancelledError:
            raise
        except HTTPClientError as e:
            if isinstance(e, _TRANSPORT_ERRORS):
                raise PayloadError("Payload stream closed prematurely", cause=e) from e
            raise
        except Exception as e:
            raise PayloadError("Payload stream closed prematurely", cause=e) from e

        if not accumulator.add(chunk):
            await _destroy(stream)
            raise PayloadTooLargeError("Maximum payload size reached")


async def _next_chunk(iterator: AsyncIterator[bytes], timeout: Optional[float]) -> bytes:
    if timeout is not None and timeout > 0:
        return await asyncio.wait_for(iterator.__anext__(), timeout=timeout)
    return await iterator.__anext__()


async def _destroy(stream: Any) -> None:
    """Close ``stream`` if it supports it."""
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        logger.debug("Stream cannot be closed, leaving it to the caller")
        return
    await aclose()


def _decompress(payload: bytes, status_code: Optional[int]) -> bytes:
    try:
        return zlib.decompress(payload, 16 + zlib.MAX_WBITS)
    except zlib.error as e:
        raise DecompressionError(
            f"Failed to decompress payload: {e}",
            cause=e,
            status_code=status_code or 500,
        ) from e


def _parse_json(payload: bytes) -> Any:
    try:
        return jsonlib.loads(payload)
    except ValueError as e:
        raise PayloadParseError(f"Invalid JSON payload: {e}", payload=payload, cause=e) from e


def is_json_content_type(content_type: Optional[str]) -> bool:
    """True for application/json and application/*+json, ignoring parameters."""
    if not content_type:
        return False
    mime = content_type.split(";", 1)[0].strip()
    return bool(_JSON_CONTENT_TYPE.match(mime))
