"""
Streaming framework for keepwire.

This module provides streaming abstractions for HTTP request and response
bodies. Consumption drives reading from the network, so a slow reader
applies backpressure naturally.
"""

from abc import ABC, abstractmethod
from typing import (
    TYPE_CHECKING,
    AsyncIterable,
    AsyncIterator,
    List,
    Optional,
    Union,
)

from .exceptions import HTTPClientError, StreamError

if TYPE_CHECKING:
    from .http11 import HTTP11Connection  # Forward reference


class StreamInterface(ABC):
    """
    Base interface for all streams.

    All streams must implement this interface to ensure
    consistent behavior across the library.
    """

    @abstractmethod
    def __aiter__(self) -> "StreamInterface":
        """Return self as async iterator."""

    @abstractmethod
    async def __anext__(self) -> bytes:
        """Get next chunk of data."""

    @abstractmethod
    async def aclose(self) -> None:
        """Close the stream and cleanup resources."""

    async def aread(self) -> bytes:
        """Read the rest of the stream and return it as bytes."""
        if self.closed:
            raise StreamError("Cannot read from closed stream")

        chunks = []
        async for chunk in self:
            chunks.append(chunk)
        return b"".join(chunks)

    @property
    @abstractmethod
    def closed(self) -> bool:
        """Get whether the stream is closed."""


RequestData = Union[bytes, str, List[bytes], AsyncIterable[bytes]]


class RequestStream(StreamInterface):
    """
    Stream for HTTP request bodies.

    With ``tap=True`` every chunk handed to the connection is also kept,
    so a one-shot source can be replayed by ``collect()`` when a redirect
    asks for the same body again.
    """

    def __init__(self, data: RequestData, tap: bool = False) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._data = data
        self._tap = tap
        self._collected: List[bytes] = []
        self._closed = False
        self._iterator: Optional[AsyncIterator[bytes]] = None

    def _get_iterator(self) -> AsyncIterator[bytes]:
        if isinstance(self._data, bytes):
            return self._iter_list([self._data])
        if isinstance(self._data, list):
            return self._iter_list(self._data)
        return self._data.__aiter__()

    async def _iter_list(self, data: List[bytes]) -> AsyncIterator[bytes]:
        for chunk in data:
            if chunk:  # Skip empty chunks
                yield chunk

    def __aiter__(self) -> "RequestStream":
        if self._closed:
            raise StreamError("Cannot iterate over closed stream")

        self._iterator = self._get_iterator()
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StreamError("Cannot read from closed stream")

        if self._iterator is None:
            raise RuntimeError("Stream not initialized for iteration")

        try:
            chunk = await self._iterator.__anext__()
        except (StopAsyncIteration, HTTPClientError):
            raise
        except Exception as e:
            raise StreamError(f"Error reading from stream: {e}", cause=e) from e

        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        if self._tap:
            self._collected.append(chunk)
        return chunk

    def collect(self) -> bytes:
        """Return every chunk read so far through the tap."""
        return b"".join(self._collected)

    async def aclose(self) -> None:
        self._closed = True
        self._iterator = None

    @property
    def replayable(self) -> bool:
        """True when iterating again yields the same body."""
        return isinstance(self._data, (bytes, list))

    @property
    def closed(self) -> bool:
        return self._closed


class ResponseStream(StreamInterface):
    """
    Stream for HTTP response bodies.

    Reading to the end hands the connection back for reuse; closing
    early discards the connection.
    """

    def __init__(
        self,
        connection: "HTTP11Connection",
        content_length: Optional[int] = None,
        chunked: bool = False,
    ) -> None:
        self._connection = connection
        self._content_length = content_length
        self._chunked = chunked
        self._closed = False
        self._done = False
        self._bytes_read = 0

    def __aiter__(self) -> "ResponseStream":
        if self._closed:
            raise StreamError("Cannot iterate over closed stream")
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StreamError("Cannot read from closed stream")
        if self._done:
            raise StopAsyncIteration

        try:
            chunk = await self._connection.receive_body_chunk()
        except BaseException:
            # The connection has already been discarded.
            self._closed = True
            raise

        if chunk is None:
            self._done = True
            raise StopAsyncIteration

        self._bytes_read += len(chunk)
        return chunk

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self._done:
            await self._connection.close()

    def abort(self) -> None:
        """Discard the connection without waiting for a graceful close."""
        if self._closed:
            return
        self._closed = True
        if not self._done:
            self._connection.abort()

    @property
    def content_length(self) -> Optional[int]:
        return self._content_length

    @property
    def chunked(self) -> bool:
        return self._chunked

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def bytes_read(self) -> int:
        return self._bytes_read


class BufferStream(StreamInterface):
    """
    Readable stream over an in-memory payload.

    Iteration yields chunks of ``chunk_size`` bytes; ``read(n)`` returns up
    to ``n`` bytes and ``b""`` once drained.
    """

    DEFAULT_CHUNK_SIZE = 16384

    def __init__(
        self,
        payload: Union[bytes, str, None],
        encoding: str = "utf-8",
        chunk_size: Optional[int] = None,
    ) -> None:
        if payload is None:
            payload = b""
        elif isinstance(payload, str):
            payload = payload.encode(encoding)
        self._payload = bytes(payload)
        self._position = 0
        self._chunk_size = chunk_size or self.DEFAULT_CHUNK_SIZE
        self._closed = False

    def __aiter__(self) -> "BufferStream":
        return self

    async def __anext__(self) -> bytes:
        chunk = await self.read(self._chunk_size)
        if not chunk:
            raise StopAsyncIteration
        return chunk

    async def read(self, size: Optional[int] = -1) -> bytes:
        if self._closed:
            raise StreamError("Cannot read from closed stream")

        if size is None or size < 0:
            end = len(self._payload)
        else:
            end = min(self._position + size, len(self._payload))
        chunk = self._payload[self._position:end]
        self._position = end
        return chunk

    async def aclose(self) -> None:
        self._closed = True

    @property
    def remaining(self) -> int:
        return len(self._payload) - self._position

    @property
    def closed(self) -> bool:
        return self._closed


def to_readable_stream(
    payload: Union[bytes, str, None],
    encoding: str = "utf-8",
) -> BufferStream:
    """Wrap a buffer or string in a readable stream."""
    return BufferStream(payload, encoding=encoding)
