"""
Mock network implementations for testing.

This module provides mock implementations of NetworkStream and NetworkBackend
that can be used for unit testing without requiring actual network connections.
"""

import ssl
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from .backend import NetworkBackend
from .stream import NetworkStream


class MockNetworkStream(NetworkStream):
    """
    Mock network stream for testing.

    This implementation simulates a network stream in memory,
    allowing tests to verify network behavior without actual I/O.
    """

    def __init__(self, data: bytes = b""):
        """
        Initialize the mock stream.

        Args:
            data: Initial data to be available for reading.
        """
        self._data = data
        self._position = 0
        self._closed = False
        self._aborted = False
        self._extra_info: Dict[str, Any] = {}
        self._write_buffer: List[bytes] = []

    async def read(self, max_bytes: Optional[int] = None) -> bytes:
        """
        Read data from the mock stream.

        Returns ``b""`` once all scripted data has been consumed.

        Raises:
            RuntimeError: If the stream is closed.
        """
        if self._closed:
            raise RuntimeError("Stream is closed")

        if self._position >= len(self._data):
            return b""

        if max_bytes is None:
            end = len(self._data)
        else:
            end = min(self._position + max_bytes, len(self._data))
        result = self._data[self._position:end]
        self._position = end
        return result

    async def write(self, data: bytes) -> None:
        """
        Write data to the mock stream.

        Raises:
            RuntimeError: If the stream is closed.
        """
        if self._closed:
            raise RuntimeError("Stream is closed")

        self._write_buffer.append(data)

    async def aclose(self) -> None:
        """Close the mock stream."""
        self._closed = True

    def abort(self) -> None:
        """Close the mock stream immediately."""
        self._closed = True
        self._aborted = True

    def get_extra_info(self, name: str) -> Optional[Any]:
        return self._extra_info.get(name)

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def written_data(self) -> bytes:
        """Get all data that was written to the stream."""
        return b"".join(self._write_buffer)

    def set_extra_info(self, name: str, value: Any) -> None:
        self._extra_info[name] = value

    def add_data(self, data: bytes) -> None:
        """Add data to be available for reading."""
        self._data += data


class MockNetworkBackend(NetworkBackend):
    """
    Mock network backend for testing.

    Every connect call opens a new MockNetworkStream. Data queued with
    ``queue_response`` is handed to the next connection for that
    destination, one entry per connection.
    """

    def __init__(self) -> None:
        self.streams: List[MockNetworkStream] = []
        self._responses: Dict[Tuple[str, int], Deque[bytes]] = defaultdict(deque)
        self._refused: Set[Tuple[str, int]] = set()

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
    ) -> MockNetworkStream:
        stream = self._connect(host, port)
        if local_address is not None:
            stream.set_extra_info("sockname", (local_address, 12345))
        return stream

    async def connect_tls(
        self,
        host: str,
        port: int,
        ssl_context: ssl.SSLContext,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        server_hostname: Optional[str] = None,
    ) -> MockNetworkStream:
        stream = await self.connect_tcp(host, port, timeout, local_address)
        stream.set_extra_info("ssl_object", True)
        stream.set_extra_info("sslcontext", ssl_context)
        stream.set_extra_info("server_hostname", server_hostname or host)
        return stream

    async def connect_unix(
        self,
        path: str,
        timeout: Optional[float] = None,
    ) -> MockNetworkStream:
        stream = self._connect(path, 0)
        stream.set_extra_info("peername", path)
        return stream

    def _connect(self, host: str, port: int) -> MockNetworkStream:
        key = (host, port)
        if key in self._refused:
            raise ConnectionRefusedError(f"Connection refused: {host}:{port}")

        queued = self._responses[key]
        stream = MockNetworkStream(queued.popleft() if queued else b"")
        stream.set_extra_info("socket", len(self.streams))
        stream.set_extra_info("peername", key)
        stream.set_extra_info("sockname", ("127.0.0.1", 12345))
        self.streams.append(stream)
        return stream

    def queue_response(self, host: str, port: int, data: bytes) -> None:
        """Script the bytes the next connection to ``host:port`` will read."""
        self._responses[(host, port)].append(data)

    def refuse(self, host: str, port: int) -> None:
        """Make every later connection to ``host:port`` fail."""
        self._refused.add((host, port))

    @property
    def connection_count(self) -> int:
        return len(self.streams)

    def get_connection(self, host: str, port: int) -> Optional[MockNetworkStream]:
        """Get the most recent mock connection to ``host:port``."""
        for stream in reversed(self.streams):
            if stream.get_extra_info("peername") == (host, port):
                return stream
        return None

    def reset(self) -> None:
        """Reset all mock connections."""
        self.streams.clear()
        self._responses.clear()
        self._refused.clear()
