"""
asyncio network backend for keepwire.

Streams are thin wrappers over ``asyncio.StreamReader``/``StreamWriter``
pairs opened with ``asyncio.open_connection``.
"""

import asyncio
import logging
import ssl
from typing import Any, Awaitable, Optional, Tuple

from .backend import NetworkBackend
from .stream import NetworkStream

logger = logging.getLogger(__name__)

StreamPair = Tuple[asyncio.StreamReader, asyncio.StreamWriter]


class AsyncioNetworkStream(NetworkStream):
    """NetworkStream backed by an asyncio transport."""

    DEFAULT_READ_SIZE = 65536

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._reader = reader
        self._writer = writer
        self._closed = False

    async def read(self, max_bytes: Optional[int] = None) -> bytes:
        if self._closed:
            raise RuntimeError("Stream is closed")
        return await self._reader.read(max_bytes or self.DEFAULT_READ_SIZE)

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise RuntimeError("Stream is closed")
        self._writer.write(data)
        await self._writer.drain()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing stream: {e}")

    def abort(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.transport.abort()

    def get_extra_info(self, name: str) -> Optional[Any]:
        return self._writer.get_extra_info(name)

    @property
    def is_closed(self) -> bool:
        # A peer that closed an idle connection shows up as EOF on the reader.
        return self._closed or self._writer.is_closing() or self._reader.at_eof()


class AsyncioNetworkBackend(NetworkBackend):
    """Network backend using the running asyncio event loop."""

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
    ) -> AsyncioNetworkStream:
        logger.debug(f"Connecting to {host}:{port}")
        return await self._open(
            asyncio.open_connection(host, port, local_addr=_local_addr(local_address)),
            timeout,
        )

    async def connect_tls(
        self,
        host: str,
        port: int,
        ssl_context: ssl.SSLContext,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        server_hostname: Optional[str] = None,
    ) -> AsyncioNetworkStream:
        logger.debug(f"Connecting to {host}:{port} over TLS")
        return await self._open(
            asyncio.open_connection(
                host,
                port,
                ssl=ssl_context,
                server_hostname=server_hostname or host,
                local_addr=_local_addr(local_address),
            ),
            timeout,
        )

    async def connect_unix(
        self,
        path: str,
        timeout: Optional[float] = None,
    ) -> AsyncioNetworkStream:
        logger.debug(f"Connecting to unix socket {path}")
        return await self._open(asyncio.open_unix_connection(path), timeout)

    async def _open(
        self,
        opener: Awaitable[StreamPair],
        timeout: Optional[float],
    ) -> AsyncioNetworkStream:
        if timeout is not None:
            reader, writer = await asyncio.wait_for(opener, timeout=timeout)
        else:
            reader, writer = await opener
        return AsyncioNetworkStream(reader, writer)


def _local_addr(local_address: Optional[str]) -> Optional[Tuple[str, int]]:
    if local_address is None:
        return None
    return (local_address, 0)
