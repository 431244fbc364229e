"""
Pytest configuration for keepwire tests.

This file contains shared fixtures: an in-process HTTP/1.1 server built on
h11, and sample data used across test modules.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, List, Optional, Set

import h11
import pytest

from keepwire.network import MockNetworkBackend


class ServerExchange:
    """One request received by the test server, and the means to answer it."""

    def __init__(
        self,
        connection: h11.Connection,
        writer: asyncio.StreamWriter,
        request: h11.Request,
        body: bytes,
    ) -> None:
        self._connection = connection
        self._writer = writer
        self.request = request
        self.body = body
        self.aborted = False

    @property
    def method(self) -> str:
        return self.request.method.decode("ascii")

    @property
    def target(self) -> str:
        return self.request.target.decode("ascii")

    @property
    def headers(self) -> dict:
        return {name.decode("latin-1"): value.decode("latin-1") for name, value in self.request.headers}

    async def respond(self, status: int = 200, headers=None, body=b"") -> None:
        if isinstance(body, str):
            body = body.encode("utf-8")
        headers = list(headers or [])
        if not any(name.lower() == "content-length" for name, _ in headers):
            headers.append(("content-length", str(len(body))))
        await self.start(status, headers)
        if body:
            await self.write(body)
        await self.end()

    async def start(self, status: int = 200, headers=None) -> None:
        await self._send(h11.Response(status_code=status, headers=list(headers or [])))

    async def write(self, data: bytes) -> None:
        await self._send(h11.Data(data=data))

    async def end(self) -> None:
        await self._send(h11.EndOfMessage())

    def abort(self) -> None:
        self.aborted = True
        self._writer.transport.abort()

    async def _send(self, event) -> None:
        self._writer.write(self._connection.send(event))
        await self._writer.drain()


Handler = Callable[[ServerExchange], Awaitable[None]]


class HTTPTestServer:
    """Keep-alive HTTP/1.1 server on 127.0.0.1 with a scripted handler."""

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.requests: List[ServerExchange] = []
        self.connections = 0
        self.port = 0
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: Set[asyncio.StreamWriter] = set()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    async def start(self) -> "HTTPTestServer":
        self._server = await asyncio.start_server(self._serve, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        for writer in list(self._writers):
            writer.transport.abort()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._server.close()
        await self._server.wait_closed()

    async def _serve(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.add(writer)
        task = asyncio.current_task()
        self._tasks.add(task)
        connection = h11.Connection(h11.SERVER)
        try:
            while True:
                event = await self._next_event(connection, reader)
                if not isinstance(event, h11.Request):
                    break

                body = b""
                while True:
                    part = await self._next_event(connection, reader)
                    if isinstance(part, h11.Data):
                        body += part.data
                    elif isinstance(part, h11.EndOfMessage):
                        break
                    else:
                        return

                exchange = ServerExchange(connection, writer, event, body)
                self.requests.append(exchange)
                await self.handler(exchange)

                if (
                    exchange.aborted
                    or connection.our_state is not h11.DONE
                    or connection.their_state is not h11.DONE
                ):
                    break
                connection.start_next_cycle()
        except (OSError, h11.RemoteProtocolError):
            pass
        finally:
            self._writers.discard(writer)
            self._tasks.discard(task)
            writer.transport.abort()

    @staticmethod
    async def _next_event(connection: h11.Connection, reader: asyncio.StreamReader):
        while True:
            event = connection.next_event()
            if event is h11.NEED_DATA:
                connection.receive_data(await reader.read(65536))
                continue
            return event


@pytest.fixture
def serve():
    """Run an HTTPTestServer for the duration of an ``async with`` block."""

    @asynccontextmanager
    async def _serve(handler: Handler):
        server = await HTTPTestServer(handler).start()
        try:
            yield server
        finally:
            await server.stop()

    return _serve


@pytest.fixture
def mock_backend():
    """Network backend that serves scripted bytes instead of connecting."""
    return MockNetworkBackend()


def _http_response(status: int = 200, body: bytes = b"", headers=None, reason: str = "OK") -> bytes:
    lines = [f"HTTP/1.1 {status} {reason}", f"Content-Length: {len(body)}"]
    lines += [f"{name}: {value}" for name, value in (headers or [])]
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body


@pytest.fixture
def http_response():
    """Build raw HTTP/1.1 response bytes with a content-length."""
    return _http_response


@pytest.fixture
def sample_stream_data():
    """Sample stream data for testing."""
    return [
        b"Hello",
        b", ",
        b"World",
        b"!",
    ]


@pytest.fixture
def async_data_generator():
    """Create an async data generator for testing."""
    async def generator(data: List[bytes]):
        for chunk in data:
            yield chunk

    return generator
