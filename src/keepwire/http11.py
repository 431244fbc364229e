"""
HTTP/1.1 connection implementation for keepwire.

This module implements the HTTP11Connection class that manages
HTTP/1.1 protocol communication over a NetworkStream using h11.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import h11

from .exceptions import ConnectionError, HTTPClientError, ProtocolError
from .http_primitives import Headers, Request, Response
from .network.stream import NetworkStream
from .streams import ResponseStream

logger = logging.getLogger(__name__)

ConnectionCallback = Callable[["HTTP11Connection"], None]


class ConnectionState(Enum):
    """States of an HTTP/1.1 connection."""
    NEW = "new"           # Connection created, not yet used
    ACTIVE = "active"     # Connection handling a request
    IDLE = "idle"         # Connection available for reuse
    CLOSED = "closed"     # Connection closed, cannot be reused


class HTTP11Connection:
    """
    HTTP/1.1 connection manager.

    A connection serves one request at a time. When a response body has
    been read to the end and both sides allow keep-alive, the connection
    goes IDLE and ``on_idle`` is called; whenever it is closed, ``on_close``
    is called exactly once. The connection pool uses these callbacks for
    its bookkeeping.
    """

    DEFAULT_READ_SIZE = 65536

    def __init__(
        self,
        stream: NetworkStream,
        key: str = "",
        on_idle: Optional[ConnectionCallback] = None,
        on_close: Optional[ConnectionCallback] = None,
    ):
        """
        Initialize HTTP/1.1 connection.

        Args:
            stream: The NetworkStream to use for communication
            key: Destination key of the pool bucket owning this connection
            on_idle: Called when the connection becomes reusable
            on_close: Called once when the connection is closed
        """
        self._stream = stream
        self._key = key
        self._h11_connection = h11.Connection(h11.CLIENT)
        self._state = ConnectionState.NEW
        self._on_idle = on_idle
        self._on_close = on_close
        self._idle_since: Optional[float] = None

        # Times this connection was handed back to a pool
        self.request_count = 0

        # Metrics
        self._requests_sent = 0
        self._bytes_sent = 0
        self._bytes_received = 0
        self._errors_count = 0
        self._last_request_time: Optional[float] = None

        logger.debug(f"HTTP/1.1 connection initialized for {key or 'unpooled destination'}")

    async def handle_request(self, request: Request) -> Response:
        """
        Send a request and wait for the response head.

        The body is left on the connection and read through the
        returned response's stream.

        Raises:
            ConnectionError: If the connection is unusable or the network fails
            ProtocolError: If the peer violates HTTP/1.1
        """
        self._acquire_connection()
        self._requests_sent += 1
        self._last_request_time = time.time()

        try:
            await self._send_request(request)
            response = await self._receive_response(request)
        except BaseException as e:
            self._fail(e)
            translated = self._translate(e)
            if translated is e:
                raise
            raise translated from e

        logger.debug(
            f"Request {self._requests_sent} on {self._key}: {request.method} "
            f"{request.path} -> {response.status_code}"
        )
        return response

    async def _send_request(self, request: Request) -> None:
        headers: Headers = list(request.headers)
        if request.stream is not None and not self._has_framing(headers):
            headers.append((b"transfer-encoding", b"chunked"))

        await self._send_event(
            h11.Request(method=request.method, target=request.url.target, headers=headers)
        )

        if request.stream is not None:
            async for chunk in request.stream:
                if chunk:
                    await self._send_event(h11.Data(data=chunk))

        await self._send_event(h11.EndOfMessage())

    async def _send_event(self, event: h11.Event) -> None:
        data = self._h11_connection.send(event)
        if data:
            await self._stream.write(data)
            self._bytes_sent += len(data)

    async def _next_event(self) -> Any:
        while True:
            event = self._h11_connection.next_event()
            if event is h11.NEED_DATA:
                data = await self._stream.read(self.DEFAULT_READ_SIZE)
                # An empty read tells h11 the peer closed the connection.
                self._h11_connection.receive_data(data)
                self._bytes_received += len(data)
                continue
            return event

    async def _receive_response(self, request: Request) -> Response:
        while True:
            event = await self._next_event()

            if isinstance(event, h11.InformationalResponse):
                continue

            if isinstance(event, h11.Response):
                headers = list(event.headers)
                response_stream = ResponseStream(
                    connection=self,
                    content_length=self._get_content_length(headers),
                    chunked=self._is_chunked(headers),
                )
                return Response.create(
                    status_code=event.status_code,
                    headers=headers,
                    stream=response_stream,
                    reason=event.reason,
                    http_version=event.http_version,
                    request=request,
                )

            if isinstance(event, h11.ConnectionClosed):
                raise ProtocolError("Connection closed by server")

    async def receive_body_chunk(self) -> Optional[bytes]:
        """
        Receive a chunk of the response body.

        Returns:
            Chunk of data or None once the body is complete
        """
        if self._state is ConnectionState.CLOSED:
            raise ConnectionError("Connection is closed")

        try:
            event = await self._next_event()
            if isinstance(event, h11.Data):
                return bytes(event.data)
            if isinstance(event, h11.EndOfMessage):
                self._response_complete()
                return None
            raise ProtocolError("Connection closed before the response was complete")
        except BaseException as e:
            self._fail(e)
            translated = self._translate(e)
            if translated is e:
                raise
            raise translated from e

    def _get_content_length(self, headers: Headers) -> Optional[int]:
        for name, value in headers:
            if name.lower() == b"content-length":
                try:
                    return int(value)
                except ValueError:
                    return None
        return None

    def _is_chunked(self, headers: Headers) -> bool:
        for name, value in headers:
            if name.lower() == b"transfer-encoding" and value.lower() == b"chunked":
                return True
        return False

    def _has_framing(self, headers: Headers) -> bool:
        return any(
            name.lower() in (b"content-length", b"transfer-encoding") for name, _ in headers
        )

    def _acquire_connection(self) -> None:
        if self._state is ConnectionState.CLOSED or self._stream.is_closed:
            raise ConnectionError("Connection is closed")

        if self._state is ConnectionState.ACTIVE:
            raise ConnectionError("Connection is busy")

        self._state = ConnectionState.ACTIVE

    def _response_complete(self) -> None:
        h11_connection = self._h11_connection
        if h11_connection.our_state is h11.DONE and h11_connection.their_state is h11.DONE:
            h11_connection.start_next_cycle()
            self._state = ConnectionState.IDLE
            self._idle_since = time.monotonic()
            if self._on_idle is not None:
                self._on_idle(self)
        else:
            logger.debug(f"Connection to {self._key} cannot be reused")
            self.abort()

    def _fail(self, error: BaseException) -> None:
        if not isinstance(error, asyncio.CancelledError):
            self._errors_count += 1
        logger.debug(f"Connection to {self._key} failed: {error!r}")
        self.abort()

    @staticmethod
    def _translate(error: BaseException) -> BaseException:
        if isinstance(error, HTTPClientError):
            return error
        if isinstance(error, h11.ProtocolError):
            return ProtocolError(str(error) or type(error).__name__, cause=error)
        if isinstance(error, (OSError, EOFError)):
            return ConnectionError(str(error) or type(error).__name__, cause=error)
        return error

    def _mark_closed(self) -> bool:
        if self._state is ConnectionState.CLOSED:
            return False
        self._state = ConnectionState.CLOSED
        if self._on_close is not None:
            self._on_close(self)
        return True

    async def close(self) -> None:
        """Close the connection gracefully."""
        if self._mark_closed():
            await self._stream.aclose()
            logger.debug(f"Connection to {self._key} closed after {self._requests_sent} requests")

    def abort(self) -> None:
        """Close the connection immediately."""
        if self._mark_closed():
            self._stream.abort()
            logger.debug(f"Connection to {self._key} aborted")

    @property
    def stream(self) -> NetworkStream:
        return self._stream

    @property
    def key(self) -> str:
        return self._key

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_closed(self) -> bool:
        """Check if connection is closed locally or by the peer."""
        return self._state is ConnectionState.CLOSED or self._stream.is_closed

    @property
    def is_idle(self) -> bool:
        return self._state is ConnectionState.IDLE

    @property
    def metrics(self) -> Dict[str, Any]:
        return {
            "requests_sent": self._requests_sent,
            "request_count": self.request_count,
            "bytes_sent": self._bytes_sent,
            "bytes_received": self._bytes_received,
            "errors_count": self._errors_count,
            "last_request_time": self._last_request_time,
            "state": self._state.value,
            "idle_since": self._idle_since,
        }
