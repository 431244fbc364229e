"""
Keep-alive connection pool.

This module provides the idle socket pool used by every request: idle
connections are kept per destination key on a LIFO stack, checked for
usability before reuse, and requests that exceed ``max_sockets`` for a
destination wait in a FIFO queue until a connection is released.
"""

import asyncio
import logging
import math
import ssl
from collections import defaultdict, deque
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Deque, Dict, List, Mapping, NamedTuple, Optional

from .exceptions import ConfigurationError, ConnectionError
from .http11 import HTTP11Connection
from .http_primitives import URLComponents
from .network import AsyncioNetworkBackend, NetworkBackend
from .network.stream import NetworkStream
from .network.utils import build_destination_key, create_ssl_context

logger = logging.getLogger(__name__)

UsabilityPredicate = Callable[[HTTP11Connection], bool]


def plain_socket_usable(connection: HTTP11Connection) -> bool:
    """A plain connection is usable until it is closed."""
    return not connection.is_closed


def tls_socket_usable(connection: HTTP11Connection) -> bool:
    """
    A TLS connection additionally needs its TLS session.

    TLS connections can lose their session without being reported closed.
    """
    return (
        not connection.is_closed
        and connection.stream.get_extra_info("ssl_object") is not None
    )


class Origin(NamedTuple):
    """Where a request connects to."""
    scheme: str
    host: str
    port: int
    local_address: Optional[str] = None
    socket_path: Optional[str] = None

    @classmethod
    def from_url(
        cls,
        url: URLComponents,
        local_address: Optional[str] = None,
        socket_path: Optional[str] = None,
    ) -> "Origin":
        return cls(url.scheme, url.host, url.port, local_address, socket_path)

    @property
    def key(self) -> str:
        return build_destination_key(self.host, self.port, self.local_address, self.socket_path)


class ConnectionPool:
    """
    Idle socket pool for one connection kind (plain or TLS).

    ``acquire``, ``release`` and ``remove`` are synchronous and never raise.
    Ownership of a connection moves from the pool to a request when
    ``acquire`` pops it, and back when the response body is fully read.
    """

    DEFAULT_MAX_FREE_SOCKETS = 256

    def __init__(
        self,
        backend: Optional[NetworkBackend] = None,
        *,
        secure: bool = False,
        usability: Optional[UsabilityPredicate] = None,
        max_sockets: float = math.inf,
        max_free_sockets: int = DEFAULT_MAX_FREE_SOCKETS,
        keep_alive: bool = True,
        ssl_context: Optional[ssl.SSLContext] = None,
        reject_unauthorized: bool = True,
        connect_timeout: Optional[float] = None,
    ):
        """
        Initialize connection pool.

        Args:
            backend: Network backend used to open new connections
            secure: Open TLS connections
            usability: Predicate deciding whether an idle connection may be
                       reused; defaults to the plain or TLS predicate
            max_sockets: Maximum connections in use per destination key
            max_free_sockets: Maximum idle connections kept per destination key
            keep_alive: Keep released connections for reuse
            ssl_context: SSL context for TLS connections
            reject_unauthorized: Verify peer certificates when no
                                 ``ssl_context`` is given
            connect_timeout: Timeout in seconds for opening a connection
        """
        self._backend = backend or AsyncioNetworkBackend()
        self.secure = secure
        self._usability = usability or (tls_socket_usable if secure else plain_socket_usable)
        self.max_sockets = max_sockets
        self.max_free_sockets = max_free_sockets
        self.keep_alive = keep_alive
        self.reject_unauthorized = reject_unauthorized
        self.connect_timeout = connect_timeout
        self._ssl_context = ssl_context

        self._idle: Dict[str, List[HTTP11Connection]] = defaultdict(list)
        self._active: Dict[str, List[HTTP11Connection]] = defaultdict(list)
        self._connecting: Dict[str, int] = defaultdict(int)
        self._pending: Dict[str, Deque["asyncio.Future[Optional[HTTP11Connection]]"]] = defaultdict(deque)

        # Metrics
        self._total_connections_created = 0
        self._total_connections_closed = 0
        self._total_connections_reused = 0

        logger.debug(
            f"Connection pool initialized: secure={secure}, max_sockets={max_sockets}, "
            f"max_free_sockets={max_free_sockets}"
        )

    def is_usable(self, connection: HTTP11Connection) -> bool:
        return self._usability(connection)

    def acquire(self, key: str) -> Optional[HTTP11Connection]:
        """
        Pop the most recently released usable connection for ``key``.

        Unusable connections found on the way are discarded. Returns None
        when the caller has to open a new connection.
        """
        stack = self._idle.get(key)
        while stack:
            connection = stack.pop()
            if self.is_usable(connection):
                self._active[key].append(connection)
                self._total_connections_reused += 1
                logger.debug(f"Reusing connection to {key}")
                return connection
            logger.debug(f"Discarding unusable idle connection to {key}")
            connection.abort()
        return None

    def release(self, connection: HTTP11Connection, key: str) -> None:
        """
        Return a connection after its response has been fully read.

        Usable connections are kept, up to ``max_free_sockets`` per key;
        the rest are closed. A queued request for ``key`` is serviced
        before this returns.
        """
        self._untrack(connection, key)
        if self.keep_alive and self.is_usable(connection):
            connection.request_count += 1
            stack = self._idle[key]
            if len(stack) < self.max_free_sockets:
                stack.append(connection)
                logger.debug(f"Returned connection to pool for {key} ({len(stack)} idle)")
            else:
                connection.abort()
        else:
            connection.abort()
        self._service_pending(key)

    def remove(self, connection: HTTP11Connection, key: str) -> None:
        """Forget a connection that was closed out of band."""
        stack = self._idle.get(key)
        if stack and connection in stack:
            stack.remove(connection)
        if self._untrack(connection, key):
            self._service_pending(key)

    async def checkout(self, origin: Origin) -> HTTP11Connection:
        """
        Get a connection for ``origin``.

        Reuses an idle connection when possible, otherwise opens a new one.
        When ``max_sockets`` connections for the destination are in use, waits
        in FIFO order for one to be released.

        Raises:
            ConnectionError: If a new connection cannot be opened
        """
        key = origin.key
        connection = self.acquire(key)
        if connection is not None:
            return connection

        if self._in_use(key) >= self.max_sockets or self._pending.get(key):
            connection = await self._wait(key)
            if connection is not None:
                return connection
        else:
            self._connecting[key] += 1

        return await self._connect(origin, key)

    async def _wait(self, key: str) -> Optional[HTTP11Connection]:
        waiter = asyncio.get_running_loop().create_future()
        queue = self._pending[key]
        queue.append(waiter)
        logger.debug(f"Queued request for {key} ({len(queue)} pending)")
        try:
            return await waiter
        except asyncio.CancelledError:
            self._abandon(waiter, key)
            raise

    def _abandon(self, waiter: "asyncio.Future[Optional[HTTP11Connection]]", key: str) -> None:
        if waiter.done() and not waiter.cancelled():
            connection = waiter.result()
            if connection is None:
                self._connecting[key] -= 1
                self._service_pending(key)
            else:
                self.release(connection, key)
            return

        queue = self._pending.get(key)
        if queue and waiter in queue:
            queue.remove(waiter)

    def _service_pending(self, key: str) -> None:
        queue = self._pending.get(key)
        while queue:
            waiter = queue[0]
            if waiter.done():
                queue.popleft()
                continue

            connection = self.acquire(key)
            if connection is not None:
                queue.popleft()
                waiter.set_result(connection)
                continue

            if self._in_use(key) >= self.max_sockets:
                break

            # Reserve a slot; the waiter opens the connection itself.
            queue.popleft()
            self._connecting[key] += 1
            waiter.set_result(None)

        if queue is not None and not queue:
            del self._pending[key]

    async def _connect(self, origin: Origin, key: str) -> HTTP11Connection:
        try:
            stream = await self._open_stream(origin)
        except BaseException as e:
            self._connecting[key] -= 1
            self._service_pending(key)
            if isinstance(e, (OSError, asyncio.TimeoutError)):
                logger.debug(f"Failed to connect to {key}: {e!r}")
                raise ConnectionError(f"Failed to connect to {key}: {e}", cause=e) from e
            raise

        self._connecting[key] -= 1
        connection = HTTP11Connection(
            stream,
            key=key,
            on_idle=partial(self._connection_idle, key),
            on_close=partial(self._connection_closed, key),
        )
        self._active[key].append(connection)
        self._total_connections_created += 1
        logger.debug(f"Created new connection to {key}")
        return connection

    async def _open_stream(self, origin: Origin) -> NetworkStream:
        if origin.socket_path:
            return await self._backend.connect_unix(origin.socket_path, timeout=self.connect_timeout)
        if self.secure:
            return await self._backend.connect_tls(
                origin.host,
                origin.port,
                self.ssl_context,
                timeout=self.connect_timeout,
                local_address=origin.local_address,
            )
        return await self._backend.connect_tcp(
            origin.host,
            origin.port,
            timeout=self.connect_timeout,
            local_address=origin.local_address,
        )

    def _connection_idle(self, key: str, connection: HTTP11Connection) -> None:
        self.release(connection, key)

    def _connection_closed(self, key: str, connection: HTTP11Connection) -> None:
        self._total_connections_closed += 1
        self.remove(connection, key)

    def _untrack(self, connection: HTTP11Connection, key: str) -> bool:
        active = self._active.get(key)
        if active and connection in active:
            active.remove(connection)
            return True
        return False

    def _in_use(self, key: str) -> int:
        return len(self._active.get(key, ())) + self._connecting.get(key, 0)

    @property
    def ssl_context(self) -> ssl.SSLContext:
        if self._ssl_context is None:
            self._ssl_context = create_ssl_context(reject_unauthorized=self.reject_unauthorized)
        return self._ssl_context

    @property
    def settings(self) -> Dict[str, Any]:
        """Constructor arguments that reproduce this pool's configuration."""
        return {
            "secure": self.secure,
            "usability": self._usability,
            "max_sockets": self.max_sockets,
            "max_free_sockets": self.max_free_sockets,
            "keep_alive": self.keep_alive,
            "ssl_context": self._ssl_context,
            "reject_unauthorized": self.reject_unauthorized,
            "connect_timeout": self.connect_timeout,
        }

    def clone(self) -> "ConnectionPool":
        """Create an empty pool with the same configuration."""
        return ConnectionPool(self._backend, **self.settings)

    @property
    def idle_sockets(self) -> Dict[str, List[HTTP11Connection]]:
        return {key: list(stack) for key, stack in self._idle.items() if stack}

    @property
    def sockets(self) -> Dict[str, List[HTTP11Connection]]:
        return {key: list(active) for key, active in self._active.items() if active}

    @property
    def requests(self) -> Dict[str, int]:
        return {key: len(queue) for key, queue in self._pending.items() if queue}

    @property
    def metrics(self) -> Dict[str, Any]:
        return {
            "idle_connections": sum(len(stack) for stack in self._idle.values()),
            "active_connections": sum(len(active) for active in self._active.values()),
            "pending_requests": sum(len(queue) for queue in self._pending.values()),
            "total_connections_created": self._total_connections_created,
            "total_connections_closed": self._total_connections_closed,
            "total_connections_reused": self._total_connections_reused,
        }

    async def close(self) -> None:
        """Close every connection and fail every queued request."""
        for queue in self._pending.values():
            for waiter in queue:
                if not waiter.done():
                    waiter.set_exception(ConnectionError("Connection pool is closed"))
        self._pending.clear()

        connections = [c for stack in self._idle.values() for c in stack]
        connections += [c for active in self._active.values() for c in active]
        self._idle.clear()
        self._active.clear()
        for connection in connections:
            await connection.close()

        logger.debug(f"Connection pool closed. Closed {len(connections)} connections")

    async def __aenter__(self) -> "ConnectionPool":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


def create_http_pool(backend: Optional[NetworkBackend] = None, **settings: Any) -> ConnectionPool:
    """Create a pool of plain connections."""
    return ConnectionPool(backend, secure=False, usability=plain_socket_usable, **settings)


def create_https_pool(backend: Optional[NetworkBackend] = None, **settings: Any) -> ConnectionPool:
    """Create a pool of TLS connections; keep-alive is always on."""
    settings["keep_alive"] = True
    return ConnectionPool(backend, secure=True, usability=tls_socket_usable, **settings)


@dataclass
class Agents:
    """The pooling agents a client picks from for each request."""

    http: ConnectionPool
    https: ConnectionPool
    https_allow_unauthorized: ConnectionPool

    NAMES = ("http", "https", "https_allow_unauthorized")

    @classmethod
    def create(cls, backend: Optional[NetworkBackend] = None, **settings: Any) -> "Agents":
        return cls(
            http=create_http_pool(backend, **settings),
            https=create_https_pool(backend, **settings),
            https_allow_unauthorized=create_https_pool(
                backend, **dict(settings, reject_unauthorized=False)
            ),
        )

    @classmethod
    def from_value(cls, agents: Any) -> "Agents":
        """
        Accept an Agents instance or a mapping with all three agents.

        Raises:
            ConfigurationError: If any of the three agents is missing
        """
        if isinstance(agents, cls):
            return agents
        if not isinstance(agents, Mapping) or any(agents.get(name) is None for name in cls.NAMES):
            raise ConfigurationError(
                "Options must include all three agents: http, https and https_allow_unauthorized"
            )
        return cls(**{name: agents[name] for name in cls.NAMES})

    def clone(self) -> "Agents":
        """Private agents with the same configuration and no connections."""
        return Agents(
            http=self.http.clone(),
            https=self.https.clone(),
            https_allow_unauthorized=self.https_allow_unauthorized.clone(),
        )

    def select(self, secure: bool, reject_unauthorized: Optional[bool] = None) -> ConnectionPool:
        if not secure:
            return self.http
        if reject_unauthorized is False:
            return self.https_allow_unauthorized
        return self.https

    async def close(self) -> None:
        for name in self.NAMES:
            await getattr(self, name).close()
