"""
Network backend interface for keepwire.

This module defines the NetworkBackend interface that provides
abstractions for opening connections to a destination.
"""

import ssl
from abc import ABC, abstractmethod
from typing import Optional

from .stream import NetworkStream


class NetworkBackend(ABC):
    """
    Interface for network backend implementations.

    A backend is the only thing the connection pool uses to open new
    connections, so tests can swap in an in-memory implementation.
    """

    @abstractmethod
    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
    ) -> NetworkStream:
        """
        Connect to a TCP endpoint.

        Args:
            host: The hostname or IP address to connect to.
            port: The port number to connect to.
            timeout: Optional timeout in seconds for the connection.
            local_address: Optional local interface address to bind.

        Raises:
            OSError: If the connection fails.
            asyncio.TimeoutError: If the connection times out.
        """

    @abstractmethod
    async def connect_tls(
        self,
        host: str,
        port: int,
        ssl_context: ssl.SSLContext,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        server_hostname: Optional[str] = None,
    ) -> NetworkStream:
        """
        Connect to a TCP endpoint and complete a TLS handshake.

        Args:
            host: The hostname or IP address to connect to.
            port: The port number to connect to.
            ssl_context: Context controlling verification and ciphers.
            timeout: Optional timeout in seconds for connect and handshake.
            local_address: Optional local interface address to bind.
            server_hostname: Name sent for SNI, defaults to ``host``.

        Raises:
            OSError: If the connection or handshake fails.
            asyncio.TimeoutError: If the connection times out.
        """

    @abstractmethod
    async def connect_unix(
        self,
        path: str,
        timeout: Optional[float] = None,
    ) -> NetworkStream:
        """
        Connect to a Unix domain socket.

        Raises:
            OSError: If the connection fails.
        """
