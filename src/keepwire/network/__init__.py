"""
Network backend components for keepwire.

This module provides the low-level networking abstractions: the stream
and backend interfaces, the asyncio implementation and an in-memory mock.
"""

from .backend import NetworkBackend
from .stream import NetworkStream
from .asyncio_backend import AsyncioNetworkBackend, AsyncioNetworkStream
from .mock import MockNetworkBackend, MockNetworkStream
from .utils import (
    build_destination_key,
    create_ssl_context,
    format_host_header,
    is_ipv6_address,
    normalize_host,
)

__all__ = [
    "NetworkBackend",
    "NetworkStream",
    "AsyncioNetworkBackend",
    "AsyncioNetworkStream",
    "MockNetworkBackend",
    "MockNetworkStream",
    "build_destination_key",
    "create_ssl_context",
    "format_host_header",
    "is_ipv6_address",
    "normalize_host",
]
