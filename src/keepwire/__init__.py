"""
keepwire - Keep-alive HTTP/1.1 client

An asyncio HTTP client with pooled keep-alive connections, redirect
following and a buffered response reader.
"""

__version__ = "0.1.0"
__author__ = "Developer"
__email__ = "dev@example.com"

from .cache_control import parse_cache_control
from .client import Client, PendingRequest, Result
from .connection_pool import Agents, ConnectionPool, create_http_pool, create_https_pool
from .debug import DebugLogger
from .events import EventHub, ResponseDetails, hub
from .exceptions import (
    ConfigurationError,
    ConnectionError,
    HTTPClientError,
    PayloadError,
    ProtocolError,
    RedirectError,
    RequestAbortedError,
    ResponseError,
    StreamError,
    TimeoutError,
)
from .http_primitives import Request, RequestOptions, Response
from .streams import to_readable_stream

# Process-wide default client
client = Client()
agents = client.agents
events = client.events

request = client.request
read = client.read
get = client.get
post = client.post
put = client.put
patch = client.patch
delete = client.delete
defaults = client.defaults

debug_logger = DebugLogger.from_env().attach(hub)

__all__ = [
    "Client",
    "PendingRequest",
    "Result",
    "Agents",
    "ConnectionPool",
    "create_http_pool",
    "create_https_pool",
    "DebugLogger",
    "EventHub",
    "ResponseDetails",
    "Request",
    "RequestOptions",
    "Response",
    "HTTPClientError",
    "ConfigurationError",
    "ConnectionError",
    "RequestAbortedError",
    "ProtocolError",
    "StreamError",
    "TimeoutError",
    "RedirectError",
    "PayloadError",
    "ResponseError",
    "client",
    "agents",
    "events",
    "request",
    "read",
    "get",
    "post",
    "put",
    "patch",
    "delete",
    "defaults",
    "to_readable_stream",
    "parse_cache_control",
]
