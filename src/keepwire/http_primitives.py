"""
HTTP primitives for keepwire.

This module defines the core data structures: parsed URLs, the per-attempt
request options, and the wire-level request and response values.
Request and Response are frozen; options are copied, never shared, between
redirect attempts.
"""

import dataclasses
import re
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import (
    Any,
    AsyncIterable,
    Callable,
    Dict,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Tuple,
    Union,
)
from urllib.parse import urljoin, urlsplit, urlunsplit

from .network.utils import DEFAULT_PORTS, format_host_header


# Type aliases for better readability
Headers = List[Tuple[bytes, bytes]]
StatusCode = int

_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)


class URLComponents(NamedTuple):
    """Immutable representation of an absolute http(s) URL."""
    scheme: str
    host: str
    port: int
    path: str

    @classmethod
    def from_url(cls, url: str) -> "URLComponents":
        """
        Parse an absolute URL.

        The path keeps its querystring; fragments are dropped.

        Raises:
            ValueError: If the scheme is not http/https or the host is missing
        """
        parsed = urlsplit(url)
        scheme = parsed.scheme.lower()
        if scheme not in DEFAULT_PORTS:
            raise ValueError(f"Unsupported URL: {url!r}")

        host = parsed.hostname
        if not host:
            raise ValueError(f"No hostname found in URL: {url!r}")

        port = parsed.port
        if port is None:
            port = DEFAULT_PORTS[scheme]

        path = parsed.path or "/"
        if parsed.query:
            path += "?" + parsed.query

        return cls(scheme=scheme, host=host, port=port, path=path)

    @property
    def host_header(self) -> str:
        return format_host_header(self.host, self.port, self.scheme)

    @property
    def href(self) -> str:
        return f"{self.scheme}://{self.host_header}{self.path}"

    @property
    def target(self) -> bytes:
        return self.path.encode("utf-8")

    @property
    def is_secure(self) -> bool:
        return self.scheme == "https"

    def resolve(self, location: str) -> "URLComponents":
        """Resolve ``location`` against this URL; absolute locations win."""
        return URLComponents.from_url(urljoin(self.href, location))


def resolve_url(base_url: Optional[str], path: str) -> str:
    """
    Combine an optional base URL with a request path.

    An absolute ``path`` replaces the base entirely. Otherwise the two paths
    are joined with exactly one slash and the querystring of ``path`` is
    used.
    """
    if not base_url or _ABSOLUTE_URL.match(path):
        return path

    base = urlsplit(base_url)
    given = urlsplit(path)
    joined = base.path.rstrip("/") + "/" + given.path.lstrip("/")
    return urlunsplit((base.scheme, base.netloc, joined, given.query, ""))


def get_header(headers: Mapping[str, Any], name: str) -> Optional[Any]:
    """Get a header value by name (case-insensitive)."""
    name = name.lower()
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def has_header(headers: Mapping[str, Any], name: str) -> bool:
    """Check if a header exists (case-insensitive)."""
    return get_header(headers, name) is not None


def drop_header(headers: Dict[str, Any], name: str) -> None:
    """Remove every spelling of a header from a mutable mapping."""
    name = name.lower()
    for key in [key for key in headers if key.lower() == name]:
        del headers[key]


@dataclass
class RequestOptions:
    """
    Options for one request attempt.

    Redirects derive the options of the next attempt with ``copy()``, so
    hooks that mutate an attempt's options never affect earlier attempts.
    """

    headers: Dict[str, Any] = field(default_factory=dict)
    payload: Any = None
    base_url: Optional[str] = None
    agent: Any = None
    reject_unauthorized: Optional[bool] = None
    secure_protocol: Optional[str] = None
    ciphers: Optional[str] = None
    timeout: Optional[float] = None
    redirects: Union[int, bool, None] = None
    redirect_method: Optional[str] = None
    redirect_303: bool = False
    before_redirect: Optional[Callable[..., Any]] = None
    redirected: Optional[Callable[..., Any]] = None
    socket_path: Optional[str] = None
    local_address: Optional[str] = None
    gunzip: Union[bool, str] = False
    json: Union[bool, str] = False
    max_bytes: int = 0
    on_request: Optional[Callable[..., Any]] = None

    def __post_init__(self) -> None:
        self.headers = dict(self.headers or {})

    def copy(self, **changes: Any) -> "RequestOptions":
        """Derive new options; the headers dict is always copied."""
        changes.setdefault("headers", dict(self.headers))
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class Request:
    """
    Immutable wire-level HTTP request.

    One Request is created per attempt, right before a connection is
    checked out for it.
    """

    method: str
    url: URLComponents
    headers: Headers = field(default_factory=list)
    stream: Optional[AsyncIterable[bytes]] = None

    @classmethod
    def create(
        cls,
        method: str,
        url: Union[str, URLComponents],
        headers: Optional[Mapping[str, Any]] = None,
        stream: Optional[AsyncIterable[bytes]] = None,
    ) -> "Request":
        """
        Create a Request, encoding header names and values.

        A Host header is added unless one is present.
        """
        if isinstance(url, str):
            url = URLComponents.from_url(url)

        wire_headers: Headers = []
        for name, value in (headers or {}).items():
            if value is None:
                continue
            wire_headers.append((name.encode("latin-1"), str(value).encode("latin-1")))

        if not any(name.lower() == b"host" for name, _ in wire_headers):
            wire_headers.insert(0, (b"host", url.host_header.encode("latin-1")))

        return cls(method=method.upper(), url=url, headers=wire_headers, stream=stream)

    def with_url(self, url: Union[str, URLComponents]) -> "Request":
        """Create a new request with a different URL."""
        if isinstance(url, str):
            url = URLComponents.from_url(url)
        return dataclasses.replace(self, url=url)

    def with_stream(self, stream: Optional[AsyncIterable[bytes]]) -> "Request":
        """Create a new request with a different stream."""
        return dataclasses.replace(self, stream=stream)

    def get_header(self, name: str) -> Optional[str]:
        """Get a header value by name (case-insensitive)."""
        wanted = name.lower().encode("latin-1")
        for header_name, header_value in self.headers:
            if header_name.lower() == wanted:
                return header_value.decode("latin-1")
        return None

    @property
    def path(self) -> str:
        return self.url.path

    @property
    def href(self) -> str:
        return self.url.href


@dataclass(frozen=True)
class Response:
    """
    Immutable HTTP response head plus a stream for the body.

    ``headers`` maps lower-cased names to values; repeated headers are
    joined with ``", "``. ``raw_headers`` keeps the wire order.
    """

    status_code: StatusCode
    reason: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    raw_headers: Headers = field(default_factory=list)
    stream: Optional[AsyncIterable[bytes]] = None
    http_version: str = "1.1"
    request: Optional[Request] = None

    @classmethod
    def create(
        cls,
        status_code: StatusCode,
        headers: Optional[Headers] = None,
        stream: Optional[AsyncIterable[bytes]] = None,
        reason: Union[str, bytes] = "",
        http_version: Union[str, bytes] = "1.1",
        request: Optional[Request] = None,
    ) -> "Response":
        raw_headers = list(headers or [])
        merged: Dict[str, str] = {}
        for name, value in raw_headers:
            key = name.decode("latin-1").lower()
            text = value.decode("latin-1")
            merged[key] = f"{merged[key]}, {text}" if key in merged else text

        if isinstance(reason, bytes):
            reason = reason.decode("latin-1")
        if not reason:
            try:
                reason = HTTPStatus(status_code).phrase
            except ValueError:
                reason = ""
        if isinstance(http_version, bytes):
            http_version = http_version.decode("ascii")

        return cls(
            status_code=status_code,
            reason=reason,
            headers=merged,
            raw_headers=raw_headers,
            stream=stream,
            http_version=http_version,
            request=request,
        )

    def get_header(self, name: str) -> Optional[str]:
        """Get a header value by name (case-insensitive)."""
        return self.headers.get(name.lower())

    def has_header(self, name: str) -> bool:
        return name.lower() in self.headers

    @property
    def url(self) -> Optional[str]:
        return self.request.href if self.request is not None else None

    async def aclose(self) -> None:
        """Discard the body, closing the underlying connection if unread."""
        aclose = getattr(self.stream, "aclose", None)
        if aclose is not None:
            await aclose()
