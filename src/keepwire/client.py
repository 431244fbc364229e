"""
HTTP client for keepwire.

The Client issues requests through its pooling agents, follows redirects
through a RedirectController and reads payloads with the response reader.
``Client.defaults()`` derives independent clients with merged options.
"""

import asyncio
import json as jsonlib
import logging
import time
from functools import partial
from typing import Any, Dict, Generator, Mapping, NamedTuple, Optional

from . import reader
from .cache_control import parse_cache_control
from .connection_pool import Agents, ConnectionPool, Origin
from .events import EventHub, ResponseDetails, hub
from .exceptions import (
    ConfigurationError,
    GatewayTimeoutError,
    HTTPClientError,
    RequestAbortedError,
    ResponseError,
)
from .http_primitives import (
    Request,
    RequestOptions,
    Response,
    URLComponents,
    drop_header,
    has_header,
    resolve_url,
)
from .network import NetworkBackend, create_ssl_context
from .redirects import DispatchCallback, RedirectController
from .streams import RequestStream, to_readable_stream

logger = logging.getLogger(__name__)


class Result(NamedTuple):
    """Response and decoded payload returned by the verb shortcuts."""
    response: Response
    payload: Any


class PendingRequest:
    """
    Awaitable handle for a request chain.

    ``await handle`` gives the final Response. ``abort()`` cancels the
    attempt in flight and makes the await raise RequestAbortedError.
    """

    def __init__(self) -> None:
        self._task: Optional["asyncio.Future[Response]"] = None
        self._aborted = False
        self.request: Optional[Request] = None

    def _start(self, coro: Any) -> "asyncio.Future[Response]":
        self._task = asyncio.ensure_future(coro)
        return self._task

    def abort(self) -> None:
        if self._task is None:
            return
        self._aborted = True
        if not self._task.done():
            self._task.cancel()
            return
        if not self._task.cancelled() and self._task.exception() is None:
            stream = self._task.result().stream
            abort = getattr(stream, "abort", None)
            if abort is not None:
                abort()

    @property
    def aborted(self) -> bool:
        return self._aborted

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def __await__(self) -> Generator[Any, None, Response]:
        return self._result().__await__()

    async def _result(self) -> Response:
        if self._task is None:
            raise RuntimeError("Request was never started")
        try:
            return await self._task
        except asyncio.CancelledError:
            # Aborted before the request chain started running
            if self._aborted and self._task.cancelled():
                raise RequestAbortedError() from None
            raise


def merge_headers(
    base: Optional[Mapping[str, Any]],
    override: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """Merge two header mappings; names compare case-insensitively."""
    merged = dict(base or {})
    for name, value in (override or {}).items():
        drop_header(merged, name)
        merged[name] = value
    return merged


class Client:
    """
    HTTP client with keep-alive pooling and redirect support.

    Args:
        options: Default request options applied to every request
        agents: Pooling agents, an Agents instance or a mapping with
                ``http``, ``https`` and ``https_allow_unauthorized``
        events: Event hub to publish on; the process-wide hub by default
        backend: Network backend used by agents created for this client
    """

    def __init__(
        self,
        options: Optional[Mapping[str, Any]] = None,
        *,
        agents: Any = None,
        events: Optional[EventHub] = None,
        backend: Optional[NetworkBackend] = None,
    ) -> None:
        defaults = dict(options or {})
        if "agents" in defaults:
            agents = defaults.pop("agents")

        self._backend = backend
        self._defaults = defaults
        self.agents = Agents.from_value(agents) if agents is not None else Agents.create(backend)
        self.events = events if events is not None else hub
        self._build_options({})

    to_readable_stream = staticmethod(to_readable_stream)
    parse_cache_control = staticmethod(parse_cache_control)

    def defaults(self, options: Mapping[str, Any]) -> "Client":
        """
        Derive a client whose defaults are merged with ``options``.

        Headers are merged, other options override. The derived client gets
        private copies of this client's agents unless ``options`` provides
        all three agents.

        Raises:
            ConfigurationError: If options are missing or agents are incomplete
        """
        if not isinstance(options, Mapping):
            raise ConfigurationError("Options must be provided to defaults")

        options = dict(options)
        agents = options.pop("agents", None)
        return Client(
            self._merge(options),
            agents=Agents.from_value(agents) if agents is not None else self.agents.clone(),
            events=self.events,
            backend=self._backend,
        )

    def request(self, method: str, url: str, **options: Any) -> PendingRequest:
        """
        Start a request and return a handle to await it.

        Option errors are raised immediately, before anything is sent.

        Raises:
            ConfigurationError: If the options conflict or the URL is invalid
        """
        return self._start(method, url, self._build_options(options))

    async def read(
        self,
        source: Any,
        *,
        timeout: Optional[float] = None,
        max_bytes: int = 0,
        json: reader.JsonMode = False,
        gunzip: reader.GunzipMode = False,
    ) -> Any:
        """Read a response or stream into memory, see ``keepwire.reader.read``."""
        return await reader.read(
            source, timeout=timeout, max_bytes=max_bytes, json=json, gunzip=gunzip
        )

    async def get(self, url: str, **options: Any) -> Result:
        return await self._shortcut("GET", url, options)

    async def post(self, url: str, **options: Any) -> Result:
        return await self._shortcut("POST", url, options)

    async def put(self, url: str, **options: Any) -> Result:
        return await self._shortcut("PUT", url, options)

    async def patch(self, url: str, **options: Any) -> Result:
        return await self._shortcut("PATCH", url, options)

    async def delete(self, url: str, **options: Any) -> Result:
        return await self._shortcut("DELETE", url, options)

    async def close(self) -> None:
        """Close every pooled connection of this client's agents."""
        await self.agents.close()

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _shortcut(self, method: str, url: str, options: Dict[str, Any]) -> Result:
        request_options = self._build_options(options)
        response = await self._start(method, url, request_options)
        try:
            payload = await reader.read(
                response,
                timeout=request_options.timeout,
                max_bytes=request_options.max_bytes,
                json=request_options.json,
                gunzip=request_options.gunzip,
            )
        except HTTPClientError as e:
            e.response = response
            raise

        if response.status_code >= 400:
            raise ResponseError(
                response.status_code, response.reason, response.headers, payload, response
            )
        return Result(response, payload)

    def _merge(self, options: Mapping[str, Any]) -> Dict[str, Any]:
        merged = dict(self._defaults)
        merged.update(options)
        merged["headers"] = merge_headers(self._defaults.get("headers"), options.get("headers"))
        return merged

    def _build_options(self, options: Mapping[str, Any]) -> RequestOptions:
        try:
            request_options = RequestOptions(**self._merge(options))
        except TypeError as e:
            raise ConfigurationError(f"Invalid request options: {e}", cause=e) from e
        self._validate(request_options)
        return request_options

    def _validate(self, options: RequestOptions) -> None:
        if (
            options.agent is not None
            and options.agent is not False
            and options.reject_unauthorized is not None
        ):
            raise ConfigurationError("Cannot set both agent and reject_unauthorized")

        for name in ("redirected", "before_redirect", "on_request"):
            hook = getattr(options, name)
            if hook is not None and not callable(hook):
                raise ConfigurationError(f"{name} option must be a function")

        if options.gunzip not in (False, True, "force"):
            raise ConfigurationError(f"Invalid gunzip option: {options.gunzip!r}")

    def _start(self, method: str, url: str, options: RequestOptions) -> PendingRequest:
        target = resolve_url(options.base_url, url)
        try:
            URLComponents.from_url(target)
        except ValueError as e:
            raise ConfigurationError(str(e), cause=e) from e

        handle = PendingRequest()
        task = handle._start(self._run(handle, method, target, options))
        task.add_done_callback(partial(self._cancelled_before_start, handle, target, options))
        if options.on_request is not None:
            options.on_request(handle)
        return handle

    def _cancelled_before_start(
        self,
        handle: PendingRequest,
        url: str,
        options: RequestOptions,
        task: "asyncio.Future[Response]",
    ) -> None:
        if task.cancelled() and handle.aborted:
            self._finish(RequestAbortedError(), handle, None, time.time(), url, options)

    async def _run(
        self,
        handle: PendingRequest,
        method: str,
        url: str,
        options: RequestOptions,
    ) -> Response:
        start = time.time()
        controller = RedirectController(partial(self._issue, handle), method, url, options)
        try:
            response = await controller.run()
        except asyncio.CancelledError:
            if not handle.aborted:
                raise
            error = RequestAbortedError()
            self._finish(error, handle, None, start, controller.url, controller.options)
            raise error from None
        except Exception as e:
            self._finish(e, handle, None, start, controller.url, controller.options)
            raise

        self._finish(None, handle, response, start, controller.url, controller.options)
        return response

    def _finish(
        self,
        error: Optional[BaseException],
        handle: PendingRequest,
        response: Optional[Response],
        start: float,
        url: str,
        options: Optional[RequestOptions] = None,
    ) -> None:
        if error is None:
            logger.debug(f"Request to {url} completed with {response.status_code}")
        else:
            logger.debug(f"Request to {url} failed: {error!r}")
        self.events.emit(
            "response", error, ResponseDetails(handle.request, response, start, url, options),
        )

    async def _issue(
        self,
        handle: PendingRequest,
        method: str,
        url: str,
        options: RequestOptions,
        dispatched: DispatchCallback,
    ) -> Response:
        try:
            uri = URLComponents.from_url(url)
        except ValueError as e:
            raise ConfigurationError(str(e), cause=e) from e

        headers = dict(options.headers)
        body = self._prepare_body(options.payload, headers, tap=bool(options.redirects))
        if options.gunzip and not has_header(headers, "accept-encoding"):
            headers["accept-encoding"] = "gzip"

        attempt = options.copy(headers=headers)
        self.events.emit("request", uri.href, attempt)

        request = Request.create(method, uri, attempt.headers, stream=body)
        handle.request = request
        self.events.emit("request_created", request)
        dispatched(request)

        pool = self._select_pool(uri, attempt)
        origin = Origin.from_url(uri, attempt.local_address, attempt.socket_path)
        logger.debug(f"{request.method} {uri.href} via {origin.key}")

        exchange = self._exchange(pool, origin, request)
        if attempt.timeout is None or attempt.timeout <= 0:
            return await exchange
        try:
            return await asyncio.wait_for(exchange, timeout=attempt.timeout)
        except asyncio.TimeoutError:
            raise GatewayTimeoutError("Client request timeout", timeout=attempt.timeout) from None

    async def _exchange(self, pool: ConnectionPool, origin: Origin, request: Request) -> Response:
        connection = await pool.checkout(origin)
        return await connection.handle_request(request)

    def _prepare_body(
        self,
        payload: Any,
        headers: Dict[str, Any],
        tap: bool,
    ) -> Optional[RequestStream]:
        if payload is None:
            return None

        if hasattr(payload, "__aiter__"):
            return RequestStream(payload, tap=tap)

        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        if isinstance(payload, (bytes, bytearray, memoryview)):
            data = bytes(payload)
        else:
            data = jsonlib.dumps(payload, separators=(",", ":")).encode("utf-8")
            if not has_header(headers, "content-type"):
                headers["content-type"] = "application/json"

        if not has_header(headers, "content-length"):
            headers["content-length"] = str(len(data))
        return RequestStream(data)

    def _select_pool(self, uri: URLComponents, options: RequestOptions) -> ConnectionPool:
        if isinstance(options.agent, ConnectionPool):
            return options.agent

        if options.agent is False or options.ciphers or options.secure_protocol:
            ssl_context = None
            if uri.is_secure:
                ssl_context = create_ssl_context(
                    reject_unauthorized=options.reject_unauthorized is not False,
                    ciphers=options.ciphers,
                    secure_protocol=options.secure_protocol,
                )
            return ConnectionPool(
                self._backend,
                secure=uri.is_secure,
                keep_alive=False,
                ssl_context=ssl_context,
            )

        return self.agents.select(uri.is_secure, options.reject_unauthorized)
