"""
Redirect handling for keepwire.

A RedirectController drives one request chain:
SENDING -> AWAITING_RESPONSE -> (TERMINAL | REDIRECTING -> SENDING).
301 and 302 keep the original method unless ``redirect_method`` is set,
303 is followed only with ``redirect_303`` and becomes a bodiless GET,
307 and 308 keep method and body.
"""

import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple
from urllib.parse import urljoin

from .exceptions import RedirectError
from .http_primitives import Request, RequestOptions, Response, drop_header
from .streams import RequestStream

logger = logging.getLogger(__name__)

DispatchCallback = Callable[[Request], None]
Issue = Callable[[str, str, RequestOptions, DispatchCallback], Awaitable[Response]]

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
BODILESS_METHODS = frozenset({"GET", "HEAD"})


class RedirectState(Enum):
    SENDING = "sending"
    AWAITING_RESPONSE = "awaiting_response"
    REDIRECTING = "redirecting"
    TERMINAL = "terminal"


class RedirectController:
    """
    Follows redirects for one request chain.

    ``issue`` sends a single attempt and returns its response; it calls the
    dispatch callback as soon as the attempt's wire request exists.
    """

    def __init__(self, issue: Issue, method: str, url: str, options: RequestOptions) -> None:
        self._issue = issue
        self.method = method.upper()
        self.url = url
        self.options = options
        self.follow = bool(options.redirects)
        self.remaining = int(options.redirects) if self.follow else 0
        self.attempts = 0
        self.state = RedirectState.SENDING
        self._last_redirect: Optional[Tuple[int, str]] = None

    async def run(self) -> Response:
        """Send attempts until a terminal response or a redirect error."""
        while True:
            self.state = RedirectState.SENDING
            self.attempts += 1
            response = await self._issue(self.method, self.url, self.options, self._dispatched)

            next_method = self.next_method(response.status_code)
            if not self.follow or next_method is None:
                self.state = RedirectState.TERMINAL
                return response

            await self._prepare_redirect(response, next_method)

    def next_method(self, status_code: int) -> Optional[str]:
        """Method for following ``status_code``, None when it is not followed."""
        if status_code in (301, 302):
            return (self.options.redirect_method or self.method).upper()
        if status_code == 303:
            return "GET" if self.options.redirect_303 else None
        if status_code in (307, 308):
            return self.method
        return None

    def _dispatched(self, request: Request) -> None:
        self.state = RedirectState.AWAITING_RESPONSE
        if self._last_redirect is not None and self.options.redirected is not None:
            status_code, location = self._last_redirect
            self.options.redirected(status_code, location, request)

    async def _prepare_redirect(self, response: Response, next_method: str) -> None:
        await response.aclose()

        if self.remaining <= 0:
            self.state = RedirectState.TERMINAL
            raise RedirectError("Maximum redirections reached")

        location = response.headers.get("location")
        if not location:
            self.state = RedirectState.TERMINAL
            raise RedirectError("Received redirection without location")

        self.state = RedirectState.REDIRECTING
        location = urljoin(self.url, location)
        self.remaining -= 1

        options = self.options.copy(redirects=self.remaining)
        if next_method in BODILESS_METHODS:
            options.payload = None
            drop_header(options.headers, "content-length")
            drop_header(options.headers, "transfer-encoding")
        else:
            options.payload = self._replay_payload(response)

        hook = self.options.before_redirect
        if hook is not None:
            result = hook(next_method, response.status_code, location, response.headers, options)
            if inspect.isawaitable(result):
                await result

        logger.debug(
            f"Following {response.status_code} from {self.url} to {location} "
            f"as {next_method} ({self.remaining} redirects left)"
        )
        self._last_redirect = (response.status_code, location)
        self.method = next_method
        self.url = location
        self.options = options

    def _replay_payload(self, response: Response) -> Any:
        payload = self.options.payload
        if payload is None or not hasattr(payload, "__aiter__"):
            return payload

        # One-shot streams are replayed from what the previous attempt sent.
        stream = response.request.stream if response.request is not None else None
        if isinstance(stream, RequestStream):
            return stream.collect()
        return payload
