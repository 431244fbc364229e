"""
Custom exceptions for keepwire.

Every error carries an HTTP-like ``status_code`` classification and the
original ``cause`` so callers can branch on the error class instead of
matching messages.
"""

from typing import Any, Dict, Optional


class HTTPClientError(Exception):
    """Base exception for all keepwire errors."""

    status_code = 500

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        status_code: Optional[int] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        if status_code is not None:
            self.status_code = status_code
        self.data = data
        self.response: Any = None

    @property
    def is_server(self) -> bool:
        """True when the classification is a 5xx status."""
        return self.status_code >= 500


class ConfigurationError(HTTPClientError, ValueError):
    """Raised synchronously for invalid or conflicting options."""


class ConnectionError(HTTPClientError):
    """Raised when a connection is refused, reset or unreachable."""

    status_code = 502

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message, cause)
        self.code = code


class RequestAbortedError(ConnectionError):
    """Raised when a pending request is aborted by the caller."""

    def __init__(self, message: str = "Client request aborted (socket hang up)") -> None:
        super().__init__(message, code="ECONNRESET")


class ProtocolError(HTTPClientError):
    """Raised when there's an error with HTTP protocol handling."""

    status_code = 502


class StreamError(HTTPClientError):
    """Raised when there's an error with stream operations."""


class TimeoutError(HTTPClientError):
    """Raised when an operation times out."""

    status_code = 504

    def __init__(self, message: str, timeout: Optional[float] = None) -> None:
        if timeout is not None:
            message = f"{message} (timeout: {timeout}s)"
        super().__init__(message)
        self.timeout = timeout


class GatewayTimeoutError(TimeoutError):
    """No response was received in time."""

    status_code = 504


class RequestTimeoutError(TimeoutError):
    """The response body was not fully read in time."""

    status_code = 408


class RedirectError(HTTPClientError):
    status_code = 502


class PayloadError(HTTPClientError):
    """Raised when a response payload cannot be read."""


class PayloadTooLargeError(PayloadError):
    status_code = 413


class NotAcceptableError(PayloadError):
    status_code = 406


class DecompressionError(PayloadError):
    """Raised when a gzip payload cannot be decompressed.

    ``status_code`` is the status of the response that carried the payload.
    """


class PayloadParseError(PayloadError):
    """Raised when a JSON payload cannot be decoded."""

    status_code = 502

    def __init__(
        self,
        message: str,
        payload: bytes,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, cause, data={"payload": payload})
        self.payload = payload


class ResponseError(HTTPClientError):
    """Raised by the verb shortcuts for 4xx and 5xx responses."""

    def __init__(
        self,
        status_code: int,
        reason: str,
        headers: Dict[str, str],
        payload: Any,
        response: Any,
    ) -> None:
        super().__init__(
            f"Response Error: {status_code} {reason}",
            status_code=status_code,
            data={
                "is_response_error": True,
                "headers": headers,
                "payload": payload,
                "response": response,
            },
        )
        self.response = response
