"""
Request debug logging for keepwire.

Set ``KEEPWIRE_DEBUG_FILE`` to append one JSON record per completed request
to a file, or ``KEEPWIRE_DEBUG_CONSOLE`` to print them on standard output.
"""

import json
import logging
import os
import socket
import sys
import time
import traceback
from dataclasses import fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from . import __version__
from .events import EventHub, ResponseDetails
from .streams import BufferStream

logger = logging.getLogger(__name__)

PACKAGE_NAME = "keepwire"
FILE_ENV = "KEEPWIRE_DEBUG_FILE"
CONSOLE_ENV = "KEEPWIRE_DEBUG_CONSOLE"


def _dumps(value: Any, indent: Optional[int] = None) -> str:
    # Unserializable values (pools, streams, bytes) are logged by repr
    return json.dumps(value, indent=indent, default=repr)


def _isoformat(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class DebugLogger:
    """
    Writes a JSON record for every ``"response"`` event.

    Records go through a dedicated ``logging`` logger that does not
    propagate, so they never reach the application's root handlers.
    """

    def __init__(
        self,
        file: Optional[str] = None,
        console: bool = False,
        name: str = "requests",
    ) -> None:
        self.file = file
        self.console = console
        self._handlers: List[logging.Handler] = []
        self._logger = logging.getLogger(f"{__name__}.{name}")
        self._logger.propagate = False
        self._logger.setLevel(logging.DEBUG)

        if file:
            self._handlers.append(logging.FileHandler(file, mode="a", encoding="utf-8"))
        if console:
            self._handlers.append(logging.StreamHandler(sys.stdout))

        for handler in self._handlers:
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(handler)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DebugLogger":
        environ = os.environ if environ is None else environ
        return cls(file=environ.get(FILE_ENV) or None, console=bool(environ.get(CONSOLE_ENV)))

    @property
    def active(self) -> bool:
        return bool(self._handlers)

    def attach(self, events: EventHub) -> "DebugLogger":
        """Subscribe to ``events`` when logging is active."""
        if self.active:
            logger.debug(f"Request debug logging enabled (file={self.file}, console={self.console})")
            events.on("response", self.on_response)
        return self

    def detach(self, events: EventHub) -> None:
        events.off("response", self.on_response)

    def close(self) -> None:
        for handler in self._handlers:
            self._logger.removeHandler(handler)
            handler.close()
        self._handlers = []

    def on_response(self, error: Optional[BaseException], details: ResponseDetails) -> None:
        if not self.active:
            return
        self._logger.debug(_dumps(self.format(error, details), indent=4))

    def format(self, error: Optional[BaseException], details: ResponseDetails) -> Dict[str, Any]:
        """Build the record for one request chain; the body is not read."""
        end = time.time()
        request = details.req
        response = details.res

        return {
            "method": request.method if request is not None else None,
            "url": details.url,
            "options": self._loggable_options(details.options),
            "response": {
                "headers": response.headers if response is not None else None,
                "status_code": response.status_code if response is not None else None,
                "status_message": response.reason if response is not None else None,
            },
            "begin_time": _isoformat(details.start),
            "end_time": _isoformat(end),
            "response_time": int((end - details.start) * 1000),
            "error": (
                {"type": type(error).__name__, "message": str(error)}
                if error is not None else None
            ),
        }

    @staticmethod
    def _loggable_options(options: Any) -> Optional[Dict[str, Any]]:
        if options is None:
            return None
        values = {}
        for field in fields(options):
            value = getattr(options, field.name)
            if not callable(value):
                values[field.name] = value
        return values


def format_log_event(
    err: Optional[BaseException] = None,
    req: Any = None,
    res: Any = None,
    trace: Any = None,
) -> bytes:
    """Format one newline-terminated JSON event record."""
    event: Dict[str, Any] = {
        "event": PACKAGE_NAME,
        "host": socket.gethostname(),
        "app_ver": __version__,
        "trace": trace,
        "time": int(time.time() * 1000),
        "req": req,
    }

    if err is not None:
        event["err"] = {
            "message": str(err),
            "stack": "".join(traceback.format_exception(type(err), err, err.__traceback__)),
        }

    if res is not None:
        event["res"] = res

    return _dumps(event).encode("utf-8") + b"\n"


def log_stream(
    err: Optional[BaseException] = None,
    req: Any = None,
    res: Any = None,
    trace: Any = None,
) -> BufferStream:
    """Readable stream over a single formatted event record."""
    return BufferStream(format_log_event(err=err, req=req, res=res, trace=trace))
