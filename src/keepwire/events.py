"""
Observability hooks for keepwire.

Clients publish three events on an EventHub:

- ``"request"``: ``(url, options)`` before connecting; listeners may mutate
  ``options.headers``
- ``"request_created"``: ``(request)`` once per attempt
- ``"response"``: ``(error, details)`` once per request chain

One hub is shared process-wide by default so independent listeners see
every request regardless of which client issued it.
"""

import logging
from collections import defaultdict
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class ResponseDetails(NamedTuple):
    """Payload of the ``"response"`` event."""
    req: Any
    res: Any
    start: float
    url: Optional[str]
    options: Any = None


class EventHub:
    """Registry of event listeners."""

    def __init__(self) -> None:
        self._listeners: Dict[str, List[Tuple[Listener, bool]]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> "EventHub":
        self._listeners[event].append((listener, False))
        return self

    def once(self, event: str, listener: Listener) -> "EventHub":
        self._listeners[event].append((listener, True))
        return self

    def off(self, event: str, listener: Listener) -> "EventHub":
        """Remove the most recently added registration of ``listener``."""
        entries = self._listeners.get(event, [])
        for index in range(len(entries) - 1, -1, -1):
            if entries[index][0] == listener:
                del entries[index]
                break
        return self

    remove_listener = off

    def listeners(self, event: str) -> List[Listener]:
        return [listener for listener, _ in self._listeners.get(event, [])]

    def remove_all_listeners(self, event: Optional[str] = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener for ``event`` in registration order."""
        entries = self._listeners.get(event)
        if not entries:
            return False

        current = list(entries)
        self._listeners[event] = [entry for entry in entries if not entry[1]]
        for listener, _ in current:
            listener(*args)
        return True


hub = EventHub()
