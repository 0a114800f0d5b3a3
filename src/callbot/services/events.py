"""Minimal callback registry used to publish session events."""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

REPLY_SEGMENT = "reply-segment"
ERROR = "error"

Listener = Callable[..., Any]


class EventEmitter:
    """Ordered publish/subscribe registry.

    Listeners may be plain callables or coroutine functions. ``emit`` calls them
    in registration order and awaits awaitable results before moving on, so a
    producer observes its events delivered strictly in sequence.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    async def emit(self, event: str, *args: Any) -> bool:
        """Deliver ``args`` to every listener of ``event``.

        Returns True when at least one listener was registered. Listener failures
        are logged and do not interrupt delivery to the remaining listeners.
        """

        listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Listener for '{event}' failed")
        return bool(listeners)


__all__ = ["ERROR", "REPLY_SEGMENT", "EventEmitter", "Listener"]
