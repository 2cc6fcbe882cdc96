# mtls_broker/broker/events.py

import inspect
import logging
from typing import Callable, Dict, List


class _Entry:
    __slots__ = ("handler", "once")

    def __init__(self, handler: Callable, once: bool):
        self.handler = handler
        self.once = once


class EventHub:
    """
    Named-event handler lists shared by listeners and channels.

    Handlers run in registration order. Coroutine handlers are awaited.
    A failing handler is logged and skipped; it never stops the others.
    """
    def __init__(self):
        self._handlers: Dict[str, List[_Entry]] = {}

    def on(self, event: str, handler: Callable) -> None:
        self._handlers.setdefault(event, []).append(_Entry(handler, False))

    def once(self, event: str, handler: Callable) -> None:
        self._handlers.setdefault(event, []).append(_Entry(handler, True))

    def off(self, event: str, handler: Callable = None) -> None:
        if handler is None:
            self._handlers.pop(event, None)
            return
        entries = self._handlers.get(event, [])
        self._handlers[event] = [e for e in entries if e.handler != handler]

    def listeners(self, event: str) -> List[Callable]:
        return [e.handler for e in self._handlers.get(event, [])]

    async def emit(self, event: str, *args) -> int:
        entries = list(self._handlers.get(event, []))
        if any(e.once for e in entries):
            # once-handlers are dropped before they run
            self._handlers[event] = [
                e for e in self._handlers.get(event, []) if not e.once
            ]

        for entry in entries:
            try:
                result = entry.handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logging.exception(f"Handler {entry.handler!r} for {event!r} failed")
        return len(entries)
