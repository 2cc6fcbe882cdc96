# mtls_broker/broker/middleware.py

from dataclasses import dataclass
from typing import Callable, List

from .channel import ClientChannel
from .errors import NotBoundError
from .listener import ListenerState, SecureListener
from .registry import ConnectionRegistry


@dataclass(frozen=True)
class MiddlewareEntry:
    event: str
    handler: Callable


class MiddlewareRegistry:
    """
    Handlers that run for the listener itself (server middleware) or for
    every client channel, including channels admitted later (client
    middleware). Entries are never dropped once added.
    """
    def __init__(self,
                 registry: ConnectionRegistry,
                 listener: SecureListener):
        self.registry = registry
        self.listener = listener
        self.server_middleware: List[MiddlewareEntry] = []
        self.client_middleware: List[MiddlewareEntry] = []

    def add_server_middleware(self, event: str, handler: Callable) -> MiddlewareEntry:
        if self.listener.state is not ListenerState.BOUND:
            raise NotBoundError("server middleware needs a bound listener")
        entry = MiddlewareEntry(event, handler)
        self.server_middleware.append(entry)
        self.listener.on(event, handler)
        return entry

    def add_client_middleware(self, event: str, handler: Callable) -> MiddlewareEntry:
        """
        Record the handler for future admissions and attach it to every
        channel already connected.
        """
        entry = MiddlewareEntry(event, handler)
        self.client_middleware.append(entry)
        for channel in self.registry.snapshot():
            channel.on(event, handler)
        return entry

    def apply_client_middleware(self, channel: ClientChannel) -> None:
        """Attach every client middleware, in insertion order. Once per channel."""
        for entry in self.client_middleware:
            channel.on(entry.event, entry.handler)
