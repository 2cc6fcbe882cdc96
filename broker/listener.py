# mtls_broker/broker/listener.py

import asyncio
import enum
import functools
import inspect
import logging
import ssl
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set

import config.settings as settings
from .channel import ClientChannel, STREAM_ERRORS, close_writer, recv_packet, send_packet
from .credentials import Credential
from .errors import BindError, NotBoundError, TeardownError
from .events import EventHub
from .ports import PortAllocator
from .tls import create_tls_context


class ListenerState(enum.Enum):
    UNBOUND = "unbound"
    BOUND = "bound"
    CLOSED = "closed"


@dataclass
class ListenerHandle:
    bound_host: str
    bound_port: int
    state: ListenerState = ListenerState.BOUND


class SecureListener:
    """
    One TLS server that only lets in clients holding a certificate signed
    by one of the credential's trusted authorities.

    Unauthorized peers fail inside the TLS handshake and never reach
    on_request. Authorized peers still have to send a CONNECT packet
    before they become a ClientChannel.

    Handlers registered with on()/once() live on the listener object and
    therefore survive rebinds.
    """
    def __init__(self,
                 allocator: PortAllocator = None,
                 min_port: int = None,
                 max_port: int = None):
        self.allocator = allocator or PortAllocator()
        self.min_port = min_port
        self.max_port = max_port
        self.events = EventHub()

        self.state = ListenerState.UNBOUND
        self.last_teardown_error: Optional[TeardownError] = None
        self._server: Optional[asyncio.Server] = None
        self._handle: Optional[ListenerHandle] = None
        # channels accepted by the current server, closed on teardown
        self._channels: Dict[str, ClientChannel] = {}
        # writers still in the CONNECT handshake, closed on teardown too
        self._pending: Set[asyncio.StreamWriter] = set()
        # bumped on every bind; connections of an older server are refused
        self._generation = 0

    @property
    def handle(self) -> Optional[ListenerHandle]:
        return self._handle

    def on(self, event: str, handler: Callable) -> None:
        self.events.on(event, handler)

    def once(self, event: str, handler: Callable) -> None:
        self.events.once(event, handler)

    async def bind(self,
                   host: str,
                   credential: Credential,
                   on_request: Callable) -> ListenerHandle:
        if self.state is ListenerState.BOUND:
            try:
                await self.close()
            except TeardownError as exc:
                # a stuck old server must not block a planned restart
                self.last_teardown_error = exc
                logging.warning(f"⚠️ Teardown before rebind failed, binding anyway: {exc}")

        if not credential.is_complete:
            self.state = ListenerState.UNBOUND
            raise BindError("credential has no key/certificate")
        try:
            ssl_context = create_tls_context(
                certificate=credential.certificate,
                private_key=credential.private_key,
                trusted_authorities=credential.trusted_authorities,
                require_client_cert=True
            )
        except (ValueError, ssl.SSLError, OSError) as exc:
            self.state = ListenerState.UNBOUND
            raise BindError(f"TLS setup failed: {exc}") from exc

        min_port = self.min_port if self.min_port is not None else settings.MIN_PORT
        max_port = self.max_port if self.max_port is not None else settings.MAX_PORT
        self.state = ListenerState.UNBOUND
        port = await self.allocator.find_free_port(min_port, max_port, host=host)

        self._generation += 1
        try:
            server = await asyncio.start_server(
                functools.partial(self._handle_client, on_request, self._generation),
                host,
                port,
                ssl=ssl_context,
                ssl_handshake_timeout=settings.HANDSHAKE_TIMEOUT
            )
        except (OSError, ssl.SSLError) as exc:
            self.allocator.release(port)
            raise BindError(f"cannot listen on {host}:{port}: {exc}") from exc

        self._server = server
        self._handle = ListenerHandle(host, port, ListenerState.BOUND)
        self.state = ListenerState.BOUND
        logging.info(f"🚀 Listening on {host}:{port} (client certificates required)")
        return self._handle

    def address(self) -> dict:
        if self.state is not ListenerState.BOUND:
            raise NotBoundError(f"listener is {self.state.value}")
        return {"host": self._handle.bound_host, "port": self._handle.bound_port}

    async def close(self) -> None:
        """
        Stop listening and disconnect every channel of this server.
        Closing a listener that is not bound does nothing.
        """
        if self.state is not ListenerState.BOUND:
            return

        server, handle = self._server, self._handle
        self._server = None
        self.state = ListenerState.CLOSED
        handle.state = ListenerState.CLOSED
        self.allocator.release(handle.bound_port)

        error = None
        server.close()
        for writer in list(self._pending):
            await close_writer(writer)
        for channel in list(self._channels.values()):
            await channel.close()
        try:
            await asyncio.wait_for(server.wait_closed(), settings.CLOSE_TIMEOUT)
        except asyncio.TimeoutError as exc:
            error = TeardownError(f"{handle.bound_host}:{handle.bound_port} did not close "
                                  f"within {settings.CLOSE_TIMEOUT}s")
            error.__cause__ = exc
        except OSError as exc:
            error = TeardownError(f"closing {handle.bound_host}:{handle.bound_port} failed: {exc}")
            error.__cause__ = exc

        logging.info(f"🛑 Listener {handle.bound_host}:{handle.bound_port} closed")
        await self.events.emit("close")
        if error is not None:
            raise error

    async def _handshake(self, reader: asyncio.StreamReader) -> dict:
        """Wait for the CONNECT packet. Raises ValueError on anything else."""
        pkt = await asyncio.wait_for(recv_packet(reader), settings.HANDSHAKE_TIMEOUT)
        if pkt is None:
            raise ValueError("closed before CONNECT")
        if pkt.get("type") != "CONNECT":
            raise ValueError(f"expected CONNECT, got {pkt.get('type')!r}")
        return pkt

    async def _refuse(self, peer, writer: asyncio.StreamWriter, reason: str) -> None:
        logging.warning(f"Handshake with {peer} failed: {reason}")
        await self.events.emit("handshake_failed", peer, reason)
        await close_writer(writer)

    async def _handle_client(self,
                             on_request: Callable,
                             generation: int,
                             reader: asyncio.StreamReader,
                             writer: asyncio.StreamWriter):
        peer = writer.get_extra_info("peername")
        logging.info(f"🔌 New connection from {peer}")

        self._pending.add(writer)
        try:
            pkt = await self._handshake(reader)
        except (asyncio.TimeoutError, ValueError, *STREAM_ERRORS) as exc:
            reason = str(exc) or type(exc).__name__
            await self._refuse(peer, writer, reason)
            return
        finally:
            self._pending.discard(writer)

        # the server that accepted this peer may have been closed meanwhile
        if self.state is not ListenerState.BOUND or generation != self._generation:
            await self._refuse(peer, writer, "listener closed")
            return

        channel = ClientChannel(reader, writer, client_id=pkt.get("client_id"))
        self._channels[channel.id] = channel
        try:
            try:
                result = on_request(channel)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logging.exception(f"Admission of {channel!r} failed")
                await channel.close()
                return

            try:
                await send_packet(writer, {"type": "CONNACK", "success": True, "id": channel.id})
            except STREAM_ERRORS as exc:
                logging.info(f"CONNACK to {peer} not delivered: {exc!r}")
                await channel.close()
                return

            await self.events.emit("connection", channel)
            await channel.serve()
        finally:
            self._channels.pop(channel.id, None)
