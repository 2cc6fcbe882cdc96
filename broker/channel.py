# mtls_broker/broker/channel.py

import asyncio
import json
import logging
import ssl
import uuid
from typing import Any, Callable, Optional

from .events import EventHub

# events raised locally by the channel itself, never accepted from the peer
RESERVED_EVENTS = frozenset({"disconnect"})

# errors that mean the underlying stream is gone
STREAM_ERRORS = (ConnectionError, ssl.SSLError, asyncio.IncompleteReadError, OSError)


class ClientChannel:
    """
    One authenticated, connected peer.

    Packets are newline-delimited JSON objects. EVENT packets are handed
    to the handlers registered with on()/once() for their event name.
    The "disconnect" event fires exactly once, when the stream ends.
    """
    def __init__(self,
                 reader: asyncio.StreamReader,
                 writer: asyncio.StreamWriter,
                 channel_id: str = None,
                 client_id: str = None):
        self.id = channel_id or uuid.uuid4().hex
        self.client_id = client_id
        self.reader = reader
        self.writer = writer
        self.events = EventHub()

        self.peername = writer.get_extra_info("peername")
        self.peer_cert = writer.get_extra_info("peercert")
        self._disconnected = False

    def __repr__(self):
        return f"<ClientChannel {self.id} client_id={self.client_id!r} peer={self.peername}>"

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    def on(self, event: str, handler: Callable) -> None:
        self.events.on(event, handler)

    def once(self, event: str, handler: Callable) -> None:
        self.events.once(event, handler)

    def off(self, event: str, handler: Callable = None) -> None:
        self.events.off(event, handler)

    async def emit(self, event: str, data: Any = None) -> None:
        """Send an event to the peer."""
        await send_packet(self.writer, {"type": "EVENT", "event": event, "data": data})

    async def serve(self) -> None:
        """
        Read packets until DISCONNECT, EOF or a stream error,
        then fire "disconnect".
        """
        try:
            while True:
                try:
                    pkt = await recv_packet(self.reader)
                except ValueError as exc:
                    logging.warning(f"[{self.id}] dropping malformed packet: {exc}")
                    continue
                if pkt is None or pkt.get("type") == "DISCONNECT":
                    break
                if pkt.get("type") != "EVENT":
                    logging.warning(f"[{self.id}] unexpected packet type {pkt.get('type')!r}")
                    continue

                event = pkt.get("event")
                if not isinstance(event, str) or event in RESERVED_EVENTS:
                    logging.warning(f"[{self.id}] ignoring event {event!r} from peer")
                    continue
                await self.events.emit(event, pkt.get("data"))
        except STREAM_ERRORS as exc:
            logging.info(f"[{self.id}] stream ended: {exc!r}")
        finally:
            await self._finish()

    async def close(self) -> None:
        """Say goodbye to the peer, close the stream, fire "disconnect"."""
        if not self._disconnected and not self.writer.is_closing():
            try:
                await send_packet(self.writer, {"type": "DISCONNECT"})
            except STREAM_ERRORS as exc:
                logging.debug(f"[{self.id}] DISCONNECT not delivered: {exc!r}")
        await self._finish()

    async def _finish(self) -> None:
        if self._disconnected:
            return
        self._disconnected = True
        await close_writer(self.writer)
        logging.info(f"🔌 [{self.id}] disconnected")
        await self.events.emit("disconnect", self)


async def recv_packet(reader: asyncio.StreamReader) -> Optional[dict]:
    line = await reader.readline()
    if not line:
        return None
    pkt = json.loads(line.decode().strip())
    if not isinstance(pkt, dict):
        raise ValueError(f"expected a JSON object, got {type(pkt).__name__}")
    return pkt


async def send_packet(writer: asyncio.StreamWriter, packet: dict) -> None:
    data = (json.dumps(packet) + "\n").encode()
    writer.write(data)
    await writer.drain()


async def close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except STREAM_ERRORS as exc:
        logging.debug(f"wait_closed: {exc!r}")
