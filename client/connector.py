# client/connector.py

import argparse
import asyncio
import logging
import ssl
import uuid
from typing import Set

import config.settings as settings
from broker.channel import ClientChannel, STREAM_ERRORS, close_writer, recv_packet, send_packet
from broker.credentials import CredentialStore
from broker.errors import ClientSecureError, ConnectError
from broker.registry import ConnectionRegistry
from broker.tls import create_client_tls_context


class SecureClient:
    """
    Mutual-TLS client of the broker.

    Every connect() opens one more channel; live channels are kept in
    self.registry and dropped from it when they disconnect.
    """
    def __init__(self,
                 credentials: CredentialStore = None,
                 client_id: str = None,
                 reconnect_attempts: int = 0,
                 retry_delay: float = 0.5):
        self.credentials = credentials or CredentialStore()
        self.client_id = client_id or f"client-{uuid.uuid4().hex[:8]}"
        self.reconnect_attempts = reconnect_attempts
        self.retry_delay = retry_delay
        self.registry = ConnectionRegistry()
        self._tasks: Set[asyncio.Task] = set()

    def _make_ssl_context(self) -> ssl.SSLContext:
        cred = self.credentials.credential
        if not cred.is_complete or not cred.trusted_authorities:
            raise ClientSecureError(
                f"client credential incomplete: key={cred.private_key is not None}, "
                f"cert={cred.certificate is not None}, ca={len(cred.trusted_authorities)}"
            )
        return create_client_tls_context(
            certificate=cred.certificate,
            private_key=cred.private_key,
            trusted_authorities=cred.trusted_authorities
        )

    async def _connect_once(self, host: str, port: int, ssl_ctx: ssl.SSLContext) -> ClientChannel:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port, ssl=ssl_ctx),
            settings.HANDSHAKE_TIMEOUT
        )
        try:
            await send_packet(writer, {"type": "CONNECT", "client_id": self.client_id})
            resp = await asyncio.wait_for(recv_packet(reader), settings.HANDSHAKE_TIMEOUT)
        except BaseException:
            await close_writer(writer)
            raise

        if not resp or resp.get("type") != "CONNACK" or not resp.get("success"):
            await close_writer(writer)
            raise ConnectError(f"broker refused the connection: {resp!r}")

        return ClientChannel(reader, writer, channel_id=resp.get("id"), client_id=self.client_id)

    async def connect(self, host: str, port: int) -> ClientChannel:
        """
        Open an authenticated channel, retrying up to reconnect_attempts
        extra times. The channel starts reading in the background.
        """
        ssl_ctx = self._make_ssl_context()

        last_exc = None
        for attempt in range(self.reconnect_attempts + 1):
            if attempt:
                await asyncio.sleep(self.retry_delay)
            try:
                channel = await self._connect_once(host, port, ssl_ctx)
                break
            except (ConnectError, asyncio.TimeoutError, ValueError, *STREAM_ERRORS) as exc:
                last_exc = exc
                logging.warning(f"Connect to {host}:{port} failed (attempt {attempt + 1}): {exc!r}")
        else:
            raise ConnectError(f"cannot connect to {host}:{port}: {last_exc!r}") from last_exc

        self.registry.add(channel)
        channel.once("disconnect", self.registry.remove)
        task = asyncio.ensure_future(channel.serve())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logging.info(f"✅ {channel.id} is connected")
        return channel

    async def close(self) -> None:
        """Disconnect every channel of this client."""
        for channel in self.registry.snapshot():
            await channel.close()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


async def _run(args):
    store = CredentialStore()
    await store.load(args.key, args.cert)
    await store.load_trusted_authorities(args.ca)

    client = SecureClient(store, client_id=args.client_id,
                          reconnect_attempts=args.reconnect_attempts)
    channel = await client.connect(args.host, args.port)
    channel.on(args.event, lambda data: print(f"📨 {args.event}: {data!r}"))
    await channel.emit(args.event, args.message)
    await asyncio.sleep(args.wait)
    await client.close()


if __name__ == "__main__":
    p = argparse.ArgumentParser(description="Mutual-TLS broker client")
    p.add_argument("--host",      default=settings.HOST)
    p.add_argument("--port",      type=int, required=True)
    p.add_argument("--key",       required=True, help="client private key (PEM)")
    p.add_argument("--cert",      required=True, help="client certificate (PEM)")
    p.add_argument("--ca",        action="append", required=True,
                   help="trusted server authority (PEM), repeatable")
    p.add_argument("--client-id")
    p.add_argument("--event",     default="message")
    p.add_argument("--message",   default="Hello server!")
    p.add_argument("--wait",      type=float, default=1.0,
                   help="seconds to keep listening for replies")
    p.add_argument("--reconnect-attempts", type=int, default=0)
    args = p.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
    asyncio.run(_run(args))
