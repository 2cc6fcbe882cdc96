import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import config.settings as settings
from .channel import ClientChannel
from .credentials import CredentialStore
from .errors import BrokerError, NotFoundError, TeardownError
from .listener import ListenerHandle, SecureListener
from .middleware import MiddlewareEntry, MiddlewareRegistry
from .ports import PortAllocator
from .registry import ConnectionRegistry


@dataclass
class BrokerConfig:
    host: str = field(default_factory=lambda: settings.HOST)
    trusted_authority_paths: List[str] = field(default_factory=lambda: list(settings.CA_PATHS))
    # None for both means "keep whatever the credential store already holds"
    key_path: Optional[str] = field(default_factory=lambda: settings.KEY_PATH)
    cert_path: Optional[str] = field(default_factory=lambda: settings.CERT_PATH)
    generate_if_missing: bool = field(default_factory=lambda: settings.GENERATE_IF_MISSING)
    min_port: int = field(default_factory=lambda: settings.MIN_PORT)
    max_port: int = field(default_factory=lambda: settings.MAX_PORT)


class ConnectionBroker:
    """A mutual-TLS connection broker with per-client middleware."""
    def __init__(self,
                 credentials: CredentialStore = None,
                 allocator: PortAllocator = None):
        # 1) Key, certificate and trusted client authorities
        self.credentials = credentials or CredentialStore()

        # 2) TLS listener (owns its port allocator)
        self.listener = SecureListener(allocator or PortAllocator())

        # 3) Connected channels
        self.registry = ConnectionRegistry()

        # 4) Server and client middleware
        self.middleware = MiddlewareRegistry(self.registry, self.listener)

        self.config: Optional[BrokerConfig] = None
        self._stopped = asyncio.Event()

    async def _prepare_credentials(self, config: BrokerConfig) -> None:
        store = self.credentials
        if config.key_path and config.cert_path:
            try:
                await store.load(config.key_path, config.cert_path)
            except NotFoundError:
                if not config.generate_if_missing:
                    raise
                logging.info(f"No credential at {config.key_path!r}, generating one")
                store.adopt(await store.generate())
                await store.persist(config.key_path, config.cert_path)
        elif not store.credential.is_complete:
            store.adopt(await store.generate())

        if config.trusted_authority_paths:
            await store.load_trusted_authorities(config.trusted_authority_paths)
        else:
            store.trust_own_certificate()
            logging.warning("⚠️ No client authorities configured, trusting the broker's own certificate")

    async def start(self, config: BrokerConfig = None) -> ListenerHandle:
        """
        Load or generate credentials, then bind the listener.
        On failure the broker is left unbound and start() may be retried.
        """
        config = config or BrokerConfig()
        self.listener.min_port = config.min_port
        self.listener.max_port = config.max_port
        try:
            await self._prepare_credentials(config)
            handle = await self.listener.bind(
                config.host, self.credentials.credential, self._admit
            )
        except (BrokerError, ValueError):
            await self._abort()
            raise

        self.config = config
        self._stopped.clear()
        return handle

    async def _abort(self) -> None:
        try:
            await self.listener.close()
        except TeardownError as exc:
            logging.warning(f"⚠️ Cleanup after failed start: {exc}")
        self.registry.clear()

    async def stop(self) -> None:
        """
        Close the listener. Its channels disconnect as it goes down;
        whatever is left in the registry afterwards is dropped.
        """
        try:
            await self.listener.close()
        finally:
            self.registry.clear()
            self._stopped.set()

    async def restart(self, config: BrokerConfig = None) -> ListenerHandle:
        try:
            await self.stop()
        except TeardownError as exc:
            logging.warning(f"⚠️ Teardown during restart failed, starting anyway: {exc}")
        return await self.start(config or self.config)

    async def run(self, config: BrokerConfig = None) -> None:
        """Start and keep serving until stop() is called."""
        handle = await self.start(config)
        logging.info(f"🚀 Broker serving on {handle.bound_host}:{handle.bound_port}")
        try:
            await self._stopped.wait()
        finally:
            if not self._stopped.is_set():
                await self.stop()

    # ─── Admission ────────────────────────────────────────────────
    def _admit(self, channel: ClientChannel) -> None:
        self.registry.add(channel)
        self.middleware.apply_client_middleware(channel)
        # registered last, so a disconnect can never overtake admission
        channel.once("disconnect", self._on_disconnect)
        logging.info(f"✅ Admitted {channel!r}, {self.registry.count()} connected")

    def _on_disconnect(self, channel: ClientChannel) -> None:
        if self.registry.remove(channel):
            logging.info(f"Removed {channel.id}, {self.registry.count()} connected")

    # ─── Public surface ───────────────────────────────────────────
    def address(self) -> dict:
        return self.listener.address()

    def snapshot(self) -> List[ClientChannel]:
        return self.registry.snapshot()

    def count(self) -> int:
        return self.registry.count()

    def add_server_middleware(self, event: str, handler: Callable) -> MiddlewareEntry:
        return self.middleware.add_server_middleware(event, handler)

    def add_client_middleware(self, event: str, handler: Callable) -> MiddlewareEntry:
        return self.middleware.add_client_middleware(event, handler)


def main():
    logging.basicConfig(level=settings.LOG_LEVEL, format=settings.LOG_FORMAT)
    broker = ConnectionBroker()
    try:
        asyncio.run(broker.run())
    except KeyboardInterrupt:
        logging.info("🛑 Broker shutting down")
    except BrokerError as exc:
        print(f"❌ {exc}")
        return 1
    return 0

if __name__ == '__main__':
    main()
