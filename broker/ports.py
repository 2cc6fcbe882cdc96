# mtls_broker/broker/ports.py

import asyncio
import logging
import random
import socket
from typing import Set

import config.settings as settings
from .errors import PortExhaustionError


class PortAllocator:
    """
    Picks a listening port in an inclusive range by trying to bind it.

    Ports handed out stay reserved until release() is called, so two
    listeners sharing one allocator never get the same port. Races with
    other processes are not detected here; they show up later as BindError.
    """
    def __init__(self, host: str = "127.0.0.1"):
        self.host = host
        self.held: Set[int] = set()

    def _probe(self, host: str, port: int) -> bool:
        # probe with the family the host resolves to (IPv4 or IPv6)
        try:
            family, kind, proto, _, sockaddr = socket.getaddrinfo(
                host, port, type=socket.SOCK_STREAM)[0]
        except socket.gaierror as exc:
            logging.debug(f"Cannot resolve {host!r}: {exc}")
            return False
        with socket.socket(family, kind, proto) as sock:
            try:
                sock.bind(sockaddr)
            except OSError:
                return False
        return True

    async def find_free_port(self,
                             min_port: int,
                             max_port: int,
                             attempts: int = None,
                             host: str = None) -> int:
        if not (0 < min_port <= max_port <= 65535):
            raise ValueError(f"invalid port range [{min_port}, {max_port}]")
        if attempts is None:
            attempts = settings.PORT_PROBE_ATTEMPTS
        host = host or self.host

        candidates = [p for p in range(min_port, max_port + 1) if p not in self.held]
        random.shuffle(candidates)

        for port in candidates[:attempts]:
            if self._probe(host, port):
                self.held.add(port)
                return port
            # let other tasks run between probes
            await asyncio.sleep(0)

        logging.warning(f"No free port in [{min_port}, {max_port}] after {attempts} probes")
        raise PortExhaustionError(
            f"no free port in [{min_port}, {max_port}] after {min(attempts, len(candidates))} probes"
        )

    def release(self, port: int) -> None:
        self.held.discard(port)
