import asyncio
import socket
import time

import pytest

import config.settings as settings
from broker.certgen import generate_self_signed
from broker.credentials import Credential, CredentialStore
from broker.server import BrokerConfig, ConnectionBroker
from client.connector import SecureClient

HOST = "127.0.0.1"
MIN_PORT = 45433
MAX_PORT = 45533


@pytest.fixture(scope="session")
def material():
    """Self-signed key/cert pairs, generated once per test run."""
    return {
        name: generate_self_signed(common_name="localhost", days=1, key_size=2048)
        for name in ("server", "client", "stranger")
    }


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "HOST", HOST)
    monkeypatch.setattr(settings, "MIN_PORT", MIN_PORT)
    monkeypatch.setattr(settings, "MAX_PORT", MAX_PORT)
    monkeypatch.setattr(settings, "KEY_PATH", str(tmp_path / "certs" / "key"))
    monkeypatch.setattr(settings, "CERT_PATH", str(tmp_path / "certs" / "cert"))
    monkeypatch.setattr(settings, "CA_PATHS", [])
    monkeypatch.setattr(settings, "HANDSHAKE_TIMEOUT", 2.0)
    monkeypatch.setattr(settings, "CLOSE_TIMEOUT", 2.0)
    yield


@pytest.fixture
def pem_files(tmp_path, material):
    """Write every generated pair to tmp_path and return the paths."""
    paths = {}
    for name, pair in material.items():
        key = tmp_path / f"{name}.key"
        cert = tmp_path / f"{name}.crt"
        key.write_bytes(pair["private_key"])
        cert.write_bytes(pair["certificate"])
        paths[name] = {"key": str(key), "cert": str(cert)}
    return paths


@pytest.fixture
def broker_config(pem_files):
    return BrokerConfig(
        host=HOST,
        trusted_authority_paths=[pem_files["client"]["cert"]],
        key_path=pem_files["server"]["key"],
        cert_path=pem_files["server"]["cert"],
        generate_if_missing=False,
        min_port=MIN_PORT,
        max_port=MAX_PORT,
    )


@pytest.fixture
async def broker(broker_config):
    b = ConnectionBroker()
    await b.start(broker_config)
    yield b
    await b.stop()


@pytest.fixture
async def make_client(material, pem_files):
    """Build a SecureClient holding the `name` pair and trusting the server cert."""
    clients = []

    async def factory(name="client", **kwargs):
        store = CredentialStore()
        pair = material[name]
        store.adopt(Credential(pair["private_key"], pair["certificate"]))
        await store.load_trusted_authorities([pem_files["server"]["cert"]])
        client = SecureClient(store, **kwargs)
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.close()


async def wait_until(predicate, timeout=3.0):
    """Poll predicate() on the running loop until it is true."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.02)


def ipv6_loopback_available():
    if not socket.has_ipv6:
        return False
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_STREAM) as sock:
            sock.bind(("::1", 0))
    except OSError:
        return False
    return True
