# mtls_broker/broker/tls.py

import os
import ssl
import tempfile
from typing import Iterable


def _cadata(authorities: Iterable[bytes]) -> str:
    return "\n".join(
        a.decode("ascii") if isinstance(a, bytes) else a for a in authorities
    )


def _load_chain(ctx: ssl.SSLContext, certificate: bytes, private_key: bytes) -> None:
    # ssl.SSLContext.load_cert_chain only accepts file paths
    with tempfile.TemporaryDirectory() as tmp:
        cert_path = os.path.join(tmp, "cert")
        key_path = os.path.join(tmp, "key")
        for path, data in ((cert_path, certificate), (key_path, private_key)):
            fd = os.open(path, os.O_WRONLY | os.O_CREAT, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(data)
        ctx.load_cert_chain(certfile=cert_path, keyfile=key_path)


def create_tls_context(
    certificate: bytes,
    private_key: bytes,
    trusted_authorities: Iterable[bytes],
    require_client_cert: bool = True
) -> ssl.SSLContext:
    """
    Build the server-side SSLContext of the broker.

    :param certificate: PEM certificate presented to clients
    :param private_key: PEM private key matching certificate
    :param trusted_authorities: PEM certificates client certs are verified against
    :param require_client_cert: if True, the handshake fails without a valid client cert
    """
    authorities = list(trusted_authorities)
    if require_client_cert and not authorities:
        raise ValueError("client certificate verification needs at least one trusted authority")

    ctx = ssl.create_default_context(
        purpose=ssl.Purpose.CLIENT_AUTH,
        cadata=_cadata(authorities) if authorities else None
    )

    _load_chain(ctx, certificate, private_key)

    if require_client_cert:
        ctx.verify_mode = ssl.CERT_REQUIRED

    return ctx


def create_client_tls_context(
    certificate: bytes,
    private_key: bytes,
    trusted_authorities: Iterable[bytes]
) -> ssl.SSLContext:
    """Client side: present our certificate, trust only the given authorities."""
    ctx = ssl.create_default_context(
        purpose=ssl.Purpose.SERVER_AUTH,
        cadata=_cadata(trusted_authorities)
    )
    _load_chain(ctx, certificate, private_key)
    return ctx
