# mtls_broker/broker/credentials.py

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Tuple

import config.settings as settings
from storage.blob_store import FileBlobStore
from .certgen import generate_self_signed
from .errors import GenerationError, NotFoundError


@dataclass(frozen=True)
class Credential:
    """
    Private key + certificate (+ trusted authorities) of one TLS endpoint.
    Key and certificate are either both set or both None.
    """
    private_key: Optional[bytes] = None
    certificate: Optional[bytes] = None
    trusted_authorities: Tuple[bytes, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if (self.private_key is None) != (self.certificate is None):
            raise ValueError("private key and certificate must be set together")
        object.__setattr__(self, "trusted_authorities", tuple(self.trusted_authorities))

    @property
    def is_complete(self) -> bool:
        return self.private_key is not None


class CredentialStore:
    def __init__(self,
                 blob_store: FileBlobStore = None,
                 generator: Callable[..., dict] = generate_self_signed):
        self.blobs = blob_store or FileBlobStore()
        self.generator = generator

        self._key: Optional[bytes] = None
        self._cert: Optional[bytes] = None
        self._ca: Tuple[bytes, ...] = ()

        # where key/cert were last persisted or loaded from
        self.key_path: Optional[str] = None
        self.cert_path: Optional[str] = None

    @property
    def private_key(self) -> Optional[bytes]:
        return self._key

    @property
    def certificate(self) -> Optional[bytes]:
        return self._cert

    @property
    def trusted_authorities(self) -> Tuple[bytes, ...]:
        return self._ca

    @property
    def credential(self) -> Credential:
        """Immutable copy of what the store currently holds."""
        return Credential(self._key, self._cert, self._ca)

    async def generate(self) -> Credential:
        """
        Produce a fresh self-signed key/certificate pair.
        The store itself is untouched until the result is adopt()ed.
        """
        try:
            material = self.generator(
                common_name=settings.CERT_COMMON_NAME,
                days=settings.CERT_DAYS,
                key_size=settings.CERT_KEY_SIZE,
            )
            credential = Credential(material["private_key"], material["certificate"])
        except Exception as exc:
            raise GenerationError(f"certificate generation failed: {exc}") from exc
        logging.info("Generated self-signed credential")
        return credential

    def adopt(self, credential: Credential) -> None:
        """Replace key and certificate; trusted authorities stay as they are."""
        if not credential.is_complete:
            raise ValueError("cannot adopt a credential without key and certificate")
        self._key = credential.private_key
        self._cert = credential.certificate

    async def persist(self, key_path: str, cert_path: str) -> dict:
        """
        Write key and certificate to disk and remember the paths.
        """
        if self._key is None:
            raise ValueError("no key/certificate to persist")
        await self.blobs.save(key_path, self._key)
        await self.blobs.save(cert_path, self._cert)
        self.key_path = key_path
        self.cert_path = cert_path
        logging.info(f"Credential saved to {key_path!r} / {cert_path!r}")
        return {"key_path": key_path, "cert_path": cert_path}

    async def load(self, key_path: str, cert_path: str) -> Credential:
        for path in (key_path, cert_path):
            if not await self.blobs.exists(path):
                raise NotFoundError(f"{path!r} does not exist")
        key = await self.blobs.read(key_path)
        cert = await self.blobs.read(cert_path)

        self._key, self._cert = key, cert
        self.key_path = key_path
        self.cert_path = cert_path
        logging.info(f"Credential loaded from {key_path!r} / {cert_path!r}")
        return self.credential

    async def load_trusted_authorities(self, paths: Iterable[str]) -> Tuple[bytes, ...]:
        """
        Replace the trusted authorities with the contents of paths, in order.
        Nothing is replaced unless every path could be read.
        """
        loaded = []
        for path in paths:
            loaded.append(await self.blobs.read(path))
        self._ca = tuple(loaded)
        return self._ca

    def trust_own_certificate(self) -> Tuple[bytes, ...]:
        """Trust only the held certificate: peers must present this same pair."""
        if self._cert is None:
            raise ValueError("no certificate to trust")
        self._ca = (self._cert,)
        return self._ca

    async def release(self) -> None:
        """
        Delete the persisted key/cert files, then forget everything.
        """
        for path in (self.key_path, self.cert_path):
            if path is not None:
                await self.blobs.delete(path)

        self._key = None
        self._cert = None
        self._ca = ()
        self.key_path = None
        self.cert_path = None
        logging.info("Credential released")
