# mtls_broker/broker/certgen.py

import datetime
import ipaddress

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID


def _alt_names(common_name: str) -> list:
    names = [x509.DNSName(common_name)]
    if common_name != "localhost":
        names.append(x509.DNSName("localhost"))
    names.append(x509.IPAddress(ipaddress.ip_address("127.0.0.1")))
    return names


def generate_self_signed(common_name: str = "localhost",
                         days: int = 365,
                         key_size: int = 2048) -> dict:
    """
    Create an RSA key and a self-signed certificate for it.

    The certificate can both serve TLS and be trusted as an authority by
    the other side, so one generated pair is enough for either end of a
    mutual-TLS connection.

    :returns: {"private_key": PEM bytes, "certificate": PEM bytes}
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)

    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage([
                ExtendedKeyUsageOID.SERVER_AUTH,
                ExtendedKeyUsageOID.CLIENT_AUTH,
            ]),
            critical=False,
        )
        .add_extension(x509.SubjectAlternativeName(_alt_names(common_name)), critical=False)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(key.public_key()),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )

    return {
        "private_key": key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        ),
        "certificate": cert.public_bytes(serialization.Encoding.PEM),
    }


def describe_certificate(pem: bytes) -> dict:
    """Subject, issuer, serial and validity window of a PEM certificate."""
    cert = x509.load_pem_x509_certificate(pem)
    return {
        "subject":    cert.subject.rfc4514_string(),
        "issuer":     cert.issuer.rfc4514_string(),
        "serial":     format(cert.serial_number, "x"),
        "not_before": cert.not_valid_before_utc.isoformat(),
        "not_after":  cert.not_valid_after_utc.isoformat(),
    }
