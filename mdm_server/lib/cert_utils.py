"""Certificate utility functions for key generation, PEM handling, and serialization."""

import os
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey


def generate_private_key(key_size: int = 2048) -> RSAPrivateKey:
    """Generate RSA private key with specified size."""
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def serialize_private_key(key: RSAPrivateKey) -> bytes:
    """Serialize private key to PEM format (PKCS8, no encryption)."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def deserialize_private_key(pem_data: bytes) -> RSAPrivateKey:
    """Deserialize private key from PEM bytes."""
    key = serialization.load_pem_private_key(pem_data, password=None)
    if not isinstance(key, RSAPrivateKey):
        raise ValueError("expected RSA private key")
    return key


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def deserialize_certificate(pem_data: bytes) -> x509.Certificate:
    """Deserialize certificate from PEM bytes."""
    return x509.load_pem_x509_certificate(pem_data)


def has_pem_markers(data: bytes) -> bool:
    """Return True if ``data`` has PEM BEGIN and END boundary lines."""
    return b"-----BEGIN " in data and b"-----END " in data


def get_certificate_serial_hex(cert: x509.Certificate) -> str:
    """Return certificate serial number as hex with colons (e.g., 3A:F2:B1:...)."""
    serial_hex = f"{cert.serial_number:X}"
    if len(serial_hex) % 2 != 0:
        serial_hex = "0" + serial_hex
    return ":".join(serial_hex[i : i + 2] for i in range(0, len(serial_hex), 2))


def public_keys_match(cert: x509.Certificate, key: RSAPrivateKey) -> bool:
    """Return True if ``key`` is the private half of the certificate's public key."""
    cert_public = cert.public_key()
    if not isinstance(cert_public, rsa.RSAPublicKey):
        return False
    return cert_public.public_numbers() == key.public_key().public_numbers()


def save_pem_cert(path: Path, cert: x509.Certificate) -> None:
    """Write certificate as a PEM CERTIFICATE block, truncating any existing file."""
    path.write_bytes(serialize_certificate(cert))
    os.chmod(path, 0o644)


def save_pem_key(path: Path, key: RSAPrivateKey) -> None:
    """Write private key as a PKCS#1 ``RSA PRIVATE KEY`` PEM block readable by owner only."""
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as key_output:
        key_output.write(pem)
