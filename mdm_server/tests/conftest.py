"""Test fixtures for mdm_server tests."""

from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from mdm_server.lib.cert_utils import generate_private_key, serialize_certificate
from mdm_server.lib.config import CAConfig, ServerConfig
from mdm_server.lib.pubsub import InmemPubSub
from mdm_server.lib.storage import Storage

PUSH_TOPIC = "com.example.push"
PUSH_PASSWORD = "secret"
SERVER_URL = "https://mdm.example.com"


def build_push_certificate(key: RSAPrivateKey, topic: str | None = PUSH_TOPIC) -> x509.Certificate:
    """Self-signed stand-in for an APNs MDM certificate."""
    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, f"APSP:{topic or 'none'}")]
    if topic is not None:
        attributes.append(x509.NameAttribute(NameOID.USER_ID, topic))
    name = x509.Name(attributes)
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=30))
        .sign(key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def push_key() -> RSAPrivateKey:
    """RSA key for the push credential (shared; generation is slow)."""
    return generate_private_key(key_size=2048)


@pytest.fixture
def push_cert(push_key: RSAPrivateKey) -> x509.Certificate:
    """Push certificate carrying PUSH_TOPIC as its UserID."""
    return build_push_certificate(push_key)


@pytest.fixture
def make_push_cert(push_key: RSAPrivateKey) -> Callable[[str | None], x509.Certificate]:
    """Factory for push certificates with a chosen topic (None omits the UserID)."""

    def _make(topic: str | None) -> x509.Certificate:
        return build_push_certificate(push_key, topic)

    return _make


@pytest.fixture
def p12_path(tmp_path: Path, push_key: RSAPrivateKey, push_cert: x509.Certificate) -> Path:
    """PKCS#12 bundle protected by PUSH_PASSWORD."""
    bundle = pkcs12.serialize_key_and_certificates(
        b"push",
        push_key,
        push_cert,
        None,
        serialization.BestAvailableEncryption(PUSH_PASSWORD.encode("utf-8")),
    )
    path = tmp_path / "mdm.p12"
    path.write_bytes(bundle)
    return path


@pytest.fixture
def pem_pair(tmp_path: Path, push_key: RSAPrivateKey, push_cert: x509.Certificate) -> tuple[Path, Path]:
    """Push certificate and PKCS#1 key as separate PEM files."""
    cert_path = tmp_path / "push.pem"
    key_path = tmp_path / "push.key"
    cert_path.write_bytes(serialize_certificate(push_cert))
    key_path.write_bytes(
        push_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return cert_path, key_path


@pytest.fixture
def server_config(tmp_path: Path, p12_path: Path) -> ServerConfig:
    """Server config pointing every file at tmp_path."""
    return ServerConfig(
        server_url=SERVER_URL,
        apns_cert_path=p12_path,
        apns_password=PUSH_PASSWORD,
        db_path=tmp_path / "mdm.db",
        ca_cert_path=tmp_path / "SCEPCACert.pem",
        http_host="127.0.0.1",
        http_port=0,
        ca=CAConfig(),
    )


@pytest.fixture
def storage(tmp_path: Path) -> Iterator[Storage]:
    """Open storage in tmp_path."""
    store = Storage.open(tmp_path / "test.db")
    yield store
    store.close()


@pytest.fixture
def bus() -> InmemPubSub:
    return InmemPubSub()
