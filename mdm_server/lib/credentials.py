"""Credential provisioning: APNs push identity and SCEP CA bootstrap."""

import logging
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from .cert_utils import (
    deserialize_certificate,
    get_certificate_serial_hex,
    has_pem_markers,
    public_keys_match,
    save_pem_cert,
)
from .config import CAConfig
from .depot import Depot
from .errors import CredentialError, CredentialMismatchError, InvalidPEMError, UnsupportedKeyError
from .models import SUPPORTED_KEY_TYPES, CertificateAuthority, PrivateKey, PushCredential

logger = logging.getLogger(__name__)

def _ensure_supported_key(key: object) -> PrivateKey:
    if not isinstance(key, SUPPORTED_KEY_TYPES):
        raise UnsupportedKeyError(type(key).__name__)
    return key  # type: ignore[return-value]


def _verify_pair(cert: x509.Certificate, key: PrivateKey) -> None:
    if not public_keys_match(cert, key):
        raise CredentialMismatchError("push certificate does not match private key")


def load_pkcs12_credential(bundle_path: Path, password: str) -> PushCredential:
    """Decode a passphrase-protected PKCS#12 bundle into a push credential.

    Args:
        bundle_path: Path to the .p12 file
        password: Bundle passphrase

    Returns:
        PushCredential with the bundle's certificate and key

    Raises:
        CredentialError: If the bundle is corrupt, the passphrase is wrong,
            or it lacks a certificate or key
        OSError: If the file cannot be read
    """
    data = bundle_path.read_bytes()
    try:
        key, cert, _ = pkcs12.load_key_and_certificates(data, password.encode("utf-8"))
    except ValueError as e:
        raise CredentialError(f"decode push certificate {bundle_path}: {e}") from e

    if cert is None or key is None:
        raise CredentialError(f"push certificate bundle {bundle_path} must hold a certificate and key")

    private_key = _ensure_supported_key(key)
    _verify_pair(cert, private_key)
    return PushCredential(certificate=cert, private_key=private_key)


def load_pem_credential(cert_path: Path, key_path: Path) -> PushCredential:
    """Load a push credential from a certificate PEM file and a key PEM file.

    The certificate file is fully validated before the key file is read.

    Raises:
        InvalidPEMError: If either file has no PEM BEGIN/END framing
        CredentialError: If a block has the wrong type or cannot be parsed
        OSError: If a file cannot be read
    """
    cert_pem = cert_path.read_bytes()
    if not has_pem_markers(cert_pem):
        raise InvalidPEMError("cert")
    try:
        cert = deserialize_certificate(cert_pem)
    except ValueError as e:
        raise CredentialError(f"{cert_path}: expected CERTIFICATE PEM block: {e}") from e

    key_pem = key_path.read_bytes()
    if not has_pem_markers(key_pem):
        raise InvalidPEMError("privkey")
    try:
        key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CredentialError(f"{key_path}: expected private key PEM block: {e}") from e

    private_key = _ensure_supported_key(key)
    _verify_pair(cert, private_key)
    return PushCredential(certificate=cert, private_key=private_key)


def load_push_credential(
    cert_path: Path,
    password: str,
    key_path: Path | None = None,
) -> PushCredential:
    """Load the APNs push credential.

    Without ``key_path`` the certificate path is a PKCS#12 bundle; with it,
    the certificate path is a PEM certificate and ``key_path`` a PEM key.
    Exactly one of the two modes runs.
    """
    if key_path is None:
        credential = load_pkcs12_credential(cert_path, password)
    else:
        credential = load_pem_credential(cert_path, key_path)
    logger.info(
        "Loaded push certificate serial %s",
        get_certificate_serial_hex(credential.certificate),
    )
    return credential


def bootstrap_ca(depot: Depot, config: CAConfig, export_path: Path) -> CertificateAuthority:
    """Create or load the SCEP CA and export its certificate.

    The key and certificate are only created on first run; later runs load
    them unchanged. The PEM export at ``export_path`` is rewritten every run.

    Args:
        depot: Depot backed by shared storage
        config: CA identity and key size
        export_path: Where to write the CA certificate PEM

    Returns:
        CertificateAuthority loaded from or persisted to the depot
    """
    key = depot.create_or_load_key(config.key_size)
    cert = depot.create_or_load_ca(
        key,
        config.validity_years,
        config.organization,
        config.country,
        common_name=config.common_name,
    )
    save_pem_cert(export_path, cert)
    logger.info("Exported SCEP CA certificate to %s", export_path)
    return CertificateAuthority(private_key=key, certificate=cert)
