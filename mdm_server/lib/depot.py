"""SCEP depot: CA key, CA certificate and serial numbers kept in shared storage."""

import logging

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from .cert_utils import deserialize_private_key, generate_private_key, serialize_private_key
from .certificate_builder import CertificateBuilder
from .config import DistinguishedName
from .storage import Storage

logger = logging.getLogger(__name__)

BUCKET = "scep_certificates"
CA_KEY = "ca_key"
CA_CERT = "ca_certificate"
SERIAL = "serial"


class Depot:
    """Create-or-load store for the SCEP CA material."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def create_or_load_key(self, bits: int) -> RSAPrivateKey:
        """Return the stored CA key, generating and persisting one if absent.

        Args:
            bits: RSA key size used only when a new key is generated

        Returns:
            CA private key
        """
        stored = self.storage.get(BUCKET, CA_KEY)
        if stored is not None:
            return deserialize_private_key(stored)

        key = generate_private_key(bits)
        self.storage.put(BUCKET, CA_KEY, serialize_private_key(key))
        logger.info("Generated %d-bit SCEP CA key", bits)
        return key

    def create_or_load_ca(
        self,
        key: RSAPrivateKey,
        years: int,
        organization: str,
        country: str,
        common_name: str = "MICROMDM SCEP CA",
    ) -> x509.Certificate:
        """Return the stored CA certificate, creating a self-signed one if absent.

        Args:
            key: CA private key (signs the certificate)
            years: Validity period for a newly created certificate
            organization: Subject O
            country: Subject C
            common_name: Subject CN and OU

        Returns:
            CA certificate
        """
        stored = self.storage.get(BUCKET, CA_CERT)
        if stored is not None:
            return x509.load_der_x509_certificate(stored)

        subject_dn = DistinguishedName(
            country=country,
            organization=organization,
            organizational_unit=common_name,
            common_name=common_name,
        )
        cert = CertificateBuilder.build_scep_ca(
            subject_dn=subject_dn,
            private_key=key,
            validity_years=years,
            serial_number=self.next_serial(),
        )
        self.storage.put(BUCKET, CA_CERT, cert.public_bytes(serialization.Encoding.DER))
        logger.info("Created SCEP CA certificate valid for %d years", years)
        return cert

    def ca(self) -> tuple[x509.Certificate, RSAPrivateKey]:
        """Return the stored CA certificate and key.

        Raises:
            LookupError: If the CA has not been bootstrapped
        """
        cert_der = self.storage.get(BUCKET, CA_CERT)
        key_pem = self.storage.get(BUCKET, CA_KEY)
        if cert_der is None or key_pem is None:
            raise LookupError("SCEP CA has not been created")
        return x509.load_der_x509_certificate(cert_der), deserialize_private_key(key_pem)

    def next_serial(self) -> int:
        """Allocate the next certificate serial number (starting at 1)."""
        stored = self.storage.get(BUCKET, SERIAL)
        serial = int(stored.decode("ascii")) + 1 if stored is not None else 1
        self.storage.put(BUCKET, SERIAL, str(serial).encode("ascii"))
        return serial
