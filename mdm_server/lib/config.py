"""Server configuration dataclasses."""

from dataclasses import dataclass, field
from pathlib import Path

from cryptography import x509
from cryptography.x509 import oid

SCEP_CA_CERT_NAME = "SCEPCACert.pem"


@dataclass
class CAConfig:
    """SCEP certificate authority identity and lifetimes."""

    country: str = "US"
    organization: str = "MicroMDM"
    common_name: str = "MICROMDM SCEP CA"
    validity_years: int = 5
    client_validity_days: int = 365
    key_size: int = 2048


@dataclass
class DistinguishedName:
    """X.509 Subject Distinguished Name for the SCEP CA."""

    country: str
    organization: str
    organizational_unit: str
    common_name: str

    def to_x509_name(self) -> x509.Name:
        """Convert to cryptography x509.Name for certificate generation."""
        return x509.Name(
            [
                x509.NameAttribute(oid.NameOID.COUNTRY_NAME, self.country),
                x509.NameAttribute(oid.NameOID.ORGANIZATION_NAME, self.organization),
                x509.NameAttribute(oid.NameOID.ORGANIZATIONAL_UNIT_NAME, self.organizational_unit),
                x509.NameAttribute(oid.NameOID.COMMON_NAME, self.common_name),
            ]
        )


@dataclass(frozen=True)
class ServerConfig:
    """Startup parameters for the MDM server.

    Populated once from flags/environment by the serve script and never
    mutated afterwards.
    """

    server_url: str = ""
    apns_cert_path: Path = Path("mdm.p12")
    apns_password: str = "secret"
    apns_key_path: Path | None = None
    db_path: Path = Path("mdm.db")
    ca_cert_path: Path = Path(SCEP_CA_CERT_NAME)
    http_host: str = "0.0.0.0"
    http_port: int = 8080
    scep_challenge: str = ""
    ca: CAConfig = field(default_factory=CAConfig)

    @property
    def uses_pem_credential(self) -> bool:
        """True when the push credential is a separate cert/key PEM pair."""
        return self.apns_key_path is not None


def parse_http_addr(addr: str) -> tuple[str, int]:
    """Split a ``host:port`` listen address.

    Args:
        addr: Address such as ``0.0.0.0:8080`` or ``:8080``

    Returns:
        Tuple of (host, port); an empty host binds all interfaces

    Raises:
        ValueError: If the port is missing or not an integer
    """
    host, sep, port = addr.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"listen address must be host:port, got {addr!r}")
    return host or "0.0.0.0", int(port)
