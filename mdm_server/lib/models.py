"""Value types shared across the bootstrap pipeline."""

from dataclasses import dataclass
from enum import Enum
from typing import TypeAlias

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

# Private key algorithms the server can sign with. Extend both together.
PrivateKey: TypeAlias = RSAPrivateKey
SUPPORTED_KEY_TYPES: tuple[type, ...] = (RSAPrivateKey,)


@dataclass(frozen=True)
class PushCredential:
    """APNs client identity.

    Used as the TLS client certificate for push delivery and as the source
    of the push topic.
    """

    certificate: x509.Certificate
    private_key: PrivateKey


@dataclass(frozen=True)
class CertificateAuthority:
    """SCEP CA signing key and self-signed certificate."""

    private_key: RSAPrivateKey
    certificate: x509.Certificate


class ShutdownCause(Enum):
    """What ended the serving phase."""

    INTERRUPT = "interrupt"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class ShutdownEvent:
    """The single event that terminates a serving process."""

    cause: ShutdownCause
    detail: BaseException | str

    def __str__(self) -> str:
        return f"{self.cause.value}: {self.detail}"


class LifecycleState(Enum):
    STARTING = "starting"
    SERVING = "serving"
    TERMINATED = "terminated"
