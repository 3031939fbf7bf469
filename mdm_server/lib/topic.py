"""Push topic extraction from the APNs certificate subject."""

from cryptography import x509
from cryptography.x509.oid import NameOID

from .errors import TopicNotFoundError

# 0.9.2342.19200300.100.1.1
USER_ID_OID = NameOID.USER_ID


def topic_from_cert(cert: x509.Certificate) -> str:
    """Return the push topic stored in the subject's UserID attribute.

    Raises:
        TopicNotFoundError: If the attribute is absent or not a string
    """
    for attribute in cert.subject:
        if attribute.oid == USER_ID_OID:
            if isinstance(attribute.value, str):
                return attribute.value
            break
    raise TopicNotFoundError()
