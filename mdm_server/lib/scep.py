"""SCEP service: publishes CA capabilities and the CA certificate."""

import logging

from aiohttp import web
from cryptography.hazmat.primitives import serialization

from .depot import Depot

logger = logging.getLogger(__name__)

CA_CAPS = ("Renewal", "SHA-1", "SHA-256", "AES", "DES3", "SCEPStandard", "POSTPKIOperation")


class SCEPService:
    """Serves GetCACaps and GetCACert from the depot.

    PKIOperation (certificate issuance) is answered with 501.
    """

    def __init__(self, depot: Depot, client_validity: int = 365) -> None:
        self.depot = depot
        self.client_validity = client_validity

    def ca_caps(self) -> bytes:
        return "\n".join(CA_CAPS).encode("ascii")

    def ca_cert(self) -> bytes:
        """Return the CA certificate as DER."""
        cert, _ = self.depot.ca()
        return cert.public_bytes(serialization.Encoding.DER)

    async def handle(self, request: web.Request) -> web.Response:
        operation = request.query.get("operation", "")
        if operation == "GetCACaps":
            return web.Response(body=self.ca_caps(), content_type="text/plain")
        if operation == "GetCACert":
            return web.Response(body=self.ca_cert(), content_type="application/x-x509-ca-cert")
        if operation == "PKIOperation":
            return web.Response(status=501, text="PKIOperation is not supported")
        return web.Response(status=400, text=f"unknown SCEP operation: {operation!r}")


def new_scep_service(depot: Depot, client_validity: int = 365) -> SCEPService:
    """Build the SCEP service.

    Raises:
        LookupError: If the depot holds no CA yet
    """
    service = SCEPService(depot, client_validity=client_validity)
    service.ca_cert()
    return service
