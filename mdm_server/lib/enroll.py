"""Enrollment service: serves the MDM enrollment profile (.mobileconfig)."""

import plistlib
import uuid
from pathlib import Path
from typing import Any

from aiohttp import web
from cryptography.hazmat.primitives import serialization

from .cert_utils import deserialize_certificate

PROFILE_CONTENT_TYPE = "application/x-apple-aspen-config"
PROFILE_IDENTIFIER = "com.github.mdm_server.enroll"
DEFAULT_SCEP_SUBJECT = [[["O", "MicroMDM"]], [["CN", "MDM Identity Certificate"]]]
# Every MDM access right (bits 0-12).
ALL_ACCESS_RIGHTS = 8191


def parse_subject(subject: str) -> list[list[list[str]]]:
    """Parse ``/O=Org/CN=Name`` into the SCEP payload Subject array.

    An empty string selects DEFAULT_SCEP_SUBJECT.

    Raises:
        ValueError: If a component is not KEY=VALUE
    """
    if not subject:
        return DEFAULT_SCEP_SUBJECT
    parsed = []
    for component in subject.strip("/").split("/"):
        key, sep, value = component.partition("=")
        if not sep or not key:
            raise ValueError(f"invalid subject component {component!r}")
        parsed.append([[key, value]])
    return parsed


def _read_der_certificate(path: Path) -> bytes:
    try:
        cert = deserialize_certificate(path.read_bytes())
    except ValueError as e:
        raise ValueError(f"{path} does not contain a PEM certificate") from e
    return cert.public_bytes(serialization.Encoding.DER)


def _payload(payload_type: str, identifier: str, display_name: str, **content: Any) -> dict[str, Any]:
    return {
        "PayloadType": payload_type,
        "PayloadVersion": 1,
        "PayloadIdentifier": f"{PROFILE_IDENTIFIER}.{identifier}",
        "PayloadUUID": str(uuid.uuid4()).upper(),
        "PayloadDisplayName": display_name,
        **content,
    }


class EnrollmentService:
    """Builds one enrollment profile at construction and serves it."""

    def __init__(self, profile: dict[str, Any]) -> None:
        self.profile = profile
        self._encoded = plistlib.dumps(profile)

    def enrollment_profile(self) -> bytes:
        return self._encoded

    async def handle(self, request: web.Request) -> web.Response:
        return web.Response(body=self._encoded, content_type=PROFILE_CONTENT_TYPE)


def new_enrollment_service(
    topic: str,
    ca_cert_name: str,
    scep_url: str,
    scep_challenge: str,
    public_url: str,
    tls_cert: str,
    scep_subject: str,
) -> EnrollmentService:
    """Build the enrollment profile.

    Args:
        topic: APNs push topic devices will register for
        ca_cert_name: Path to the exported SCEP CA PEM; empty skips the root payload
        scep_url: SCEP endpoint devices enroll their identity against
        scep_challenge: SCEP challenge password (may be empty)
        public_url: Public base URL of this server
        tls_cert: Path to a server TLS certificate PEM; empty skips it
        scep_subject: Identity subject such as ``/O=Org/CN=Name``; empty uses the default

    Raises:
        OSError: If a referenced certificate file cannot be read
        ValueError: If a certificate file or the subject is malformed
    """
    base_url = public_url.rstrip("/")
    content: list[dict[str, Any]] = []

    if ca_cert_name:
        content.append(
            _payload(
                "com.apple.security.root",
                "ca",
                "Root certificate for MDM",
                PayloadContent=_read_der_certificate(Path(ca_cert_name)),
            )
        )
    if tls_cert:
        content.append(
            _payload(
                "com.apple.security.pem",
                "tls",
                "Server TLS certificate",
                PayloadContent=_read_der_certificate(Path(tls_cert)),
            )
        )

    scep_content: dict[str, Any] = {
        "URL": scep_url,
        "Subject": parse_subject(scep_subject),
        "Keysize": 2048,
        "KeyType": "RSA",
        "KeyUsage": 5,
    }
    if scep_challenge:
        scep_content["Challenge"] = scep_challenge
    scep_payload = _payload(
        "com.apple.security.scep", "scep", "MDM Identity (SCEP)", PayloadContent=scep_content
    )
    content.append(scep_payload)

    content.append(
        _payload(
            "com.apple.mdm",
            "mdm",
            "MDM",
            AccessRights=ALL_ACCESS_RIGHTS,
            CheckInURL=f"{base_url}/mdm/checkin",
            CheckOutWhenRemoved=True,
            IdentityCertificateUUID=scep_payload["PayloadUUID"],
            ServerURL=f"{base_url}/mdm/connect",
            SignMessage=True,
            Topic=topic,
        )
    )

    profile = {
        "PayloadContent": content,
        "PayloadDisplayName": "Enrollment Profile",
        "PayloadDescription": "The server may alter your settings",
        "PayloadIdentifier": PROFILE_IDENTIFIER,
        "PayloadOrganization": "MicroMDM",
        "PayloadScope": "System",
        "PayloadType": "Configuration",
        "PayloadUUID": str(uuid.uuid4()).upper(),
        "PayloadVersion": 1,
    }
    return EnrollmentService(profile)
