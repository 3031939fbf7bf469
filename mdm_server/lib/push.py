"""Push delivery: APNs client and the per-device push service."""

import json
import logging
import ssl
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path

import httpx
from aiohttp import web

from .cert_utils import save_pem_key, serialize_certificate
from .checkin import TOKEN_UPDATE_TOPIC
from .models import PushCredential
from .pubsub import Event, InmemPubSub
from .storage import Storage

logger = logging.getLogger(__name__)

PRODUCTION = "https://api.push.apple.com"

BUCKET = "push_info"


class PushError(Exception):
    """APNs rejected a notification."""

    def __init__(self, status: int, reason: str):
        self.status = status
        self.reason = reason
        super().__init__(f"APNs returned {status}: {reason}")


@dataclass
class PushInfo:
    """What APNs needs to wake one device."""

    udid: str
    token: str
    push_magic: str
    mdm_topic: str


def client_ssl_context(credential: PushCredential) -> ssl.SSLContext:
    """Build a TLS context presenting the push credential as client identity."""
    context = ssl.create_default_context()
    with tempfile.TemporaryDirectory() as tmp:
        cert_file = Path(tmp) / "push.pem"
        key_file = Path(tmp) / "push.key"
        cert_file.write_bytes(serialize_certificate(credential.certificate))
        save_pem_key(key_file, credential.private_key)
        context.load_cert_chain(certfile=cert_file, keyfile=key_file)
    return context


class APNsClient:
    """HTTP/2 client for the APNs provider API."""

    def __init__(
        self,
        credential: PushCredential,
        topic: str,
        host: str = PRODUCTION,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.topic = topic
        self.host = host
        self._client = httpx.AsyncClient(
            base_url=host,
            http2=transport is None,
            verify=client_ssl_context(credential),
            transport=transport,
        )

    async def push(self, device_token: str, payload: dict) -> str:
        """Send one notification.

        Returns:
            The apns-id assigned to the notification

        Raises:
            PushError: If APNs answers with a non-200 status
        """
        response = await self._client.post(
            f"/3/device/{device_token}",
            content=json.dumps(payload).encode("utf-8"),
            headers={"apns-topic": self.topic},
        )
        if response.status_code != 200:
            try:
                reason = response.json().get("reason", "")
            except ValueError:
                reason = response.text
            raise PushError(response.status_code, reason)
        return response.headers.get("apns-id", "")

    async def close(self) -> None:
        await self._client.aclose()


class PushStore:
    """Push info recorded from TokenUpdate check-ins."""

    def __init__(self, storage: Storage, bus: InmemPubSub) -> None:
        self.storage = storage
        bus.subscribe("push-info", TOKEN_UPDATE_TOPIC, self._on_token_update)

    def get(self, udid: str) -> PushInfo | None:
        raw = self.storage.get(BUCKET, udid)
        return None if raw is None else PushInfo(**json.loads(raw))

    def _on_token_update(self, event: Event) -> None:
        message = event["message"]
        token = message.get("Token")
        push_magic = message.get("PushMagic")
        if not isinstance(token, bytes) or not isinstance(push_magic, str):
            logger.warning("TokenUpdate from %s lacks Token or PushMagic", event["udid"])
            return
        info = PushInfo(
            udid=event["udid"],
            token=token.hex(),
            push_magic=push_magic,
            mdm_topic=str(message.get("Topic", "")),
        )
        self.storage.put(BUCKET, info.udid, json.dumps(asdict(info)).encode("utf-8"))


class PushService:
    """Wakes a device so it connects back to the server."""

    def __init__(self, store: PushStore, client: APNsClient) -> None:
        self.store = store
        self.client = client

    async def push(self, udid: str) -> str:
        """Send an MDM push to ``udid``.

        Raises:
            LookupError: If the device has never sent a TokenUpdate
            PushError: If APNs rejects the notification
        """
        info = self.store.get(udid)
        if info is None:
            raise LookupError(f"no push info for device {udid}")
        return await self.client.push(info.token, {"mdm": info.push_magic})

    async def handle(self, request: web.Request) -> web.Response:
        udid = request.match_info["deviceID"]
        try:
            apns_id = await self.push(udid)
        except LookupError as e:
            return web.json_response({"error": str(e)}, status=404)
        except (PushError, httpx.HTTPError) as e:
            logger.error("Push to %s failed: %s", udid, e)
            return web.json_response({"error": str(e)}, status=502)
        return web.json_response({"status": "success", "id": apns_id})


def new_push_client(credential: PushCredential, topic: str) -> APNsClient:
    return APNsClient(credential, topic, host=PRODUCTION)


def new_push_service(storage: Storage, bus: InmemPubSub, client: APNsClient) -> PushService:
    return PushService(PushStore(storage, bus), client)
