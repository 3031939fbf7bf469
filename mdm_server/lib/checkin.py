"""Checkin service: accepts device check-in messages and publishes them on the bus."""

import logging
import plistlib
from typing import Any
from xml.parsers.expat import ExpatError

from aiohttp import web

from .pubsub import InmemPubSub
from .storage import Storage

logger = logging.getLogger(__name__)

AUTHENTICATE_TOPIC = "mdm.Authenticate"
TOKEN_UPDATE_TOPIC = "mdm.TokenUpdate"
CHECKOUT_TOPIC = "mdm.CheckOut"

MESSAGE_TOPICS = {
    "Authenticate": AUTHENTICATE_TOPIC,
    "TokenUpdate": TOKEN_UPDATE_TOPIC,
    "CheckOut": CHECKOUT_TOPIC,
}


class CheckinError(ValueError):
    """Check-in message is malformed or of an unknown type."""


class CheckinService:
    """Validates check-in messages and fans them out as bus events."""

    def __init__(self, storage: Storage, bus: InmemPubSub) -> None:
        self.storage = storage
        self.bus = bus

    def checkin(self, message: dict[str, Any]) -> str:
        """Publish a decoded check-in message.

        Args:
            message: Decoded plist with at least MessageType and UDID

        Returns:
            Topic the event was published on

        Raises:
            CheckinError: If MessageType is unknown or UDID missing
        """
        message_type = message.get("MessageType")
        topic = MESSAGE_TOPICS.get(message_type) if isinstance(message_type, str) else None
        if topic is None:
            raise CheckinError(f"unknown check-in MessageType: {message_type!r}")
        udid = message.get("UDID")
        if not isinstance(udid, str) or not udid:
            raise CheckinError("check-in message has no UDID")

        self.bus.publish(topic, {"udid": udid, "message_type": message_type, "message": message})
        logger.info("Check-in %s from %s", message_type, udid)
        return topic

    async def handle(self, request: web.Request) -> web.Response:
        body = await request.read()
        try:
            message = plistlib.loads(body)
        except (ValueError, ExpatError) as e:
            return web.json_response({"error": f"invalid check-in plist: {e}"}, status=400)
        if not isinstance(message, dict):
            return web.json_response({"error": "check-in plist must be a dictionary"}, status=400)

        try:
            self.checkin(message)
        except CheckinError as e:
            return web.json_response({"error": str(e)}, status=400)
        return web.Response(status=200)


def new_checkin_service(storage: Storage, bus: InmemPubSub) -> CheckinService:
    return CheckinService(storage, bus)
