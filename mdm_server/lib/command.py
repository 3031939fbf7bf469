"""Command service and per-device command queue."""

import json
import logging
import uuid
from typing import Any

from aiohttp import web

from .pubsub import Event, InmemPubSub
from .storage import Storage

logger = logging.getLogger(__name__)

COMMAND_QUEUED_TOPIC = "mdm.CommandQueued"
COMMANDS_BUCKET = "commands"
QUEUE_BUCKET = "command_queue"


class CommandError(ValueError):
    """Command request is missing required fields."""


class CommandService:
    """Turns API requests into MDM command payloads and announces them on the bus."""

    def __init__(self, storage: Storage, bus: InmemPubSub) -> None:
        self.storage = storage
        self.bus = bus

    def new_command(self, request: dict[str, Any]) -> dict[str, Any]:
        """Create and publish a command.

        Args:
            request: ``{"udid": ..., "request_type": ..., **command fields}``

        Returns:
            Command payload with a fresh CommandUUID

        Raises:
            CommandError: If udid or request_type is missing
        """
        fields = dict(request)
        udid = fields.pop("udid", None)
        request_type = fields.pop("request_type", None)
        if not isinstance(udid, str) or not udid:
            raise CommandError("udid is required")
        if not isinstance(request_type, str) or not request_type:
            raise CommandError("request_type is required")

        payload = {
            "CommandUUID": str(uuid.uuid4()),
            "Command": {"RequestType": request_type, **fields},
        }
        self.storage.put(COMMANDS_BUCKET, payload["CommandUUID"], json.dumps(payload).encode("utf-8"))
        self.bus.publish(COMMAND_QUEUED_TOPIC, {"udid": udid, "payload": payload})
        logger.info("Queued %s command %s for %s", request_type, payload["CommandUUID"], udid)
        return payload

    async def handle(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
        except ValueError as e:
            return web.json_response({"error": f"invalid JSON: {e}"}, status=400)
        if not isinstance(body, dict):
            return web.json_response({"error": "request body must be a JSON object"}, status=400)
        try:
            payload = self.new_command(body)
        except CommandError as e:
            return web.json_response({"error": str(e)}, status=400)
        return web.json_response({"payload": payload}, status=201)


class CommandQueue:
    """FIFO of pending command payloads per device, fed from the bus."""

    def __init__(self, storage: Storage, bus: InmemPubSub) -> None:
        self.storage = storage
        bus.subscribe("command-queue", COMMAND_QUEUED_TOPIC, self._on_command_queued)

    def pending(self, udid: str) -> list[dict[str, Any]]:
        raw = self.storage.get(QUEUE_BUCKET, udid)
        return [] if raw is None else json.loads(raw)

    def enqueue(self, udid: str, payload: dict[str, Any]) -> None:
        queue = self.pending(udid)
        queue.append(payload)
        self.storage.put(QUEUE_BUCKET, udid, json.dumps(queue).encode("utf-8"))

    def next(self, udid: str) -> dict[str, Any] | None:
        """Pop the oldest pending command for ``udid``."""
        queue = self.pending(udid)
        if not queue:
            return None
        payload = queue.pop(0)
        self.storage.put(QUEUE_BUCKET, udid, json.dumps(queue).encode("utf-8"))
        return payload

    def _on_command_queued(self, event: Event) -> None:
        self.enqueue(event["udid"], event["payload"])


def new_command_service(storage: Storage, bus: InmemPubSub) -> CommandService:
    return CommandService(storage, bus)


def new_command_queue(storage: Storage, bus: InmemPubSub) -> CommandQueue:
    return CommandQueue(storage, bus)
