"""Device registry fed by check-in events."""

import json
import logging
from datetime import UTC, datetime
from typing import Any

from .checkin import AUTHENTICATE_TOPIC, CHECKOUT_TOPIC, TOKEN_UPDATE_TOPIC
from .pubsub import Event, InmemPubSub
from .storage import Storage

logger = logging.getLogger(__name__)

BUCKET = "devices"

# Check-in fields copied into the device record when present.
_RECORD_FIELDS = {
    "SerialNumber": "serial_number",
    "Model": "model",
    "ProductName": "product_name",
    "OSVersion": "os_version",
    "BuildVersion": "build_version",
    "Topic": "topic",
}


class DeviceRegistry:
    """Keeps one JSON record per device UDID in storage."""

    def __init__(self, storage: Storage, bus: InmemPubSub) -> None:
        self.storage = storage
        bus.subscribe("device-registry", AUTHENTICATE_TOPIC, self._on_checkin)
        bus.subscribe("device-registry", TOKEN_UPDATE_TOPIC, self._on_checkin)
        bus.subscribe("device-registry", CHECKOUT_TOPIC, self._on_checkout)

    def get(self, udid: str) -> dict[str, Any] | None:
        raw = self.storage.get(BUCKET, udid)
        return None if raw is None else json.loads(raw)

    def _save(self, udid: str, record: dict[str, Any]) -> None:
        self.storage.put(BUCKET, udid, json.dumps(record, sort_keys=True).encode("utf-8"))

    def _on_checkin(self, event: Event) -> None:
        udid = event["udid"]
        record = self.get(udid) or {"udid": udid}
        for source, target in _RECORD_FIELDS.items():
            value = event["message"].get(source)
            if isinstance(value, str):
                record[target] = value
        record["enrolled"] = event["message_type"] == "TokenUpdate" or record.get("enrolled", False)
        record["last_checkin"] = datetime.now(UTC).isoformat()
        self._save(udid, record)

    def _on_checkout(self, event: Event) -> None:
        udid = event["udid"]
        record = self.get(udid)
        if record is None:
            return
        record["enrolled"] = False
        record["last_checkin"] = datetime.now(UTC).isoformat()
        self._save(udid, record)
        logger.info("Device %s checked out", udid)


def new_device_registry(storage: Storage, bus: InmemPubSub) -> DeviceRegistry:
    return DeviceRegistry(storage, bus)
