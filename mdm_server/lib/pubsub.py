"""In-memory publish/subscribe bus."""

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Event = dict[str, Any]
Handler = Callable[[Event], None]


class InmemPubSub:
    """Synchronous fan-out bus shared by all subsystems.

    Subscribers are called in subscription order on the publisher's thread.
    A failing subscriber is logged and does not stop delivery to the rest.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[tuple[str, Handler]]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, name: str, topic: str, handler: Handler) -> None:
        """Register ``handler`` under subscriber ``name`` for ``topic``."""
        with self._lock:
            self._subscribers[topic].append((name, handler))

    def publish(self, topic: str, event: Event) -> int:
        """Deliver ``event`` to every subscriber of ``topic``.

        Returns:
            Number of subscribers the event was delivered to
        """
        with self._lock:
            subscribers = list(self._subscribers.get(topic, ()))
        delivered = 0
        for name, handler in subscribers:
            try:
                handler(event)
                delivered += 1
            except Exception:
                logger.exception("Subscriber %s failed on %s", name, topic)
        return delivered
