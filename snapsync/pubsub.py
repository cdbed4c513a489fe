"""
In-process publish/subscribe, plus a point-to-point bridge for telling
another execution context (e.g. the foreground) about sync changes.

Nothing here is durable: a handler that subscribes after an event was
published never sees it, so consumers re-read the RecordStore when they
(re)subscribe.
"""

import enum
import logging
import queue
import threading
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]

LOGIN = "login"
LOGOUT = "logout"
SYNC = "sync"


class ChangeType(enum.Enum):
    ADD = "ADD"
    REMOVE = "REMOVE"
    UPDATE = "UPDATE"


def change_event(change: ChangeType, record_id: int) -> dict:
    """The payload published on the sync channel and sent over the bridge."""
    return {"channel": SYNC, "type": change.value, "id": record_id}


class PubSub:

    def __init__(self):
        self._subscribers: Dict[str, List[Handler]] = {}
        self._lock = threading.Lock()

    def publish(self, channel: str, payload: Any = None):
        """Call every handler on channel, synchronously, in subscription order."""
        with self._lock:
            handlers = list(self._subscribers.get(channel, ()))
        logger.debug("[PUBSUB] %s: %d handlers", channel, len(handlers))
        for handler in handlers:
            handler(payload)

    def subscribe(self, channel: str, handler: Handler):
        with self._lock:
            handlers = self._subscribers.setdefault(channel, [])
            if handler not in handlers:
                handlers.append(handler)

    def unsubscribe(self, channel: str, handler: Handler):
        with self._lock:
            handlers = self._subscribers.get(channel, [])
            if handler in handlers:
                handlers.remove(handler)


class MessageBridge:
    """
    One-way message channel from a background context to a foreground one.

    The background side calls post_message(); the foreground calls deliver()
    on its own thread, which republishes each message on the local bus.
    """

    def __init__(self):
        self._queue: "queue.Queue[dict]" = queue.Queue()

    def post_message(self, message: dict):
        self._queue.put(message)

    def deliver(self, bus: PubSub) -> int:
        """Publish all waiting messages on bus. Returns how many were delivered."""
        count = 0
        while True:
            try:
                message = self._queue.get_nowait()
            except queue.Empty:
                return count
            bus.publish(message.get("channel", SYNC), message)
            count += 1

    def pending(self) -> int:
        return self._queue.qsize()


class Notifier:
    """Where the sync engine reports changes: the local bus, a bridge, or both."""

    def __init__(self, bus: Optional[PubSub] = None, bridge: Optional[MessageBridge] = None):
        self.bus = bus
        self.bridge = bridge

    def changed(self, change: ChangeType, record_id: int):
        message = change_event(change, record_id)
        if self.bus is not None:
            self.bus.publish(SYNC, message)
        if self.bridge is not None:
            self.bridge.post_message(message)


# Default bus for the current process
pubsub = PubSub()
