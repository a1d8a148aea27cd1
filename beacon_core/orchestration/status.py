"""
Status event channel.

Fans status events from the scan controller and the uplink out to
display/logging subscribers. A failing subscriber is logged and skipped.
"""

import logging
import threading
from typing import Callable, List

from beacon_core.proto import StatusEvent

logger = logging.getLogger(__name__)


class StatusChannel:
    """
    Thread-safe status event fan-out.

    Events arrive from both the scan thread and the delivery thread.
    Every event is also written to the log.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._event_subscribers: List[Callable[[StatusEvent], None]] = []

    def subscribe_events(self, callback: Callable[[StatusEvent], None]):
        """Receive structured StatusEvents."""
        with self._lock:
            self._event_subscribers.append(callback)

    def subscribe(self, callback: Callable[[str], None]):
        """Receive human-readable status lines."""
        self.subscribe_events(lambda event: callback(event.message))

    def emit(self, event: StatusEvent):
        if event.is_problem:
            logger.warning(event.message)
        else:
            logger.info(event.message)

        with self._lock:
            subscribers = list(self._event_subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Status subscriber failed on {event.kind.value}")
