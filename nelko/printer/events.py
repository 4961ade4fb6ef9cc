"""
Status events emitted by background printer tasks.

A StatusChannel is callable, so it can be handed to anything that expects a
plain status callback; the caller drains it from whatever thread it likes.
"""

import logging
import queue
import time
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

STATUS = 'status'
ERROR = 'error'
DONE = 'done'


@dataclass(frozen=True)
class StatusEvent:
    kind: str
    message: str
    timestamp: float = field(default_factory=time.time)


class StatusChannel:
    """Thread-safe queue of StatusEvents."""

    def __init__(self, maxsize: int = 0):
        self._queue = queue.Queue(maxsize)

    def __call__(self, message: str):
        self.emit(STATUS, message)

    def emit(self, kind: str, message: str):
        if kind == ERROR:
            logger.warning(f"[Status] {message}")
        else:
            logger.info(f"[Status] {message}")
        self._queue.put(StatusEvent(kind, message))

    def get(self, timeout: Optional[float] = None) -> Optional[StatusEvent]:
        """Wait for the next event; None if nothing arrives before timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[StatusEvent]:
        """Return every pending event without blocking."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events
