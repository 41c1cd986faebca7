import logging
import threading
from collections import deque
from typing import List, Optional

from .clock import SystemClock
from .schemas import AnalyticsEvent


class Analytics:
    """Fire-and-forget event sink. ``emit`` never raises."""

    def __init__(self, clock=None, keep: int = 50):
        self.clock = clock or SystemClock()
        self._events = deque(maxlen=keep)
        self._lock = threading.Lock()

    def emit(self, category: str, action: str, label: Optional[str] = None, value: Optional[float] = None) -> None:
        try:
            event = AnalyticsEvent(
                category=category,
                action=action,
                label=label,
                value=value,
                timestamp=self.clock.now(),
            )
            with self._lock:
                self._events.append(event)
            logging.info("Event [%s][%s] %s", category, action, label or "")
        except Exception as e:
            logging.exception("Error tracking event: %s", e)

    def recent(self) -> List[AnalyticsEvent]:
        with self._lock:
            return list(self._events)
