import logging
import re
import threading
from collections import defaultdict, deque
from concurrent.futures import ThreadPoolExecutor, wait
from typing import List, Optional

import africastalking

from .clock import SystemClock
from .lifecycle import TERMINAL, RequestStatus
from .schemas import EmergencyRequestOut, NotificationOut

STATUS_MESSAGES = {
    RequestStatus.matched: "A mechanic has been assigned to your request",
    RequestStatus.en_route: "Your mechanic is on the way",
    RequestStatus.arrived: "Your mechanic has arrived at your location",
    RequestStatus.completed: "Your service has been completed",
    RequestStatus.cancelled: "Your request has been cancelled",
}


# ────────────────────────────── SMS ──────────────────────────────

class AfricasTalkingSender:
    def __init__(self, username: str, api_key: str, sender_id: Optional[str] = None, country_code: str = "+1"):
        africastalking.initialize(username, api_key)
        self.sms = africastalking.SMS
        self.sender_id = sender_id
        self.country_code = country_code

    def to_international(self, phone: str) -> str:
        digits = re.sub(r"\D", "", phone)
        return f"{self.country_code}{digits}"

    def send(self, phone: str, message: str) -> bool:
        try:
            response = self.sms.send(message, [self.to_international(phone)], sender_id=self.sender_id)
            logging.info("Africa's Talking SMS sent: %s", response)
            return True
        except Exception as e:
            logging.exception("Failed to send SMS via Africa's Talking: %s", e)
            return False


def build_sms_sender(username: Optional[str], api_key: Optional[str], sender_id: Optional[str], country_code: str):
    if not username or not api_key:
        logging.warning("Africa's Talking credentials missing; SMS notifications disabled")
        return None
    return AfricasTalkingSender(username, api_key, sender_id, country_code)


# ────────────────────────────── IN-APP ──────────────────────────────

class NotificationInbox:
    def __init__(self, keep: int = 20):
        self._items = defaultdict(lambda: deque(maxlen=keep))
        self._lock = threading.Lock()

    def add(self, notification: NotificationOut) -> None:
        with self._lock:
            self._items[notification.request_id].append(notification)

    def for_request(self, request_id: str) -> List[NotificationOut]:
        with self._lock:
            return list(self._items.get(request_id, ()))


# ────────────────────────────── BRIDGE ──────────────────────────────

def _log_send_failure(future) -> None:
    error = future.exception()
    if error is not None:
        logging.error("SMS notification failed: %s", error)


class NotificationBridge:
    """Turns status transitions into customer-facing notifications.

    Every new status lands in the inbox. When nobody is watching the
    request live and the customer opted in, an SMS goes out as well, sent
    from the bridge's own workers so a slow gateway never holds up the
    status stream.
    """

    def __init__(self, sequencer, inbox: NotificationInbox, sms_sender=None, clock=None):
        self.sequencer = sequencer
        self.inbox = inbox
        self.sms_sender = sms_sender
        self.clock = clock or SystemClock()
        self._last_seen = {}
        self._lock = threading.Lock()
        self._pending = []
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="sms")
        sequencer.add_listener(self.on_transition)

    def on_transition(self, request: EmergencyRequestOut) -> None:
        with self._lock:
            if self._last_seen.get(request.id) == request.status:
                return
            if request.status in TERMINAL:
                self._last_seen.pop(request.id, None)
            else:
                self._last_seen[request.id] = request.status

        message = STATUS_MESSAGES.get(request.status)
        if message is None:
            return

        self.inbox.add(NotificationOut(
            request_id=request.id,
            status=request.status,
            title="Request Update",
            message=message,
            variant="destructive" if request.status is RequestStatus.cancelled else "default",
            created_at=self.clock.now(),
        ))

        if self.sms_sender is not None and request.sms_opt_in and not self.sequencer.is_watched(request.id):
            future = self._executor.submit(self.sms_sender.send, request.phone, f"ResQ Auto: {message}")
            future.add_done_callback(_log_send_failure)
            with self._lock:
                self._pending = [f for f in self._pending if not f.done()]
                self._pending.append(future)

    def drain(self, timeout: float = 5.0) -> None:
        """Wait for queued SMS sends to finish."""
        with self._lock:
            pending = list(self._pending)
        wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
