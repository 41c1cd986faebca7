import itertools
import logging
import threading
from collections import defaultdict
from datetime import timedelta
from typing import Callable, Iterable, Optional

from .clock import SystemClock
from .errors import InvalidTransition, NotFound
from .lifecycle import TERMINAL, RequestStatus, next_status
from .matcher import MechanicFilter, covers, filter_mechanics
from .schemas import EmergencyRequestOut, MechanicOut
from .store import RequestStore

RequestCallback = Callable[[EmergencyRequestOut], None]
MechanicCallback = Callable[[MechanicOut], None]


class Subscription:
    def __init__(self, release: Callable[[], None]):
        self._release = release
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self.active = False
            self._release()


def _deliver(callback, payload) -> None:
    try:
        callback(payload)
    except Exception as e:
        logging.exception("Subscriber callback failed: %s", e)


# ────────────────────────────── SEQUENCER ──────────────────────────────

class StatusSequencer:
    """Single writer of request status.

    Each accepted transition is written through the store and published to
    the request's subscribers and to global listeners while holding one
    lock, so every stream sees transitions in the order they were applied.
    """

    def __init__(self, store: RequestStore, clock=None, analytics=None):
        self.store = store
        self.clock = clock or SystemClock()
        self.analytics = analytics
        self._lock = threading.RLock()
        self._tokens = itertools.count()
        self._subscribers = defaultdict(dict)
        self._listeners = []
        self._location_subscribers = {}

    # ── subscriptions ──

    def subscribe(self, request_id: str, on_update: RequestCallback) -> Subscription:
        with self._lock:
            snapshot = self.store.get_request(request_id)
            token = next(self._tokens)
            self._subscribers[request_id][token] = on_update
            logging.info("Subscribed to updates for request %s", request_id)
            _deliver(on_update, snapshot)
        return Subscription(lambda: self._unsubscribe(request_id, token))

    def _unsubscribe(self, request_id: str, token: int) -> None:
        with self._lock:
            callbacks = self._subscribers.get(request_id)
            if callbacks is None:
                return
            callbacks.pop(token, None)
            if not callbacks:
                del self._subscribers[request_id]
        logging.info("Unsubscribed from updates for request %s", request_id)

    def is_watched(self, request_id: str) -> bool:
        with self._lock:
            return bool(self._subscribers.get(request_id))

    def add_listener(self, listener: RequestCallback) -> None:
        with self._lock:
            self._listeners.append(listener)

    def _publish(self, snapshot: EmergencyRequestOut) -> None:
        for callback in list(self._subscribers.get(snapshot.id, {}).values()):
            _deliver(callback, snapshot)
        for listener in list(self._listeners):
            _deliver(listener, snapshot)

    # ── transitions ──

    def transition(
        self,
        request_id: str,
        new_status,
        mechanic_id: Optional[str] = None,
        estimated_arrival_minutes: Optional[int] = None,
    ) -> EmergencyRequestOut:
        eta = None
        if estimated_arrival_minutes is not None:
            eta = self.clock.now() + timedelta(minutes=estimated_arrival_minutes)

        with self._lock:
            try:
                before = self.store.get_request(request_id)
                updated = self.store.update_status(
                    request_id, new_status, mechanic_id=mechanic_id, estimated_arrival_time=eta
                )
            except InvalidTransition as e:
                self._rejected(request_id, e)
                raise
            logging.info(
                "Request %s status updated %s -> %s",
                request_id,
                before.status.value,
                updated.status.value,
            )
            self._publish(updated)

        if self.analytics is not None:
            self.analytics.emit(
                "Request",
                "Status Transition",
                f"{before.status.value}->{updated.status.value}",
            )
        return updated

    def cancel(self, request_id: str) -> EmergencyRequestOut:
        updated = self.transition(request_id, RequestStatus.cancelled)
        if self.analytics is not None:
            self.analytics.emit("Request", "Cancelled", request_id)
        return updated

    def _rejected(self, request_id: str, error: InvalidTransition) -> None:
        logging.warning("Rejected transition for request %s: %s", request_id, error.message)
        if self.analytics is not None:
            self.analytics.emit("Request", "Invalid Transition", f"{error.current}->{error.requested}")

    def submit_review(self, request_id: str, rating: int, review: str) -> EmergencyRequestOut:
        with self._lock:
            try:
                updated = self.store.save_review(request_id, rating, review)
            except InvalidTransition as e:
                self._rejected(request_id, e)
                raise
        logging.info("Review submitted for request %s: %s stars", request_id, rating)
        if self.analytics is not None:
            self.analytics.emit("Request", "Review Submitted", request_id, rating)
        return updated

    # ── mechanic feed ──

    def subscribe_locations(self, mechanic_ids: Iterable[str], on_update: MechanicCallback) -> Subscription:
        """Empty ``mechanic_ids`` follows every mechanic. Current positions are delivered first."""
        ids = frozenset(mechanic_ids)
        with self._lock:
            token = next(self._tokens)
            self._location_subscribers[token] = (ids, on_update)
            for mechanic in self.store.list_mechanics():
                if not ids or mechanic.id in ids:
                    _deliver(on_update, mechanic)
        logging.info("Subscribing to location updates for mechanics: %s", ", ".join(sorted(ids)) or "all")
        return Subscription(lambda: self._unsubscribe_locations(token))

    def _unsubscribe_locations(self, token: int) -> None:
        with self._lock:
            self._location_subscribers.pop(token, None)

    def _publish_mechanic(self, mechanic: MechanicOut) -> None:
        for ids, callback in list(self._location_subscribers.values()):
            if not ids or mechanic.id in ids:
                _deliver(callback, mechanic)

    def publish_location(self, mechanic_id: str, coordinates) -> MechanicOut:
        with self._lock:
            mechanic = self.store.update_mechanic_location(mechanic_id, coordinates)
            self._publish_mechanic(mechanic)
        return mechanic

    def set_mechanic_status(self, mechanic_id: str, status) -> MechanicOut:
        """Mechanic going online (available) or offline (busy)."""
        with self._lock:
            mechanic = self.store.update_mechanic_status(mechanic_id, status)
            self._publish_mechanic(mechanic)
        logging.info("Mechanic %s is now %s", mechanic_id, mechanic.status.value)
        return mechanic


# ────────────────────────────── DEMO DISPATCH ──────────────────────────────

class DemoDispatcher:
    """Fakes dispatch by walking requests through the lifecycle on a timer.

    On ``matched`` it assigns the customer's chosen mechanic, otherwise the
    first available one whose service radius covers the request location;
    with nobody available the request stays pending until the next tick.
    """

    ETA_MINUTES = 15

    def __init__(self, sequencer: StatusSequencer, scheduler, step_seconds: float = 10.0):
        self.sequencer = sequencer
        self.scheduler = scheduler
        self.step_seconds = step_seconds
        self._handles = {}
        self._preferred = {}
        self._lock = threading.Lock()
        sequencer.add_listener(self._on_transition)

    def start(self, request_id: str, preferred_mechanic_id: Optional[str] = None) -> None:
        with self._lock:
            if preferred_mechanic_id:
                self._preferred[request_id] = preferred_mechanic_id
        self._schedule(request_id)

    def _schedule(self, request_id: str) -> None:
        with self._lock:
            self._handles[request_id] = self.scheduler.call_later(self.step_seconds, self.step, request_id)

    def stop(self, request_id: str) -> None:
        with self._lock:
            handle = self._handles.pop(request_id, None)
            self._preferred.pop(request_id, None)
        if handle is not None:
            handle.cancel()

    def shutdown(self) -> None:
        with self._lock:
            handles, self._handles = list(self._handles.values()), {}
            self._preferred.clear()
        for handle in handles:
            handle.cancel()

    def active(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._handles

    def _on_transition(self, snapshot: EmergencyRequestOut) -> None:
        if snapshot.status in TERMINAL:
            self.stop(snapshot.id)

    def _pick_mechanic(self, request_id: str) -> Optional[str]:
        with self._lock:
            preferred = self._preferred.get(request_id)
        if preferred:
            return preferred
        available = filter_mechanics(
            self.sequencer.store.list_mechanics(), MechanicFilter(status="available")
        )
        location = self.sequencer.store.get_request(request_id).coordinates
        if location is not None:
            available = [m for m in available if covers(m, location)]
        return available[0].id if available else None

    def step(self, request_id: str) -> None:
        with self._lock:
            self._handles.pop(request_id, None)
        try:
            request = self.sequencer.store.get_request(request_id)
        except NotFound:
            logging.warning("Demo dispatch: request %s disappeared", request_id)
            return

        target = next_status(request.status)
        if target is None:
            return

        try:
            if target is RequestStatus.matched:
                mechanic_id = self._pick_mechanic(request_id)
                if mechanic_id is None:
                    logging.info("Demo dispatch: no mechanic available for %s, retrying", request_id)
                    self._schedule(request_id)
                    return
                updated = self.sequencer.transition(
                    request_id,
                    target,
                    mechanic_id=mechanic_id,
                    estimated_arrival_minutes=self.ETA_MINUTES,
                )
            else:
                updated = self.sequencer.transition(request_id, target)
        except (InvalidTransition, NotFound) as e:
            logging.info("Demo dispatch for %s stopped: %s", request_id, e.message)
            return

        if updated.status not in TERMINAL:
            self._schedule(request_id)
