from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from resq.analytics import Analytics
from resq.database import init_db, make_engine, make_session_factory
from resq.errors import GeolocationUnavailable
from resq.main import create_app
from resq.seed import seed_mechanics
from resq.sequencer import StatusSequencer
from resq.services import build_services
from resq.store import SqlRequestStore
from resq.utils import create_jwt


class FrozenClock:
    def __init__(self, start=None):
        self.current = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def now(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class _Handle:
    def __init__(self, when, fn, args):
        self.when = when
        self.fn = fn
        self.args = args
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Runs scheduled callbacks only when the test advances time."""

    def __init__(self):
        self.now = 0.0
        self.pending = []

    def call_later(self, delay, fn, *args):
        handle = _Handle(self.now + delay, fn, args)
        self.pending.append(handle)
        return handle

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [h for h in self.pending if not h.cancelled and h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self.pending.remove(handle)
            # callbacks that reschedule count from when they fired
            self.now = handle.when
            handle.fn(*handle.args)
        self.now = target
        self.pending = [h for h in self.pending if not h.cancelled]

    def active(self):
        return [h for h in self.pending if not h.cancelled]


class FakeGeolocator:
    def __init__(self, result=None):
        self.result = result
        self.calls = []

    def locate(self, location, timeout):
        self.calls.append(location)
        if self.result is None:
            raise GeolocationUnavailable("User denied Geolocation")
        return self.result


class FakeSms:
    def __init__(self):
        self.sent = []

    def send(self, phone, message):
        self.sent.append((phone, message))
        return True


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def store(clock):
    engine = make_engine("sqlite://")
    init_db(engine)
    store = SqlRequestStore(make_session_factory(engine), clock)
    seed_mechanics(store)
    yield store
    engine.dispose()


@pytest.fixture
def analytics(clock):
    return Analytics(clock)


@pytest.fixture
def sequencer(store, clock, analytics):
    return StatusSequencer(store, clock, analytics)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def sms():
    return FakeSms()


@pytest.fixture
def services(store, clock, scheduler, sms):
    services = build_services(
        store=store,
        clock=clock,
        scheduler=scheduler,
        geolocator=FakeGeolocator(),
        sms_sender=sms,
        demo_progression=False,
    )
    yield services
    services.close()


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as client:
        yield client


def _auth(user_id, role):
    return {"Authorization": f"Bearer {create_jwt({'sub': user_id, 'role': role})}"}


@pytest.fixture
def admin_headers():
    return _auth("admin-1", "admin")


@pytest.fixture
def mechanic_headers():
    return _auth("mech-001", "mechanic")


@pytest.fixture
def customer_headers():
    return _auth("user-42", "customer")


def new_request(**overrides):
    data = {
        "location": "123 Main St, Springfield",
        "phone": "5551234567",
        "description": "Flat tire on the highway",
    }
    data.update(overrides)
    return data
