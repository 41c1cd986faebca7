from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from . import config
from .analytics import Analytics
from .clock import SystemClock, ThreadingScheduler
from .database import init_db, make_engine, make_session_factory
from .features import FeatureFlags, parse_features
from .geolocation import build_geolocator
from .notifications import NotificationBridge, NotificationInbox, build_sms_sender
from .seed import seed_mechanics
from .sequencer import DemoDispatcher, StatusSequencer
from .store import RequestStore, SqlRequestStore
from .submission import SubmissionFlow


@dataclass
class Services:
    store: RequestStore
    sequencer: StatusSequencer
    flow: SubmissionFlow
    features: FeatureFlags
    analytics: Analytics
    inbox: NotificationInbox
    bridge: NotificationBridge
    scheduler: object
    dispatcher: Optional[DemoDispatcher] = None

    def close(self) -> None:
        if self.dispatcher is not None:
            self.dispatcher.shutdown()
        shutdown = getattr(self.scheduler, "shutdown", None)
        if shutdown is not None:
            shutdown()
        self.flow.shutdown()
        self.bridge.shutdown()


def build_services(
    store: Optional[RequestStore] = None,
    clock=None,
    scheduler=None,
    geolocator=None,
    sms_sender=None,
    features: Optional[FeatureFlags] = None,
    demo_progression: bool = config.DEMO_PROGRESSION,
) -> Services:
    clock = clock or SystemClock()
    if store is None:
        engine = make_engine(config.DATABASE_URL)
        init_db(engine)
        store = SqlRequestStore(make_session_factory(engine), clock)
        if config.SEED_MECHANICS:
            seed_mechanics(store)
    if sms_sender is None:
        sms_sender = build_sms_sender(
            config.AT_USERNAME, config.AT_API_KEY, config.AT_FROM, config.SMS_COUNTRY_CODE
        )

    analytics = Analytics(clock)
    sequencer = StatusSequencer(store, clock, analytics)
    scheduler = scheduler or ThreadingScheduler()
    dispatcher = None
    if demo_progression:
        dispatcher = DemoDispatcher(sequencer, scheduler, config.DEMO_STEP_SECONDS)

    inbox = NotificationInbox()
    return Services(
        store=store,
        sequencer=sequencer,
        flow=SubmissionFlow(
            sequencer,
            geolocator or build_geolocator(config.GEOCODER, config.GEOCODER_USER_AGENT),
            analytics,
            dispatcher=dispatcher,
            geolocation_timeout=config.GEOLOCATION_TIMEOUT,
            disallowed_terms=config.DISALLOWED_TERMS,
        ),
        features=features or FeatureFlags(parse_features(config.FEATURES)),
        analytics=analytics,
        inbox=inbox,
        bridge=NotificationBridge(sequencer, inbox, sms_sender, clock),
        scheduler=scheduler,
        dispatcher=dispatcher,
    )


# ────────────────────────────── DEPENDENCY ──────────────────────────────

def get_services(request: Request) -> Services:
    return request.app.state.services
