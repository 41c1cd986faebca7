import logging
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Iterable, Optional

from .errors import GeolocationUnavailable, NotFound, ResQError, TransportError, ValidationError
from .lifecycle import RequestStatus, ServiceType
from .schemas import EmergencyRequestOut, NewRequest, RequestCreate

PHONE_PATTERN = re.compile(r"^\(?(\d{3})\)?[-. ]?(\d{3})[-. ]?(\d{4})$")
LOCATION_MIN_LENGTH = 5
LOCATION_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
MATCHED_ETA_MINUTES = 15

# First keyword found in the description decides the service type
SERVICE_KEYWORDS = (
    ("tire", ServiceType.tire_change),
    ("flat", ServiceType.tire_change),
    ("battery", ServiceType.battery_service),
    ("jump", ServiceType.battery_service),
    ("fuel", ServiceType.fuel_delivery),
    ("gas", ServiceType.fuel_delivery),
    ("lock", ServiceType.lockout),
    ("key", ServiceType.lockout),
    ("tow", ServiceType.towing),
    ("engine", ServiceType.general_repair),
    ("brake", ServiceType.general_repair),
)


def normalize_phone(value: str) -> str:
    """Format any value holding exactly ten digits as ``DDD-DDD-DDDD``."""
    digits = re.sub(r"\D", "", value or "")
    if len(digits) == 10:
        return f"{digits[:3]}-{digits[3:6]}-{digits[6:]}"
    return (value or "").strip()


def infer_service_type(description: Optional[str]) -> Optional[ServiceType]:
    if not description:
        return None
    text = description.lower()
    for term, service_type in SERVICE_KEYWORDS:
        if term in text:
            return service_type
    return None


def validate_submission(data: RequestCreate, disallowed_terms: Iterable[str]) -> NewRequest:
    """Check fields in order and stop at the first problem."""
    location = (data.location or "").strip()
    if len(location) < LOCATION_MIN_LENGTH:
        raise ValidationError("location", "Location must be at least 5 characters")
    if len(location) > LOCATION_MAX_LENGTH:
        raise ValidationError("location", "Location must be less than 100 characters")

    phone = (data.phone or "").strip()
    if not PHONE_PATTERN.match(phone):
        raise ValidationError(
            "phone", "Please enter a valid phone number format (e.g., 555-123-4567)"
        )

    description = (data.description or "").strip() or None
    if description is not None:
        if len(description) > DESCRIPTION_MAX_LENGTH:
            raise ValidationError("description", "Description must be less than 500 characters")
        lowered = description.lower()
        if any(term.lower() in lowered for term in disallowed_terms if term):
            raise ValidationError("description", "Please keep your description appropriate.")

    return NewRequest(
        location=location,
        phone=normalize_phone(phone),
        description=description,
        coordinates=data.coordinates,
        service_type=data.service_type or infer_service_type(description),
        sms_opt_in=data.sms_opt_in,
    )


class SubmissionFlow:
    def __init__(
        self,
        sequencer,
        geolocator,
        analytics,
        dispatcher=None,
        geolocation_timeout: float = 10.0,
        disallowed_terms: Iterable[str] = (),
    ):
        self.sequencer = sequencer
        self.store = sequencer.store
        self.geolocator = geolocator
        self.analytics = analytics
        self.dispatcher = dispatcher
        self.geolocation_timeout = geolocation_timeout
        self.disallowed_terms = tuple(disallowed_terms)
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="geolocate")

    def locate(self, location: str):
        """Coordinates for ``location`` or None. Never waits past the timeout."""
        future = self._executor.submit(self.geolocator.locate, location, self.geolocation_timeout)
        try:
            return future.result(timeout=self.geolocation_timeout)
        except FutureTimeout:
            future.cancel()
            logging.warning("Geolocation timed out after %ss", self.geolocation_timeout)
            self.analytics.emit("Form", "Geolocation Error", "Timeout", 0)
        except GeolocationUnavailable as e:
            logging.warning("Could not get precise location: %s", e.message)
            self.analytics.emit("Form", "Geolocation Error", e.message, 0)
        return None

    def submit(self, data: RequestCreate, user_id: Optional[str] = None) -> EmergencyRequestOut:
        self.analytics.emit("Form", "Submission Attempt", "Emergency Request", 1)
        try:
            new_request = validate_submission(data, self.disallowed_terms)
            mechanic = None
            if data.mechanic_id:
                mechanic = self._selected_mechanic(data.mechanic_id)
        except ValidationError as e:
            self.analytics.emit("Form", "Validation Error", e.field, 0)
            raise
        self.analytics.emit("Form", "Validation Success", "Emergency Request", 1)

        new_request.user_id = user_id
        if new_request.coordinates is None:
            new_request.coordinates = self.locate(new_request.location)

        request = None
        try:
            request = self.store.create_request(new_request)
            if mechanic is not None:
                request = self.sequencer.transition(
                    request.id,
                    RequestStatus.matched,
                    mechanic_id=mechanic.id,
                    estimated_arrival_minutes=MATCHED_ETA_MINUTES,
                )
        except TransportError as e:
            self.analytics.emit("Form", "Submission Error", "Network Error", 0)
            logging.error("Failed to create emergency request: %s", e.message)
            if request is not None:
                self._abandon(request.id)
            raise

        if self.dispatcher is not None:
            self.dispatcher.start(request.id, mechanic.id if mechanic else None)

        self.analytics.emit(
            "Emergency",
            "Form Submission",
            f"Selected Mechanic: {mechanic.name}" if mechanic else "Auto-assign",
            1,
        )
        if request.service_type:
            self.analytics.emit("Emergency", "Service Type", request.service_type.value, 1)
        return request

    def _abandon(self, request_id: str) -> None:
        # a failed submission leaves nothing pending
        try:
            self.sequencer.cancel(request_id)
        except ResQError as e:
            logging.error("Could not cancel abandoned request %s: %s", request_id, e.message)

    def _selected_mechanic(self, mechanic_id: str):
        try:
            return self.store.get_mechanic(mechanic_id)
        except NotFound:
            raise ValidationError("mechanic_id", "The selected mechanic is no longer available")

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
