import abc
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from . import models
from .clock import SystemClock
from .errors import AlreadyTerminal, InvalidTransition, NotFound, TransportError, ValidationError
from .lifecycle import ASSIGNED, MechanicStatus, RequestStatus, check_transition
from .schemas import EmergencyRequestOut, MechanicIn, MechanicOut, NewRequest


class RequestStore(abc.ABC):
    """Owns the canonical request and mechanic records.

    Everything handed out is a snapshot; callers never mutate records
    directly. Status writes go through ``update_status`` so the
    transition table is checked in the same transaction as the write.
    """

    @abc.abstractmethod
    def create_request(self, data: NewRequest) -> EmergencyRequestOut: ...

    @abc.abstractmethod
    def get_request(self, request_id: str) -> EmergencyRequestOut: ...

    @abc.abstractmethod
    def list_requests(self, status: Optional[str] = None, limit: int = 50) -> List[EmergencyRequestOut]: ...

    @abc.abstractmethod
    def update_status(
        self,
        request_id: str,
        new_status,
        mechanic_id: Optional[str] = None,
        estimated_arrival_time: Optional[datetime] = None,
    ) -> EmergencyRequestOut: ...

    @abc.abstractmethod
    def save_review(self, request_id: str, rating: int, review: str) -> EmergencyRequestOut: ...

    @abc.abstractmethod
    def list_mechanics(self, status: Optional[str] = None) -> List[MechanicOut]: ...

    @abc.abstractmethod
    def get_mechanic(self, mechanic_id: str) -> MechanicOut: ...

    @abc.abstractmethod
    def upsert_mechanic(self, mechanic_id: str, data: MechanicIn) -> MechanicOut: ...

    @abc.abstractmethod
    def update_mechanic_location(self, mechanic_id: str, coordinates) -> MechanicOut: ...

    @abc.abstractmethod
    def update_mechanic_status(self, mechanic_id: str, status) -> MechanicOut: ...


# ────────────────────────────── HELPERS ──────────────────────────────

def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands datetimes back without tzinfo
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def request_to_out(row: models.EmergencyRequest) -> EmergencyRequestOut:
    coordinates = None
    if row.longitude is not None and row.latitude is not None:
        coordinates = (row.longitude, row.latitude)
    return EmergencyRequestOut(
        id=row.id,
        location=row.location,
        coordinates=coordinates,
        phone=row.phone,
        description=row.description,
        status=row.status,
        service_type=row.service_type,
        mechanic_id=row.mechanic_id,
        user_id=row.user_id,
        sms_opt_in=bool(row.sms_opt_in),
        estimated_arrival_time=_aware(row.estimated_arrival_time),
        actual_arrival_time=_aware(row.actual_arrival_time),
        completion_time=_aware(row.completion_time),
        rating=row.rating,
        review=row.review,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def mechanic_to_out(row: models.Mechanic) -> MechanicOut:
    return MechanicOut(
        id=row.id,
        name=row.name,
        phone=row.phone,
        rating=row.rating,
        specialties=list(row.specialties or []),
        status=row.status,
        current_location=(row.longitude, row.latitude),
        service_radius_km=row.service_radius_km,
    )


# ────────────────────────────── SQL STORE ──────────────────────────────

class SqlRequestStore(RequestStore):
    def __init__(self, session_factory, clock=None):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    @contextmanager
    def _session(self):
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logging.exception("Database error: %s", e)
            raise TransportError("Request storage is unavailable, please retry") from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def _get_row(self, session, request_id: str) -> models.EmergencyRequest:
        row = session.get(models.EmergencyRequest, request_id)
        if row is None:
            raise NotFound(f"Request {request_id} not found")
        return row

    def _get_mechanic_row(self, session, mechanic_id: str) -> models.Mechanic:
        row = session.get(models.Mechanic, mechanic_id)
        if row is None:
            raise NotFound(f"Mechanic {mechanic_id} not found")
        return row

    # ── requests ──

    def create_request(self, data: NewRequest) -> EmergencyRequestOut:
        if not data.location or not data.location.strip():
            raise ValidationError("location", "Location is required")
        if not data.phone or not data.phone.strip():
            raise ValidationError("phone", "Phone number is required")

        now = self._clock.now()
        row = models.EmergencyRequest(
            id=f"req-{uuid.uuid4().hex[:12]}",
            location=data.location,
            phone=data.phone,
            description=data.description,
            status=RequestStatus.pending.value,
            service_type=data.service_type.value if data.service_type else None,
            user_id=data.user_id,
            sms_opt_in=data.sms_opt_in,
            created_at=now,
            updated_at=now,
        )
        if data.coordinates is not None:
            row.longitude, row.latitude = data.coordinates
        with self._session() as session:
            session.add(row)
            session.flush()
            out = request_to_out(row)
        logging.info("Created emergency request %s", out.id)
        return out

    def get_request(self, request_id: str) -> EmergencyRequestOut:
        with self._session() as session:
            return request_to_out(self._get_row(session, request_id))

    def list_requests(self, status: Optional[str] = None, limit: int = 50) -> List[EmergencyRequestOut]:
        with self._session() as session:
            query = session.query(models.EmergencyRequest)
            if status:
                query = query.filter(models.EmergencyRequest.status == status)
            rows = query.order_by(models.EmergencyRequest.created_at.desc()).limit(limit).all()
            return [request_to_out(row) for row in rows]

    def update_status(
        self,
        request_id: str,
        new_status,
        mechanic_id: Optional[str] = None,
        estimated_arrival_time: Optional[datetime] = None,
    ) -> EmergencyRequestOut:
        with self._session() as session:
            row = self._get_row(session, request_id)
            target = check_transition(row.status, new_status)
            now = self._clock.now()

            if target in ASSIGNED and not (mechanic_id or row.mechanic_id):
                raise InvalidTransition(
                    f"A mechanic must be assigned before a request is {target.value}",
                    row.status,
                    target.value,
                )
            if target is RequestStatus.matched:
                self._get_mechanic_row(session, mechanic_id or row.mechanic_id)
                row.mechanic_id = mechanic_id or row.mechanic_id
                row.estimated_arrival_time = estimated_arrival_time
            elif mechanic_id is not None and mechanic_id != row.mechanic_id:
                raise InvalidTransition(
                    "A mechanic can only be assigned when the request is matched",
                    row.status,
                    target.value,
                )

            if target is RequestStatus.arrived:
                row.actual_arrival_time = now
            elif target is RequestStatus.completed:
                row.completion_time = now
            elif target is RequestStatus.cancelled:
                row.mechanic_id = None
                row.estimated_arrival_time = None

            row.status = target.value
            row.updated_at = now
            session.flush()
            return request_to_out(row)

    def save_review(self, request_id: str, rating: int, review: str) -> EmergencyRequestOut:
        with self._session() as session:
            row = self._get_row(session, request_id)
            if row.status != RequestStatus.completed.value:
                raise InvalidTransition(
                    "Reviews can only be submitted for completed requests",
                    row.status,
                    "review",
                )
            if row.rating is not None:
                raise AlreadyTerminal("This request has already been reviewed", row.status, "review")
            row.rating = rating
            row.review = review
            row.updated_at = self._clock.now()
            session.flush()
            return request_to_out(row)

    # ── mechanics ──

    def list_mechanics(self, status: Optional[str] = None) -> List[MechanicOut]:
        with self._session() as session:
            query = session.query(models.Mechanic)
            if status:
                query = query.filter(models.Mechanic.status == status)
            return [mechanic_to_out(row) for row in query.order_by(models.Mechanic.id).all()]

    def get_mechanic(self, mechanic_id: str) -> MechanicOut:
        with self._session() as session:
            return mechanic_to_out(self._get_mechanic_row(session, mechanic_id))

    def upsert_mechanic(self, mechanic_id: str, data: MechanicIn) -> MechanicOut:
        with self._session() as session:
            row = session.get(models.Mechanic, mechanic_id)
            if row is None:
                row = models.Mechanic(id=mechanic_id)
                session.add(row)
            row.name = data.name
            row.phone = data.phone
            row.rating = data.rating
            row.specialties = list(data.specialties)
            row.status = data.status.value
            row.longitude, row.latitude = data.current_location
            row.service_radius_km = data.service_radius_km
            session.flush()
            return mechanic_to_out(row)

    def update_mechanic_location(self, mechanic_id: str, coordinates) -> MechanicOut:
        with self._session() as session:
            row = self._get_mechanic_row(session, mechanic_id)
            row.longitude, row.latitude = coordinates
            session.flush()
            return mechanic_to_out(row)

    def update_mechanic_status(self, mechanic_id: str, status) -> MechanicOut:
        with self._session() as session:
            row = self._get_mechanic_row(session, mechanic_id)
            row.status = MechanicStatus(status).value
            session.flush()
            return mechanic_to_out(row)
