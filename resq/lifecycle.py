from enum import Enum

from .errors import AlreadyTerminal, InvalidTransition


class RequestStatus(str, Enum):
    pending = "pending"
    matched = "matched"
    en_route = "en_route"
    arrived = "arrived"
    completed = "completed"
    cancelled = "cancelled"


class MechanicStatus(str, Enum):
    available = "available"
    busy = "busy"


class ServiceType(str, Enum):
    towing = "towing"
    battery_service = "battery_service"
    tire_change = "tire_change"
    fuel_delivery = "fuel_delivery"
    lockout = "lockout"
    general_repair = "general_repair"


FORWARD_SEQUENCE = (
    RequestStatus.pending,
    RequestStatus.matched,
    RequestStatus.en_route,
    RequestStatus.arrived,
    RequestStatus.completed,
)

TERMINAL = frozenset({RequestStatus.completed, RequestStatus.cancelled})

# mechanic_id is set exactly in these states
ASSIGNED = frozenset({
    RequestStatus.matched,
    RequestStatus.en_route,
    RequestStatus.arrived,
    RequestStatus.completed,
})

TRANSITIONS = {
    RequestStatus.pending: frozenset({RequestStatus.matched, RequestStatus.cancelled}),
    RequestStatus.matched: frozenset({RequestStatus.en_route, RequestStatus.cancelled}),
    RequestStatus.en_route: frozenset({RequestStatus.arrived, RequestStatus.cancelled}),
    RequestStatus.arrived: frozenset({RequestStatus.completed, RequestStatus.cancelled}),
    RequestStatus.completed: frozenset(),
    RequestStatus.cancelled: frozenset(),
}


def check_transition(current, requested) -> RequestStatus:
    """Return ``requested`` as a RequestStatus or raise if the edge is not allowed."""
    current = RequestStatus(current)
    try:
        requested = RequestStatus(requested)
    except ValueError:
        raise InvalidTransition(f"Unknown status {requested!r}", current.value, str(requested))

    if current in TERMINAL:
        raise AlreadyTerminal(
            f"Request is already {current.value}", current.value, requested.value
        )
    if requested not in TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot move request from {current.value} to {requested.value}",
            current.value,
            requested.value,
        )
    return requested


def next_status(current):
    """Next forward status, or None at the end of the sequence."""
    current = RequestStatus(current)
    if current not in FORWARD_SEQUENCE or current is RequestStatus.completed:
        return None
    return FORWARD_SEQUENCE[FORWARD_SEQUENCE.index(current) + 1]
