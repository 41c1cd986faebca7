from dataclasses import dataclass, field
from math import atan2, cos, radians, sin, sqrt
from typing import FrozenSet, Iterable, List, Optional, Sequence

from .errors import NotFound, ValidationError
from .schemas import MechanicCandidate, MechanicOut

# The distance slider tops out here; at this value the limit is off
MAX_DISTANCE_MILES = 10.0
EARTH_RADIUS_MILES = 3958.8
KM_PER_MILE = 1.609344
STATUS_FILTERS = ("all", "available", "busy")


def distance_miles(a, b) -> float:
    """Great-circle distance between two (longitude, latitude) points."""
    lon1, lat1 = a
    lon2, lat2 = b
    dlat = radians(lat2 - lat1)
    dlon = radians(lon2 - lon1)
    x = sin(dlat / 2) ** 2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * atan2(sqrt(x), sqrt(1 - x))


def covers(mechanic: MechanicOut, point) -> bool:
    """True when ``point`` lies inside the mechanic's service radius."""
    return distance_miles(point, mechanic.current_location) * KM_PER_MILE <= mechanic.service_radius_km


@dataclass(frozen=True)
class MechanicFilter:
    status: str = "all"
    specialties: FrozenSet[str] = field(default_factory=frozenset)
    min_rating: float = 0.0
    max_distance: float = MAX_DISTANCE_MILES

    def __post_init__(self):
        if self.status not in STATUS_FILTERS:
            raise ValidationError("status", f"Status filter must be one of {', '.join(STATUS_FILTERS)}")
        if not 0 <= self.min_rating <= 5:
            raise ValidationError("min_rating", "Minimum rating must be between 0 and 5")
        if self.max_distance < 0:
            raise ValidationError("max_distance", "Maximum distance cannot be negative")
        object.__setattr__(self, "specialties", frozenset(self.specialties))

    @property
    def distance_limited(self) -> bool:
        return self.max_distance < MAX_DISTANCE_MILES

    def is_default(self) -> bool:
        return self == MechanicFilter()


def to_candidates(mechanics: Iterable[MechanicOut], origin=None) -> List[MechanicCandidate]:
    candidates = []
    for mechanic in mechanics:
        if isinstance(mechanic, MechanicCandidate) and origin is None:
            candidates.append(mechanic)
            continue
        distance = None
        if origin is not None:
            distance = round(distance_miles(origin, mechanic.current_location), 2)
        data = mechanic.model_dump()
        data["distance"] = distance
        candidates.append(MechanicCandidate(**data))
    return candidates


def _matches(mechanic: MechanicCandidate, criteria: MechanicFilter) -> bool:
    if criteria.status != "all" and mechanic.status.value != criteria.status:
        return False
    if criteria.specialties and not criteria.specialties.intersection(mechanic.specialties):
        return False
    if mechanic.rating < criteria.min_rating:
        return False
    if criteria.distance_limited:
        if mechanic.distance is None or mechanic.distance > criteria.max_distance:
            return False
    return True


def filter_mechanics(
    mechanics: Sequence[MechanicOut],
    criteria: Optional[MechanicFilter] = None,
    origin=None,
) -> List[MechanicCandidate]:
    """Order-preserving filter. Criteria AND across kinds, specialties OR within."""
    criteria = criteria or MechanicFilter()
    return [m for m in to_candidates(mechanics, origin) if _matches(m, criteria)]


def all_specialties(mechanics: Iterable[MechanicOut]) -> List[str]:
    seen = {}
    for mechanic in mechanics:
        for specialty in mechanic.specialties:
            seen.setdefault(specialty, None)
    return list(seen)


def select_mechanic(mechanics: Iterable[MechanicOut], mechanic_id: str) -> MechanicOut:
    for mechanic in mechanics:
        if mechanic.id == mechanic_id:
            return mechanic
    raise NotFound(f"Mechanic {mechanic_id} not found")
