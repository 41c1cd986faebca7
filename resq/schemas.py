from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from .lifecycle import MechanicStatus, RequestStatus, ServiceType

Longitude = Annotated[float, Field(ge=-180, le=180)]
Latitude = Annotated[float, Field(ge=-90, le=90)]
# (longitude, latitude)
Coordinates = Tuple[Longitude, Latitude]


# ────────────────────────────── REQUESTS ──────────────────────────────

class RequestCreate(BaseModel):
    location: str
    phone: str
    description: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    service_type: Optional[ServiceType] = None
    mechanic_id: Optional[str] = None
    sms_opt_in: bool = False


class NewRequest(BaseModel):
    """Normalized fields written by the submission flow at creation."""

    location: str
    phone: str
    description: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    service_type: Optional[ServiceType] = None
    user_id: Optional[str] = None
    sms_opt_in: bool = False


class EmergencyRequestOut(BaseModel):
    id: str
    location: str
    coordinates: Optional[Coordinates] = None
    phone: str
    description: Optional[str] = None
    status: RequestStatus
    service_type: Optional[ServiceType] = None
    mechanic_id: Optional[str] = None
    user_id: Optional[str] = None
    sms_opt_in: bool = False
    estimated_arrival_time: Optional[datetime] = None
    actual_arrival_time: Optional[datetime] = None
    completion_time: Optional[datetime] = None
    rating: Optional[int] = None
    review: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class StatusUpdate(BaseModel):
    status: str
    mechanic_id: Optional[str] = None
    estimated_arrival_minutes: Optional[int] = Field(None, ge=0, le=24 * 60)


class AcceptIn(BaseModel):
    estimated_arrival_minutes: int = Field(15, ge=0, le=24 * 60)


class ReviewIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    review: str = Field("", max_length=1000)


class NotificationOut(BaseModel):
    request_id: str
    status: RequestStatus
    title: str
    message: str
    variant: str = "default"
    created_at: datetime


# ────────────────────────────── MECHANICS ──────────────────────────────

class MechanicIn(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str
    rating: float = Field(0.0, ge=0, le=5)
    specialties: List[str] = Field(default_factory=list)
    status: MechanicStatus = MechanicStatus.available
    current_location: Coordinates
    service_radius_km: float = Field(15.0, gt=0)


class MechanicOut(MechanicIn):
    id: str


class MechanicCandidate(MechanicOut):
    distance: Optional[float] = Field(None, description="Miles from the user, when known")


class LocationUpdate(BaseModel):
    coordinates: Coordinates


class MechanicStatusUpdate(BaseModel):
    status: MechanicStatus


# ────────────────────────────── MAP ──────────────────────────────

class MapView(BaseModel):
    provider: str
    state: str  # ready / error
    message: Optional[str] = None
    retryable: bool = False
    center: Optional[Coordinates] = None
    used_default_location: bool = False
    location_error: Optional[str] = None
    scene: Optional[Dict[str, Any]] = None
    mechanics: List[MechanicCandidate] = Field(default_factory=list)


# ────────────────────────────── ADMIN ──────────────────────────────

class FeatureUpdate(BaseModel):
    enabled: bool


class FeaturesOut(BaseModel):
    map_provider: str
    features: Dict[str, bool]


class AnalyticsEvent(BaseModel):
    category: str
    action: str
    label: Optional[str] = None
    value: Optional[float] = None
    timestamp: datetime
