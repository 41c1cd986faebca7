"""Map presentation over interchangeable rendering providers.

Providers only know how to initialize their base layer and how to
serialize markers for their client SDK. Filtering, selection and the
user/default location handling live in ``MapPresentation`` so every
provider shows the same thing.
"""

import abc
import logging
from collections import OrderedDict
from typing import Callable, Dict, List, Optional

from .errors import NotFound, ProviderInitError
from .schemas import MapView, MechanicCandidate

USER_MARKER_ID = "user"
MARKER_COLORS = {"user": "#3b82f6", "available": "#22c55e", "busy": "#f59e0b"}


class MapProvider(abc.ABC):
    name = "abstract"
    zoom = 14

    def __init__(self):
        self.ready = False
        self.center: Optional[tuple] = None
        self.markers: "OrderedDict[str, dict]" = OrderedDict()
        self.handlers: Dict[str, Callable] = {}

    @abc.abstractmethod
    def render_base(self) -> None:
        """Set up the base layer. Raises ProviderInitError when it cannot."""

    @abc.abstractmethod
    def scene(self) -> dict:
        """Client-ready description of the base layer, camera and markers."""

    def place_marker(self, marker_id: str, coordinates, style: dict) -> None:
        self.markers[marker_id] = {"coordinates": tuple(coordinates), "style": dict(style)}

    def remove_marker(self, marker_id: str) -> None:
        self.markers.pop(marker_id, None)
        self.handlers.pop(marker_id, None)

    def center_on(self, coordinates) -> None:
        self.center = tuple(coordinates)

    def bind_click(self, marker_id: str, handler: Callable) -> None:
        if marker_id not in self.markers:
            raise NotFound(f"Marker {marker_id} not found")
        self.handlers[marker_id] = handler

    def click(self, marker_id: str):
        handler = self.handlers.get(marker_id)
        if handler is None:
            raise NotFound(f"Marker {marker_id} not found")
        return handler()


class MapboxProvider(MapProvider):
    name = "mapbox"
    zoom = 13

    def __init__(self, access_token: Optional[str], style: str):
        super().__init__()
        self.access_token = access_token
        self.style = style

    def render_base(self) -> None:
        if not self.access_token:
            raise ProviderInitError("Mapbox access token is not configured")
        self.ready = True

    def scene(self) -> dict:
        features = []
        for marker_id, marker in self.markers.items():
            features.append({
                "type": "Feature",
                "id": marker_id,
                "geometry": {"type": "Point", "coordinates": list(marker["coordinates"])},
                "properties": marker["style"],
            })
        return {
            "style": self.style,
            "accessToken": self.access_token,
            "center": list(self.center) if self.center else None,
            "zoom": self.zoom,
            "markers": {"type": "FeatureCollection", "features": features},
        }


class GoogleMapsProvider(MapProvider):
    name = "google"

    def __init__(self, api_key: Optional[str]):
        super().__init__()
        self.api_key = api_key

    def render_base(self) -> None:
        if not self.api_key:
            raise ProviderInitError("Google Maps API key is not configured")
        self.ready = True

    @staticmethod
    def _lat_lng(coordinates):
        return {"lat": coordinates[1], "lng": coordinates[0]}

    def scene(self) -> dict:
        return {
            "apiKey": self.api_key,
            "center": self._lat_lng(self.center) if self.center else None,
            "zoom": self.zoom,
            "markers": [
                {"id": marker_id, "position": self._lat_lng(marker["coordinates"]), **marker["style"]}
                for marker_id, marker in self.markers.items()
            ],
        }


class LeafletProvider(MapProvider):
    name = "leaflet"
    attribution = '&copy; <a href="https://www.openstreetmap.org/copyright">OpenStreetMap</a> contributors'

    def __init__(self, tile_url: Optional[str]):
        super().__init__()
        self.tile_url = tile_url

    def render_base(self) -> None:
        if not self.tile_url:
            raise ProviderInitError("Failed to load map library. Please try again.")
        self.ready = True

    def scene(self) -> dict:
        # Leaflet takes [lat, lng]
        return {
            "tileLayer": {"url": self.tile_url, "attribution": self.attribution},
            "center": [self.center[1], self.center[0]] if self.center else None,
            "zoom": self.zoom,
            "markers": [
                {"id": marker_id, "latLng": [marker["coordinates"][1], marker["coordinates"][0]], **marker["style"]}
                for marker_id, marker in self.markers.items()
            ],
        }


def build_provider(name: str, settings) -> Optional[MapProvider]:
    if name == "mapbox":
        return MapboxProvider(settings.MAPBOX_ACCESS_TOKEN, settings.MAPBOX_STYLE)
    if name == "google":
        return GoogleMapsProvider(settings.GOOGLE_MAPS_API_KEY)
    if name == "leaflet":
        return LeafletProvider(settings.LEAFLET_TILE_URL)
    return None


def resolve_origin(coordinates, use_default: bool, default_coordinates):
    """Returns (origin, used_default, location_error)."""
    if coordinates is not None:
        return tuple(coordinates), False, None
    if use_default:
        return tuple(default_coordinates), True, "Unable to get your location. Using default location."
    return None, False, "Unable to get your location."


def mechanic_style(mechanic: MechanicCandidate) -> dict:
    return {
        "kind": "mechanic",
        "color": MARKER_COLORS.get(mechanic.status.value, MARKER_COLORS["available"]),
        "label": mechanic.name,
        "status": mechanic.status.value,
        "rating": mechanic.rating,
        "distance": mechanic.distance,
    }


class MapPresentation:
    def __init__(self, provider: Optional[MapProvider], default_coordinates, analytics=None):
        self.provider = provider
        self.analytics = analytics
        self.default_coordinates = tuple(default_coordinates)
        self.state = "loading"
        self.message: Optional[str] = None
        self.used_default_location = False
        self.location_error: Optional[str] = None
        self.mechanics: List[MechanicCandidate] = []

    @property
    def provider_name(self) -> str:
        return self.provider.name if self.provider else "none"

    def initialize(self) -> bool:
        if self.provider is None:
            self.state = "error"
            self.message = "Map provider not selected. Enable a map provider in the admin panel."
            logging.warning("Map requested with no provider enabled")
            self._report("none")
            return False
        try:
            self.provider.render_base()
        except ProviderInitError as e:
            self.state = "error"
            self.message = e.message
            logging.warning("Map provider %s failed to initialize: %s", self.provider.name, e.message)
            self._report(self.provider.name)
            return False
        self.state = "ready"
        self.message = None
        return True

    def _report(self, label: str) -> None:
        if self.analytics is not None:
            self.analytics.emit("Map", "Provider Error", label)

    def retry(self) -> bool:
        self.state = "loading"
        self.message = None
        return self.initialize()

    def show(
        self,
        origin,
        mechanics: List[MechanicCandidate],
        on_select: Callable[[MechanicCandidate], object],
        used_default: bool = False,
        location_error: Optional[str] = None,
    ) -> None:
        self.used_default_location = used_default
        self.location_error = location_error
        self.mechanics = list(mechanics)
        if self.state != "ready":
            return

        provider = self.provider
        visible = {m.id for m in mechanics}
        for marker_id in list(provider.markers):
            if marker_id != USER_MARKER_ID and marker_id not in visible:
                provider.remove_marker(marker_id)

        if origin is not None:
            provider.place_marker(
                USER_MARKER_ID,
                origin,
                {"kind": "user", "color": MARKER_COLORS["user"], "label": "Your Location"},
            )
            provider.center_on(origin)
        else:
            provider.remove_marker(USER_MARKER_ID)
            provider.center_on(mechanics[0].current_location if mechanics else self.default_coordinates)

        for mechanic in mechanics:
            provider.place_marker(mechanic.id, mechanic.current_location, mechanic_style(mechanic))
            provider.bind_click(mechanic.id, lambda m=mechanic: on_select(m))

    def render(
        self,
        origin,
        mechanics: List[MechanicCandidate],
        on_select: Callable[[MechanicCandidate], object],
        used_default: bool = False,
        location_error: Optional[str] = None,
    ) -> MapView:
        if self.state != "ready":
            self.initialize()
        self.show(origin, mechanics, on_select, used_default, location_error)
        return self.view()

    def click(self, marker_id: str):
        if self.state != "ready":
            raise ProviderInitError(self.message or "Map is not ready")
        return self.provider.click(marker_id)

    def view(self) -> MapView:
        ready = self.state == "ready"
        return MapView(
            provider=self.provider_name,
            state=self.state,
            message=self.message,
            retryable=not ready,
            center=self.provider.center if ready else None,
            used_default_location=self.used_default_location,
            location_error=self.location_error,
            scene=self.provider.scene() if ready else None,
            mechanics=self.mechanics,
        )
