import logging
import threading
from typing import Dict

from .errors import NotFound

MAP_PROVIDERS = ("mapbox", "google", "leaflet")

DEFAULT_FEATURES = {
    "map-mapbox": True,
    "map-google": False,
    "map-leaflet": False,
    "emergency-form": True,
    "mechanic-list": True,
    "real-time-tracking": True,
}


def parse_features(raw: str) -> Dict[str, bool]:
    """Parse ``map-google=on,mechanic-list=off`` style overrides."""
    overrides = {}
    for item in raw.split(","):
        if "=" not in item:
            continue
        key, value = item.split("=", 1)
        overrides[key.strip()] = value.strip().lower() in {"1", "true", "yes", "on"}
    return overrides


class FeatureFlags:
    """Feature switches. At most one ``map-*`` provider is on at a time."""

    def __init__(self, overrides: Dict[str, bool] = None):
        self._lock = threading.Lock()
        self._features = dict(DEFAULT_FEATURES)
        for key, enabled in (overrides or {}).items():
            if key in self._features:
                self._set(key, enabled)
            else:
                logging.warning("Ignoring unknown feature %r", key)

    def _set(self, feature_id: str, enabled: bool) -> None:
        self._features[feature_id] = enabled
        if enabled and feature_id.startswith("map-"):
            for key in self._features:
                if key.startswith("map-") and key != feature_id:
                    self._features[key] = False

    def set_enabled(self, feature_id: str, enabled: bool) -> None:
        with self._lock:
            if feature_id not in self._features:
                raise NotFound(f"Unknown feature {feature_id}")
            self._set(feature_id, enabled)
        logging.info("Feature %s set to %s", feature_id, enabled)

    def feature_enabled(self, feature_id: str) -> bool:
        with self._lock:
            return self._features.get(feature_id, False)

    def map_provider(self) -> str:
        with self._lock:
            for provider in MAP_PROVIDERS:
                if self._features.get(f"map-{provider}"):
                    return provider
        return "none"

    def map_provider_enabled(self) -> bool:
        return self.map_provider() != "none"

    def snapshot(self) -> Dict[str, bool]:
        with self._lock:
            return dict(self._features)
