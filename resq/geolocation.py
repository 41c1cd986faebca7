import logging

from geopy.exc import GeopyError
from geopy.geocoders import Nominatim

from .errors import GeolocationUnavailable


class NullGeolocator:
    """Used when no geocoder is configured."""

    def locate(self, location: str, timeout: float):
        raise GeolocationUnavailable("Geolocation is not supported by this deployment")


class NominatimGeolocator:
    def __init__(self, user_agent: str):
        self.geocoder = Nominatim(user_agent=user_agent)

    def locate(self, location: str, timeout: float):
        try:
            result = self.geocoder.geocode(location, timeout=timeout)
        except GeopyError as e:
            logging.warning("Geocoding failed for %r: %s", location, e)
            raise GeolocationUnavailable(f"Unable to get your location: {e}") from e
        if result is None:
            raise GeolocationUnavailable("Unable to get your location")
        return round(result.longitude, 6), round(result.latitude, 6)


def build_geolocator(name: str, user_agent: str):
    if name == "nominatim":
        return NominatimGeolocator(user_agent)
    return NullGeolocator()
