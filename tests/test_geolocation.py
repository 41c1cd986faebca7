from types import SimpleNamespace

import pytest
from geopy.exc import GeocoderTimedOut

from resq.errors import GeolocationUnavailable
from resq.geolocation import NominatimGeolocator, NullGeolocator, build_geolocator


def test_default_geolocator_is_unavailable():
    geolocator = build_geolocator("none", "resq-tests")
    assert isinstance(geolocator, NullGeolocator)
    with pytest.raises(GeolocationUnavailable):
        geolocator.locate("123 Main St", 1)


def test_nominatim_returns_longitude_first(monkeypatch):
    geolocator = build_geolocator("nominatim", "resq-tests")
    assert isinstance(geolocator, NominatimGeolocator)
    result = SimpleNamespace(latitude=40.71277612, longitude=-74.00597123)
    monkeypatch.setattr(geolocator.geocoder, "geocode", lambda query, timeout: result)
    assert geolocator.locate("New York", 10) == (-74.005971, 40.712776)


def test_nominatim_no_match(monkeypatch):
    geolocator = NominatimGeolocator("resq-tests")
    monkeypatch.setattr(geolocator.geocoder, "geocode", lambda query, timeout: None)
    with pytest.raises(GeolocationUnavailable):
        geolocator.locate("nowhere at all", 10)


def test_nominatim_timeout(monkeypatch):
    def timed_out(query, timeout):
        raise GeocoderTimedOut("Service timed out")

    geolocator = NominatimGeolocator("resq-tests")
    monkeypatch.setattr(geolocator.geocoder, "geocode", timed_out)
    with pytest.raises(GeolocationUnavailable):
        geolocator.locate("New York", 1)
