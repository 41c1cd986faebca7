import pytest

from resq.analytics import Analytics
from resq.errors import NotFound
from resq.features import FeatureFlags, parse_features


def test_defaults():
    features = FeatureFlags()
    assert features.map_provider() == "mapbox"
    assert features.feature_enabled("emergency-form")
    assert not features.feature_enabled("made-up")


def test_one_map_provider_at_a_time():
    features = FeatureFlags()
    features.set_enabled("map-leaflet", True)
    assert features.map_provider() == "leaflet"
    snapshot = features.snapshot()
    assert not snapshot["map-mapbox"]
    assert not snapshot["map-google"]


def test_disabling_the_provider_leaves_none():
    features = FeatureFlags()
    features.set_enabled("map-mapbox", False)
    assert features.map_provider() == "none"
    assert not features.map_provider_enabled()


def test_unknown_feature():
    with pytest.raises(NotFound):
        FeatureFlags().set_enabled("teleport", True)


def test_parse_overrides():
    overrides = parse_features("map-google=on, mechanic-list=off,garbage")
    assert overrides == {"map-google": True, "mechanic-list": False}
    features = FeatureFlags(overrides)
    assert features.map_provider() == "google"
    assert not features.feature_enabled("mechanic-list")


def test_analytics_keeps_recent_events(clock):
    analytics = Analytics(clock, keep=2)
    analytics.emit("Form", "Submission Attempt", "Emergency Request", 1)
    analytics.emit("Map", "Apply Filters")
    analytics.emit("Map", "Select Mechanic", "John Smith")
    assert [e.action for e in analytics.recent()] == ["Apply Filters", "Select Mechanic"]
    assert analytics.recent()[-1].timestamp == clock.now()
