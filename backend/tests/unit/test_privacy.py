import random

import pytest

from app.domain.geo.geodesy import Coordinate, distance_km
from app.domain.proximity.models import NearbyUser, PrivacySettings
from app.domain.proximity.privacy import (
    display_coordinate,
    exposed_distance_km,
    is_obfuscation_enabled,
    obfuscate,
    privacy_circle_radius_m,
    pulse_parameters,
)


def test_obfuscation_stays_within_fifty_meters():
    rng = random.Random(42)
    origin = Coordinate(lat=-33.8666, lng=151.2073)
    displacements = [distance_km(origin, obfuscate(origin, rng=rng)) for _ in range(1000)]
    assert max(displacements) <= 0.05
    assert sum(displacements) / len(displacements) > 0


def test_obfuscate_rejects_unknown_coordinate():
    with pytest.raises(ValueError):
        obfuscate(None)


def test_display_coordinate_hides_exact_position():
    true_location = Coordinate(lat=10.0, lng=20.0)
    user = NearbyUser(
        id="u1",
        name="Hidden",
        is_online=True,
        location=true_location,
        location_settings=PrivacySettings(hide_exact_location=True),
    )
    shown = display_coordinate(user, rng=random.Random(1))
    assert shown is not None
    assert shown != true_location
    assert distance_km(true_location, shown) <= 0.05


def test_display_coordinate_passes_through_when_not_hidden():
    user = {"location": {"lat": 1.0, "lng": 2.0}, "location_settings": {"hide_exact_location": False}}
    assert display_coordinate(user) == Coordinate(lat=1.0, lng=2.0)


def test_display_coordinate_without_location():
    assert display_coordinate({"location": None}) is None


def test_obfuscation_flag_accepts_legacy_shapes():
    assert is_obfuscation_enabled({"locationSettings": {"hideExactLocation": True}})
    assert is_obfuscation_enabled({"location_settings": '{"hide_exact_location": "true"}'})
    assert not is_obfuscation_enabled({"location_settings": "not json"})
    assert not is_obfuscation_enabled({})
    assert not is_obfuscation_enabled(None)


def test_privacy_settings_round_trip_dict():
    settings = PrivacySettings.from_raw({"manualLocation": 1, "hide_exact_location": "yes"})
    assert settings.to_dict() == {"manual_location": True, "hide_exact_location": True}


def test_circle_and_pulse_defaults():
    assert privacy_circle_radius_m() == 5000.0
    assert pulse_parameters() == (0.2, 0.4, 3000.0)


def test_exposed_distance_is_coarse_for_hidden_users():
    hidden = NearbyUser(
        id="u1",
        name="Hidden",
        is_online=True,
        distance=3.335847799336762,
        location_settings=PrivacySettings(hide_exact_location=True),
    )
    assert exposed_distance_km(hidden) == pytest.approx(3.4)
    hidden.distance = 3.301
    assert exposed_distance_km(hidden) == pytest.approx(3.4)
    hidden.distance = float("inf")
    assert exposed_distance_km(hidden) == float("inf")


def test_exposed_distance_is_exact_for_visible_users():
    visible = NearbyUser(id="u2", name="Visible", is_online=True, distance=3.335847799336762)
    assert exposed_distance_km(visible) == 3.335847799336762
    assert exposed_distance_km({"distance": 1.25}) == 1.25
