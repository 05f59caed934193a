"""Location privacy: the hide-exact-location toggle and its positional offset."""

from __future__ import annotations

import math
import random
from typing import Any, Mapping, Optional, Tuple

from app.domain.geo.geodesy import Coordinate, coerce_coordinate, project_point
from app.domain.proximity.models import PrivacySettings
from app.settings import settings

__all__ = [
	"PrivacySettings",
	"is_obfuscation_enabled",
	"obfuscate",
	"display_coordinate",
	"exposed_distance_km",
	"privacy_circle_radius_m",
	"pulse_parameters",
]

_rng = random.Random()


def _settings_of(user: Any) -> Any:
	if isinstance(user, Mapping):
		current = user.get("location_settings")
		if current is not None:
			return current
		return user.get("locationSettings")
	return getattr(user, "location_settings", None)


def is_obfuscation_enabled(user: Any) -> bool:
	"""True when the user asked for their exact position to be hidden."""
	if user is None:
		return False
	raw = _settings_of(user)
	if raw is None:
		return False
	return PrivacySettings.from_raw(raw).hide_exact_location


def obfuscate(
	coord: Any,
	*,
	rng: Optional[random.Random] = None,
	max_offset_m: Optional[float] = None,
) -> Coordinate:
	"""Displace `coord` by a random bearing and a random distance below the offset bound.

	A fresh offset is drawn on every call; this is a visual nudge, not a secure transform.
	"""
	origin = coerce_coordinate(coord)
	if origin is None:
		raise ValueError("cannot obfuscate an unknown coordinate")
	source = rng or _rng
	limit_m = settings.privacy_offset_max_m if max_offset_m is None else float(max_offset_m)
	bearing = source.random() * 360.0
	distance_m = source.random() * limit_m
	if distance_m == 0.0:
		return origin
	return project_point(origin, distance_m / 1000.0, bearing)


def display_coordinate(user: Any, *, rng: Optional[random.Random] = None) -> Optional[Coordinate]:
	"""Coordinate that may be shown to other viewers, or None when the user has none."""
	raw = user.get("location") if isinstance(user, Mapping) else getattr(user, "location", None)
	location = coerce_coordinate(raw)
	if location is None:
		return None
	if is_obfuscation_enabled(user):
		return obfuscate(location, rng=rng)
	return location


def privacy_circle_radius_m() -> float:
	return float(settings.privacy_circle_radius_m)


def pulse_parameters() -> Tuple[float, float, float]:
	"""(min opacity, max opacity, full sweep duration in ms) of the privacy circle pulse."""
	return (
		float(settings.privacy_pulse_min_opacity),
		float(settings.privacy_pulse_max_opacity),
		float(settings.privacy_pulse_duration_ms),
	)


def exposed_distance_km(user: Any) -> float:
	"""Distance that may be shown to other viewers.

	For a user hiding their exact location the distance is rounded up to a step no
	finer than the offset bound.
	"""
	raw = user.get("distance") if isinstance(user, Mapping) else getattr(user, "distance", None)
	distance = math.inf if raw is None else float(raw)
	if math.isinf(distance) or not is_obfuscation_enabled(user):
		return distance
	step_km = max(settings.privacy_distance_step_m, settings.privacy_offset_max_m) / 1000.0
	return math.ceil(distance / step_km) * step_km
