"""Geodesic helpers: distances, projections and stored-location parsing.

Every coordinate that enters the proximity code goes through
`parse_stored_location` or `coerce_coordinate` first, so the rest of the
package only ever sees `Coordinate` instances.
"""

from __future__ import annotations

import json
import logging
import math
import random
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple

from app.settings import settings

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0

_PG_POINT = re.compile(r"^\(\s*(?P<lng>[^,()\s]+)\s*,\s*(?P<lat>[^,()\s]+)\s*\)$")
_WKT_POINT = re.compile(
    r"^(?:SRID=\d+;)?\s*POINT\s*\(\s*(?P<lng>[^\s()]+)\s+(?P<lat>[^\s()]+)\s*\)$",
    re.IGNORECASE,
)

_LAT_KEYS = ("lat", "latitude")
_LNG_KEYS = ("lng", "lon", "longitude")

_SYNTHETIC_NAMES = ("Alex", "Sam", "Jordan", "Taylor", "Morgan", "Casey", "Riley", "Quinn", "Avery", "Dakota")


class LocationParseError(ValueError):
    """Raised internally when a stored location cannot be decoded."""


@dataclass(frozen=True, slots=True)
class Coordinate:
    """A WGS-84 position in degrees."""

    lat: float
    lng: float

    def is_valid(self) -> bool:
        return (
            math.isfinite(self.lat)
            and math.isfinite(self.lng)
            and -90.0 <= self.lat <= 90.0
            and -180.0 <= self.lng <= 180.0
        )

    def as_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


def default_location() -> Coordinate:
    return Coordinate(lat=settings.default_lat, lng=settings.default_lng)


def coerce_coordinate(value: Any) -> Optional[Coordinate]:
    """Best-effort conversion of in-memory values; never logs, never raises."""
    if value is None:
        return None
    if isinstance(value, Coordinate):
        return value if value.is_valid() else None
    try:
        coord = _from_object(value)
    except (LocationParseError, TypeError, ValueError):
        return None
    return coord if coord.is_valid() else None


def distance_km(a: Any, b: Any) -> float:
    """Haversine distance in kilometers, `math.inf` when either side is unknown."""
    first = coerce_coordinate(a)
    second = coerce_coordinate(b)
    if first is None or second is None:
        return math.inf
    if first == second:
        return 0.0
    phi1 = math.radians(first.lat)
    phi2 = math.radians(second.lat)
    dphi = math.radians(second.lat - first.lat)
    dlambda = math.radians(second.lng - first.lng)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def project_point(origin: Any, distance: float, bearing_degrees: float) -> Coordinate:
    """Travel `distance` km from `origin` along `bearing_degrees` (0 = north, clockwise)."""
    start = coerce_coordinate(origin)
    if start is None:
        raise ValueError("origin must be a valid coordinate")
    angular = float(distance) / EARTH_RADIUS_KM
    bearing = math.radians(float(bearing_degrees) % 360.0)
    phi1 = math.radians(start.lat)
    lambda1 = math.radians(start.lng)

    sin_phi2 = math.sin(phi1) * math.cos(angular) + math.cos(phi1) * math.sin(angular) * math.cos(bearing)
    phi2 = math.asin(max(-1.0, min(1.0, sin_phi2)))
    lambda2 = lambda1 + math.atan2(
        math.sin(bearing) * math.sin(angular) * math.cos(phi1),
        math.cos(angular) - math.sin(phi1) * math.sin(phi2),
    )
    lng = (math.degrees(lambda2) + 540.0) % 360.0 - 180.0
    return Coordinate(lat=math.degrees(phi2), lng=lng)


def parse_stored_location(raw: Any) -> Optional[Coordinate]:
    """Decode any of the stored location encodings into a `Coordinate`.

    Accepted shapes:
    - Postgres point text ``"(lng,lat)"``
    - WKT / EWKT ``"POINT(lng lat)"`` / ``"SRID=4326;POINT(lng lat)"``
    - JSON text or mapping with lat/lng (lon, latitude/longitude also accepted)
    - GeoJSON ``{"type": "Point", "coordinates": [lng, lat]}``
    - point-like objects exposing ``x`` (lng) and ``y`` (lat), as asyncpg returns

    Anything else yields ``None``.
    """
    if raw is None:
        return None
    try:
        coord = _decode(raw)
    except (LocationParseError, TypeError, ValueError) as exc:
        logger.warning("unparseable stored location type=%s reason=%s", type(raw).__name__, exc)
        return None
    if not coord.is_valid():
        logger.warning("stored location out of range type=%s", type(raw).__name__)
        return None
    return coord


def format_for_storage(coord: Coordinate) -> str:
    """Render the canonical Postgres point literal (longitude first)."""
    return f"({coord.lng!r},{coord.lat!r})"


def synthetic_users(
    base: Coordinate,
    count: int = 5,
    *,
    rng: Optional[random.Random] = None,
    min_km: float = 0.2,
    max_km: float = 3.0,
) -> List[Tuple[str, str, Coordinate]]:
    """Generate `(id, name, location)` seeds scattered around `base` for local development."""
    rng = rng or random.Random()
    seeds: List[Tuple[str, str, Coordinate]] = []
    for idx in range(count):
        distance = min_km + rng.random() * (max_km - min_km)
        bearing = rng.random() * 360.0
        name = _SYNTHETIC_NAMES[idx % len(_SYNTHETIC_NAMES)]
        seeds.append((f"test-{idx}", name, project_point(base, distance, bearing)))
    return seeds


def _decode(raw: Any) -> Coordinate:
    if isinstance(raw, Coordinate):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        return _from_text(raw)
    return _from_object(raw)


def _from_text(text: str) -> Coordinate:
    value = text.strip()
    if not value:
        raise LocationParseError("empty string")
    match = _PG_POINT.match(value) or _WKT_POINT.match(value)
    if match:
        return Coordinate(lat=_as_float(match.group("lat")), lng=_as_float(match.group("lng")))
    if value.startswith("{"):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError as exc:
            raise LocationParseError("invalid json") from exc
        return _from_object(decoded)
    raise LocationParseError("unrecognised text encoding")


def _from_object(value: Any) -> Coordinate:
    if isinstance(value, Mapping):
        if str(value.get("type", "")).lower() == "point" and "coordinates" in value:
            coords = value["coordinates"]
            if not isinstance(coords, (list, tuple)) or len(coords) < 2:
                raise LocationParseError("geojson point without coordinates")
            return Coordinate(lat=_as_float(coords[1]), lng=_as_float(coords[0]))
        lat = _first_present(value, _LAT_KEYS)
        lng = _first_present(value, _LNG_KEYS)
        if lat is None or lng is None:
            raise LocationParseError("mapping without lat/lng")
        return Coordinate(lat=_as_float(lat), lng=_as_float(lng))
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return Coordinate(lat=_as_float(value[0]), lng=_as_float(value[1]))
    x = getattr(value, "x", None)
    y = getattr(value, "y", None)
    if x is not None and y is not None:
        return Coordinate(lat=_as_float(y), lng=_as_float(x))
    raise LocationParseError(f"unsupported type {type(value).__name__}")


def _first_present(mapping: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        if mapping.get(key) is not None:
            return mapping[key]
    return None


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        raise LocationParseError("boolean is not a coordinate")
    number = float(value)
    if not math.isfinite(number):
        raise LocationParseError("non-finite coordinate")
    return number
