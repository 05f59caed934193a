"""In-memory vector map surface exported as GeoJSON."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Literal, Optional

from app.domain.geo.geodesy import Coordinate
from app.domain.map.styles import MarkerStyle

logger = logging.getLogger(__name__)

ClickHandler = Callable[[Coordinate], None]


class Role(str, Enum):
	SELF = "self"
	OTHER = "other"
	CLUSTER = "cluster"
	RADIUS_CIRCLE = "radius-circle"
	PRIVACY_CIRCLE = "privacy-circle"


@dataclass(slots=True)
class MapFeature:
	id: str
	role: Role
	center: Coordinate
	style: MarkerStyle
	shape: Literal["point", "circle"] = "point"
	radius_m: Optional[float] = None
	user_id: Optional[str] = None
	properties: Dict[str, Any] = field(default_factory=dict)

	def to_geojson(self) -> dict[str, Any]:
		props: Dict[str, Any] = {
			"id": self.id,
			"role": self.role.value,
			"shape": self.shape,
			"style": self.style.as_dict(),
		}
		if self.radius_m is not None:
			props["radius_m"] = self.radius_m
		if self.user_id is not None:
			props["user_id"] = self.user_id
		props.update(self.properties)
		return {
			"type": "Feature",
			"id": self.id,
			"geometry": {"type": "Point", "coordinates": [self.center.lng, self.center.lat]},
			"properties": props,
		}


class VectorMapSurface:
	"""Feature store standing in for an interactive map canvas."""

	def __init__(self, resolution: float = 10.0) -> None:
		self._features: Dict[str, MapFeature] = {}
		self._resolution = float(resolution)
		self._click_handlers: List[ClickHandler] = []

	@property
	def resolution(self) -> float:
		return self._resolution

	def set_resolution(self, value: float) -> None:
		if value <= 0:
			raise ValueError("resolution must be positive")
		self._resolution = float(value)

	def add_feature(self, feature: MapFeature) -> None:
		self._features[feature.id] = feature

	def remove_feature(self, feature_id: str) -> bool:
		return self._features.pop(feature_id, None) is not None

	def remove_role(self, *roles: Role) -> int:
		doomed = [key for key, feature in self._features.items() if feature.role in roles]
		for key in doomed:
			del self._features[key]
		return len(doomed)

	def restyle(self, feature_id: str, style: MarkerStyle) -> None:
		feature = self._features.get(feature_id)
		if feature is None:
			raise KeyError(feature_id)
		self._features[feature_id] = replace(feature, style=style)

	def get(self, feature_id: str) -> Optional[MapFeature]:
		return self._features.get(feature_id)

	def features(self, role: Optional[Role] = None) -> List[MapFeature]:
		if role is None:
			return list(self._features.values())
		return [feature for feature in self._features.values() if feature.role == role]

	def on_click(self, handler: ClickHandler) -> Callable[[], None]:
		self._click_handlers.append(handler)

		def remove() -> None:
			if handler in self._click_handlers:
				self._click_handlers.remove(handler)

		return remove

	def click(self, coord: Coordinate) -> None:
		for handler in list(self._click_handlers):
			try:
				handler(coord)
			except Exception:
				logger.exception("map click handler failed")

	def to_geojson(self) -> dict[str, Any]:
		ordered = sorted(self._features.values(), key=lambda feature: feature.style.z_index)
		return {
			"type": "FeatureCollection",
			"resolution": self._resolution,
			"features": [feature.to_geojson() for feature in ordered],
		}

	def __len__(self) -> int:
		return len(self._features)
