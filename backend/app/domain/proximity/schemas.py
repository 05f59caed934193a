"""Pydantic schemas for proximity endpoints."""

from __future__ import annotations

import math
import random
from typing import Optional

from pydantic import BaseModel, Field

from app.domain.proximity.models import NearbyUser
from app.domain.proximity.privacy import display_coordinate, exposed_distance_km, is_obfuscation_enabled


class LocationPayload(BaseModel):
	"""Payload emitted by the client when reporting its current location."""

	lat: float = Field(..., ge=-90.0, le=90.0)
	lng: float = Field(..., ge=-180.0, le=180.0)
	hide_exact_location: Optional[bool] = None


class DisplayLocation(BaseModel):
	lat: float
	lng: float


class NearbyUserOut(BaseModel):
	"""Nearby user as exposed to other viewers; the position is the display position."""

	id: str
	name: str
	is_online: bool
	# None when the distance is unknown
	distance_km: Optional[float] = Field(default=None, ge=0)
	display: Optional[DisplayLocation] = None
	location_hidden: bool = False
	is_business: bool = False
	bio: Optional[str] = None
	age: Optional[int] = None
	gender: Optional[str] = None
	interests: list[str] = Field(default_factory=list)
	avatar_ref: Optional[str] = None

	@classmethod
	def from_user(cls, user: NearbyUser, *, rng: Optional[random.Random] = None) -> "NearbyUserOut":
		coord = display_coordinate(user, rng=rng)
		return cls(
			id=user.id,
			name=user.name,
			is_online=user.is_online,
			distance_km=None if math.isinf(user.distance) else round(exposed_distance_km(user), 3),
			display=DisplayLocation(lat=coord.lat, lng=coord.lng) if coord else None,
			location_hidden=is_obfuscation_enabled(user),
			is_business=user.is_business,
			bio=user.bio,
			age=user.age,
			gender=user.gender,
			interests=list(user.interests),
			avatar_ref=user.avatar_ref,
		)


class NearbyResponse(BaseModel):
	items: list[NearbyUserOut] = Field(default_factory=list)
	in_range: list[str] = Field(default_factory=list)
	radius_km: float
	outcome: str


class LocationAck(BaseModel):
	ok: bool = True
	lat: float
	lng: float
