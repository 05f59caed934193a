"""Domain models used by the proximity service."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, List, Literal, Mapping, Optional

from app.domain.geo.geodesy import Coordinate


RequestStatus = Literal["pending", "accepted", "rejected"]

_TRUE_STRINGS = {"1", "true", "yes", "on"}


def _flag(value: Any) -> bool:
	if isinstance(value, str):
		return value.strip().lower() in _TRUE_STRINGS
	return bool(value)


@dataclass(slots=True)
class PrivacySettings:
	"""Location privacy preferences persisted on the profile record."""

	manual_location: bool = False
	hide_exact_location: bool = False

	@classmethod
	def from_raw(cls, value: Any) -> "PrivacySettings":
		"""Build from the stored JSON column, tolerating legacy camelCase keys."""
		if isinstance(value, PrivacySettings):
			return value
		data = value or {}
		if isinstance(data, (bytes, str)):
			try:
				data = json.loads(data)
			except ValueError:
				data = {}
		if not isinstance(data, Mapping):
			return cls()
		return cls(
			manual_location=_flag(data.get("manual_location", data.get("manualLocation", False))),
			hide_exact_location=_flag(data.get("hide_exact_location", data.get("hideExactLocation", False))),
		)

	def to_dict(self) -> dict[str, bool]:
		return {"manual_location": self.manual_location, "hide_exact_location": self.hide_exact_location}


@dataclass(slots=True)
class UserSummary:
	"""Lightweight projection fetched for every nearby candidate."""

	id: str
	name: str
	is_online: bool
	location: Optional[Coordinate] = None
	location_settings: PrivacySettings = field(default_factory=PrivacySettings)
	is_business: bool = False


@dataclass(slots=True)
class UserDetails:
	"""Profile fields fetched only for the most relevant candidates."""

	id: str
	interests: List[str] = field(default_factory=list)
	bio: Optional[str] = None
	gender: Optional[str] = None
	age: Optional[int] = None
	avatar_ref: Optional[str] = None


@dataclass(slots=True)
class NearbyUser:
	"""A candidate annotated with its distance from the viewer."""

	id: str
	name: str
	is_online: bool
	location: Optional[Coordinate] = None
	distance: float = math.inf
	location_settings: PrivacySettings = field(default_factory=PrivacySettings)
	is_business: bool = False
	interests: List[str] = field(default_factory=list)
	bio: Optional[str] = None
	gender: Optional[str] = None
	age: Optional[int] = None
	avatar_ref: Optional[str] = None
	has_details: bool = False

	@classmethod
	def from_summary(cls, summary: UserSummary, distance: float) -> "NearbyUser":
		return cls(
			id=summary.id,
			name=summary.name,
			is_online=summary.is_online,
			location=summary.location,
			distance=distance,
			location_settings=summary.location_settings,
			is_business=summary.is_business,
		)

	def with_details(self, details: UserDetails) -> "NearbyUser":
		"""Overlay detail fields; volatile fields (distance, online flag) are kept."""
		return replace(
			self,
			interests=list(details.interests),
			bio=details.bio,
			gender=details.gender,
			age=details.age,
			avatar_ref=details.avatar_ref,
			has_details=True,
		)


@dataclass(slots=True)
class ChatPartner:
	"""The other participant of one of the viewer's chats."""

	participant_id: str
	is_online: bool = False
	last_activity: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class FriendRequest:
	sender_id: str
	receiver_id: str
	status: RequestStatus
