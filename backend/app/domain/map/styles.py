"""Pure style resolvers for map features."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, replace
from typing import Any, Iterable, Literal, Optional

from app.domain.proximity.models import FriendRequest

FriendStatus = Literal["none", "pending", "accepted"]

SELF_FILL = "#0ea5e9"
SELF_STROKE = "#0369a1"
POSITIVE_FILL = "#10b981"
PENDING_FILL = "#fef08a"
DEFAULT_FILL = "#6366f1"
SELECTED_STROKE = "#1e1b4b"
BUSINESS_FILL = "#10b981"
MARKER_STROKE = "#ffffff"

SELF_RADIUS = 14
OTHER_RADIUS = 12
PRIVATE_RADIUS = 8
CLUSTER_MIN_RADIUS = 20
CLUSTER_MAX_RADIUS = 30

PRIVACY_FILL = "#0ea5e9"
RADIUS_FILL = "#6366f1"
RADIUS_FILL_OPACITY = 0.1


@dataclass(frozen=True, slots=True)
class MarkerStyle:
	fill: str
	stroke: str = MARKER_STROKE
	stroke_width: float = 2.0
	radius: float = OTHER_RADIUS
	opacity: float = 1.0
	label: Optional[str] = None
	label_color: Optional[str] = None
	z_index: int = 0

	def with_opacity(self, opacity: float) -> "MarkerStyle":
		return replace(self, opacity=opacity)

	def as_dict(self) -> dict[str, Any]:
		return asdict(self)


def friend_status(user_id: str, requests: Iterable[FriendRequest]) -> FriendStatus:
	"""Accepted wins over pending; either direction counts."""
	status: FriendStatus = "none"
	for request in requests:
		if user_id not in (request.sender_id, request.receiver_id):
			continue
		if request.status == "accepted":
			return "accepted"
		if request.status == "pending":
			status = "pending"
	return status


def user_marker_style(
	*,
	is_self: bool,
	name: Optional[str] = None,
	privacy: bool = False,
	selected: bool = False,
	moving: bool = False,
	status: FriendStatus = "none",
	show_labels: bool = False,
) -> MarkerStyle:
	if is_self:
		return MarkerStyle(fill=SELF_FILL, stroke=SELF_STROKE, stroke_width=3.0, radius=SELF_RADIUS, z_index=3)

	if moving or status == "accepted":
		fill = POSITIVE_FILL
	elif status == "pending":
		fill = PENDING_FILL
	else:
		fill = DEFAULT_FILL

	if privacy:
		# no label next to an offset position
		return MarkerStyle(fill=fill, radius=PRIVATE_RADIUS, z_index=1)

	style = MarkerStyle(
		fill=fill,
		radius=OTHER_RADIUS,
		label=name if show_labels and name else None,
		label_color="#111827" if show_labels and name else None,
		z_index=1,
	)
	if selected:
		style = replace(style, stroke=SELECTED_STROKE, stroke_width=4.0, radius=OTHER_RADIUS + 2, z_index=2)
	return style


def cluster_radius(count: int) -> float:
	"""Monotonic in `count`, clamped to the cluster radius bounds."""
	if count <= 1:
		return float(CLUSTER_MIN_RADIUS)
	grown = CLUSTER_MIN_RADIUS + 10.0 * math.log10(count)
	return float(min(CLUSTER_MAX_RADIUS, max(CLUSTER_MIN_RADIUS, grown)))


def cluster_marker_style(count: int, *, business: bool = False) -> MarkerStyle:
	color = BUSINESS_FILL if business else DEFAULT_FILL
	if count <= 1:
		return MarkerStyle(fill=color, radius=cluster_radius(1), z_index=1)
	return MarkerStyle(
		fill=color,
		stroke=color,
		stroke_width=3.0,
		radius=cluster_radius(count),
		opacity=0.5,
		label=str(count),
		label_color="#ffffff",
		z_index=1,
	)


def privacy_circle_style(opacity: float) -> MarkerStyle:
	return MarkerStyle(fill=PRIVACY_FILL, stroke=PRIVACY_FILL, stroke_width=1.0, radius=0, opacity=opacity, z_index=0)


def radius_circle_style() -> MarkerStyle:
	return MarkerStyle(
		fill=RADIUS_FILL,
		stroke=RADIUS_FILL,
		stroke_width=1.5,
		radius=0,
		opacity=RADIUS_FILL_OPACITY,
		z_index=0,
	)
