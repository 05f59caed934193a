"""Greedy distance clustering of user markers for zoomed-out views."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

from app.domain.geo.geodesy import Coordinate, distance_km

logger = logging.getLogger(__name__)

MIN_ADAPTIVE_USERS = 10


@dataclass(frozen=True, slots=True)
class ClusterPoint:
	user_id: str
	location: Coordinate
	is_business: bool = False


@dataclass(slots=True)
class Cluster:
	center: Coordinate
	members: List[ClusterPoint] = field(default_factory=list)
	radius_km: float = 0.5

	@property
	def size(self) -> int:
		return len(self.members)

	@property
	def is_business(self) -> bool:
		return bool(self.members) and all(member.is_business for member in self.members)


def adaptive_radius(points: Sequence[ClusterPoint], base_km: float = 0.5) -> float:
	"""Shrink the radius for dense groups and grow it for sparse ones.

	Density is users per degree of the wider of the latitude/longitude spans.
	Fewer than ten users always get the base radius.
	"""
	if len(points) < MIN_ADAPTIVE_USERS:
		return base_km
	lats = [point.location.lat for point in points]
	lngs = [point.location.lng for point in points]
	spread = max(max(lats) - min(lats), max(lngs) - min(lngs))
	density = len(points) / max(spread, 0.01)
	if density > 50:
		radius = max(0.2, base_km * 0.6)
	elif density > 20:
		radius = base_km * 0.8
	elif density < 5:
		radius = min(2.0, base_km * 1.5)
	else:
		radius = base_km
	logger.debug("adaptive cluster radius users=%d density=%.2f radius_km=%.2f", len(points), density, radius)
	return radius


def cluster_points(points: Sequence[ClusterPoint], base_km: float = 0.5) -> List[Cluster]:
	"""Seed clusters from the points with most neighbours first, then recentre on the centroid."""
	if not points:
		return []
	radius = adaptive_radius(points, base_km)
	counts = []
	for point in points:
		neighbours = sum(
			1
			for other in points
			if other.user_id != point.user_id and distance_km(point.location, other.location) <= radius
		)
		counts.append((neighbours, point))
	# stable sort keeps input order among equal counts
	counts.sort(key=lambda item: item[0], reverse=True)

	taken: set[str] = set()
	clusters: List[Cluster] = []
	for _, seed in counts:
		if seed.user_id in taken:
			continue
		taken.add(seed.user_id)
		members = [seed]
		for other in points:
			if other.user_id in taken:
				continue
			if distance_km(seed.location, other.location) <= radius:
				members.append(other)
				taken.add(other.user_id)
		center = seed.location
		if len(members) > 1:
			center = Coordinate(
				lat=sum(member.location.lat for member in members) / len(members),
				lng=sum(member.location.lng for member in members) / len(members),
			)
		clusters.append(Cluster(center=center, members=members, radius_km=radius))
	return clusters
