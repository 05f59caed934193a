"""Map layers. Every redraw clears the layer's features and draws them again."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from app.domain.geo.geodesy import Coordinate
from app.domain.map.clustering import ClusterPoint, cluster_points
from app.domain.map.oscillator import PulseOscillator
from app.domain.map.scheduler import FrameScheduler
from app.domain.map.styles import (
	cluster_marker_style,
	friend_status,
	privacy_circle_style,
	radius_circle_style,
	user_marker_style,
)
from app.domain.map.surface import MapFeature, Role, VectorMapSurface
from app.domain.proximity.fetcher import filter_by_radius
from app.domain.proximity.models import FriendRequest, NearbyUser
from app.domain.proximity.privacy import (
	display_coordinate,
	is_obfuscation_enabled,
	privacy_circle_radius_m,
	pulse_parameters,
)
from app.obs import metrics as obs_metrics
from app.settings import settings

logger = logging.getLogger(__name__)


class LayerState(str, Enum):
	ABSENT = "absent"
	STATIC = "present-static"
	ANIMATED = "present-animated"


@dataclass(slots=True)
class MapState:
	viewer_id: str
	location: Optional[Coordinate] = None
	radius_km: float = 5.0
	tracking: bool = True
	privacy: bool = False
	manual_mode: bool = False
	selected_user_id: Optional[str] = None
	users: Tuple[NearbyUser, ...] = ()
	friend_requests: Tuple[FriendRequest, ...] = ()
	moving_user_ids: FrozenSet[str] = field(default_factory=frozenset)


class RadiusCircleLayer:
	FEATURE_ID = "radius-circle"

	def __init__(self, surface: VectorMapSurface, state: MapState) -> None:
		self.surface = surface
		self.map_state = state
		self.state = LayerState.ABSENT

	def redraw(self, _event: object = None) -> None:
		self.surface.remove_feature(self.FEATURE_ID)
		self.state = LayerState.ABSENT
		obs_metrics.inc_map_redraw("radius")
		if not self.map_state.tracking or self.map_state.location is None:
			return
		self.surface.add_feature(
			MapFeature(
				id=self.FEATURE_ID,
				role=Role.RADIUS_CIRCLE,
				center=self.map_state.location,
				style=radius_circle_style(),
				shape="circle",
				radius_m=self.map_state.radius_km * 1000.0,
			)
		)
		self.state = LayerState.STATIC

	def clear(self) -> None:
		self.surface.remove_feature(self.FEATURE_ID)
		self.state = LayerState.ABSENT


class PrivacyCircleLayer:
	"""Pulsing disc around the viewer's true position while privacy mode is on."""

	FEATURE_ID = "privacy-circle"

	def __init__(self, surface: VectorMapSurface, state: MapState, scheduler: FrameScheduler) -> None:
		self.surface = surface
		self.map_state = state
		self.scheduler = scheduler
		minimum, maximum, duration_ms = pulse_parameters()
		self.oscillator = PulseOscillator.for_duration(minimum, maximum, duration_ms, scheduler.frame_ms)
		self.state = LayerState.ABSENT
		self._frame: Optional[int] = None

	@property
	def animating(self) -> bool:
		return self._frame is not None

	def redraw(self, _event: object = None) -> None:
		obs_metrics.inc_map_redraw("privacy")
		if not self.map_state.privacy or self.map_state.location is None:
			self.clear()
			return
		self.surface.remove_feature(self.FEATURE_ID)
		self.surface.add_feature(
			MapFeature(
				id=self.FEATURE_ID,
				role=Role.PRIVACY_CIRCLE,
				center=self.map_state.location,
				style=privacy_circle_style(self.oscillator.value),
				shape="circle",
				radius_m=privacy_circle_radius_m(),
			)
		)
		if self.state is LayerState.ABSENT:
			self.state = LayerState.STATIC
		self.start_animation()

	def start_animation(self) -> None:
		if self.state is LayerState.ABSENT or self._frame is not None:
			return
		self.state = LayerState.ANIMATED
		self._frame = self.scheduler.request(self._tick)

	def stop_animation(self) -> None:
		frame, self._frame = self._frame, None
		if frame is not None:
			self.scheduler.cancel(frame)
		if self.state is LayerState.ANIMATED:
			self.state = LayerState.STATIC

	def _tick(self) -> None:
		self._frame = None
		if self.state is not LayerState.ANIMATED or self.surface.get(self.FEATURE_ID) is None:
			return
		opacity = self.oscillator.step()
		self.surface.restyle(self.FEATURE_ID, privacy_circle_style(opacity))
		self._frame = self.scheduler.request(self._tick)

	def clear(self) -> None:
		# the frame callback must be gone before the feature is
		self.stop_animation()
		self.surface.remove_feature(self.FEATURE_ID)
		self.oscillator.reset()
		self.state = LayerState.ABSENT


class UserMarkerLayer:
	"""Self marker plus other users, collapsed into clusters when zoomed out."""

	SELF_ID = "self"

	def __init__(
		self,
		surface: VectorMapSurface,
		state: MapState,
		*,
		rng: Optional[random.Random] = None,
		show_labels: Optional[bool] = None,
		cluster_resolution: Optional[float] = None,
		cluster_radius_km: Optional[float] = None,
	) -> None:
		self.surface = surface
		self.map_state = state
		self.rng = rng
		self.show_labels = settings.map_show_labels if show_labels is None else show_labels
		self.cluster_resolution = (
			settings.map_cluster_resolution if cluster_resolution is None else cluster_resolution
		)
		self.cluster_radius_km = settings.map_cluster_radius_km if cluster_radius_km is None else cluster_radius_km
		self.state = LayerState.ABSENT
		self._positions: Dict[str, Coordinate] = {}

	@property
	def clustered(self) -> bool:
		return self.surface.resolution > self.cluster_resolution

	def position_of(self, user_id: str) -> Optional[Coordinate]:
		"""Display position used by the last redraw."""
		return self._positions.get(user_id)

	def redraw(self, _event: object = None) -> None:
		self.surface.remove_role(Role.SELF, Role.OTHER, Role.CLUSTER)
		self._positions = {}
		self.state = LayerState.ABSENT
		obs_metrics.inc_map_redraw("users")
		state = self.map_state

		if state.location is not None and not state.privacy:
			self.surface.add_feature(
				MapFeature(
					id=self.SELF_ID,
					role=Role.SELF,
					center=state.location,
					style=user_marker_style(is_self=True),
					user_id=state.viewer_id,
				)
			)

		visible = [
			user
			for user in filter_by_radius(state.users, state.radius_km, include_unlocated=False)
			if user.id != state.viewer_id
		]
		points: List[ClusterPoint] = []
		for user in visible:
			position = display_coordinate(user, rng=self.rng)
			if position is None:
				continue
			self._positions[user.id] = position
			points.append(ClusterPoint(user_id=user.id, location=position, is_business=user.is_business))

		by_id = {user.id: user for user in visible}
		if self.clustered:
			for index, cluster in enumerate(cluster_points(points, self.cluster_radius_km)):
				if cluster.size == 1:
					self._draw_user(by_id[cluster.members[0].user_id])
					continue
				self.surface.add_feature(
					MapFeature(
						id=f"cluster:{index}",
						role=Role.CLUSTER,
						center=cluster.center,
						style=cluster_marker_style(cluster.size, business=cluster.is_business),
						properties={"count": cluster.size},
					)
				)
		else:
			for point in points:
				self._draw_user(by_id[point.user_id])

		if self.surface.features(Role.SELF) or self._positions:
			self.state = LayerState.STATIC

	def _draw_user(self, user: NearbyUser) -> None:
		state = self.map_state
		private = is_obfuscation_enabled(user)
		self.surface.add_feature(
			MapFeature(
				id=f"user:{user.id}",
				role=Role.OTHER,
				center=self._positions[user.id],
				style=user_marker_style(
					is_self=False,
					name=None if private else user.name,
					privacy=private,
					selected=state.selected_user_id == user.id,
					moving=user.id in state.moving_user_ids,
					status=friend_status(user.id, state.friend_requests),
					show_labels=self.show_labels,
				),
				user_id=user.id,
			)
		)

	def clear(self) -> None:
		self.surface.remove_role(Role.SELF, Role.OTHER, Role.CLUSTER)
		self._positions = {}
		self.state = LayerState.ABSENT
