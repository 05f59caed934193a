"""Per-viewer map controller: owns map state and routes bus events to layers."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Callable, List, Optional, Set

from app.domain.geo.geodesy import Coordinate, coerce_coordinate, default_location
from app.domain.map.events import (
	EventBus,
	FriendRequestsChanged,
	LocationChanged,
	ManualModeToggled,
	NearbyUsersReplaced,
	PrivacyToggled,
	RadiusChanged,
	ResolutionChanged,
	SelectionChanged,
	TrackingToggled,
)
from app.domain.map.layers import MapState, PrivacyCircleLayer, RadiusCircleLayer, UserMarkerLayer
from app.domain.map.scheduler import FrameScheduler
from app.domain.map.surface import VectorMapSurface
from app.domain.proximity.fetcher import NearbyUserFetcher
from app.domain.proximity.notices import LogNotifier, Notifier
from app.domain.proximity.store import ProfileStore
from app.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

RenderListener = Callable[[dict], None]


class MapController:
	"""Keeps the map surface in sync with the viewer's state.

	Commands publish events on the bus. The first handler of each event updates
	`state`, then the affected layers redraw from it. Render listeners receive the
	GeoJSON of the surface after every handled event.
	"""

	def __init__(
		self,
		viewer_id: str,
		store: ProfileStore,
		scheduler: FrameScheduler,
		*,
		bus: Optional[EventBus] = None,
		surface: Optional[VectorMapSurface] = None,
		notifier: Optional[Notifier] = None,
		fetcher: Optional[NearbyUserFetcher] = None,
		rng: Optional[random.Random] = None,
		radius_km: float = 5.0,
		tracking: bool = True,
	) -> None:
		self.viewer_id = viewer_id
		self.store = store
		self.bus = bus or EventBus()
		self.surface = surface or VectorMapSurface()
		self.notifier: Notifier = notifier or LogNotifier()
		self.fetcher = fetcher
		self.state = MapState(viewer_id=viewer_id, radius_km=radius_km, tracking=tracking)
		if fetcher is not None:
			self.state.users = tuple(fetcher.users)
			self.state.location = fetcher.viewer_location
		self.radius_layer = RadiusCircleLayer(self.surface, self.state)
		self.privacy_layer = PrivacyCircleLayer(self.surface, self.state, scheduler)
		self.marker_layer = UserMarkerLayer(self.surface, self.state, rng=rng)
		self._render_listeners: List[RenderListener] = []
		self._unsubscribers: List[Callable[[], None]] = []
		self._writes: Set[asyncio.Task] = set()
		self._wire()

	def _wire(self) -> None:
		subscribe = self.bus.subscribe
		redraw_all = (self.radius_layer.redraw, self.privacy_layer.redraw, self.marker_layer.redraw)
		for event_type, handlers in (
			(LocationChanged, (self._absorb_location, *redraw_all)),
			(RadiusChanged, (self._absorb_radius, self.radius_layer.redraw, self.marker_layer.redraw)),
			(ResolutionChanged, (self._absorb_resolution, self.marker_layer.redraw)),
			(PrivacyToggled, (self._absorb_privacy, self.privacy_layer.redraw, self.marker_layer.redraw)),
			(TrackingToggled, (self._absorb_tracking, self.radius_layer.redraw)),
			(NearbyUsersReplaced, (self._absorb_users, self.marker_layer.redraw)),
			(SelectionChanged, (self._absorb_selection, self.marker_layer.redraw)),
			(ManualModeToggled, (self._absorb_manual_mode,)),
			(FriendRequestsChanged, (self._absorb_friend_requests, self.marker_layer.redraw)),
		):
			for handler in handlers:
				self._unsubscribers.append(subscribe(event_type, handler))
			self._unsubscribers.append(subscribe(event_type, self._rendered))
		self._unsubscribers.append(self.surface.on_click(self.handle_click))

	# State absorption -----------------------------------------------------

	def _absorb_location(self, event: LocationChanged) -> None:
		self.state.location = event.location
		if self.fetcher is not None:
			self.fetcher.set_viewer_location(event.location)

	def _absorb_radius(self, event: RadiusChanged) -> None:
		self.state.radius_km = event.radius_km

	def _absorb_resolution(self, event: ResolutionChanged) -> None:
		self.surface.set_resolution(event.resolution)

	def _absorb_privacy(self, event: PrivacyToggled) -> None:
		self.state.privacy = event.enabled

	def _absorb_tracking(self, event: TrackingToggled) -> None:
		self.state.tracking = event.enabled

	def _absorb_users(self, event: NearbyUsersReplaced) -> None:
		self.state.users = tuple(event.users)

	def _absorb_selection(self, event: SelectionChanged) -> None:
		self.state.selected_user_id = event.user_id

	def _absorb_manual_mode(self, event: ManualModeToggled) -> None:
		self.state.manual_mode = event.enabled

	def _absorb_friend_requests(self, event: FriendRequestsChanged) -> None:
		self.state.friend_requests = tuple(event.requests)
		self.state.moving_user_ids = frozenset(event.moving_user_ids)

	def _rendered(self, _event: object) -> None:
		if not self._render_listeners:
			return
		collection = self.surface.to_geojson()
		for listener in list(self._render_listeners):
			try:
				listener(collection)
			except Exception:
				logger.exception("map render listener failed viewer=%s", self.viewer_id)

	def on_render(self, listener: RenderListener) -> None:
		self._render_listeners.append(listener)

	# Commands -------------------------------------------------------------

	def update_location(self, coord: object, *, origin: str = "gps") -> Optional[Coordinate]:
		location = coerce_coordinate(coord)
		self.bus.publish(LocationChanged(location=location, origin=origin))
		return location

	def set_radius(self, radius_km: float) -> None:
		self.bus.publish(RadiusChanged(radius_km=float(radius_km)))

	def set_resolution(self, resolution: float) -> None:
		self.bus.publish(ResolutionChanged(resolution=float(resolution)))

	def set_privacy(self, enabled: bool) -> None:
		self.bus.publish(PrivacyToggled(enabled=bool(enabled)))

	def toggle_privacy(self, enabled: bool) -> Optional[asyncio.Task]:
		"""Viewer-initiated privacy switch: redraw now, then store the preference."""
		self.set_privacy(enabled)
		if self.state.location is None:
			return None
		return self._spawn_write(
			self.state.location, origin="privacy", notify=True, hide_exact_location=bool(enabled)
		)

	def set_tracking(self, enabled: bool) -> None:
		self.bus.publish(TrackingToggled(enabled=bool(enabled)))

	def select(self, user_id: Optional[str]) -> None:
		self.bus.publish(SelectionChanged(user_id=user_id))

	def set_manual_mode(self, enabled: bool) -> None:
		self.bus.publish(ManualModeToggled(enabled=bool(enabled)))

	def toggle_manual_mode(self, enabled: bool) -> asyncio.Task:
		"""Viewer-initiated mode switch: manual mode stops tracking, then the mode is stored."""
		enabled = bool(enabled)
		self.set_manual_mode(enabled)
		if enabled and self.state.tracking:
			self.set_tracking(False)
		return self._track(asyncio.ensure_future(self._persist_mode(enabled)))

	async def _persist_mode(self, manual: bool) -> bool:
		try:
			await self.store.update_location_mode(self.viewer_id, manual)
		except asyncio.CancelledError:
			raise
		except Exception:
			logger.warning("location mode write failed viewer=%s manual=%s", self.viewer_id, manual, exc_info=True)
			self.notifier.notify("Error", "Failed to update your location mode.", variant="destructive")
			return False
		return True

	async def load_location_settings(self) -> bool:
		"""Seed privacy and manual mode from the stored profile, before the first render."""
		try:
			stored = await self.store.get_location_settings(self.viewer_id)
		except asyncio.CancelledError:
			raise
		except Exception:
			logger.warning("location settings unavailable viewer=%s", self.viewer_id, exc_info=True)
			return False
		self.state.privacy = stored.hide_exact_location
		self.state.manual_mode = stored.manual_location
		if stored.manual_location:
			self.state.tracking = False
		return True

	async def load_friend_requests(self, moving_user_ids: frozenset = frozenset()) -> bool:
		try:
			requests = await self.store.get_friend_requests(self.viewer_id)
		except asyncio.CancelledError:
			raise
		except Exception:
			logger.warning("friend requests unavailable viewer=%s", self.viewer_id, exc_info=True)
			return False
		self.bus.publish(FriendRequestsChanged(requests=tuple(requests), moving_user_ids=moving_user_ids))
		return True

	def handle_click(self, coord: Coordinate) -> Optional[asyncio.Task]:
		"""In manual mode a click moves the viewer there, before the store write completes."""
		if not self.state.manual_mode:
			return None
		location = self.update_location(coord, origin="manual")
		if location is None:
			return None
		return self._spawn_write(location, origin="manual", notify=True)

	def report_location(self, coord: object) -> Optional[asyncio.Task]:
		"""Apply a device position and store it in the background; ignored in manual mode."""
		if self.state.manual_mode:
			logger.debug("device location ignored in manual mode viewer=%s", self.viewer_id)
			return None
		location = self.update_location(coord, origin="gps")
		if location is None:
			return None
		return self._spawn_write(location, origin="gps", notify=False)

	def _spawn_write(
		self,
		location: Coordinate,
		*,
		origin: str,
		notify: bool,
		hide_exact_location: Optional[bool] = None,
	) -> asyncio.Task:
		task = asyncio.ensure_future(
			self._persist_location(location, origin=origin, notify=notify, hide_exact_location=hide_exact_location)
		)
		return self._track(task)

	def _track(self, task: asyncio.Task) -> asyncio.Task:
		self._writes.add(task)
		task.add_done_callback(self._writes.discard)
		return task

	async def _persist_location(
		self,
		location: Coordinate,
		*,
		origin: str,
		notify: bool,
		hide_exact_location: Optional[bool] = None,
	) -> bool:
		try:
			await self.store.update_location(self.viewer_id, location, hide_exact_location=hide_exact_location)
		except asyncio.CancelledError:
			raise
		except Exception:
			obs_metrics.inc_location_write(origin, "failed")
			logger.warning("location write failed viewer=%s origin=%s", self.viewer_id, origin, exc_info=True)
			if notify:
				self.notifier.notify("Error", "Failed to update your location.", variant="destructive")
			return False
		obs_metrics.inc_location_write(origin, "ok")
		return True

	def geolocation_denied(self) -> Coordinate:
		fallback = default_location()
		self.notifier.notify(
			"Location unavailable",
			"Location access was denied, showing a default location instead.",
		)
		self.update_location(fallback, origin="default")
		return fallback

	@property
	def pending_writes(self) -> int:
		return len(self._writes)

	async def flush_writes(self) -> None:
		if self._writes:
			await asyncio.gather(*list(self._writes), return_exceptions=True)

	def render(self) -> dict:
		self.radius_layer.redraw()
		self.privacy_layer.redraw()
		self.marker_layer.redraw()
		return self.surface.to_geojson()

	def teardown(self) -> None:
		self.privacy_layer.clear()
		for unsubscribe in self._unsubscribers:
			unsubscribe()
		self._unsubscribers.clear()
		self._render_listeners.clear()
		self.radius_layer.clear()
		self.marker_layer.clear()
