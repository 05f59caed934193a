"""Nearby-user fetcher: throttled two-tier refresh over the profile store."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from app.domain.geo.geodesy import Coordinate, coerce_coordinate, default_location, distance_km
from app.domain.map.events import EventBus, NearbyUsersReplaced
from app.domain.proximity.cache import DetailCache
from app.domain.proximity.models import NearbyUser, UserDetails
from app.domain.proximity.notices import LogNotifier, Notifier
from app.domain.proximity.privacy import exposed_distance_km
from app.domain.proximity.store import ProfileStore
from app.obs import metrics as obs_metrics
from app.settings import settings

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class RadiusOutOfRange(ValueError):
	def __init__(self, value: float) -> None:
		super().__init__(
			f"radius must be between {settings.radius_min_km:g} and {settings.radius_max_km:g} km, got {value!r}"
		)
		self.value = value


class RefreshOutcome(str, Enum):
	RAN = "ran"
	THROTTLED = "throttled"
	FAILED = "failed"


def validate_radius(value: float | None) -> float:
	"""Return the radius the viewer may use; None means the default."""
	if value is None:
		return float(settings.radius_default_km)
	radius = float(value)
	if not math.isfinite(radius) or radius < settings.radius_min_km or radius > settings.radius_max_km:
		raise RadiusOutOfRange(radius)
	return radius


def filter_by_radius(
	users: Iterable[NearbyUser],
	radius_km: float,
	*,
	include_unlocated: bool = True,
) -> List[NearbyUser]:
	"""Keep users within `radius_km`; users with unknown distance are kept unless asked otherwise.

	Hidden users are compared by their exposed distance.
	"""
	if radius_km <= 0:
		raise ValueError("radius_km must be positive")
	kept: List[NearbyUser] = []
	for user in users:
		if math.isinf(user.distance):
			if include_unlocated:
				kept.append(user)
			continue
		if exposed_distance_km(user) <= radius_km:
			kept.append(user)
	return kept


def select_detail_ids(candidates: Sequence[NearbyUser], cache: DetailCache, limit: int) -> List[str]:
	"""Ids of the closest candidates whose details are missing or expired."""
	ranked = sorted(candidates, key=lambda user: user.distance)
	selected: List[str] = []
	for user in ranked:
		if len(selected) >= limit:
			break
		if cache.needs_refresh(user.id):
			selected.append(user.id)
	return selected


class NearbyUserFetcher:
	"""Keeps the viewer's nearby list fresh while bounding store round-trips.

	A cycle is skipped outright when it starts inside the throttle window of the
	previous one, whatever triggered it. A failed cycle keeps the previous list.
	"""

	def __init__(
		self,
		viewer_id: str,
		store: ProfileStore,
		*,
		cache: Optional[DetailCache] = None,
		clock: Optional[Clock] = None,
		notifier: Optional[Notifier] = None,
		bus: Optional[EventBus] = None,
		constrained: bool = False,
		page_size: Optional[int] = None,
		detail_top_n: Optional[int] = None,
		sort_by_distance: Optional[bool] = None,
	) -> None:
		self.viewer_id = viewer_id
		self.store = store
		self._clock = clock or time.monotonic
		self.cache = cache or DetailCache(clock=self._clock)
		self.notifier: Notifier = notifier or LogNotifier()
		self.bus = bus
		self.constrained = constrained
		self.page_size = page_size or settings.nearby_page_size
		self.detail_top_n = settings.nearby_detail_top_n if detail_top_n is None else detail_top_n
		self.sort_by_distance = settings.nearby_sort_by_distance if sort_by_distance is None else sort_by_distance
		self._viewer_location: Optional[Coordinate] = None
		self._users: List[NearbyUser] = []
		self._last_started: Optional[float] = None
		self._background_notice_shown = False
		self._periodic: Optional[asyncio.Task] = None

	@property
	def throttle_seconds(self) -> float:
		if self.constrained:
			return float(settings.nearby_throttle_constrained_seconds)
		return float(settings.nearby_throttle_seconds)

	@property
	def users(self) -> List[NearbyUser]:
		return list(self._users)

	@property
	def viewer_location(self) -> Optional[Coordinate]:
		return self._viewer_location

	def set_viewer_location(self, coord: object) -> None:
		self._viewer_location = coerce_coordinate(coord)

	def in_range(self, radius_km: float, *, include_unlocated: bool = True) -> List[NearbyUser]:
		return filter_by_radius(self._users, radius_km, include_unlocated=include_unlocated)

	def _throttled(self, now: float) -> bool:
		return self._last_started is not None and now - self._last_started < self.throttle_seconds

	async def refresh(self, user_initiated: bool = False) -> RefreshOutcome:
		now = self._clock()
		if self._throttled(now):
			obs_metrics.inc_nearby_refresh(RefreshOutcome.THROTTLED.value, user_initiated=user_initiated)
			logger.debug("nearby refresh throttled viewer=%s", self.viewer_id)
			return RefreshOutcome.THROTTLED
		self._last_started = now

		try:
			merged = await self._collect()
		except asyncio.CancelledError:
			raise
		except Exception:
			obs_metrics.inc_nearby_refresh(RefreshOutcome.FAILED.value, user_initiated=user_initiated)
			logger.warning("nearby refresh failed viewer=%s", self.viewer_id, exc_info=True)
			if user_initiated:
				self.notifier.notify("Error", "Failed to refresh nearby users.", variant="destructive")
			return RefreshOutcome.FAILED

		if self.sort_by_distance:
			merged.sort(key=lambda user: user.distance)
		self._users = merged
		obs_metrics.inc_nearby_refresh(RefreshOutcome.RAN.value, user_initiated=user_initiated)
		obs_metrics.observe_nearby_results(len(merged))
		if self.bus is not None:
			self.bus.publish(NearbyUsersReplaced(users=tuple(merged)))
		self._announce(user_initiated)
		return RefreshOutcome.RAN

	async def _collect(self) -> List[NearbyUser]:
		summaries = await self.store.get_summaries(self.viewer_id, self.page_size)
		origin = self._viewer_location or default_location()
		candidates = [
			NearbyUser.from_summary(summary, distance_km(origin, summary.location))
			for summary in summaries
			if summary.id != self.viewer_id
		]

		wanted = select_detail_ids(candidates, self.cache, self.detail_top_n)
		fetched: Dict[str, UserDetails] = {}
		if wanted:
			obs_metrics.observe_detail_batch(len(wanted))
			for details in await self.store.get_details(wanted):
				if details.id in wanted:
					fetched[details.id] = details
			for user_id, details in fetched.items():
				self.cache.put(user_id, details)

		merged: List[NearbyUser] = []
		hits = 0
		for user in candidates:
			details = fetched.get(user.id)
			if details is None:
				details = self.cache.get_fresh(user.id)
				if details is not None:
					hits += 1
			merged.append(user.with_details(details) if details is not None else user)
		obs_metrics.inc_detail_cache("hit", hits)
		obs_metrics.inc_detail_cache("miss", len(wanted))
		self.cache.evict_expired()
		return merged

	def _announce(self, user_initiated: bool) -> None:
		if user_initiated:
			self.notifier.notify("Refreshed", "Nearby users list has been updated.")
			return
		if self.constrained and not self._background_notice_shown:
			self._background_notice_shown = True
			self.notifier.notify("Nearby users", f"{len(self._users)} people around you.")

	async def run_periodic(self, interval: Optional[float] = None) -> None:
		period = float(interval or settings.nearby_refresh_interval_seconds)
		while True:
			try:
				await self.refresh()
			except asyncio.CancelledError:
				raise
			except Exception:  # pragma: no cover
				logger.exception("nearby refresh loop error viewer=%s", self.viewer_id)
			await asyncio.sleep(period)

	def start(self, interval: Optional[float] = None) -> asyncio.Task:
		if self._periodic is None or self._periodic.done():
			self._periodic = asyncio.create_task(self.run_periodic(interval))
		return self._periodic

	async def stop(self) -> None:
		task, self._periodic = self._periodic, None
		if task is None:
			return
		task.cancel()
		try:
			await task
		except asyncio.CancelledError:
			pass
