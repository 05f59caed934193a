"""Own-status writes and bounded live status tracking for one viewer."""

from __future__ import annotations

import asyncio
import logging
import math
import time
from datetime import datetime, timezone
from typing import Callable, FrozenSet, List, Optional

from app.domain.presence.feed import ChangeFeed, ProfileChange, Subscription
from app.domain.proximity.models import ChatPartner, NearbyUser
from app.domain.proximity.store import ProfileStore
from app.obs import metrics as obs_metrics
from app.settings import settings

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
PatchListener = Callable[[str, bool], None]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class PresenceTracker:
	"""Keeps the viewer's online flag written and a bounded set of others' flags live.

	Visibility changes are coalesced over the debounce window. "Offline" is
	written at once. "Online" is written once the cooldown since the last
	successful write has elapsed: dropped if already online, otherwise delayed.
	"""

	def __init__(
		self,
		viewer_id: str,
		store: ProfileStore,
		feed: ChangeFeed,
		*,
		nearby: Optional[List[NearbyUser]] = None,
		chats: Optional[List[ChatPartner]] = None,
		clock: Optional[Clock] = None,
		debounce_seconds: Optional[float] = None,
		cooldown_seconds: Optional[float] = None,
		relevant_nearby: Optional[int] = None,
		relevant_chats: Optional[int] = None,
		resubscribe_seconds: Optional[float] = None,
	) -> None:
		self.viewer_id = viewer_id
		self.store = store
		self.feed = feed
		self.nearby: List[NearbyUser] = nearby if nearby is not None else []
		self.chats: List[ChatPartner] = chats if chats is not None else []
		self._clock = clock or time.monotonic
		self.debounce_seconds = settings.presence_debounce_seconds if debounce_seconds is None else debounce_seconds
		self.cooldown_seconds = settings.presence_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
		self.relevant_nearby = settings.presence_relevant_nearby if relevant_nearby is None else relevant_nearby
		self.relevant_chats = settings.presence_relevant_chats if relevant_chats is None else relevant_chats
		self.resubscribe_seconds = (
			settings.presence_resubscribe_seconds if resubscribe_seconds is None else resubscribe_seconds
		)
		self.writes = 0
		self.online: Optional[bool] = None
		self._last_write_at: Optional[float] = None
		self._pending: Optional[asyncio.Task] = None
		self._pending_state: Optional[bool] = None
		self._subscription: Optional[Subscription] = None
		self._subscribe_failed = False
		self._relevant: FrozenSet[str] = frozenset()
		self._relevant_at: Optional[float] = None
		self._loop: Optional[asyncio.Task] = None
		self._listeners: List[PatchListener] = []
		self._closed = False

	@property
	def pending_write(self) -> bool:
		return self._pending is not None and not self._pending.done()

	@property
	def subscription(self) -> Optional[Subscription]:
		return self._subscription

	def add_listener(self, listener: PatchListener) -> None:
		self._listeners.append(listener)

	# Own status -----------------------------------------------------------

	async def activate(self) -> bool:
		"""Mark the viewer online right away and start tracking relevant users."""
		self._closed = False
		ok = await self._write(True)
		await self.resubscribe(force=True)
		if self._loop is None or self._loop.done():
			self._loop = asyncio.create_task(self._resubscribe_loop())
		return ok

	def set_visibility(self, visible: bool) -> None:
		self._pending_state = bool(visible)
		if self._pending is not None and not self._pending.done():
			self._pending.cancel()
		self._pending = asyncio.create_task(self._commit_after_debounce())

	async def _commit_after_debounce(self) -> None:
		await asyncio.sleep(self.debounce_seconds)
		state = self._pending_state
		self._pending_state = None
		if state is None:
			return
		if not state:
			await self._write(False)
			return
		if self._last_write_at is not None:
			remaining = self.cooldown_seconds - (self._clock() - self._last_write_at)
			if remaining > 0 and self.online:
				obs_metrics.inc_presence_write(state, "skipped")
				logger.debug("presence write skipped by cooldown viewer=%s", self.viewer_id)
				return
			if remaining > 0:
				# coming back online: wait out the cooldown, still cancellable by a newer change
				obs_metrics.inc_presence_write(state, "deferred")
				await asyncio.sleep(remaining)
		await self._write(True)

	async def _write(self, online: bool) -> bool:
		try:
			await self.store.update_online_status(self.viewer_id, online)
		except asyncio.CancelledError:
			raise
		except Exception:
			obs_metrics.inc_presence_write(online, "failed")
			logger.warning("presence write failed viewer=%s online=%s", self.viewer_id, online, exc_info=True)
			return False
		self.writes += 1
		self.online = online
		self._last_write_at = self._clock()
		obs_metrics.inc_presence_write(online, "ok")
		return True

	def beacon_offline(self) -> None:
		"""Fire-and-forget offline write for page unload."""
		try:
			self.store.update_online_status_best_effort(self.viewer_id, False)
		except Exception:
			logger.warning("offline beacon failed viewer=%s", self.viewer_id, exc_info=True)
		self.online = False

	# Relevant users -------------------------------------------------------

	def relevant_ids(self, *, force: bool = False) -> FrozenSet[str]:
		"""Closest K nearby users plus the M most recent chat partners.

		Recomputed at most once per resubscribe interval unless forced.
		"""
		now = self._clock()
		if (
			not force
			and self._relevant_at is not None
			and now - self._relevant_at < self.resubscribe_seconds
		):
			return self._relevant
		located = [user for user in self.nearby if not math.isinf(user.distance)]
		closest = sorted(located, key=lambda user: user.distance)[: self.relevant_nearby]
		recent = sorted(self.chats, key=lambda chat: chat.last_activity or _EPOCH, reverse=True)[
			: self.relevant_chats
		]
		ids = {user.id for user in closest} | {chat.participant_id for chat in recent}
		ids.discard(self.viewer_id)
		self._relevant = frozenset(ids)
		self._relevant_at = now
		return self._relevant

	async def resubscribe(self, *, force: bool = False) -> bool:
		"""Replace the change subscription when the relevant set moved; True if replaced."""
		ids = self.relevant_ids(force=force)
		current = self._subscription
		if current is not None and not self._subscribe_failed and current.ids == ids:
			return False
		if current is not None:
			self._subscription = None
			try:
				await current.close()
			except Exception:
				logger.warning("closing presence subscription failed viewer=%s", self.viewer_id, exc_info=True)
		if not ids:
			self._subscribe_failed = False
			return current is not None
		try:
			self._subscription = await self.feed.subscribe(ids, self._on_change)
		except asyncio.CancelledError:
			raise
		except Exception:
			# retried on the next cycle
			self._subscribe_failed = True
			logger.warning("presence subscribe failed viewer=%s", self.viewer_id, exc_info=True)
			return False
		self._subscribe_failed = False
		return True

	async def _resubscribe_loop(self) -> None:
		while not self._closed:
			await asyncio.sleep(self.resubscribe_seconds)
			try:
				await self.resubscribe()
			except asyncio.CancelledError:
				raise
			except Exception:
				logger.exception("presence resubscribe loop error viewer=%s", self.viewer_id)

	def _on_change(self, change: ProfileChange) -> None:
		if "is_online" not in change.changed_fields:
			return
		self.apply_online_patch(change.id, bool(change.changed_fields["is_online"]))

	def apply_online_patch(self, user_id: str, online: bool) -> int:
		"""Set only the online flag of matching nearby and chat entries."""
		patched = 0
		for user in self.nearby:
			if user.id == user_id:
				user.is_online = online
				patched += 1
				obs_metrics.inc_presence_patch("nearby")
		for chat in self.chats:
			if chat.participant_id == user_id:
				chat.is_online = online
				patched += 1
				obs_metrics.inc_presence_patch("chat")
		if patched:
			for listener in list(self._listeners):
				try:
					listener(user_id, online)
				except Exception:
					logger.exception("presence listener failed id=%s", user_id)
		return patched

	def replace_nearby(self, users: List[NearbyUser]) -> None:
		self.nearby[:] = users

	def replace_chats(self, chats: List[ChatPartner]) -> None:
		self.chats[:] = chats

	# Teardown -------------------------------------------------------------

	async def teardown(self) -> None:
		"""Discard any pending write, drop the subscription and write offline."""
		self._closed = True
		pending, self._pending = self._pending, None
		self._pending_state = None
		loop, self._loop = self._loop, None
		for task in (pending, loop):
			if task is None or task.done():
				continue
			task.cancel()
			try:
				await task
			except asyncio.CancelledError:
				pass
		subscription, self._subscription = self._subscription, None
		if subscription is not None:
			try:
				await subscription.close()
			except Exception:
				logger.warning("closing presence subscription failed viewer=%s", self.viewer_id, exc_info=True)
		await self._write(False)
