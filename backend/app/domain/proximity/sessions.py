"""Registry of per-viewer proximity sessions shared by REST and socket handlers."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from app.domain.map.events import EventBus
from app.domain.proximity.fetcher import NearbyUserFetcher
from app.domain.proximity.notices import FanoutNotifier
from app.domain.proximity.store import PostgresProfileStore, ProfileStore
from app.settings import settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ViewerSession:
	viewer_id: str
	fetcher: NearbyUserFetcher
	bus: EventBus
	notifier: FanoutNotifier
	holders: int = 0
	used_at: Optional[float] = None
	meta: Dict[str, object] = field(default_factory=dict)


class SessionRegistry:
	"""Creates sessions lazily and runs background refresh while a client holds one.

	A session nobody holds is kept for `idle_seconds` after its last REST use so
	throttling and the detail cache carry over between requests, then evicted.
	"""

	def __init__(
		self,
		store: Optional[ProfileStore] = None,
		*,
		clock: Optional[Callable[[], float]] = None,
		idle_seconds: Optional[float] = None,
	) -> None:
		self.store: ProfileStore = store or PostgresProfileStore()
		self._clock = clock
		self._now = clock or time.monotonic
		self.idle_seconds = settings.session_idle_seconds if idle_seconds is None else idle_seconds
		self._sessions: Dict[str, ViewerSession] = {}
		self._lock = asyncio.Lock()

	def get(self, viewer_id: str) -> Optional[ViewerSession]:
		return self._sessions.get(viewer_id)

	def session_for(self, viewer_id: str, *, constrained: bool = False) -> ViewerSession:
		"""Session for a REST request; marks it used and sweeps idle ones."""
		now = self._now()
		self.sweep(now)
		session = self._ensure(viewer_id, constrained=constrained)
		session.used_at = now
		return session

	def sweep(self, now: Optional[float] = None) -> int:
		"""Evict unheld sessions whose last REST use is older than the idle window."""
		now = self._now() if now is None else now
		expired = [
			viewer_id
			for viewer_id, session in self._sessions.items()
			if session.holders == 0 and not self._recently_used(session, now)
		]
		for viewer_id in expired:
			self._evict(viewer_id)
		return len(expired)

	def _recently_used(self, session: ViewerSession, now: float) -> bool:
		return session.used_at is not None and now - session.used_at < self.idle_seconds

	def _evict(self, viewer_id: str) -> None:
		session = self._sessions.pop(viewer_id, None)
		if session is None:
			return
		session.bus.clear()
		logger.debug("evicted idle session viewer=%s", viewer_id)

	def _ensure(self, viewer_id: str, *, constrained: bool = False) -> ViewerSession:
		session = self._sessions.get(viewer_id)
		if session is None:
			bus = EventBus()
			notifier = FanoutNotifier()
			fetcher = NearbyUserFetcher(
				viewer_id,
				self.store,
				clock=self._clock,
				notifier=notifier,
				bus=bus,
				constrained=constrained,
			)
			session = ViewerSession(viewer_id=viewer_id, fetcher=fetcher, bus=bus, notifier=notifier)
			self._sessions[viewer_id] = session
		elif constrained and not session.fetcher.constrained:
			session.fetcher.constrained = True
		return session

	async def acquire(self, viewer_id: str, *, constrained: bool = False) -> ViewerSession:
		async with self._lock:
			session = self._ensure(viewer_id, constrained=constrained)
			session.holders += 1
			if session.holders == 1:
				session.fetcher.start()
			return session

	async def release(self, viewer_id: str) -> None:
		async with self._lock:
			session = self._sessions.get(viewer_id)
			if session is None or session.holders == 0:
				return
			session.holders -= 1
			if session.holders == 0:
				await session.fetcher.stop()
				if not self._recently_used(session, self._now()):
					self._evict(viewer_id)

	async def shutdown(self) -> None:
		async with self._lock:
			sessions = list(self._sessions.values())
			self._sessions.clear()
		for session in sessions:
			try:
				await session.fetcher.stop()
			except Exception:
				logger.warning("failed to stop session viewer=%s", session.viewer_id, exc_info=True)
			session.bus.clear()

	def __len__(self) -> int:
		return len(self._sessions)


_registry: Optional[SessionRegistry] = None


def get_registry() -> SessionRegistry:
	global _registry
	if _registry is None:
		_registry = SessionRegistry()
	return _registry


def set_registry(registry: Optional[SessionRegistry]) -> None:
	global _registry
	_registry = registry
