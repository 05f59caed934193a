"""Per-viewer cache of detail projections keyed by user id."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional

from app.domain.proximity.models import UserDetails
from app.settings import settings

Clock = Callable[[], float]


@dataclass(slots=True)
class CacheEntry:
	details: UserDetails
	stored_at: float


class DetailCache:
	"""TTL cache; entries strictly older than the TTL are treated as missing."""

	def __init__(self, ttl_seconds: Optional[float] = None, *, clock: Optional[Clock] = None) -> None:
		self.ttl_seconds = float(settings.nearby_detail_ttl_seconds if ttl_seconds is None else ttl_seconds)
		self._clock = clock or time.monotonic
		self._entries: Dict[str, CacheEntry] = {}

	def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
		return now - entry.stored_at <= self.ttl_seconds

	def get_fresh(self, user_id: str) -> Optional[UserDetails]:
		entry = self._entries.get(user_id)
		if entry is None or not self._is_fresh(entry, self._clock()):
			return None
		return entry.details

	def needs_refresh(self, user_id: str) -> bool:
		return self.get_fresh(user_id) is None

	def put(self, user_id: str, details: UserDetails) -> None:
		self._entries[user_id] = CacheEntry(details=details, stored_at=self._clock())

	def stored_at(self, user_id: str) -> Optional[float]:
		entry = self._entries.get(user_id)
		return entry.stored_at if entry else None

	def evict_expired(self) -> int:
		now = self._clock()
		expired = [key for key, entry in self._entries.items() if not self._is_fresh(entry, now)]
		for key in expired:
			del self._entries[key]
		return len(expired)

	def clear(self) -> None:
		self._entries.clear()

	def __contains__(self, user_id: object) -> bool:
		return user_id in self._entries

	def __len__(self) -> int:
		return len(self._entries)

	def __iter__(self) -> Iterator[str]:
		return iter(list(self._entries))
