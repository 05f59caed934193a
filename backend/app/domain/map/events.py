"""Typed map events and the in-process bus that carries them."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, DefaultDict, List, Optional, Tuple, Type, TypeVar

from app.domain.geo.geodesy import Coordinate

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LocationChanged:
	location: Optional[Coordinate]
	origin: str = "gps"


@dataclass(frozen=True, slots=True)
class RadiusChanged:
	radius_km: float


@dataclass(frozen=True, slots=True)
class ResolutionChanged:
	resolution: float


@dataclass(frozen=True, slots=True)
class PrivacyToggled:
	enabled: bool


@dataclass(frozen=True, slots=True)
class TrackingToggled:
	enabled: bool


@dataclass(frozen=True, slots=True)
class NearbyUsersReplaced:
	users: Tuple[Any, ...]


@dataclass(frozen=True, slots=True)
class SelectionChanged:
	user_id: Optional[str]


@dataclass(frozen=True, slots=True)
class ManualModeToggled:
	enabled: bool


@dataclass(frozen=True, slots=True)
class FriendRequestsChanged:
	requests: Tuple[Any, ...]
	moving_user_ids: frozenset = frozenset()


E = TypeVar("E")
Handler = Callable[[Any], None]


class EventBus:
	"""Synchronous publish/subscribe channel scoped to one map session.

	Handlers run in subscription order. A failing handler is logged and does
	not stop delivery to the remaining handlers.
	"""

	def __init__(self) -> None:
		self._handlers: DefaultDict[type, List[Handler]] = defaultdict(list)

	def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> Callable[[], None]:
		self._handlers[event_type].append(handler)

		def unsubscribe() -> None:
			handlers = self._handlers.get(event_type)
			if handlers and handler in handlers:
				handlers.remove(handler)

		return unsubscribe

	def publish(self, event: Any) -> None:
		for handler in list(self._handlers.get(type(event), ())):
			try:
				handler(event)
			except Exception:
				logger.exception("map event handler failed event=%s", type(event).__name__)

	def handler_count(self, event_type: Optional[type] = None) -> int:
		if event_type is not None:
			return len(self._handlers.get(event_type, ()))
		return sum(len(items) for items in self._handlers.values())

	def clear(self) -> None:
		self._handlers.clear()
