"""Socket.IO namespace that drives a presence tracker per connection."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import socketio

from app.domain.map.events import NearbyUsersReplaced
from app.domain.presence.feed import ChangeFeed, RedisChangeFeed
from app.domain.presence.tracker import PresenceTracker
from app.domain.proximity.notices import EmitNotifier
from app.domain.proximity.sessions import SessionRegistry, ViewerSession, get_registry
from app.infra.auth import AuthenticatedUser, authenticate_socket
from app.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Connection:
	user: AuthenticatedUser
	session: ViewerSession
	tracker: PresenceTracker
	notifier: EmitNotifier
	unsubscribe: Callable[[], None]


class PresenceNamespace(socketio.AsyncNamespace):
	"""Marks the viewer online while connected and streams `presence.update` patches."""

	def __init__(
		self,
		*,
		feed: Optional[ChangeFeed] = None,
		registry: Optional[SessionRegistry] = None,
	) -> None:
		super().__init__("/presence")
		self._feed = feed
		self._registry = registry
		self._connections: Dict[str, _Connection] = {}

	@property
	def registry(self) -> SessionRegistry:
		return self._registry or get_registry()

	@property
	def feed(self) -> ChangeFeed:
		if self._feed is None:
			self._feed = RedisChangeFeed()
		return self._feed

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		obs_metrics.socket_connected(self.namespace)
		try:
			user = authenticate_socket(environ, auth)
		except ConnectionRefusedError:
			obs_metrics.socket_disconnected(self.namespace)
			raise
		constrained = bool((auth or {}).get("constrained"))
		session = await self.registry.acquire(user.id, constrained=constrained)
		tracker = PresenceTracker(user.id, session.fetcher.store, self.feed, nearby=session.fetcher.users)
		try:
			tracker.replace_chats(
				await session.fetcher.store.get_recent_chat_partners(user.id, tracker.relevant_chats)
			)
		except Exception:
			logger.warning("chat partners unavailable viewer=%s", user.id, exc_info=True)

		def _on_patch(user_id: str, online: bool) -> None:
			self._schedule_emit(sid, "presence.update", {"user_id": user_id, "is_online": online})

		tracker.add_listener(_on_patch)
		unsubscribe = session.bus.subscribe(
			NearbyUsersReplaced, lambda event: tracker.replace_nearby(list(event.users))
		)
		notifier = EmitNotifier(self.emit, sid)
		session.notifier.attach(notifier)
		self._connections[sid] = _Connection(
			user=user, session=session, tracker=tracker, notifier=notifier, unsubscribe=unsubscribe
		)
		await tracker.activate()
		await self.emit("presence:ack", {"ok": True, "user_id": user.id}, room=sid)

	async def on_disconnect(self, sid: str) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		conn = self._connections.pop(sid, None)
		if conn is None:
			return
		conn.unsubscribe()
		conn.session.notifier.detach(conn.notifier)
		try:
			await conn.tracker.teardown()
		finally:
			await self.registry.release(conn.user.id)

	async def on_visibility(self, sid: str, payload: Optional[dict] = None) -> None:
		obs_metrics.socket_event(self.namespace, "visibility")
		conn = self._connections.get(sid)
		if conn is None:
			raise ConnectionRefusedError("unauthenticated")
		if not isinstance(payload, dict) or not isinstance(payload.get("visible"), bool):
			await self.emit("sys.warn", {"event": "visibility", "detail": "visible must be a boolean"}, room=sid)
			return
		conn.tracker.set_visibility(payload["visible"])

	async def on_unload(self, sid: str, payload: Optional[dict] = None) -> None:
		obs_metrics.socket_event(self.namespace, "unload")
		conn = self._connections.get(sid)
		if conn is None:
			return
		conn.tracker.beacon_offline()

	def tracker_for(self, sid: str) -> Optional[PresenceTracker]:
		conn = self._connections.get(sid)
		return conn.tracker if conn else None

	def _schedule_emit(self, sid: str, event: str, payload: dict) -> None:
		conn = self._connections.get(sid)
		if conn is None:
			return
		conn.notifier.spawn(self.emit(event, payload, room=sid))
