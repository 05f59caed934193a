"""Socket.IO namespace streaming the viewer's map as GeoJSON."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import socketio

from app.domain.geo.geodesy import coerce_coordinate
from app.domain.map.controller import MapController
from app.domain.map.scheduler import AsyncioFrameScheduler
from app.domain.proximity.fetcher import RadiusOutOfRange, validate_radius
from app.domain.proximity.notices import EmitNotifier
from app.domain.proximity.sessions import SessionRegistry, ViewerSession, get_registry
from app.infra.auth import AuthenticatedUser, authenticate_socket
from app.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Connection:
	user: AuthenticatedUser
	session: ViewerSession
	controller: MapController
	scheduler: AsyncioFrameScheduler
	notifier: EmitNotifier


def _flag(payload: Any, key: str = "enabled") -> Optional[bool]:
	if isinstance(payload, dict) and isinstance(payload.get(key), bool):
		return payload[key]
	return None


class MapNamespace(socketio.AsyncNamespace):
	"""One map controller per connection; emits `map.features` after each redraw."""

	def __init__(
		self,
		*,
		registry: Optional[SessionRegistry] = None,
		scheduler_factory: Callable[[], AsyncioFrameScheduler] = AsyncioFrameScheduler,
	) -> None:
		super().__init__("/map")
		self._registry = registry
		self._scheduler_factory = scheduler_factory
		self._connections: Dict[str, _Connection] = {}

	@property
	def registry(self) -> SessionRegistry:
		return self._registry or get_registry()

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		obs_metrics.socket_connected(self.namespace)
		try:
			user = authenticate_socket(environ, auth)
		except ConnectionRefusedError:
			obs_metrics.socket_disconnected(self.namespace)
			raise
		options = auth or {}
		session = await self.registry.acquire(user.id, constrained=bool(options.get("constrained")))
		notifier = EmitNotifier(self.emit, sid)
		session.notifier.attach(notifier)
		scheduler = self._scheduler_factory()
		controller = MapController(
			user.id,
			session.fetcher.store,
			scheduler,
			bus=session.bus,
			notifier=notifier,
			fetcher=session.fetcher,
			radius_km=validate_radius(None),
			tracking=options.get("tracking", True) is not False,
		)
		controller.on_render(
			lambda collection: notifier.spawn(self.emit("map.features", collection, room=sid))
		)
		self._connections[sid] = _Connection(
			user=user, session=session, controller=controller, scheduler=scheduler, notifier=notifier
		)
		await controller.load_location_settings()
		await controller.load_friend_requests()
		await self.emit("map.features", controller.render(), room=sid)

	async def on_disconnect(self, sid: str) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		conn = self._connections.pop(sid, None)
		if conn is None:
			return
		conn.controller.teardown()
		conn.scheduler.cancel_all()
		conn.session.notifier.detach(conn.notifier)
		await self.registry.release(conn.user.id)

	def controller_for(self, sid: str) -> Optional[MapController]:
		conn = self._connections.get(sid)
		return conn.controller if conn else None

	def _require(self, sid: str, event: str) -> _Connection:
		obs_metrics.socket_event(self.namespace, event)
		conn = self._connections.get(sid)
		if conn is None:
			raise ConnectionRefusedError("unauthenticated")
		return conn

	async def _warn(self, sid: str, event: str, detail: str) -> None:
		await self.emit("sys.warn", {"event": event, "detail": detail}, room=sid)

	async def on_location(self, sid: str, payload: Optional[dict] = None) -> None:
		conn = self._require(sid, "location")
		coord = coerce_coordinate(payload)
		if coord is None:
			await self._warn(sid, "location", "lat and lng are required")
			return
		conn.controller.report_location(coord)
		await conn.session.fetcher.refresh()

	async def on_radius(self, sid: str, payload: Optional[dict] = None) -> None:
		conn = self._require(sid, "radius")
		try:
			radius = validate_radius((payload or {}).get("radius_km"))
		except (RadiusOutOfRange, TypeError, ValueError) as exc:
			await self._warn(sid, "radius", str(exc))
			return
		conn.controller.set_radius(radius)

	async def on_zoom(self, sid: str, payload: Optional[dict] = None) -> None:
		conn = self._require(sid, "zoom")
		try:
			resolution = float((payload or {})["resolution"])
			if resolution <= 0:
				raise ValueError("resolution must be positive")
		except (KeyError, TypeError, ValueError):
			await self._warn(sid, "zoom", "resolution must be a positive number")
			return
		conn.controller.set_resolution(resolution)

	async def on_privacy(self, sid: str, payload: Optional[dict] = None) -> None:
		conn = self._require(sid, "privacy")
		enabled = _flag(payload)
		if enabled is None:
			await self._warn(sid, "privacy", "enabled must be a boolean")
			return
		conn.controller.toggle_privacy(enabled)

	async def on_tracking(self, sid: str, payload: Optional[dict] = None) -> None:
		conn = self._require(sid, "tracking")
		enabled = _flag(payload)
		if enabled is None:
			await self._warn(sid, "tracking", "enabled must be a boolean")
			return
		conn.controller.set_tracking(enabled)

	async def on_select(self, sid: str, payload: Optional[dict] = None) -> None:
		conn = self._require(sid, "select")
		user_id = (payload or {}).get("user_id")
		conn.controller.select(str(user_id) if user_id else None)

	async def on_click(self, sid: str, payload: Optional[dict] = None) -> None:
		conn = self._require(sid, "click")
		coord = coerce_coordinate(payload)
		if coord is None:
			await self._warn(sid, "click", "lat and lng are required")
			return
		conn.controller.surface.click(coord)

	async def on_manual_mode(self, sid: str, payload: Optional[dict] = None) -> None:
		conn = self._require(sid, "manual_mode")
		enabled = _flag(payload)
		if enabled is None:
			await self._warn(sid, "manual_mode", "enabled must be a boolean")
			return
		conn.controller.toggle_manual_mode(enabled)

	async def on_geolocation_denied(self, sid: str, payload: Optional[dict] = None) -> None:
		conn = self._require(sid, "geolocation_denied")
		conn.controller.geolocation_denied()
		await conn.session.fetcher.refresh()
