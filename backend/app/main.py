"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import ops, proximity
from app.api.errors import install_error_handlers
from app.domain.geo.geodesy import default_location, synthetic_users
from app.domain.map.sockets import MapNamespace
from app.domain.presence.sockets import PresenceNamespace
from app.domain.proximity.sessions import get_registry
from app.domain.proximity.store import PostgresProfileStore
from app.infra import postgres
from app.obs import init as obs_init
from app.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	pool = await postgres.init_pool()
	await postgres.ensure_schema(pool)
	if settings.is_dev():
		# Synthetic neighbours so the map is not empty during local development
		store = get_registry().store
		if isinstance(store, PostgresProfileStore):
			await store.seed_synthetic(synthetic_users(default_location()))
	try:
		yield
	finally:
		await get_registry().shutdown()
		await postgres.close_pool()


app = FastAPI(title="Meet Nearby Proximity Core", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:5173"] if settings.is_dev() else ["https://app.meetnearby.example"]

# Starlette disallows wildcard '*' with allow_credentials=True. Replace '*' with explicit origins.
if "*" in allow_origins:
	if settings.is_dev():
		allow_origins = [
			"http://localhost:3000",
			"http://127.0.0.1:3000",
			"http://localhost:5173",
			"http://127.0.0.1:5173",
		]
	else:
		allow_origins = ["https://app.meetnearby.example"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

# Use the same allowed origins for Socket.IO as for the REST API
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
sio.register_namespace(PresenceNamespace())
sio.register_namespace(MapNamespace())
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
obs_init(app)

app.include_router(proximity.router, tags=["proximity"])
app.include_router(ops.router, tags=["ops"])
