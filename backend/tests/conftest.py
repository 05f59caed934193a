import asyncio
import os
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

os.environ.setdefault("SECRET_KEY", "test-secret")

from app.domain.geo.geodesy import Coordinate
from app.domain.proximity import sessions
from app.domain.proximity.models import ChatPartner, FriendRequest, PrivacySettings, UserDetails, UserSummary
from app.domain.proximity.store import ProfileStoreError
from app.infra import postgres
from app.main import app
from app.settings import settings


class FakeClock:
	def __init__(self, start: float = 1000.0) -> None:
		self.now = start

	def __call__(self) -> float:
		return self.now

	def advance(self, seconds: float) -> None:
		self.now += seconds


class ManualFrameScheduler:
	"""Frame scheduler that only runs callbacks when the test says so."""

	frame_ms = 16.0

	def __init__(self) -> None:
		self._callbacks: Dict[int, Callable[[], None]] = {}
		self._next = 1

	@property
	def pending(self) -> int:
		return len(self._callbacks)

	def request(self, callback: Callable[[], None]) -> int:
		handle = self._next
		self._next += 1
		self._callbacks[handle] = callback
		return handle

	def cancel(self, handle: int) -> None:
		self._callbacks.pop(handle, None)

	def cancel_all(self) -> None:
		self._callbacks.clear()

	def run_frame(self) -> int:
		due, self._callbacks = self._callbacks, {}
		for callback in due.values():
			callback()
		return len(due)


class RecordingNotifier:
	def __init__(self) -> None:
		self.notices: List[tuple[str, str, str]] = []

	def notify(self, title: str, description: str, *, variant: str = "default") -> None:
		self.notices.append((title, description, variant))

	@property
	def variants(self) -> List[str]:
		return [variant for _, _, variant in self.notices]


class FakeProfileStore:
	"""In-memory ProfileStore that records every call."""

	def __init__(self) -> None:
		self.summaries: List[UserSummary] = []
		self.details: Dict[str, UserDetails] = {}
		self.friend_requests: List[FriendRequest] = []
		self.chats: List[ChatPartner] = []
		self.summary_calls = 0
		self.detail_calls: List[List[str]] = []
		self.location_writes: List[tuple] = []
		self.status_writes: List[tuple[str, bool]] = []
		self.best_effort_writes: List[tuple[str, bool]] = []
		self.mode_writes: List[tuple[str, bool]] = []
		self.location_settings: Dict[str, PrivacySettings] = {}
		self.fail_summaries = False
		self.fail_details = False
		self.fail_location = False
		self.fail_status = False
		self.fail_settings = False
		self.location_gate: Optional[asyncio.Event] = None

	def add_user(
		self,
		user_id: str,
		*,
		name: Optional[str] = None,
		location: Optional[Coordinate] = None,
		online: bool = True,
		hide_exact_location: bool = False,
		is_business: bool = False,
		interests: Optional[List[str]] = None,
	) -> UserSummary:
		summary = UserSummary(
			id=user_id,
			name=name or user_id,
			is_online=online,
			location=location,
			location_settings=PrivacySettings(hide_exact_location=hide_exact_location),
			is_business=is_business,
		)
		self.summaries.append(summary)
		self.details[user_id] = UserDetails(id=user_id, interests=list(interests or ["hiking"]), bio=f"bio of {user_id}")
		return summary

	async def get_summaries(self, exclude_id: str, limit: int) -> List[UserSummary]:
		self.summary_calls += 1
		if self.fail_summaries:
			raise ProfileStoreError("get_summaries", "boom")
		ordered = sorted(
			(summary for summary in self.summaries if summary.id != exclude_id),
			key=lambda summary: not summary.is_online,
		)
		return ordered[:limit]

	async def get_details(self, ids):
		self.detail_calls.append(list(ids))
		if self.fail_details:
			raise ProfileStoreError("get_details", "boom")
		return [self.details[user_id] for user_id in ids if user_id in self.details]

	async def update_location(self, user_id, coord, *, hide_exact_location=None):
		if self.location_gate is not None:
			await self.location_gate.wait()
		if self.fail_location:
			raise ProfileStoreError("update_location", "boom")
		self.location_writes.append((user_id, coord, hide_exact_location))

	async def get_location_settings(self, user_id):
		if self.fail_settings:
			raise ProfileStoreError("get_location_settings", "boom")
		return self.location_settings.get(user_id, PrivacySettings())

	async def update_location_mode(self, user_id, manual):
		if self.fail_location:
			raise ProfileStoreError("update_location_mode", "boom")
		self.mode_writes.append((user_id, manual))
		current = self.location_settings.get(user_id, PrivacySettings())
		self.location_settings[user_id] = PrivacySettings(
			manual_location=manual, hide_exact_location=current.hide_exact_location
		)

	async def update_online_status(self, user_id, online):
		if self.fail_status:
			raise ProfileStoreError("update_online_status", "boom")
		self.status_writes.append((user_id, online))

	def update_online_status_best_effort(self, user_id, online):
		self.best_effort_writes.append((user_id, online))

	async def get_friend_requests(self, user_id):
		return list(self.friend_requests)

	async def get_recent_chat_partners(self, user_id, limit):
		return list(self.chats[:limit])


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	try:
		asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
	except Exception:
		# Non-fatal; proceed with default policy
		pass


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from app.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop(*_args, **_kwargs):
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)
	monkeypatch.setattr(postgres, "ensure_schema", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	Most API tests authenticate via the X-User-Id header, which is only
	accepted in dev mode.
	"""
	original_env = settings.environment
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest.fixture
def clock():
	return FakeClock()


@pytest.fixture
def store():
	return FakeProfileStore()


@pytest.fixture
def notifier():
	return RecordingNotifier()


@pytest.fixture
def frames():
	return ManualFrameScheduler()


@pytest_asyncio.fixture
async def registry(store, clock):
	original = sessions.get_registry()
	current = sessions.SessionRegistry(store=store, clock=clock)
	sessions.set_registry(current)
	try:
		yield current
	finally:
		await current.shutdown()
		sessions.set_registry(original)


@pytest_asyncio.fixture
async def api_client(registry):
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
