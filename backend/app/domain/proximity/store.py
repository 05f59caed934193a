"""Profile store contract and its asyncpg implementation."""

from __future__ import annotations

import asyncio
import functools
import json
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional, Protocol, Sequence, Set

import asyncpg

from app.domain.geo.geodesy import Coordinate, format_for_storage, parse_stored_location
from app.domain.presence.feed import publish_profile_change
from app.domain.proximity.models import (
	ChatPartner,
	FriendRequest,
	PrivacySettings,
	UserDetails,
	UserSummary,
)
from app.infra.postgres import get_pool
from app.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class ProfileStoreError(Exception):
	"""Raised when the backing store rejects or fails a request."""

	def __init__(self, operation: str, detail: str | None = None) -> None:
		super().__init__(f"{operation}: {detail}" if detail else operation)
		self.operation = operation


class ProfileStore(Protocol):
	async def get_summaries(self, exclude_id: str, limit: int) -> List[UserSummary]:
		...

	async def get_details(self, ids: Sequence[str]) -> List[UserDetails]:
		...

	async def update_location(
		self,
		user_id: str,
		coord: Coordinate,
		*,
		hide_exact_location: Optional[bool] = None,
	) -> None:
		...

	async def get_location_settings(self, user_id: str) -> PrivacySettings:
		...

	async def update_location_mode(self, user_id: str, manual: bool) -> None:
		...

	async def update_online_status(self, user_id: str, online: bool) -> None:
		...

	def update_online_status_best_effort(self, user_id: str, online: bool) -> None:
		...

	async def get_friend_requests(self, user_id: str) -> List[FriendRequest]:
		...

	async def get_recent_chat_partners(self, user_id: str, limit: int) -> List[ChatPartner]:
		...


_SUMMARY_SQL = """
SELECT id, name, location::text AS location, location_settings, is_online, is_business
FROM profiles
WHERE id <> $1
ORDER BY is_online DESC, last_seen DESC NULLS LAST, id
LIMIT $2
"""

_DETAIL_SQL = """
SELECT id, interests, bio, gender, age, avatar_ref
FROM profiles
WHERE id = ANY($1::text[])
"""

_CHAT_PARTNERS_SQL = """
SELECT
	CASE WHEN c.user1_id = $1 THEN c.user2_id ELSE c.user1_id END AS participant_id,
	p.is_online,
	c.last_message_at
FROM chats c
JOIN profiles p ON p.id = CASE WHEN c.user1_id = $1 THEN c.user2_id ELSE c.user1_id END
WHERE c.user1_id = $1 OR c.user2_id = $1
ORDER BY c.last_message_at DESC NULLS LAST
LIMIT $2
"""


def _json_value(value: Any, default: Any) -> Any:
	if value is None:
		return default
	if isinstance(value, (bytes, str)):
		try:
			return json.loads(value)
		except ValueError:
			return default
	return value


def _record_to_summary(record: asyncpg.Record) -> UserSummary:
	return UserSummary(
		id=str(record["id"]),
		name=record["name"] or "",
		is_online=bool(record["is_online"]),
		location=parse_stored_location(record["location"]),
		location_settings=PrivacySettings.from_raw(record["location_settings"]),
		is_business=bool(record["is_business"]),
	)


def _record_to_details(record: asyncpg.Record) -> UserDetails:
	interests = _json_value(record["interests"], [])
	if not isinstance(interests, list):
		interests = []
	return UserDetails(
		id=str(record["id"]),
		interests=[str(item) for item in interests],
		bio=record["bio"],
		gender=record["gender"],
		age=record["age"],
		avatar_ref=record["avatar_ref"],
	)


class PostgresProfileStore:
	"""ProfileStore backed by the `profiles`, `friend_requests` and `chats` tables."""

	def __init__(self) -> None:
		self._background: Set[asyncio.Task] = set()

	async def get_summaries(self, exclude_id: str, limit: int) -> List[UserSummary]:
		try:
			pool = await get_pool()
			rows = await pool.fetch(_SUMMARY_SQL, exclude_id, int(limit))
		except (asyncpg.PostgresError, OSError) as exc:
			raise ProfileStoreError("get_summaries", str(exc)) from exc
		return [_record_to_summary(row) for row in rows]

	async def get_details(self, ids: Sequence[str]) -> List[UserDetails]:
		unique = list(dict.fromkeys(ids))
		if not unique:
			return []
		try:
			pool = await get_pool()
			rows = await pool.fetch(_DETAIL_SQL, unique)
		except (asyncpg.PostgresError, OSError) as exc:
			raise ProfileStoreError("get_details", str(exc)) from exc
		return [_record_to_details(row) for row in rows]

	async def update_location(
		self,
		user_id: str,
		coord: Coordinate,
		*,
		hide_exact_location: Optional[bool] = None,
	) -> None:
		try:
			pool = await get_pool()
			async with pool.acquire() as conn:
				async with conn.transaction():
					result = await conn.execute(
						"UPDATE profiles SET location = $2::point, last_seen = NOW() WHERE id = $1",
						user_id,
						format_for_storage(coord),
					)
					if hide_exact_location is not None:
						await conn.execute(
							"""
							UPDATE profiles
							SET location_settings = COALESCE(location_settings, '{}'::jsonb)
								|| jsonb_build_object('hide_exact_location', $2::boolean)
							WHERE id = $1
							""",
							user_id,
							hide_exact_location,
						)
		except (asyncpg.PostgresError, OSError) as exc:
			raise ProfileStoreError("update_location", str(exc)) from exc
		if result.endswith(" 0"):
			raise ProfileStoreError("update_location", "profile not found")
		fields: dict[str, Any] = {"location": coord.as_dict()}
		if hide_exact_location is not None:
			fields["hide_exact_location"] = hide_exact_location
		await self._publish(user_id, fields)

	async def get_location_settings(self, user_id: str) -> PrivacySettings:
		try:
			pool = await get_pool()
			value = await pool.fetchval("SELECT location_settings FROM profiles WHERE id = $1", user_id)
		except (asyncpg.PostgresError, OSError) as exc:
			raise ProfileStoreError("get_location_settings", str(exc)) from exc
		return PrivacySettings.from_raw(value)

	async def update_location_mode(self, user_id: str, manual: bool) -> None:
		try:
			pool = await get_pool()
			result = await pool.execute(
				"""
				UPDATE profiles
				SET location_settings = COALESCE(location_settings, '{}'::jsonb)
					|| jsonb_build_object('manual_location', $2::boolean)
				WHERE id = $1
				""",
				user_id,
				manual,
			)
		except (asyncpg.PostgresError, OSError) as exc:
			raise ProfileStoreError("update_location_mode", str(exc)) from exc
		if result.endswith(" 0"):
			raise ProfileStoreError("update_location_mode", "profile not found")
		await self._publish(user_id, {"manual_location": manual})

	async def update_online_status(self, user_id: str, online: bool) -> None:
		try:
			pool = await get_pool()
			result = await pool.execute(
				"UPDATE profiles SET is_online = $2, last_seen = $3 WHERE id = $1",
				user_id,
				online,
				datetime.now(timezone.utc),
			)
		except (asyncpg.PostgresError, OSError) as exc:
			raise ProfileStoreError("update_online_status", str(exc)) from exc
		if result.endswith(" 0"):
			raise ProfileStoreError("update_online_status", "profile not found")
		await self._publish(user_id, {"is_online": online})

	def update_online_status_best_effort(self, user_id: str, online: bool) -> None:
		"""Schedule the write without waiting for it; failures are only logged."""
		task = asyncio.create_task(self.update_online_status(user_id, online))
		self._background.add(task)
		task.add_done_callback(functools.partial(self._reap, online=online))

	async def get_friend_requests(self, user_id: str) -> List[FriendRequest]:
		try:
			pool = await get_pool()
			rows = await pool.fetch(
				"""
				SELECT sender_id, receiver_id, status
				FROM friend_requests
				WHERE sender_id = $1 OR receiver_id = $1
				""",
				user_id,
			)
		except (asyncpg.PostgresError, OSError) as exc:
			raise ProfileStoreError("get_friend_requests", str(exc)) from exc
		return [
			FriendRequest(sender_id=str(row["sender_id"]), receiver_id=str(row["receiver_id"]), status=row["status"])
			for row in rows
		]

	async def get_recent_chat_partners(self, user_id: str, limit: int) -> List[ChatPartner]:
		try:
			pool = await get_pool()
			rows = await pool.fetch(_CHAT_PARTNERS_SQL, user_id, int(limit))
		except (asyncpg.PostgresError, OSError) as exc:
			raise ProfileStoreError("get_recent_chat_partners", str(exc)) from exc
		return [
			ChatPartner(
				participant_id=str(row["participant_id"]),
				is_online=bool(row["is_online"]),
				last_activity=row["last_message_at"],
			)
			for row in rows
		]

	async def seed_synthetic(self, rows: Sequence[tuple[str, str, Coordinate]]) -> None:
		"""Insert development-only profiles around a base location."""
		pool = await get_pool()
		async with pool.acquire() as conn:
			async with conn.transaction():
				for user_id, name, coord in rows:
					await conn.execute(
						"""
						INSERT INTO profiles (id, name, location, is_online, last_seen)
						VALUES ($1, $2, $3::point, TRUE, NOW())
						ON CONFLICT (id) DO UPDATE
						SET location = EXCLUDED.location, is_online = TRUE, last_seen = NOW()
						""",
						user_id,
						name,
						format_for_storage(coord),
					)

	async def _publish(self, user_id: str, fields: dict[str, Any]) -> None:
		try:
			await publish_profile_change(user_id, fields)
		except Exception:  # pragma: no cover
			logger.warning("profile change publish failed user=%s", user_id, exc_info=True)

	def _reap(self, task: asyncio.Task, *, online: bool) -> None:
		self._background.discard(task)
		if task.cancelled():
			return
		exc = task.exception()
		if exc is not None:
			obs_metrics.inc_presence_write(online, "failed")
			logger.warning("best-effort online status write failed", exc_info=exc)
		else:
			obs_metrics.inc_presence_write(online, "ok")
