"""AsyncPG pool management for the profile store."""

from __future__ import annotations

from typing import Optional

import asyncpg

from app.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=settings.postgres_url,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
		)
	return _pool


def set_pool(pool: Optional[asyncpg.pool.Pool]) -> None:
	global _pool
	_pool = pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		await init_pool()
	assert _pool is not None
	return _pool


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None


SCHEMA = """
CREATE TABLE IF NOT EXISTS profiles (
	id TEXT PRIMARY KEY,
	name TEXT NOT NULL DEFAULT '',
	bio TEXT,
	age INTEGER,
	gender TEXT,
	interests JSONB NOT NULL DEFAULT '[]'::jsonb,
	avatar_ref TEXT,
	location POINT,
	location_settings JSONB NOT NULL DEFAULT '{}'::jsonb,
	is_online BOOLEAN NOT NULL DEFAULT FALSE,
	is_business BOOLEAN NOT NULL DEFAULT FALSE,
	last_seen TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS friend_requests (
	id TEXT PRIMARY KEY,
	sender_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
	receiver_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
	status TEXT NOT NULL,
	created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
	CONSTRAINT valid_status CHECK (status IN ('pending', 'accepted', 'rejected'))
);

CREATE TABLE IF NOT EXISTS chats (
	id TEXT PRIMARY KEY,
	user1_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
	user2_id TEXT NOT NULL REFERENCES profiles(id) ON DELETE CASCADE,
	last_message_at TIMESTAMPTZ
);
"""


async def ensure_schema(pool: asyncpg.pool.Pool) -> None:
	"""Create the tables the proximity core reads and writes if they are missing."""
	async with pool.acquire() as conn:
		await conn.execute(SCHEMA)
