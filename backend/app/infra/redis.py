"""Redis connection management.

Provides a stable proxy object so imports like `from app.infra.redis import redis_client`
always reference the same instance. The underlying client can be swapped at runtime
(fakeredis in tests) without breaking references that were imported earlier, which
matters for the change feed: subscriptions are opened lazily from whatever client is
current at the time.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

import redis.asyncio as redis

from app.settings import settings


class RedisProxy:
	"""Forward attribute access to an underlying asyncio Redis client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	@property
	def client(self) -> redis.Redis:
		return self._client

	async def publish_json(self, channel: str, payload: Mapping[str, Any]) -> int:
		"""Publish a JSON document; returns the number of receivers."""
		message = json.dumps(dict(payload), separators=(",", ":"), default=str)
		return await self._client.publish(channel, message)

	def pubsub(self, **kwargs):
		return self._client.pubsub(**kwargs)

	def __getattr__(self, item):
		return getattr(self._client, item)


_real_client = redis.from_url(settings.redis_url, decode_responses=True)
redis_client: RedisProxy = RedisProxy(_real_client)


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
