"""Profile change notifications over Redis pub/sub."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, FrozenSet, Iterable, Mapping, Optional, Protocol

from app.infra.redis import redis_client
from app.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "profile:changes:"


def channel_for(user_id: str) -> str:
	return f"{CHANNEL_PREFIX}{user_id}"


@dataclass(frozen=True, slots=True)
class ProfileChange:
	id: str
	changed_fields: Mapping[str, Any] = field(default_factory=dict)


ChangeHandler = Callable[[ProfileChange], None]


class Subscription(Protocol):
	ids: FrozenSet[str]

	async def close(self) -> None:
		...


class ChangeFeed(Protocol):
	async def subscribe(self, ids: Iterable[str], handler: ChangeHandler) -> Subscription:
		...


async def publish_profile_change(user_id: str, fields: Mapping[str, Any]) -> int:
	return await redis_client.publish_json(channel_for(user_id), {"id": user_id, "fields": dict(fields)})


def _decode(message: Mapping[str, Any]) -> Optional[ProfileChange]:
	data = message.get("data")
	if isinstance(data, bytes):
		data = data.decode("utf-8")
	if not isinstance(data, str):
		return None
	try:
		body = json.loads(data)
	except ValueError:
		logger.warning("discarding malformed profile change channel=%s", message.get("channel"))
		return None
	if not isinstance(body, Mapping) or not body.get("id"):
		return None
	fields = body.get("fields")
	return ProfileChange(id=str(body["id"]), changed_fields=fields if isinstance(fields, Mapping) else {})


class RedisSubscription:
	"""One pub/sub connection plus the task that drains it."""

	def __init__(self, ids: FrozenSet[str], pubsub: Any, handler: ChangeHandler, poll_timeout: float) -> None:
		self.ids = ids
		self._pubsub = pubsub
		self._handler = handler
		self._poll_timeout = poll_timeout
		self._task: Optional[asyncio.Task] = None
		self.closed = False

	def start(self) -> None:
		self._task = asyncio.create_task(self._run())

	async def run_once(self) -> None:
		message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=self._poll_timeout)
		if not message:
			return
		change = _decode(message)
		if change is None or change.id not in self.ids:
			return
		try:
			self._handler(change)
		except Exception:
			logger.exception("profile change handler failed id=%s", change.id)

	async def _run(self) -> None:
		while not self.closed:
			try:
				await self.run_once()
			except asyncio.CancelledError:
				raise
			except Exception:
				logger.warning("profile change reader failed; stopping", exc_info=True)
				break
			# yield so a reader without pending messages cannot starve the loop
			await asyncio.sleep(0)

	async def close(self) -> None:
		if self.closed:
			return
		self.closed = True
		task, self._task = self._task, None
		if task is not None:
			task.cancel()
			try:
				await task
			except asyncio.CancelledError:
				pass
		try:
			await self._pubsub.unsubscribe()
			await self._pubsub.aclose()
		finally:
			obs_metrics.presence_subscription_closed()


class RedisChangeFeed:
	def __init__(self, *, poll_timeout: float = 1.0) -> None:
		self.poll_timeout = poll_timeout

	async def subscribe(self, ids: Iterable[str], handler: ChangeHandler) -> RedisSubscription:
		wanted = frozenset(ids)
		pubsub = redis_client.pubsub()
		if wanted:
			await pubsub.subscribe(*(channel_for(user_id) for user_id in sorted(wanted)))
		subscription = RedisSubscription(wanted, pubsub, handler, self.poll_timeout)
		obs_metrics.presence_subscription_opened()
		if wanted:
			subscription.start()
		return subscription
