import asyncio
import json

import pytest

from app.domain.presence.feed import RedisChangeFeed, channel_for, publish_profile_change


async def _wait_for(predicate, timeout=2.0):
	deadline = asyncio.get_running_loop().time() + timeout
	while not predicate():
		if asyncio.get_running_loop().time() > deadline:
			raise AssertionError("condition not met in time")
		await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_subscriber_receives_changes_for_its_ids(fake_redis):
	received = []
	feed = RedisChangeFeed(poll_timeout=0.05)
	subscription = await feed.subscribe(["user-1"], received.append)
	try:
		await publish_profile_change("user-2", {"is_online": True})
		await publish_profile_change("user-1", {"is_online": False})
		await _wait_for(lambda: received)
	finally:
		await subscription.close()

	assert [(change.id, dict(change.changed_fields)) for change in received] == [("user-1", {"is_online": False})]
	assert subscription.closed


@pytest.mark.asyncio
async def test_malformed_messages_are_ignored(fake_redis):
	received = []
	feed = RedisChangeFeed(poll_timeout=0.05)
	subscription = await feed.subscribe(["user-1"], received.append)
	try:
		await fake_redis.publish(channel_for("user-1"), "not json")
		await fake_redis.publish(channel_for("user-1"), json.dumps({"fields": {}}))
		await publish_profile_change("user-1", {"is_online": True})
		await _wait_for(lambda: received)
	finally:
		await subscription.close()

	assert len(received) == 1
	assert received[0].changed_fields == {"is_online": True}


@pytest.mark.asyncio
async def test_empty_subscription_closes_cleanly(fake_redis):
	feed = RedisChangeFeed()
	subscription = await feed.subscribe([], lambda change: None)
	assert subscription.ids == frozenset()
	await subscription.close()
	await subscription.close()
	assert subscription.closed
