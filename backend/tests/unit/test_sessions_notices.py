import asyncio
from unittest.mock import AsyncMock

import pytest

from app.domain.map.scheduler import AsyncioFrameScheduler
from app.domain.proximity.notices import EmitNotifier, FanoutNotifier, Notice
from app.domain.proximity.sessions import SessionRegistry


@pytest.mark.asyncio
async def test_registry_refcounts_background_refresh(store, clock):
	registry = SessionRegistry(store=store, clock=clock)
	first = await registry.acquire("viewer")
	second = await registry.acquire("viewer", constrained=True)
	assert first is second
	assert first.holders == 2
	assert first.fetcher.constrained
	assert first.fetcher._periodic is not None

	await registry.release("viewer")
	assert first.fetcher._periodic is not None
	await registry.release("viewer")
	assert first.fetcher._periodic is None
	await registry.release("viewer")
	assert first.holders == 0

	await registry.shutdown()
	assert len(registry) == 0


@pytest.mark.asyncio
async def test_released_sessions_are_evicted(store, clock):
	registry = SessionRegistry(store=store, clock=clock)
	for index in range(100):
		await registry.acquire(f"viewer-{index}")
		await registry.release(f"viewer-{index}")
	assert len(registry) == 0


@pytest.mark.asyncio
async def test_rest_sessions_expire_after_idle_window(store, clock):
	registry = SessionRegistry(store=store, clock=clock, idle_seconds=60)
	rest = registry.session_for("viewer")
	assert registry.session_for("viewer") is rest

	held = await registry.acquire("holder")
	clock.advance(30)
	assert registry.sweep() == 0
	assert registry.get("viewer") is rest

	clock.advance(31)
	registry.session_for("other")
	assert registry.get("viewer") is None
	assert registry.get("holder") is held
	assert registry.get("other") is not None
	await registry.shutdown()


@pytest.mark.asyncio
async def test_release_keeps_session_used_by_rest(store, clock):
	registry = SessionRegistry(store=store, clock=clock, idle_seconds=60)
	registry.session_for("viewer")
	session = await registry.acquire("viewer")
	await registry.release("viewer")
	assert registry.get("viewer") is session
	assert session.fetcher._periodic is None

	clock.advance(61)
	assert registry.sweep() == 1
	assert len(registry) == 0


@pytest.mark.asyncio
async def test_fanout_forwards_to_sinks(notifier):
	fanout = FanoutNotifier()
	fanout.notify("Unheard", "no sinks yet")
	fanout.attach(notifier)
	fanout.attach(notifier)
	fanout.notify("Refreshed", "done")
	assert notifier.notices == [("Refreshed", "done", "default")]
	assert fanout.sinks == [notifier]
	fanout.detach(notifier)
	assert fanout.sinks == []


@pytest.mark.asyncio
async def test_emit_notifier_sends_sys_notice():
	emit = AsyncMock()
	sink = EmitNotifier(emit, "sid-1")
	sink.notify("Error", "Failed to refresh nearby users.", variant="destructive")
	await asyncio.sleep(0)
	emit.assert_awaited_once_with(
		"sys.notice",
		Notice("Error", "Failed to refresh nearby users.", "destructive").to_payload(),
		room="sid-1",
	)


@pytest.mark.asyncio
async def test_emit_failure_is_contained():
	emit = AsyncMock(side_effect=RuntimeError("socket gone"))
	sink = EmitNotifier(emit, "sid-1")
	task = sink.spawn(emit("sys.notice", {}, room="sid-1"))
	await asyncio.gather(task, return_exceptions=True)
	await asyncio.sleep(0)
	assert task.done()


@pytest.mark.asyncio
async def test_asyncio_frame_scheduler_runs_and_cancels():
	scheduler = AsyncioFrameScheduler(0.001)
	assert scheduler.frame_ms == pytest.approx(1.0)
	fired = []
	scheduler.request(lambda: fired.append("a"))
	dropped = scheduler.request(lambda: fired.append("b"))
	scheduler.cancel(dropped)
	assert scheduler.pending == 1
	await asyncio.sleep(0.02)
	assert fired == ["a"]
	assert scheduler.pending == 0

	scheduler.request(lambda: fired.append("c"))
	scheduler.cancel_all()
	await asyncio.sleep(0.02)
	assert fired == ["a"]
