"""Liveness and readiness of the proximity backend."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Awaitable, Callable, Dict, Tuple

from app.domain.proximity.sessions import get_registry
from app.infra import postgres
from app.infra.redis import redis_client
from app.obs import metrics
from app.settings import settings

LOGGER = logging.getLogger(__name__)

Mark = Callable[..., None]


async def _timed(name: str, probe: Awaitable[Any], mark: Mark, timeout: float) -> Dict[str, Any]:
	start = perf_counter()
	try:
		await asyncio.wait_for(probe, timeout=timeout)
	except Exception as exc:
		mark(False)
		LOGGER.warning("%s readiness check failed", name, exc_info=True)
		return {"ok": False, "error": str(exc) or type(exc).__name__}
	latency = perf_counter() - start
	mark(True, latency_seconds=latency)
	return {"ok": True, "latency_ms": round(latency * 1000, 2)}


async def _redis_status(timeout: float = 0.2) -> Dict[str, Any]:
	# the change feed and presence patches ride on redis pub/sub
	return await _timed("redis", redis_client.ping(), metrics.mark_redis, timeout)


async def _select_one(timeout: float) -> None:
	pool = await postgres.get_pool()
	async with pool.acquire() as conn:
		await asyncio.wait_for(conn.execute("SELECT 1"), timeout=timeout)


async def _postgres_status(timeout: float = 0.3) -> Dict[str, Any]:
	# pool bootstrap gets extra headroom over the query itself
	return await _timed("postgres", _select_one(timeout), metrics.mark_postgres, timeout * 4)


async def liveness() -> Dict[str, Any]:
	return {"status": "ok", "service": settings.service_name}


async def readiness() -> Tuple[int, Dict[str, Any]]:
	"""503 unless both the profile store and the change feed answer."""
	redis_state = await _redis_status()
	postgres_state = await _postgres_status()
	ok = bool(redis_state.get("ok") and postgres_state.get("ok"))
	return (
		200 if ok else 503,
		{
			"status": "ok" if ok else "degraded",
			"commit": settings.git_commit,
			"sessions": len(get_registry()),
			"checks": {"redis": redis_state, "postgres": postgres_state},
		},
	)
