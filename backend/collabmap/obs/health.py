"""Health payload: liveness, capacity and backing-store state."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Dict

from redis.exceptions import RedisError

from collabmap.domain.activities.store import ActivityRepository
from collabmap.infra.redis import redis_client
from collabmap.realtime.capacity import CapacityGovernor
from collabmap.realtime.registry import ConnectionRegistry

LOGGER = logging.getLogger(__name__)


async def _redis_status(timeout: float = 0.2) -> Dict[str, Any]:
	start = perf_counter()
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=timeout)
	except (RedisError, OSError, asyncio.TimeoutError) as exc:
		LOGGER.warning("Redis health check failed", exc_info=True)
		return {"ok": False, "error": str(exc) or exc.__class__.__name__}
	return {"ok": True, "latency_ms": round((perf_counter() - start) * 1000, 2)}


async def health(
	governor: CapacityGovernor,
	registry: ConnectionRegistry,
	repository: ActivityRepository,
) -> Dict[str, Any]:
	return {
		"status": "ok",
		"store": repository.backend,
		"redis": await _redis_status(),
		"connections": governor.count,
		"activities": registry.activity_count,
		"capacity": governor.snapshot(),
	}
