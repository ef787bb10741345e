"""AsyncPG pool management for the activity store."""

from __future__ import annotations

from typing import Optional

import asyncpg

from collabmap.settings import settings

_pool: Optional[asyncpg.pool.Pool] = None

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS activities (
	id TEXT PRIMARY KEY,
	slug TEXT NOT NULL UNIQUE,
	version BIGINT NOT NULL DEFAULT 0,
	doc JSONB NOT NULL,
	created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
	updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		# Force 127.0.0.1 instead of localhost to avoid IPv6 issues on Windows
		dsn = settings.postgres_url.replace("localhost", "127.0.0.1")
		pool = await asyncpg.create_pool(
			dsn=dsn,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
			command_timeout=settings.postgres_command_timeout,
		)
		try:
			async with pool.acquire() as conn:
				await conn.execute(SCHEMA_SQL)
		except Exception:
			await pool.close()
			raise
		_pool = pool
	return _pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		return await init_pool()
	return _pool


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None
