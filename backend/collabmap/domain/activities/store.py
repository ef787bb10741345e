"""Activity persistence: asyncpg repository with an in-memory fallback."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from typing import Dict, Optional, Tuple

import asyncpg

from collabmap.domain.activities import models, policy
from collabmap.infra import postgres

logger = logging.getLogger(__name__)

_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

STORE_BACKENDS = ("postgres", "memory")


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.docs: Dict[str, Tuple[int, dict]] = {}
		self.slugs: Dict[str, str] = {}

	def _load(self, activity_id: str) -> Optional[models.Activity]:
		entry = self.docs.get(activity_id)
		if entry is None:
			return None
		version, doc = entry
		return models.Activity.from_dict(copy.deepcopy(doc), version=version)

	async def get(self, activity_id: str) -> Optional[models.Activity]:
		async with self._lock:
			return self._load(activity_id)

	async def get_by_slug(self, slug: str) -> Optional[models.Activity]:
		async with self._lock:
			activity_id = self.slugs.get(slug)
			return self._load(activity_id) if activity_id else None

	async def insert(self, activity: models.Activity) -> models.Activity:
		async with self._lock:
			if activity.id in self.docs or activity.slug in self.slugs:
				raise policy.InvalidInput("slug_taken", message=f"url name {activity.slug} is already in use")
			self.docs[activity.id] = (0, activity.to_dict())
			self.slugs[activity.slug] = activity.id
			return self._load(activity.id)  # type: ignore[return-value]

	async def compare_and_swap(self, activity: models.Activity, expected_version: int) -> models.Activity:
		async with self._lock:
			entry = self.docs.get(activity.id)
			if entry is None:
				raise policy.NotFound("activity_not_found")
			version, _ = entry
			if version != expected_version:
				raise policy.VersionConflict(activity.id, expected_version)
			self.docs[activity.id] = (version + 1, activity.to_dict())
			return self._load(activity.id)  # type: ignore[return-value]

	async def delete(self, activity_id: str) -> bool:
		async with self._lock:
			entry = self.docs.pop(activity_id, None)
			if entry is None:
				return False
			self.slugs.pop(entry[1].get("urlName"), None)
			return True

	def reset(self) -> None:
		self.docs.clear()
		self.slugs.clear()


_MEMORY = _MemoryStore()


def reset_memory_state() -> None:
	_MEMORY.reset()


def _row_to_activity(row: asyncpg.Record) -> models.Activity:
	doc = row["doc"]
	if isinstance(doc, str):
		doc = json.loads(doc)
	return models.Activity.from_dict(doc, version=int(row["version"]))


class ActivityRepository:
	"""Conditional-update store for activity documents.

	Every write goes through ``compare_and_swap``: the row is only replaced when
	its version still matches the one the caller loaded, otherwise
	``VersionConflict`` is raised and the caller decides whether to retry.
	"""

	def __init__(self, *, backend: str = "postgres", memory: Optional[_MemoryStore] = None) -> None:
		if backend not in STORE_BACKENDS:
			raise ValueError(f"unknown store backend {backend!r}")
		self._backend = backend
		self._memory = memory or _MEMORY

	@property
	def backend(self) -> str:
		return self._backend

	async def _pool_or_none(self) -> Optional[asyncpg.Pool]:
		"""Return the shared pool, or ``None`` when configured for the memory store.

		The pool is looked up on every call, so a database that was down comes
		back into use as soon as ``get_pool`` succeeds again.
		"""
		if self._backend == "memory":
			return None
		try:
			return await postgres.get_pool()
		except _STORE_ERRORS as exc:
			logger.warning("activity_store_unavailable", exc_info=True)
			raise policy.StoreUnavailable() from exc

	async def get(self, activity_id: str) -> Optional[models.Activity]:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.get(activity_id)
		try:
			async with pool.acquire() as conn:
				row = await conn.fetchrow("SELECT doc, version FROM activities WHERE id=$1", activity_id)
		except _STORE_ERRORS as exc:
			raise policy.StoreUnavailable() from exc
		return _row_to_activity(row) if row else None

	async def get_by_slug(self, slug: str) -> Optional[models.Activity]:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.get_by_slug(slug)
		try:
			async with pool.acquire() as conn:
				row = await conn.fetchrow("SELECT doc, version FROM activities WHERE slug=$1", slug)
		except _STORE_ERRORS as exc:
			raise policy.StoreUnavailable() from exc
		return _row_to_activity(row) if row else None

	async def create(self, activity: models.Activity) -> models.Activity:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.insert(activity)
		try:
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					"""
					INSERT INTO activities (id, slug, version, doc, created_at, updated_at)
					VALUES ($1, $2, 0, $3::jsonb, $4, $5)
					RETURNING doc, version
					""",
					activity.id,
					activity.slug,
					json.dumps(activity.to_dict()),
					activity.created_at,
					activity.updated_at,
				)
		except asyncpg.UniqueViolationError as exc:
			raise policy.InvalidInput("slug_taken", message=f"url name {activity.slug} is already in use") from exc
		except _STORE_ERRORS as exc:
			raise policy.StoreUnavailable() from exc
		return _row_to_activity(row)

	async def compare_and_swap(self, activity: models.Activity, expected_version: int) -> models.Activity:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.compare_and_swap(activity, expected_version)
		try:
			async with pool.acquire() as conn:
				row = await conn.fetchrow(
					"""
					UPDATE activities
					SET doc=$2::jsonb, version=version+1, updated_at=$4
					WHERE id=$1 AND version=$3
					RETURNING doc, version
					""",
					activity.id,
					json.dumps(activity.to_dict()),
					expected_version,
					activity.updated_at,
				)
				if row is None:
					exists = await conn.fetchval("SELECT 1 FROM activities WHERE id=$1", activity.id)
		except _STORE_ERRORS as exc:
			raise policy.StoreUnavailable() from exc
		if row is None:
			if not exists:
				raise policy.NotFound("activity_not_found")
			raise policy.VersionConflict(activity.id, expected_version)
		return _row_to_activity(row)

	async def delete(self, activity_id: str) -> bool:
		pool = await self._pool_or_none()
		if pool is None:
			return await self._memory.delete(activity_id)
		try:
			async with pool.acquire() as conn:
				result = await conn.execute("DELETE FROM activities WHERE id=$1", activity_id)
		except _STORE_ERRORS as exc:
			raise policy.StoreUnavailable() from exc
		return result.endswith(" 1")
