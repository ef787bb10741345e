import asyncio
import os
import sys
from pathlib import Path
from typing import List, Tuple

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

# The app wiring under test uses the process-local store; repository tests opt into postgres.
os.environ["STORE_BACKEND"] = "memory"

from collabmap.domain.activities import models, store
from collabmap.domain.activities.service import ParticipationService
from collabmap.domain.activities.store import ActivityRepository, _MemoryStore
from collabmap.infra import postgres
from collabmap.infra.redis import redis_client, set_redis_client
from collabmap.realtime.broadcaster import RoomBroadcaster
from collabmap.realtime.inflight import InFlightOperations
from collabmap.realtime.registry import ConnectionRegistry
from collabmap.settings import settings


# Ensure a selector-based event loop policy on Windows to avoid Proactor issues with async IO
if hasattr(asyncio, "WindowsSelectorEventLoopPolicy"):
	asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _unavailable():
		raise OSError("postgres disabled for tests")

	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _unavailable)
	monkeypatch.setattr(postgres, "get_pool", _unavailable)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def reset_memory_store():
	store.reset_memory_state()
	yield
	store.reset_memory_state()


@pytest.fixture(autouse=True)
def force_test_settings():
	original_env = settings.environment
	settings.environment = "test"
	try:
		yield
	finally:
		settings.environment = original_env


class RecordingEmitter:
	"""Captures everything the broadcaster sends, in order."""

	def __init__(self) -> None:
		self.calls: List[Tuple[str, dict, dict]] = []

	async def emit(self, event, data=None, **kwargs):
		self.calls.append((event, data, kwargs))

	def events(self, name: str | None = None) -> List[Tuple[str, dict, dict]]:
		return [call for call in self.calls if name is None or call[0] == name]


async def _no_sleep(_: float) -> None:
	return None


@pytest.fixture
def emitter() -> RecordingEmitter:
	return RecordingEmitter()


@pytest.fixture
def repository() -> ActivityRepository:
	return ActivityRepository(backend="memory", memory=_MemoryStore())


@pytest.fixture
def service(repository, emitter) -> ParticipationService:
	return ParticipationService(
		repository=repository,
		registry=ConnectionRegistry(),
		broadcaster=RoomBroadcaster(emitter),
		inflight=InFlightOperations(),
		backoff=lambda attempt: 0.0,
		sleep=_no_sleep,
	)


def make_activity(activity_id: str = "act00001", **overrides) -> models.Activity:
	fields = dict(
		id=activity_id,
		slug=f"map-{activity_id}",
		title="Where do you stand?",
		map_question="Place yourself on the map",
		x_axis=models.Axis(label="Impact", min="Low", max="High"),
		y_axis=models.Axis(label="Effort", min="Low", max="High"),
		comment_question="Why did you pick that spot?",
	)
	fields.update(overrides)
	return models.Activity(**fields)


@pytest.fixture
def activity_factory(repository):
	async def _create(activity_id: str = "act00001", **overrides) -> models.Activity:
		return await repository.create(make_activity(activity_id, **overrides))

	return _create


@pytest_asyncio.fixture
async def api_client():
	from collabmap.main import app

	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
