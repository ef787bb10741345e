"""ASGI application entrypoint: FastAPI routes plus the Socket.IO activity namespace."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import asyncpg
import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from collabmap import obs
from collabmap.api import activities, ops
from collabmap.api.errors import install_error_handlers
from collabmap.domain.activities import sockets as activity_sockets
from collabmap.domain.activities.retry import linear_backoff
from collabmap.domain.activities.service import ParticipationService
from collabmap.domain.activities.store import ActivityRepository
from collabmap.infra import postgres
from collabmap.jobs.janitor import Janitor
from collabmap.realtime.broadcaster import RoomBroadcaster
from collabmap.realtime.capacity import CapacityGovernor
from collabmap.realtime.inflight import InFlightOperations
from collabmap.realtime.registry import ConnectionRegistry
from collabmap.settings import settings

logger = logging.getLogger(__name__)


def _allowed_origins() -> list[str]:
	allow_origins = list(getattr(settings, "cors_allow_origins", []))
	if not allow_origins:
		allow_origins = ["http://localhost:3000"] if not settings.is_prod() else []
	# Starlette disallows wildcard '*' with allow_credentials=True.
	if "*" in allow_origins:
		allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"] if not settings.is_prod() else []
	return allow_origins


def _client_manager():
	if settings.socketio_redis_fanout:
		return socketio.AsyncRedisManager(settings.redis_url)
	return None


allow_origins = _allowed_origins()

governor = CapacityGovernor(settings.max_connections, soft_fraction=settings.capacity_soft_fraction)
sio = socketio.AsyncServer(
	async_mode="asgi",
	cors_allowed_origins=allow_origins,
	always_connect=True,
	client_manager=_client_manager(),
)
participation = ParticipationService(
	repository=ActivityRepository(backend=settings.store_backend),
	registry=ConnectionRegistry(),
	broadcaster=RoomBroadcaster(sio, namespace="/"),
	inflight=InFlightOperations(),
	max_attempts=settings.write_max_attempts,
	backoff=linear_backoff(settings.write_backoff_base_ms, settings.write_backoff_step_ms),
	comment_max_length=settings.comment_max_length,
)
activities_namespace = activity_sockets.ActivitiesNamespace(participation, governor, "/")
sio.register_namespace(activities_namespace)

janitor = Janitor(
	service=participation,
	governor=governor,
	is_live=activities_namespace.is_live,
	stats_interval=settings.stats_interval(),
	stale_interval=settings.stale_interval(),
	inflight_bound=settings.inflight_sanity_bound,
	namespace="/",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
	if settings.store_backend == "postgres":
		try:
			await postgres.init_pool()
		except (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError):
			# Requests fail with 503 until the pool can be created on demand.
			logger.warning("postgres_unavailable_at_startup", exc_info=True)
	janitor.start()
	logger.info(
		"realtime_started",
		extra={
			"max_connections": governor.ceiling,
			"soft_limit": governor.soft_limit,
			"stats_interval": settings.stats_interval(),
			"stale_interval": settings.stale_interval(),
			"store_backend": settings.store_backend,
		},
	)
	try:
		yield
	finally:
		janitor.stop()
		await postgres.close_pool()


app = FastAPI(title="Collabmap Realtime", lifespan=lifespan)
app.state.participation = participation
app.state.governor = governor
app.state.janitor = janitor
app.state.sio = sio
install_error_handlers(app)

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

app.include_router(ops.router, tags=["ops"])
app.include_router(activities.router, tags=["activities"])

socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
obs.init(app)
