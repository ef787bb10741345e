"""Operations endpoints providing health checks and metrics."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from collabmap.obs import health

router = APIRouter(prefix="", tags=["ops"])


@router.get("/health")
async def health_endpoint(request: Request) -> dict:
	state = request.app.state
	service = state.participation
	return await health.health(state.governor, service.registry, service.repository)


@router.get("/metrics")
async def prometheus_metrics() -> Response:
	payload = generate_latest()
	return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
