"""Operations endpoints: health checks and Prometheus metrics."""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from redis.exceptions import RedisError

from wordparty.infra import postgres
from wordparty.infra.redis import redis_client
from wordparty.settings import settings

router = APIRouter(prefix="", tags=["ops"])


@router.get("/health/live")
async def live() -> dict:
	return {"status": "ok", "service": settings.service_name, "commit": settings.git_commit}


@router.get("/health/ready")
async def ready(response: Response) -> dict:
	checks = {"postgres": "memory", "redis": "ok"}
	if await postgres.pool_or_none() is not None:
		checks["postgres"] = "ok"
	try:
		await redis_client.ping()
	except (RedisError, OSError):
		checks["redis"] = "down"
	degraded = checks["redis"] == "down"
	if degraded:
		response.status_code = 503
	return {"status": "degraded" if degraded else "ok", "checks": checks}


@router.get("/metrics")
async def metrics() -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
