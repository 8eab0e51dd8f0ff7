"""System health endpoint — checks connectivity to all backing services."""

import time

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import func, text
from sqlmodel import select

from app.api.deps import AppSettings, Gateway, Session
from app.models.store import Store

router = APIRouter(prefix="/system", tags=["system"])


class ServiceHealth(BaseModel):
    status: str  # "ok" or "error"
    detail: str | None = None
    version: str | None = None
    latency_ms: int | None = None


class HealthResponse(BaseModel):
    status: str
    database: ServiceHealth
    cluster: ServiceHealth
    redis: ServiceHealth
    stores_by_status: dict[str, int]


@router.get("/health", response_model=HealthResponse)
async def system_health(
    session: Session,
    gateway: Gateway,
    settings: AppSettings,
) -> HealthResponse:
    """Check connectivity to the database, the cluster and Redis."""
    db = await _check_database(session)
    cluster = await _check_cluster(gateway)
    rd = await _check_redis(settings.redis_url)

    overall = "ok" if all(s.status == "ok" for s in (db, cluster, rd)) else "degraded"
    return HealthResponse(
        status=overall,
        database=db,
        cluster=cluster,
        redis=rd,
        stores_by_status=await _stores_by_status(session),
    )


async def _check_database(session) -> ServiceHealth:
    try:
        t0 = time.monotonic()
        await session.execute(text("SELECT 1"))
        latency = int((time.monotonic() - t0) * 1000)
        return ServiceHealth(status="ok", latency_ms=latency)
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])


async def _check_cluster(gateway) -> ServiceHealth:
    try:
        t0 = time.monotonic()
        version = await gateway.ping()
        latency = int((time.monotonic() - t0) * 1000)
        return ServiceHealth(status="ok", version=version, latency_ms=latency)
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])


async def _check_redis(redis_url: str) -> ServiceHealth:
    try:
        from redis.asyncio import from_url
        t0 = time.monotonic()
        redis = from_url(redis_url, decode_responses=True, socket_connect_timeout=2)
        try:
            pong = await redis.ping()
            latency = int((time.monotonic() - t0) * 1000)
            info = await redis.info("server")
        finally:
            await redis.aclose()
        version = info.get("redis_version")
        return ServiceHealth(
            status="ok" if pong else "error",
            version=f"Redis {version}" if version else None,
            latency_ms=latency,
        )
    except Exception as exc:
        return ServiceHealth(status="error", detail=str(exc)[:200])


async def _stores_by_status(session) -> dict[str, int]:
    try:
        stmt = select(Store.status, func.count()).group_by(Store.status)
        result = await session.execute(stmt)
        return {str(row[0]): row[1] for row in result.all()}
    except Exception:
        return {}
