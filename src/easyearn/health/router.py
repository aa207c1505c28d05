"""Liveness, readiness and version endpoints.

The ledger database is required to serve traffic. Redis only backs rate
limiting and the email send limit, so losing it degrades the service without
taking it out of rotation.
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from easyearn.config import get_settings
from easyearn.database import get_session
from easyearn.redis_client import get_redis

router = APIRouter()


async def check_database(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        return f"error: {exc}"
    return "ok"


async def check_redis() -> str:
    try:
        await get_redis().ping()
    except Exception as exc:
        return f"error: {exc}"
    return "ok"


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> JSONResponse:
    """``ready`` when both stores answer, ``degraded`` without Redis, 503 ``unavailable`` without the database."""
    checks = {"database": await check_database(db), "redis": await check_redis()}
    if checks["database"] != "ok":
        return JSONResponse(status_code=503, content={"status": "unavailable", "checks": checks})
    status = "ready" if checks["redis"] == "ok" else "degraded"
    return JSONResponse(content={"status": status, "checks": checks})


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {"version": settings.app_version, "environment": settings.environment}
