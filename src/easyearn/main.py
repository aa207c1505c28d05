"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from easyearn.config import get_settings
from easyearn.database import close_db, init_db
from easyearn.email.service import reset_email_service
from easyearn.gamification.router import router as rewards_router
from easyearn.health.router import router as health_router
from easyearn.ledger.router import router as ledger_router
from easyearn.middleware import setup_middleware
from easyearn.offerwalls.router import router as offerwalls_router
from easyearn.redis_client import close_redis, init_redis
from easyearn.withdrawals.router import router as withdrawals_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url, settings.redis_max_connections)
    logger.info("app_started", environment=settings.environment, version=settings.app_version)

    yield

    reset_email_service()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Easy Earn Ledger API",
        description="Offerwall postback reconciliation, rewards and withdrawals for Easy Earn",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(offerwalls_router)
    app.include_router(ledger_router)
    app.include_router(rewards_router)
    app.include_router(withdrawals_router)

    return app


app = create_app()
