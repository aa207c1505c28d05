"""Middleware registration."""

from fastapi import FastAPI

from easyearn.config import Settings
from easyearn.middleware.cors import setup_cors
from easyearn.middleware.error_handler import setup_error_handlers
from easyearn.middleware.logging import setup_logging
from easyearn.middleware.rate_limit import RateLimitMiddleware
from easyearn.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and the middleware stack.

    Starlette runs middleware in reverse-add order, so CORS is added last and
    wraps everything else, including 429 responses from the rate limiter.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_window=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
