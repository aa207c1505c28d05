"""CORS configuration for the web front-end."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from easyearn.config import Settings


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the configured web origins to call the reward and withdrawal APIs.

    Offerwall postbacks are server-to-server and never need CORS.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
        expose_headers=["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit"],
    )
