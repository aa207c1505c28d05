"""Shared FastAPI dependencies."""

from easyearn.email.service import EmailService, get_email_service
from easyearn.redis_client import get_optional_redis


def get_email_service_dep() -> EmailService:
    """Email service bound to Redis for per-recipient rate limiting when Redis is up."""
    return get_email_service(redis=get_optional_redis())
