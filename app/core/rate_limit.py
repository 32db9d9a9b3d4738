"""
Inbound rate limiting for the admin API (slowapi).

Lives outside app.main so route modules can decorate endpoints without a
circular import.
"""
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings


def get_rate_limit_key(request: Request) -> str:
    """
    Get the rate limit key for a request.

    Uses IP address, with fallback to X-Forwarded-For for proxied requests.
    """
    # Check for forwarded address (behind proxy/load balancer)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=["60/minute"],
    storage_uri=settings.REDIS_URL if settings.RATE_LIMIT_STORAGE == "redis" else "memory://",
    enabled=settings.RATE_LIMIT_ENABLED
)

# Each sync/link hits Strava twice; keep well under Strava's 100 requests / 15 min
STRAVA_WRITE_LIMIT = "10/minute"
STRAVA_PREVIEW_LIMIT = "20/minute"
