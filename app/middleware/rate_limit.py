"""
Rate Limiting Middleware
Inbound limits for the sync and analysis endpoints using slowapi

RATE LIMITS:
- Global: 100 requests/minute per key (default)
- Manual sync / import / backfill: 10/minute per user
- Analysis: 30/minute per user
- OAuth: 20/hour per key

Keys on user_id for authenticated requests, IP otherwise.
"""
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

logger = logging.getLogger(__name__)

SYNC_LIMIT = "10/minute"
ANALYSIS_LIMIT = "30/minute"
OAUTH_LIMIT = "20/hour"


def rate_limit_key_func(request: Request) -> str:
    """
    Rate limit key: user_id once authenticated (set by get_current_user_context),
    client IP otherwise.
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        logger.debug(f"Rate limit key: user_id={user_id[:8]}...")
        return f"user:{user_id}"

    ip = get_remote_address(request)
    logger.debug(f"Rate limit key: ip={ip}")
    return f"ip:{ip}"


limiter = Limiter(
    key_func=rate_limit_key_func,
    default_limits=["100/minute"],
    storage_uri="memory://",
)
