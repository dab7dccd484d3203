"""
Security and Authentication
Handles JWT validation and API key authentication

- User-facing endpoints: Supabase JWT (Authorization: Bearer ...)
- Scheduler endpoints (cron, token sweep, batch analysis): X-API-Key
"""
import logging
import hmac
from typing import Dict, Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer, APIKeyHeader
from supabase import Client

from app.core.dependencies import get_supabase
from app.core.config import settings

logger = logging.getLogger(__name__)

# Security schemes
bearer_scheme = HTTPBearer(auto_error=False)
api_key_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)


# ============================================================================
# JWT AUTHENTICATION (Supabase)
# ============================================================================

async def get_current_user_context(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    supabase: Client = Depends(get_supabase)
) -> Dict[str, str]:
    """
    Validate the Supabase JWT and return the caller's identity.

    Returns:
        {"user_id": str, "email": str}

    Raises:
        HTTPException 401: Missing or invalid token
    """
    if not credentials:
        logger.warning("No authorization credentials provided")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required"
        )

    try:
        response = supabase.auth.get_user(credentials.credentials)
    except Exception as e:
        logger.error(f"JWT validation error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication failed"
        )

    if not response or not response.user:
        logger.warning("JWT validation failed: no user returned")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token"
        )

    user = response.user
    # Used by the rate limiter key function
    request.state.user_id = user.id

    logger.info(f"✅ User authenticated: {sanitize_for_logging(user.email or '')}")
    return {"user_id": user.id, "email": user.email}


# ============================================================================
# API KEY AUTHENTICATION (schedulers / cron)
# ============================================================================

async def verify_api_key(api_key: Optional[str] = Depends(api_key_scheme)) -> bool:
    """
    Verify the scheduler API key.

    Uses timing-safe comparison to prevent timing attacks.

    Raises:
        HTTPException if API key is invalid or missing
    """
    if not settings.scheduler_api_key:
        logger.error("API key authentication attempted but SCHEDULER_API_KEY not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="API key authentication not configured"
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required (X-API-Key header)"
        )

    if not hmac.compare_digest(api_key, settings.scheduler_api_key):
        logger.warning(f"Invalid API key attempt: {api_key[:8]}...")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key"
        )

    logger.info("✅ API key authenticated")
    return True


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def sanitize_for_logging(text: str, max_length: int = 50) -> str:
    """
    Sanitize sensitive data for logging (prevent PII leakage).

    Example:
        "user@example.com" -> "u***@example.com"
    """
    if not text:
        return ""

    if len(text) > max_length:
        text = text[:max_length] + "..."

    if "@" in text:
        parts = text.split("@")
        if len(parts) == 2:
            local, domain = parts
            masked_local = local[0] + "***" if len(local) > 1 else local
            text = f"{masked_local}@{domain}"

    return text
