"""
OAuth Routes
Gmail and TeamLeader authorization code flow
"""
import logging
import httpx
from fastapi import APIRouter, Depends, Request
from supabase import Client

from app.core.dependencies import get_http_client, get_supabase
from app.core.security import get_current_user_context, sanitize_for_logging
from app.middleware.rate_limit import OAUTH_LIMIT, limiter
from app.models.schemas import OAuthAuthorizeRequest, OAuthCallbackRequest
from app.services.sync.tokens import build_authorization_url, exchange_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth", tags=["oauth"])


@router.post("/{provider}/authorize")
@limiter.limit(OAUTH_LIMIT)
async def oauth_authorize(
    provider: str,
    request: Request,
    body: OAuthAuthorizeRequest,
    user_context: dict = Depends(get_current_user_context)
):
    """
    Build the provider consent URL.

    The frontend redirects the user there; the provider sends the user back
    to the configured redirect URI with ?code=..., which the frontend posts
    to /oauth/{provider}/callback.
    """
    # Unknown provider -> ValueError -> 400
    authorization_url = build_authorization_url(provider, body.state)
    logger.info(f"🔗 OAuth start: {provider} for user {user_context['user_id']}")
    return {"success": True, "provider": provider, "authorization_url": authorization_url}


@router.post("/{provider}/callback")
@limiter.limit(OAUTH_LIMIT)
async def oauth_callback(
    provider: str,
    request: Request,
    body: OAuthCallbackRequest,
    user_context: dict = Depends(get_current_user_context),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Exchange the authorization code and store the connection."""
    connection = await exchange_code(http_client, supabase, provider, body.code, user_context["user_id"])

    logger.info(f"✅ {provider} connected: {sanitize_for_logging(connection.account_email or '')}")
    return {
        "success": True,
        "provider": provider,
        "account_email": connection.account_email,
        "expires_at": connection.expires_at.isoformat() if connection.expires_at else None,
    }
