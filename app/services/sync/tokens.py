"""
Token Refresher
One refresh path for every provider: Gmail and TeamLeader OAuth2

Every sync, backfill and send path calls ensure_fresh() before touching a
provider API. A rejected refresh leaves the stored row untouched and raises
AuthError so the user can re-consent.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import httpx
from supabase import Client

from app.core.config import settings
from app.core.errors import AuthError, ProviderApiError
from app.models.schemas.connection import Connection, GMAIL, TEAMLEADER
from app.services.sync.connections import (
    save_connection,
    update_tokens,
    list_expiring_connections,
    record_sync_failure,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


# ============================================================================
# PROVIDER REGISTRY
# ============================================================================

@dataclass(frozen=True)
class ProviderOAuth:
    """OAuth2 endpoints and client credentials for one provider."""
    name: str
    authorize_url: str
    token_url: str
    client_id: Optional[str]
    client_secret: Optional[str]
    redirect_uri: Optional[str]
    scopes: Tuple[str, ...] = ()
    authorize_params: Dict[str, str] = field(default_factory=dict)


def provider_oauth(provider: str, config=None) -> ProviderOAuth:
    """
    Resolve OAuth settings for a provider.

    Raises:
        ValueError: Unknown provider
    """
    config = config or settings

    if provider == GMAIL:
        return ProviderOAuth(
            name=GMAIL,
            authorize_url="https://accounts.google.com/o/oauth2/v2/auth",
            token_url="https://oauth2.googleapis.com/token",
            client_id=config.gmail_client_id,
            client_secret=config.gmail_client_secret,
            redirect_uri=config.gmail_redirect_uri,
            scopes=(
                "https://www.googleapis.com/auth/gmail.readonly",
                "https://www.googleapis.com/auth/gmail.send",
                "https://www.googleapis.com/auth/userinfo.email",
            ),
            authorize_params={"access_type": "offline", "prompt": "consent"},
        )

    if provider == TEAMLEADER:
        return ProviderOAuth(
            name=TEAMLEADER,
            authorize_url="https://app.teamleader.eu/oauth2/authorize",
            token_url="https://app.teamleader.eu/oauth2/access_token",
            client_id=config.teamleader_client_id,
            client_secret=config.teamleader_client_secret,
            redirect_uri=config.teamleader_redirect_uri,
        )

    raise ValueError(f"Unknown provider: {provider}")


def _expiry(tokens: Dict[str, Any], now: datetime) -> datetime:
    expires_in = int(tokens.get("expires_in") or DEFAULT_EXPIRES_IN)
    return now + timedelta(seconds=expires_in)


# ============================================================================
# REFRESH
# ============================================================================

async def refresh(
    http_client: httpx.AsyncClient,
    supabase: Client,
    connection: Connection,
    now: Optional[datetime] = None
) -> Connection:
    """
    Exchange the stored refresh token for a new access token.

    Args:
        http_client: Async HTTP client
        supabase: Supabase client
        connection: Connection to refresh
        now: Reference time for the new expiry (defaults to current UTC time)

    Returns:
        Connection with the new access token and expiry

    Raises:
        AuthError: No refresh token, or the provider rejected the refresh
    """
    provider = connection.provider

    if not connection.refresh_token:
        raise AuthError(provider, "no refresh token stored, reconnect the account")

    oauth = provider_oauth(provider)
    logger.info(f"🔄 Refreshing {provider} token for connection {connection.id}")

    response = await http_client.post(
        oauth.token_url,
        data={
            "client_id": oauth.client_id,
            "client_secret": oauth.client_secret,
            "refresh_token": connection.refresh_token,
            "grant_type": "refresh_token",
        },
    )

    if not response.is_success:
        logger.error(f"❌ {provider} token refresh failed: {response.status_code} - {response.text[:200]}")
        raise AuthError(provider, f"token refresh rejected ({response.status_code})")

    tokens = response.json()
    access_token = tokens.get("access_token")
    if not access_token:
        raise AuthError(provider, "token endpoint returned no access_token")

    now = now or datetime.now(timezone.utc)
    refreshed = update_tokens(
        supabase,
        connection,
        access_token=access_token,
        expires_at=_expiry(tokens, now),
        refresh_token=tokens.get("refresh_token"),
    )

    logger.info(f"✅ {provider} token refreshed, expires at {refreshed.expires_at.isoformat()}")
    return refreshed


async def ensure_fresh(
    http_client: httpx.AsyncClient,
    supabase: Client,
    connection: Connection,
    now: Optional[datetime] = None
) -> Connection:
    """Refresh the connection when its token expires within the configured buffer."""
    buffer = timedelta(minutes=settings.token_refresh_buffer_minutes)

    if connection.needs_refresh(buffer, now=now):
        return await refresh(http_client, supabase, connection, now=now)

    return connection


async def refresh_expiring_connections(
    http_client: httpx.AsyncClient,
    supabase: Client,
    within: Optional[timedelta] = None
) -> Dict[str, Any]:
    """
    Proactively refresh every active connection expiring soon.

    A failed refresh counts against the connection's error budget and the
    sweep moves on to the next connection.

    Returns:
        {"refreshed": int, "failed": int, "results": [...]}
    """
    within = within or timedelta(minutes=settings.token_sweep_window_minutes)
    connections = list_expiring_connections(supabase, within)

    logger.info(f"🔑 Token sweep: {len(connections)} connections expiring within {within}")

    results = []
    refreshed = 0
    failed = 0

    for connection in connections:
        try:
            updated = await refresh(http_client, supabase, connection)
            refreshed += 1
            results.append({
                "connection_id": connection.id,
                "provider": connection.provider,
                "status": "refreshed",
                "expires_at": updated.expires_at.isoformat(),
            })
        except AuthError as e:
            failed += 1
            record_sync_failure(supabase, connection, str(e), settings.max_sync_errors)
            results.append({
                "connection_id": connection.id,
                "provider": connection.provider,
                "status": "failed",
                "error": str(e),
            })

    logger.info(f"✅ Token sweep complete: {refreshed} refreshed, {failed} failed")
    return {"refreshed": refreshed, "failed": failed, "results": results}


# ============================================================================
# AUTHORIZATION CODE FLOW
# ============================================================================

def build_authorization_url(provider: str, state: Optional[str] = None) -> str:
    """Consent-screen URL the frontend redirects the user to."""
    oauth = provider_oauth(provider)

    params = {
        "client_id": oauth.client_id,
        "redirect_uri": oauth.redirect_uri,
        "response_type": "code",
    }
    if oauth.scopes:
        params["scope"] = " ".join(oauth.scopes)
    params.update(oauth.authorize_params)
    if state:
        params["state"] = state

    return f"{oauth.authorize_url}?{urlencode(params)}"


async def _fetch_account_email(http_client: httpx.AsyncClient, provider: str, access_token: str) -> Optional[str]:
    headers = {"Authorization": f"Bearer {access_token}"}

    if provider == GMAIL:
        response = await http_client.get("https://www.googleapis.com/oauth2/v2/userinfo", headers=headers)
        if response.is_success:
            return response.json().get("email")
    else:
        response = await http_client.post("https://api.teamleader.eu/users.me", headers=headers, json={})
        if response.is_success:
            return (response.json().get("data") or {}).get("email")

    logger.warning(f"⚠️  Could not read {provider} account email: {response.status_code}")
    return None


async def exchange_code(
    http_client: httpx.AsyncClient,
    supabase: Client,
    provider: str,
    code: str,
    user_id: str
) -> Connection:
    """
    Exchange an authorization code for tokens and store the connection.

    Raises:
        AuthError: The provider rejected the code
        ProviderApiError: The token endpoint failed for another reason
    """
    oauth = provider_oauth(provider)

    response = await http_client.post(
        oauth.token_url,
        data={
            "client_id": oauth.client_id,
            "client_secret": oauth.client_secret,
            "code": code,
            "redirect_uri": oauth.redirect_uri,
            "grant_type": "authorization_code",
        },
    )

    if response.status_code in (400, 401):
        raise AuthError(provider, f"authorization code rejected: {response.text[:200]}")
    if not response.is_success:
        raise ProviderApiError(provider, response.status_code, response.text)

    tokens = response.json()
    now = datetime.now(timezone.utc)
    account_email = await _fetch_account_email(http_client, provider, tokens["access_token"])

    return save_connection(
        supabase,
        user_id=user_id,
        provider=provider,
        access_token=tokens["access_token"],
        refresh_token=tokens.get("refresh_token"),
        expires_at=_expiry(tokens, now),
        account_email=account_email,
    )
