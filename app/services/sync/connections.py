"""
Token Store
Per-user, per-provider OAuth connections in the `connections` table
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from supabase import Client

from app.core.errors import RecordNotFound
from app.models.schemas.connection import Connection

logger = logging.getLogger(__name__)

TABLE = "connections"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# READ
# ============================================================================

def get_connection(supabase: Client, user_id: str, provider: str) -> Optional[Connection]:
    """
    Get the active connection for a user and provider.

    Args:
        supabase: Supabase client
        user_id: Owner of the connection
        provider: "gmail" or "teamleader"

    Returns:
        Connection if one is active, None otherwise
    """
    result = supabase.table(TABLE)\
        .select("*")\
        .eq("user_id", user_id)\
        .eq("provider", provider)\
        .eq("is_active", True)\
        .limit(1)\
        .execute()

    if result.data:
        return Connection.model_validate(result.data[0])
    return None


def require_connection(supabase: Client, user_id: str, provider: str) -> Connection:
    """Like get_connection, but a missing connection is a RecordNotFound."""
    connection = get_connection(supabase, user_id, provider)
    if connection is None:
        raise RecordNotFound(f"No active {provider} connection. Connect via /oauth/{provider}/authorize first")
    return connection


def list_due_connections(supabase: Client, provider: str, max_errors: int) -> List[Connection]:
    """Active connections without an error backlog, oldest sync first."""
    result = supabase.table(TABLE)\
        .select("*")\
        .eq("provider", provider)\
        .eq("is_active", True)\
        .lt("sync_error_count", max_errors)\
        .order("last_sync_timestamp", desc=False)\
        .execute()

    return [Connection.model_validate(row) for row in result.data or []]


def list_expiring_connections(supabase: Client, within: timedelta) -> List[Connection]:
    """Active connections whose access token expires within `within`."""
    cutoff = (_now() + within).isoformat()
    result = supabase.table(TABLE)\
        .select("*")\
        .eq("is_active", True)\
        .lte("expires_at", cutoff)\
        .execute()

    return [Connection.model_validate(row) for row in result.data or []]


# ============================================================================
# WRITE
# ============================================================================

def save_connection(
    supabase: Client,
    user_id: str,
    provider: str,
    access_token: str,
    refresh_token: Optional[str],
    expires_at: datetime,
    account_email: Optional[str] = None
) -> Connection:
    """
    Create or replace the connection for (user, provider).

    Called from the OAuth callback. Resets error state and reactivates the row.
    """
    payload = {
        "user_id": user_id,
        "provider": provider,
        "access_token": access_token,
        "refresh_token": refresh_token,
        "expires_at": expires_at.isoformat(),
        "account_email": account_email,
        "is_active": True,
        "sync_status": "idle",
        "sync_error_count": 0,
        "last_sync_error": None,
    }

    result = supabase.table(TABLE).upsert(payload, on_conflict="user_id,provider").execute()
    logger.info(f"✅ Saved {provider} connection for user {user_id}")

    row = result.data[0] if result.data else payload
    return Connection.model_validate(row)


def update_tokens(
    supabase: Client,
    connection: Connection,
    access_token: str,
    expires_at: datetime,
    refresh_token: Optional[str] = None
) -> Connection:
    """Persist a refreshed access token. A missing refresh_token keeps the stored one."""
    patch = {
        "access_token": access_token,
        "expires_at": expires_at.isoformat(),
    }
    if refresh_token:
        patch["refresh_token"] = refresh_token

    supabase.table(TABLE).update(patch).eq("id", connection.id).execute()

    return connection.model_copy(update={
        "access_token": access_token,
        "expires_at": expires_at,
        "refresh_token": refresh_token or connection.refresh_token,
    })


def mark_syncing(supabase: Client, connection: Connection):
    supabase.table(TABLE).update({"sync_status": "syncing"}).eq("id", connection.id).execute()


def record_sync_success(
    supabase: Client,
    connection: Connection,
    synced_at: Optional[datetime],
    quota_used: int = 0
) -> Connection:
    """
    Clear the error backlog and advance `last_sync_timestamp`.

    `synced_at=None` keeps the stored timestamp (the sweep has pages left).
    """
    quota_usage = connection.quota_usage + quota_used
    patch = {
        "sync_status": "idle",
        "sync_error_count": 0,
        "last_sync_error": None,
        "quota_usage": quota_usage,
    }
    if synced_at is not None:
        patch["last_sync_timestamp"] = synced_at.isoformat()

    supabase.table(TABLE).update(patch).eq("id", connection.id).execute()

    if synced_at is not None:
        patch["last_sync_timestamp"] = synced_at
    return connection.model_copy(update=patch)


def record_sync_failure(
    supabase: Client,
    connection: Connection,
    error: str,
    max_errors: int
) -> Connection:
    """
    Count a failed attempt. The connection is deactivated once the
    consecutive error count reaches `max_errors`.
    """
    error_count = connection.sync_error_count + 1
    deactivate = error_count >= max_errors

    patch = {
        "sync_status": "error",
        "sync_error_count": error_count,
        "last_sync_error": error[:1000],
    }
    if deactivate:
        patch["is_active"] = False
        logger.warning(f"⚠️  Deactivating {connection.provider} connection {connection.id} after {error_count} failures")

    supabase.table(TABLE).update(patch).eq("id", connection.id).execute()

    return connection.model_copy(update={
        "sync_status": "error",
        "sync_error_count": error_count,
        "last_sync_error": error[:1000],
        "is_active": not deactivate,
    })


def record_quota_usage(supabase: Client, connection: Connection, units: int, status: Optional[str] = None) -> Connection:
    """Add estimated quota units to the connection's daily counter."""
    quota_usage = connection.quota_usage + units
    patch = {"quota_usage": quota_usage}
    if status:
        patch["sync_status"] = status

    supabase.table(TABLE).update(patch).eq("id", connection.id).execute()

    return connection.model_copy(update=patch)


def reset_quota_if_stale(supabase: Client, connection: Connection, now: Optional[datetime] = None) -> Connection:
    """Zero the daily quota counter when the last reset is older than 24 hours."""
    now = now or _now()
    last_reset = connection.last_quota_reset

    if last_reset is not None and now - last_reset < timedelta(hours=24):
        return connection

    supabase.table(TABLE).update({
        "quota_usage": 0,
        "last_quota_reset": now.isoformat(),
    }).eq("id", connection.id).execute()

    logger.info(f"🔄 Reset daily quota for connection {connection.id}")
    return connection.model_copy(update={"quota_usage": 0, "last_quota_reset": now})
