"""
Incremental sync runner
Shared bookkeeping for since-last-sync runs over TeamLeader and Gmail connections

Provider modules supply a `sync_one(connection, now)` coroutine that fetches
everything updated since the connection's last sync and returns
{"records_imported", "errors", "quota_used", "has_more", "synced_through"}.
This module handles the token refresh, the error budget and the
`last_sync_timestamp` update around it.

A sweep cut short by the batch or quota ceiling leaves a checkpoint in the
Progress Tracker (cursor, lower bound and sweep start) and does not move
`last_sync_timestamp`. The next run resumes from the checkpoint.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from app.core.config import settings
from app.core.errors import AuthError, ProviderApiError, QuotaExceeded
from app.models.schemas.connection import Connection
from app.models.schemas.sync import SyncProgress
from app.services.sync import progress as tracker
from app.services.sync.connections import (
    list_due_connections,
    mark_syncing,
    record_quota_usage,
    record_sync_failure,
    record_sync_success,
)
from app.services.sync.tokens import ensure_fresh

logger = logging.getLogger(__name__)

SyncOne = Callable[[Connection, datetime], Awaitable[Dict[str, Any]]]


# ============================================================================
# SWEEP CHECKPOINTS
# ============================================================================

def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def resume_point(supabase: Client, connection: Connection, import_type: str, range_key: str) -> Optional[SyncProgress]:
    """Unfinished sweep checkpoint for this connection, if a previous run hit a ceiling."""
    checkpoint = tracker.get_progress(supabase, connection.user_id, import_type, range_key)
    if checkpoint is None or checkpoint.status == tracker.COMPLETED:
        return None
    return checkpoint


def sweep_bounds(checkpoint: Optional[SyncProgress], since: Optional[datetime], now: datetime):
    """
    (lower bound, sweep start, cursor) for this run.

    A resumed sweep keeps the lower bound and start time it was begun with.
    """
    if checkpoint is None:
        return since, now, None
    return _parse(checkpoint.range_start), _parse(checkpoint.range_end) or now, checkpoint.cursor


def save_resume_point(
    supabase: Client,
    connection: Connection,
    import_type: str,
    range_key: str,
    since: Optional[datetime],
    sweep_started: datetime,
    cursor: Optional[str],
    imported: int
) -> SyncProgress:
    """
    Checkpoint a sweep that stopped at a ceiling with pages left.

    The row from an earlier finished sweep is reopened with this sweep's bounds.
    """
    range_start = since.isoformat() if since else None
    range_end = sweep_started.isoformat()

    checkpoint = tracker.get_or_create(
        supabase, connection.user_id, import_type, range_key,
        range_start=range_start, range_end=range_end,
    )
    if checkpoint.status == tracker.COMPLETED:
        checkpoint = tracker.restart(supabase, checkpoint, range_start, range_end)
    logger.info(f"📌 {import_type} [{range_key}] paused at cursor {cursor}, resumes next run")
    return tracker.advance(supabase, checkpoint, cursor, imported)


def finish_sweep(supabase: Client, checkpoint: Optional[SyncProgress]):
    if checkpoint is not None:
        tracker.complete(supabase, checkpoint)


# ============================================================================
# RUNNER
# ============================================================================

async def sync_connection(
    http_client: httpx.AsyncClient,
    supabase: Client,
    connection: Connection,
    sync_one: SyncOne,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Run one incremental sync for one connection.

    The token is refreshed first when it is expired or about to expire. On
    success `last_sync_timestamp` becomes the start of the finished sweep and
    the error counter resets; a sweep with pages left keeps the old value. On
    an auth, provider or network error the failure is counted against the
    connection and the error is re-raised (network errors as ProviderApiError).

    Returns:
        {"connection_id", "provider", "status": "success", "records_imported",
         "errors", "quota_used", "has_more", "last_sync_timestamp"}
    """
    now = now or datetime.now(timezone.utc)

    try:
        connection = await ensure_fresh(http_client, supabase, connection, now=now)
        mark_syncing(supabase, connection)
        outcome = await sync_one(connection, now)
    except (AuthError, ProviderApiError) as e:
        record_sync_failure(supabase, connection, str(e), settings.max_sync_errors)
        raise
    except httpx.HTTPError as e:
        error = ProviderApiError(connection.provider, 0, f"{type(e).__name__}: {e}")
        record_sync_failure(supabase, connection, str(error), settings.max_sync_errors)
        raise error from e
    except APIError as e:
        record_sync_failure(supabase, connection, f"database error: {e.message}", settings.max_sync_errors)
        raise

    has_more = outcome.get("has_more", False)
    synced_through = None if has_more else outcome.get("synced_through") or now

    connection = record_sync_success(supabase, connection, synced_through, quota_used=outcome.get("quota_used", 0))
    last_sync = connection.last_sync_timestamp

    return {
        "connection_id": connection.id,
        "provider": connection.provider,
        "status": "success",
        "records_imported": outcome.get("records_imported", 0),
        "errors": outcome.get("errors", []),
        "quota_used": outcome.get("quota_used", 0),
        "has_more": has_more,
        "last_sync_timestamp": last_sync.isoformat() if last_sync else None,
    }


async def run_incremental_sync(
    http_client: httpx.AsyncClient,
    supabase: Client,
    provider: str,
    sync_one: SyncOne,
    prepare: Optional[Callable[[Connection], Connection]] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Incremental sync over every due connection of a provider.

    Connections with an error backlog (sync_error_count >= max_sync_errors)
    are not selected. A failing connection is counted and the loop moves on.
    `prepare` may reset per-connection state first and raise QuotaExceeded to
    skip a connection.

    Returns:
        {"synced", "errored", "skipped", "records_imported", "results"}
    """
    now = now or datetime.now(timezone.utc)
    connections = list_due_connections(supabase, provider, settings.max_sync_errors)

    logger.info("=" * 80)
    logger.info(f"🚀 Incremental {provider} sync: {len(connections)} due connections")
    logger.info("=" * 80)

    summary = {"synced": 0, "errored": 0, "skipped": 0, "records_imported": 0, "results": []}

    for connection in connections:
        try:
            if prepare:
                connection = prepare(connection)
            result = await sync_connection(http_client, supabase, connection, sync_one, now=now)
            summary["synced"] += 1
            summary["records_imported"] += result["records_imported"]
            summary["results"].append(result)

        except QuotaExceeded as e:
            logger.warning(f"⚠️  Skipping {provider} connection {connection.id}: {e}")
            record_quota_usage(supabase, connection, 0, status="quota_limited")
            summary["skipped"] += 1
            summary["results"].append({
                "connection_id": connection.id,
                "provider": provider,
                "status": "skipped",
                "reason": str(e),
            })

        except (AuthError, ProviderApiError, APIError) as e:
            logger.error(f"❌ {provider} sync failed for connection {connection.id}: {e}")
            summary["errored"] += 1
            summary["results"].append({
                "connection_id": connection.id,
                "provider": provider,
                "status": "error",
                "error": str(e),
            })

    logger.info(
        f"✅ Incremental {provider} sync complete: {summary['synced']} synced, "
        f"{summary['errored']} errored, {summary['skipped']} skipped, "
        f"{summary['records_imported']} records"
    )
    return summary
