"""
Progress Tracker
Checkpoint rows for backfills and batch imports (`sync_progress` table)

One row per (user, import_type, range_key). The cursor is opaque to this
module: a record offset for TeamLeader imports, a page number for
incremental sweeps, a Gmail page token for backfill windows and inbox
sweeps. A completed row is never re-fetched; rows are never deleted.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

from supabase import Client

from app.models.schemas.sync import SyncProgress

logger = logging.getLogger(__name__)

TABLE = "sync_progress"
FULL_RANGE = "all"

IN_PROGRESS = "in_progress"
COMPLETED = "completed"
FAILED = "failed"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_progress(supabase: Client, user_id: str, import_type: str, range_key: str = FULL_RANGE) -> Optional[SyncProgress]:
    result = supabase.table(TABLE)\
        .select("*")\
        .eq("user_id", user_id)\
        .eq("import_type", import_type)\
        .eq("range_key", range_key)\
        .limit(1)\
        .execute()

    if result.data:
        return SyncProgress.model_validate(result.data[0])
    return None


def is_completed(supabase: Client, user_id: str, import_type: str, range_key: str = FULL_RANGE) -> bool:
    progress = get_progress(supabase, user_id, import_type, range_key)
    return progress is not None and progress.status == COMPLETED


def get_or_create(
    supabase: Client,
    user_id: str,
    import_type: str,
    range_key: str = FULL_RANGE,
    range_start: Optional[str] = None,
    range_end: Optional[str] = None
) -> SyncProgress:
    """
    Return the checkpoint for this range, creating it at cursor zero.

    A completed row is returned as-is so callers can skip it. A failed row
    is reopened and resumes from its last cursor.
    """
    existing = get_progress(supabase, user_id, import_type, range_key)

    if existing is not None:
        if existing.status == FAILED:
            supabase.table(TABLE).update({
                "status": IN_PROGRESS,
                "error_details": None,
                "updated_at": _now(),
            }).eq("id", existing.id).execute()
            logger.info(f"🔁 Resuming failed {import_type} [{range_key}] from cursor {existing.cursor}")
            return existing.model_copy(update={"status": IN_PROGRESS, "error_details": None})
        return existing

    row = {
        "user_id": user_id,
        "import_type": import_type,
        "range_key": range_key,
        "range_start": range_start,
        "range_end": range_end,
        "status": IN_PROGRESS,
        "cursor": None,
        "records_processed": 0,
        "quota_used": 0,
        "started_at": _now(),
        "updated_at": _now(),
    }
    result = supabase.table(TABLE).upsert(row, on_conflict="user_id,import_type,range_key").execute()

    logger.info(f"🆕 Progress row created for {import_type} [{range_key}]")
    return SyncProgress.model_validate(result.data[0] if result.data else row)


def advance(
    supabase: Client,
    progress: SyncProgress,
    new_cursor: Optional[str],
    imported_delta: int,
    quota_delta: int = 0
) -> SyncProgress:
    """Record one successful batch."""
    records_processed = progress.records_processed + imported_delta
    quota_used = progress.quota_used + quota_delta

    supabase.table(TABLE).update({
        "cursor": new_cursor,
        "records_processed": records_processed,
        "quota_used": quota_used,
        "updated_at": _now(),
    }).eq("id", progress.id).execute()

    return progress.model_copy(update={
        "cursor": new_cursor,
        "records_processed": records_processed,
        "quota_used": quota_used,
    })


def complete(supabase: Client, progress: SyncProgress) -> SyncProgress:
    completed_at = _now()
    supabase.table(TABLE).update({
        "status": COMPLETED,
        "completed_at": completed_at,
        "updated_at": completed_at,
    }).eq("id", progress.id).execute()

    logger.info(f"✅ {progress.import_type} [{progress.range_key}] completed ({progress.records_processed} records)")
    return progress.model_copy(update={"status": COMPLETED})


def fail(supabase: Client, progress: SyncProgress, error_details: str) -> SyncProgress:
    supabase.table(TABLE).update({
        "status": FAILED,
        "error_details": error_details[:1000],
        "updated_at": _now(),
    }).eq("id", progress.id).execute()

    logger.error(f"❌ {progress.import_type} [{progress.range_key}] failed: {error_details}")
    return progress.model_copy(update={"status": FAILED, "error_details": error_details[:1000]})


def list_progress(supabase: Client, user_id: str, import_type: str) -> List[SyncProgress]:
    """All checkpoints of one import type for a user, oldest range first."""
    result = supabase.table(TABLE)\
        .select("*")\
        .eq("user_id", user_id)\
        .eq("import_type", import_type)\
        .order("range_start", desc=False)\
        .execute()

    return [SyncProgress.model_validate(row) for row in result.data or []]


def restart(supabase: Client, progress: SyncProgress, range_start: Optional[str], range_end: Optional[str]) -> SyncProgress:
    """Reopen a completed row for a new pass over its range, back at cursor zero."""
    patch = {
        "status": IN_PROGRESS,
        "range_start": range_start,
        "range_end": range_end,
        "cursor": None,
        "records_processed": 0,
        "quota_used": 0,
        "error_details": None,
    }
    supabase.table(TABLE).update({**patch, "completed_at": None, "started_at": _now(), "updated_at": _now()}).eq("id", progress.id).execute()

    logger.info(f"🔁 Restarting {progress.import_type} [{progress.range_key}] from cursor zero")
    return progress.model_copy(update=patch)
