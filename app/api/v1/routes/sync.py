"""
Sync Routes
Manual and scheduled sync endpoints for TeamLeader and Gmail
"""
import logging
import httpx
from fastapi import APIRouter, Depends, Request
from supabase import Client

from app.core.dependencies import get_http_client, get_supabase
from app.core.security import get_current_user_context, verify_api_key
from app.middleware.rate_limit import SYNC_LIMIT, limiter
from app.models.schemas import (
    GmailBackfillRequest,
    GmailSyncRequest,
    ScheduledSyncRequest,
    TeamLeaderImportRequest,
    TeamLeaderSyncRequest,
)
from app.models.schemas.connection import GMAIL, TEAMLEADER
from app.services.jobs.tasks import scheduled_sync_task
from app.services.sync.connections import require_connection
from app.services.sync.orchestration.email_sync import backfill_status, run_gmail_backfill, sync_gmail_for_user
from app.services.sync.orchestration.teamleader_sync import run_teamleader_batch_import, sync_teamleader_for_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


# ============================================================================
# TEAMLEADER
# ============================================================================

@router.post("/teamleader")
@limiter.limit(SYNC_LIMIT)
async def sync_teamleader(
    request: Request,
    body: TeamLeaderSyncRequest,
    user_context: dict = Depends(get_current_user_context),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Incremental sync of the caller's TeamLeader mirror."""
    connection = require_connection(supabase, user_context["user_id"], TEAMLEADER)

    result = await sync_teamleader_for_user(
        http_client, supabase, connection,
        entity_types=body.entity_types,
        max_batches=body.max_batches,
    )
    return {"success": True, **result}


@router.post("/teamleader/import")
@limiter.limit(SYNC_LIMIT)
async def import_teamleader(
    request: Request,
    body: TeamLeaderImportRequest,
    user_context: dict = Depends(get_current_user_context),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """
    Resumable full import of one entity type.

    Call repeatedly until has_more is false.
    """
    connection = require_connection(supabase, user_context["user_id"], TEAMLEADER)

    result = await run_teamleader_batch_import(
        http_client, supabase, connection,
        body.import_type,
        batch_size=body.batch_size,
        max_batches=body.max_batches,
    )
    return {"success": True, "import_type": body.import_type, **result}


# ============================================================================
# GMAIL
# ============================================================================

@router.post("/gmail")
@limiter.limit(SYNC_LIMIT)
async def sync_gmail(
    request: Request,
    body: GmailSyncRequest,
    user_context: dict = Depends(get_current_user_context),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """Incremental sync of the caller's inbox."""
    connection = require_connection(supabase, user_context["user_id"], GMAIL)

    result = await sync_gmail_for_user(http_client, supabase, connection, max_batches=body.max_batches)
    return {"success": True, **result}


@router.post("/gmail/backfill")
@limiter.limit(SYNC_LIMIT)
async def backfill_gmail(
    request: Request,
    body: GmailBackfillRequest,
    user_context: dict = Depends(get_current_user_context),
    supabase: Client = Depends(get_supabase),
    http_client: httpx.AsyncClient = Depends(get_http_client)
):
    """
    Historical import over a date range, one progress row per month.

    action=status returns the progress rows without fetching anything.
    """
    user_id = user_context["user_id"]

    if body.action == "status":
        return {"success": True, "ranges": backfill_status(supabase, user_id)}

    connection = require_connection(supabase, user_id, GMAIL)

    logger.info(f"📚 Backfill {body.start_date} -> {body.end_date} requested by user {user_id}")
    result = await run_gmail_backfill(
        http_client, supabase, connection,
        body.start_date, body.end_date,
        max_batches=body.max_batches,
    )
    return {"success": True, **result}


# ============================================================================
# SCHEDULER
# ============================================================================

@router.post("/scheduled")
async def trigger_scheduled_sync(
    request: Request,
    body: ScheduledSyncRequest,
    _: bool = Depends(verify_api_key),
    supabase: Client = Depends(get_supabase)
):
    """
    Queue an incremental sync over every due connection of one provider.

    Called by the scheduler; the work runs in the dramatiq worker.
    """
    job = supabase.table("sync_jobs").insert({
        "job_type": f"scheduled_{body.provider}",
        "status": "queued",
    }).execute()
    job_id = job.data[0]["id"]

    scheduled_sync_task.send(body.provider, job_id)

    logger.info(f"📋 Queued scheduled {body.provider} sync (job {job_id})")
    return {"success": True, "job_id": job_id, "provider": body.provider, "status": "queued"}
