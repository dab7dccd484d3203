"""
Dramatiq Background Tasks
Scheduled pipeline per provider: token sweep -> incremental sync -> analysis
"""
import dramatiq
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from supabase import Client, create_client

from app.core.config import settings
from app.core.dependencies import build_http_client
from app.models.schemas.connection import GMAIL, TEAMLEADER

logger = logging.getLogger(__name__)


def get_task_dependencies():
    """
    Create fresh instances of dependencies for background tasks.
    Dramatiq workers run in separate processes, so we can't share global clients.
    """
    http_client = build_http_client()
    supabase = create_client(settings.supabase_url, settings.supabase_service_key)
    return http_client, supabase


def _update_job(supabase: Client, job_id: Optional[str], fields: Dict[str, Any]):
    if job_id:
        supabase.table("sync_jobs").update(fields).eq("id", job_id).execute()


async def run_scheduled_pipeline(
    http_client: httpx.AsyncClient,
    supabase: Client,
    provider: str,
    llm=None
) -> Dict[str, Any]:
    """
    One scheduler tick for a provider.

    1. Refresh tokens expiring within the sweep window
    2. Incremental sync over all due connections of the provider
    3. Gmail only: classify a batch of pending emails (skipped without an LLM)

    Returns:
        {"provider", "tokens", "sync", "analysis"}
    """
    from app.services.sync.tokens import refresh_expiring_connections
    from app.services.sync.orchestration.email_sync import run_gmail_incremental_sync
    from app.services.sync.orchestration.teamleader_sync import run_teamleader_incremental_sync
    from app.services.analysis.dispatcher import analyze_pending_emails

    if provider not in (GMAIL, TEAMLEADER):
        raise ValueError(f"Unknown provider '{provider}'")

    result: Dict[str, Any] = {"provider": provider, "analysis": None}
    result["tokens"] = await refresh_expiring_connections(http_client, supabase)

    if provider == GMAIL:
        result["sync"] = await run_gmail_incremental_sync(http_client, supabase)
        if llm is not None:
            result["analysis"] = await analyze_pending_emails(supabase, llm, limit=settings.analysis_batch_size)
        else:
            logger.info("ℹ️  OPENAI_API_KEY not set - skipping email analysis")
    else:
        result["sync"] = await run_teamleader_incremental_sync(http_client, supabase)

    return result


async def execute_pipeline(http_client: httpx.AsyncClient, supabase: Client, provider: str):
    """
    Async wrapper that runs the pipeline and closes the HTTP client in the
    same event loop.
    """
    llm = None
    if settings.openai_api_key:
        from app.services.analysis.llm import LLMClient
        llm = LLMClient.from_settings(settings)

    try:
        return await run_scheduled_pipeline(http_client, supabase, provider, llm)
    finally:
        await http_client.aclose()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dramatiq.actor(max_retries=0)
def scheduled_sync_task(provider: str, job_id: Optional[str] = None):
    """
    Background job for a scheduled provider sync.

    Args:
        provider: "gmail" or "teamleader"
        job_id: Sync job ID for status tracking
    """
    logger.info(f"🚀 Starting scheduled {provider} sync job {job_id}")

    http_client, supabase = get_task_dependencies()

    try:
        _update_job(supabase, job_id, {"status": "running", "started_at": _now()})

        result = asyncio.run(execute_pipeline(http_client, supabase, provider))

        _update_job(supabase, job_id, {
            "status": "completed",
            "completed_at": _now(),
            "result": result
        })

        sync = result["sync"]
        logger.info(
            f"✅ Scheduled {provider} sync job {job_id} complete: "
            f"{sync['synced']} synced, {sync['errored']} errored, {sync['skipped']} skipped"
        )
        return result

    except Exception as e:
        logger.error(f"❌ Scheduled {provider} sync job {job_id} failed: {e}")

        _update_job(supabase, job_id, {
            "status": "failed",
            "completed_at": _now(),
            "error_message": str(e)
        })

        raise
