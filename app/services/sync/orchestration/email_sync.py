"""
Email sync orchestration engine
Gmail incremental sync, month-windowed backfill and outgoing mail
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
from supabase import Client

from app.core.config import settings
from app.core.errors import AuthError, ProviderApiError, QuotaExceeded
from app.models.schemas.connection import Connection, GMAIL
from app.services.sync import progress as tracker
from app.services.sync.brands import BrandRules, DEFAULT_BRAND_RULES, detect_brand
from app.services.sync.connections import record_quota_usage, reset_quota_if_stale
from app.services.sync.orchestration.incremental import (
    finish_sweep,
    resume_point,
    run_incremental_sync,
    save_resume_point,
    sweep_bounds,
    sync_connection,
)
from app.services.sync.orchestration.windows import split_into_months
from app.services.sync.providers import gmail
from app.services.sync.throttle import GMAIL_SEND_COST, ProviderThrottle, QuotaBudget, get_throttle
from app.services.sync.tokens import ensure_fresh

logger = logging.getLogger(__name__)

BACKFILL_IMPORT_TYPE = "gmail_backfill"
INCREMENTAL_IMPORT_TYPE = "gmail_incremental"
INBOX_RANGE = "inbox"


# ============================================================================
# INCREMENTAL SYNC
# ============================================================================

def check_incremental_quota(supabase: Client, connection: Connection) -> Connection:
    """
    Reset a stale daily counter, then refuse connections above the
    incremental ceiling.

    Raises:
        QuotaExceeded: Usage is above gmail_incremental_quota_ceiling
    """
    connection = reset_quota_if_stale(supabase, connection)
    if connection.quota_usage >= settings.gmail_incremental_quota_ceiling:
        raise QuotaExceeded(connection.quota_usage, settings.gmail_incremental_quota_ceiling)
    return connection


def gmail_sync_one(
    http_client: httpx.AsyncClient,
    supabase: Client,
    max_batches: Optional[int] = None,
    throttle: Optional[ProviderThrottle] = None,
    brand_rules: BrandRules = DEFAULT_BRAND_RULES
):
    """
    Build the per-connection incremental step used by the runner.

    A sweep stopped by the batch or quota ceiling is checkpointed with its
    page token and resumed with the same query on the next run.
    """
    max_batches = max_batches or settings.max_batches_per_run

    async def sync_one(connection: Connection, now: datetime) -> Dict[str, Any]:
        if connection.last_sync_timestamp:
            since = connection.last_sync_timestamp - timedelta(minutes=settings.sync_overlap_minutes)
        else:
            since = now - timedelta(days=settings.gmail_initial_sync_days)

        checkpoint = resume_point(supabase, connection, INCREMENTAL_IMPORT_TYPE, INBOX_RANGE)
        since, sweep_started, page_token = sweep_bounds(checkpoint, since, now)

        query = gmail.build_query(after=since)
        budget = QuotaBudget(connection.quota_usage, settings.gmail_daily_quota)
        imported = 0
        errors: List[Dict[str, Any]] = []
        has_more = True

        for _ in range(max_batches):
            page = await gmail.fetch_page(
                http_client, supabase, connection, query, settings.gmail_page_size,
                page_token=page_token, throttle=throttle, budget=budget, brand_rules=brand_rules,
            )
            imported += page.imported_count
            errors.extend(page.errors)
            has_more = page.has_more

            if not has_more:
                break
            page_token = page.last_cursor
            if budget.exhausted():
                logger.warning(f"⚠️  Gmail quota ceiling reached for {connection.account_email}, stopping early")
                break

        if has_more:
            save_resume_point(supabase, connection, INCREMENTAL_IMPORT_TYPE, INBOX_RANGE, since, sweep_started, page_token, imported)
        else:
            finish_sweep(supabase, checkpoint)

        logger.info(f"✅ Gmail sync for {connection.account_email}: {imported} emails, {budget.spent} quota units")
        return {
            "records_imported": imported,
            "errors": errors,
            "quota_used": budget.spent,
            "has_more": has_more,
            "synced_through": sweep_started,
        }

    return sync_one


async def sync_gmail_for_user(
    http_client: httpx.AsyncClient,
    supabase: Client,
    connection: Connection,
    max_batches: Optional[int] = None,
    throttle: Optional[ProviderThrottle] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Incremental Gmail sync of one user's connection.

    Returns a skipped result instead of syncing when the connection is above
    the incremental quota ceiling.
    """
    try:
        connection = check_incremental_quota(supabase, connection)
    except QuotaExceeded as e:
        record_quota_usage(supabase, connection, 0, status="quota_limited")
        return {
            "connection_id": connection.id,
            "provider": GMAIL,
            "status": "skipped",
            "reason": str(e),
            "records_imported": 0,
            "quota_exceeded": True,
        }

    sync_one = gmail_sync_one(http_client, supabase, max_batches, throttle or get_throttle())
    return await sync_connection(http_client, supabase, connection, sync_one, now=now)


async def run_gmail_incremental_sync(
    http_client: httpx.AsyncClient,
    supabase: Client,
    throttle: Optional[ProviderThrottle] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Scheduled incremental sync over all due Gmail connections."""
    sync_one = gmail_sync_one(http_client, supabase, None, throttle or get_throttle())
    return await run_incremental_sync(
        http_client, supabase, GMAIL, sync_one,
        prepare=lambda connection: check_incremental_quota(supabase, connection),
        now=now,
    )


# ============================================================================
# BACKFILL
# ============================================================================

async def run_gmail_backfill(
    http_client: httpx.AsyncClient,
    supabase: Client,
    connection: Connection,
    start_date: date,
    end_date: date,
    max_batches: Optional[int] = None,
    throttle: Optional[ProviderThrottle] = None,
    brand_rules: BrandRules = DEFAULT_BRAND_RULES
) -> Dict[str, Any]:
    """
    Backfill a user's inbox over an explicit date range.

    The range is split into calendar months. Each month has its own progress
    row; completed months are skipped, an in-progress month resumes from its
    stored page token. A month that fails is recorded and the next month is
    attempted. The run stops early when the batch ceiling or the quota
    ceiling is reached, leaving the current month in progress.

    Args:
        http_client: Async HTTP client
        supabase: Supabase client
        connection: The user's Gmail connection
        start_date: First day (inclusive)
        end_date: Last day (inclusive)
        max_batches: Page ceiling for this invocation
        throttle: Outbound rate limiter
        brand_rules: Brand detection table

    Returns:
        Summary with ranges_total/completed/skipped/failed, emails_processed,
        quota_used, quota_exceeded, has_more and per-range results

    Raises:
        AuthError: Token refresh failed or Gmail rejected the token
    """
    max_batches = max_batches or settings.max_batches_per_run
    throttle = throttle or get_throttle()
    windows = split_into_months(start_date, end_date)

    summary: Dict[str, Any] = {
        "ranges_total": len(windows),
        "ranges_completed": 0,
        "ranges_skipped": 0,
        "ranges_failed": 0,
        "emails_processed": 0,
        "quota_used": 0,
        "quota_exceeded": False,
        "has_more": False,
        "errors": [],
        "results": [],
    }

    connection = reset_quota_if_stale(supabase, connection)
    start_ceiling = int(settings.gmail_daily_quota * settings.backfill_quota_start_ratio)
    if connection.quota_usage >= start_ceiling:
        logger.warning(f"⚠️  Backfill refused for {connection.account_email}: quota {connection.quota_usage:,} >= {start_ceiling:,}")
        record_quota_usage(supabase, connection, 0, status="quota_limited")
        summary["quota_exceeded"] = True
        summary["has_more"] = True
        return summary

    connection = await ensure_fresh(http_client, supabase, connection)
    budget = QuotaBudget(connection.quota_usage, settings.gmail_daily_quota, settings.backfill_quota_stop_ratio)
    batches = 0

    logger.info("=" * 80)
    logger.info(f"🚀 Gmail backfill {start_date} → {end_date} for {connection.account_email}: {len(windows)} windows")
    logger.info("=" * 80)

    try:
        for window in windows:
            checkpoint = tracker.get_or_create(
                supabase, connection.user_id, BACKFILL_IMPORT_TYPE, window.key,
                range_start=window.start.isoformat(), range_end=window.end.isoformat(),
            )

            if checkpoint.status == tracker.COMPLETED:
                summary["ranges_skipped"] += 1
                summary["results"].append({"range": window.key, "status": "skipped"})
                continue

            if batches >= max_batches:
                summary["has_more"] = True
                break

            query = gmail.build_query(after=window.start, before=window.end)
            page_token = checkpoint.cursor
            window_done = False

            try:
                budget.check()
                while batches < max_batches:
                    page = await gmail.fetch_page(
                        http_client, supabase, connection, query, settings.gmail_page_size,
                        page_token=page_token, throttle=throttle, budget=budget, brand_rules=brand_rules,
                    )
                    batches += 1
                    checkpoint = tracker.advance(supabase, checkpoint, page.last_cursor, page.imported_count, page.quota_used)
                    summary["emails_processed"] += page.imported_count
                    summary["errors"].extend(page.errors)

                    if not page.has_more:
                        checkpoint = tracker.complete(supabase, checkpoint)
                        window_done = True
                        break

                    page_token = page.last_cursor
                    budget.check()

            except (ProviderApiError, httpx.HTTPError) as e:
                error = str(e) if isinstance(e, ProviderApiError) else f"{type(e).__name__}: {e}"
                tracker.fail(supabase, checkpoint, error)
                summary["ranges_failed"] += 1
                summary["results"].append({"range": window.key, "status": "failed", "error": error})
                continue

            except AuthError as e:
                tracker.fail(supabase, checkpoint, str(e))
                raise

            if window_done:
                summary["ranges_completed"] += 1
                summary["results"].append({
                    "range": window.key,
                    "status": "completed",
                    "emails_processed": checkpoint.records_processed,
                })
            else:
                summary["has_more"] = True
                summary["results"].append({"range": window.key, "status": "in_progress", "cursor": checkpoint.cursor})
                break

    except QuotaExceeded as e:
        logger.warning(f"⚠️  Backfill stopped: {e}")
        summary["quota_exceeded"] = True
        summary["has_more"] = True

    finally:
        summary["quota_used"] = budget.spent
        record_quota_usage(
            supabase, connection, budget.spent,
            status="quota_limited" if summary["quota_exceeded"] else "idle",
        )

    logger.info(
        f"✅ Backfill finished: {summary['ranges_completed']} completed, {summary['ranges_skipped']} skipped, "
        f"{summary['ranges_failed']} failed, {summary['emails_processed']} emails, {budget.spent:,} quota units"
    )
    return summary


def backfill_status(supabase: Client, user_id: str) -> List[Dict[str, Any]]:
    """Progress rows of every backfill window for a user."""
    return [row.model_dump() for row in tracker.list_progress(supabase, user_id, BACKFILL_IMPORT_TYPE)]


# ============================================================================
# OUTGOING MAIL
# ============================================================================

async def send_email(
    http_client: httpx.AsyncClient,
    supabase: Client,
    connection: Connection,
    to: str,
    subject: str,
    body: str,
    thread_id: Optional[str] = None,
    brand_rules: BrandRules = DEFAULT_BRAND_RULES
) -> Dict[str, Any]:
    """
    Send a plain-text email from the connected Gmail account and record it
    in email_history as outgoing.

    Raises:
        AuthError: Token refresh failed or Gmail rejected the token
        ProviderApiError: Gmail refused the message
    """
    connection = await ensure_fresh(http_client, supabase, connection)

    raw = gmail.build_raw_message(connection.account_email, to, subject, body)
    sent = await gmail.gmail_send_message(http_client, connection.access_token, raw, thread_id)
    record_quota_usage(supabase, connection, GMAIL_SEND_COST)

    supabase.table("email_history").upsert({
        "user_id": connection.user_id,
        "external_id": sent["id"],
        "thread_id": sent.get("threadId") or thread_id,
        "subject": subject,
        "from_address": connection.account_email,
        "to_address": to,
        "body": body,
        "brand": detect_brand(connection.account_email, brand_rules),
        "direction": "outgoing",
        "received_at": datetime.now(timezone.utc).isoformat(),
        "analysis_status": "completed",
    }, on_conflict="external_id").execute()

    logger.info(f"📤 Sent email {sent['id']} to {to}")
    return {"message_id": sent["id"], "thread_id": sent.get("threadId")}
