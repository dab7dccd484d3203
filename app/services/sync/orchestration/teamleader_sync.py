"""
TeamLeader sync engine
Incremental mirror sync and resumable page-based batch import

Incremental: every entity type, only records updated since the connection's
last sync, until the provider reports no more pages or the batch ceiling
(then checkpointed and resumed on the next run).

Batch import: one entity type from the first record to the end, checkpointed
in the Progress Tracker by record offset so a re-invocation resumes where the
last one stopped.
"""
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx
from supabase import Client

from app.core.config import settings
from app.core.errors import AuthError, ProviderApiError
from app.models.schemas.connection import Connection, TEAMLEADER
from app.services.sync import progress as tracker
from app.services.sync.orchestration.incremental import (
    finish_sweep,
    resume_point,
    run_incremental_sync,
    save_resume_point,
    sweep_bounds,
    sync_connection,
)
from app.services.sync.providers.teamleader import ENTITIES, MAX_PAGE_SIZE, fetch_page, get_entity
from app.services.sync.throttle import ProviderThrottle, get_throttle
from app.services.sync.tokens import ensure_fresh

logger = logging.getLogger(__name__)

INCREMENTAL_IMPORT_TYPE = "teamleader_incremental"


def _entities(entity_types: Optional[List[str]]):
    return [get_entity(name) for name in (entity_types or list(ENTITIES))]


def teamleader_sync_one(
    http_client: httpx.AsyncClient,
    supabase: Client,
    entity_types: Optional[List[str]] = None,
    max_batches: Optional[int] = None,
    throttle: Optional[ProviderThrottle] = None
):
    """
    Build the per-connection incremental step used by the runner.

    Each entity type is its own sweep. An entity that hits the batch ceiling
    is checkpointed at its last page and resumed with the same
    `updated_since` bound on the next run.
    """
    entities = _entities(entity_types)
    max_batches = max_batches or settings.max_batches_per_run
    page_size = settings.teamleader_page_size

    async def sync_one(connection: Connection, now: datetime) -> Dict[str, Any]:
        stats: Dict[str, int] = {}
        errors: List[Dict[str, Any]] = []
        total = 0
        has_more = False
        synced_through = now

        for entity in entities:
            checkpoint = resume_point(supabase, connection, INCREMENTAL_IMPORT_TYPE, entity.name)
            since, sweep_started, cursor = sweep_bounds(checkpoint, connection.last_sync_timestamp, now)
            page_number = int(cursor or 0) + 1
            imported = 0
            entity_more = True

            for _ in range(max_batches):
                page = await fetch_page(
                    http_client, supabase, connection, entity,
                    page_number, page_size,
                    updated_since=since,
                    throttle=throttle,
                )
                imported += page.imported_count
                errors.extend({**error, "entity": entity.name} for error in page.errors)
                entity_more = page.has_more

                if not entity_more:
                    break
                page_number += 1

            if entity_more:
                logger.warning(f"⚠️  {entity.name}: batch ceiling of {max_batches} reached, resuming after page {page_number - 1} next run")
                save_resume_point(
                    supabase, connection, INCREMENTAL_IMPORT_TYPE, entity.name,
                    since, sweep_started, str(page_number - 1), imported,
                )
                has_more = True
            else:
                finish_sweep(supabase, checkpoint)
                synced_through = min(synced_through, sweep_started)

            stats[entity.name] = imported
            total += imported

        logger.info(f"✅ TeamLeader sync for user {connection.user_id}: {stats}")
        return {
            "records_imported": total,
            "errors": errors,
            "stats": stats,
            "quota_used": 0,
            "has_more": has_more,
            "synced_through": synced_through,
        }

    return sync_one


async def sync_teamleader_for_user(
    http_client: httpx.AsyncClient,
    supabase: Client,
    connection: Connection,
    entity_types: Optional[List[str]] = None,
    max_batches: Optional[int] = None,
    throttle: Optional[ProviderThrottle] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Incremental sync of one user's TeamLeader connection.

    Raises:
        AuthError: Token refresh failed or TeamLeader rejected the token
        ProviderApiError: TeamLeader returned an error
    """
    sync_one = teamleader_sync_one(http_client, supabase, entity_types, max_batches, throttle or get_throttle())
    return await sync_connection(http_client, supabase, connection, sync_one, now=now)


async def run_teamleader_incremental_sync(
    http_client: httpx.AsyncClient,
    supabase: Client,
    entity_types: Optional[List[str]] = None,
    throttle: Optional[ProviderThrottle] = None,
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Scheduled incremental sync over all due TeamLeader connections."""
    sync_one = teamleader_sync_one(http_client, supabase, entity_types, None, throttle or get_throttle())
    return await run_incremental_sync(http_client, supabase, TEAMLEADER, sync_one, now=now)


def resume_page(offset: int, batch_size: int) -> Tuple[int, int]:
    """
    (page_number, page_size) that starts exactly at record `offset`.

    The page size may shrink below `batch_size` until the offset lines up
    with it again, so an import resumed with a different batch size neither
    skips nor repeats records.
    """
    page_size = math.gcd(offset, batch_size)
    return offset // page_size + 1, page_size


async def run_teamleader_batch_import(
    http_client: httpx.AsyncClient,
    supabase: Client,
    connection: Connection,
    import_type: str,
    batch_size: int = 100,
    max_batches: Optional[int] = None,
    throttle: Optional[ProviderThrottle] = None
) -> Dict[str, Any]:
    """
    Resumable full import of one entity type.

    Each invocation fetches at most `max_batches` pages. The checkpoint
    cursor is the number of records consumed so far, so the batch size may
    change between invocations. A completed import is not fetched again.

    Args:
        http_client: Async HTTP client
        supabase: Supabase client
        connection: The user's TeamLeader connection
        import_type: contacts, companies, deals, invoices, quotes or projects
        batch_size: Page size (max 100)
        max_batches: Pages per invocation (defaults to max_batches_per_run)
        throttle: Outbound rate limiter

    Returns:
        {"status": "completed"|"in_progress", "imported", "total_imported",
         "offset", "has_more", "errors"}

    Raises:
        ValueError: Unknown import type
        AuthError / ProviderApiError: The current page failed (recorded on
            the progress row before re-raising)
    """
    entity = get_entity(import_type)
    batch_size = min(batch_size, MAX_PAGE_SIZE)
    max_batches = max_batches or settings.max_batches_per_run
    throttle = throttle or get_throttle()
    import_key = f"teamleader_{entity.name}"

    checkpoint = tracker.get_or_create(supabase, connection.user_id, import_key)
    offset = int(checkpoint.cursor or 0)

    if checkpoint.status == tracker.COMPLETED:
        logger.info(f"ℹ️  {import_key} already completed for user {connection.user_id}")
        return {
            "status": tracker.COMPLETED,
            "message": "Import already completed",
            "imported": 0,
            "total_imported": checkpoint.records_processed,
            "offset": offset,
            "has_more": False,
            "errors": [],
        }

    connection = await ensure_fresh(http_client, supabase, connection)

    imported = 0
    errors: List[Dict[str, Any]] = []
    has_more = True

    logger.info(f"🚀 {import_key}: resuming at record {offset} (batch size {batch_size})")

    for _ in range(max_batches):
        page_number, page_size = resume_page(offset, batch_size)
        try:
            page = await fetch_page(http_client, supabase, connection, entity, page_number, page_size, throttle=throttle)
        except (AuthError, ProviderApiError) as e:
            tracker.fail(supabase, checkpoint, str(e))
            raise
        except httpx.HTTPError as e:
            error = ProviderApiError(TEAMLEADER, 0, f"{type(e).__name__}: {e}")
            tracker.fail(supabase, checkpoint, str(error))
            raise error from e

        offset = page_number * page_size if page.has_more else offset + page.fetched_count
        checkpoint = tracker.advance(supabase, checkpoint, str(offset), page.imported_count)
        imported += page.imported_count
        errors.extend(page.errors)
        has_more = page.has_more

        if not has_more:
            checkpoint = tracker.complete(supabase, checkpoint)
            break

    return {
        "status": checkpoint.status,
        "imported": imported,
        "total_imported": checkpoint.records_processed,
        "offset": offset,
        "has_more": has_more,
        "errors": errors,
    }
