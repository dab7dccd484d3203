"""
Paginated Fetcher
Shared mapping + upsert step for every provider page

Provider modules (providers/teamleader.py, providers/gmail.py) issue the HTTP
call for one page and hand the raw records to map_and_upsert(). A record that
fails mapping is skipped and reported; it never aborts the batch.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from supabase import Client

from app.core.errors import MappingError

logger = logging.getLogger(__name__)


@dataclass
class PageResult:
    """Outcome of one fetched page."""
    imported_count: int = 0
    has_more: bool = False
    last_cursor: Optional[str] = None
    errors: List[Dict[str, Any]] = field(default_factory=list)
    quota_used: int = 0
    fetched_count: int = 0


def require_fields(record: Dict[str, Any], required: Tuple[str, ...]):
    """
    Raise MappingError when a required field is missing or empty.

    Dotted names reach into nested objects ("payload.headers").
    """
    for name in required:
        value: Any = record
        for part in name.split("."):
            value = value.get(part) if isinstance(value, dict) else None
        if value in (None, "", [], {}):
            raise MappingError(record.get("id"), f"missing required field '{name}'")


def map_and_upsert(
    supabase: Client,
    table: str,
    on_conflict: str,
    records: List[Dict[str, Any]],
    mapper: Callable[[Dict[str, Any]], Dict[str, Any]],
    ignore_duplicates: bool = False
) -> Tuple[int, List[Dict[str, Any]], Optional[str]]:
    """
    Map remote records to local rows and upsert them in one call.

    Args:
        supabase: Supabase client
        table: Target mirror table
        on_conflict: Unique key column(s) for the upsert
        records: Raw provider records
        mapper: Per-entity mapping, raises MappingError on bad shape
        ignore_duplicates: Keep existing rows instead of overwriting them

    Returns:
        (imported_count, errors, last_id)
    """
    rows = []
    errors = []
    last_id = None

    for record in records:
        try:
            rows.append(mapper(record))
            last_id = record.get("id")
        except MappingError as e:
            logger.warning(f"⚠️  Skipping record {e.record_id} for {table}: {e.message}")
            errors.append({"id": e.record_id, "error": e.message})

    if rows:
        supabase.table(table).upsert(
            rows,
            on_conflict=on_conflict,
            ignore_duplicates=ignore_duplicates
        ).execute()

    return len(rows), errors, last_id


def is_last_page(explicit_has_more: Optional[bool], batch_size: int, page_size: int) -> bool:
    """
    Pagination termination.

    The provider's explicit flag wins. A short batch only ends pagination
    when the provider gave no flag.
    """
    if explicit_has_more is not None:
        return not explicit_has_more
    return batch_size < page_size
