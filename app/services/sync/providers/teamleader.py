"""
TeamLeader Focus API client
List endpoints and per-entity record mappings for the CRM mirror tables

All list endpoints are POST https://api.teamleader.eu/{entity}.list with a
JSON body carrying page[size] / page[number] and optional filters.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import httpx
from supabase import Client

from app.core.errors import AuthError, ProviderApiError
from app.models.schemas.connection import Connection, TEAMLEADER
from app.services.sync.fetcher import PageResult, is_last_page, map_and_upsert, require_fields
from app.services.sync.throttle import ProviderThrottle

logger = logging.getLogger(__name__)

TEAMLEADER_API = "https://api.teamleader.eu"
MAX_PAGE_SIZE = 100
DEFAULT_CURRENCY = "EUR"


# ============================================================================
# FIELD HELPERS
# ============================================================================

def _ref_id(record: Dict[str, Any], key: str) -> Optional[str]:
    """Id of a nested reference like {"company": {"type": "company", "id": "..."}}."""
    ref = record.get(key)
    return ref.get("id") if isinstance(ref, dict) else None


def _money(record: Dict[str, Any], key: str) -> Tuple[float, str]:
    value = record.get(key) or {}
    if not isinstance(value, dict):
        return 0, DEFAULT_CURRENCY
    return value.get("amount") or 0, value.get("currency") or DEFAULT_CURRENCY


def _first(record: Dict[str, Any], key: str, field_name: str) -> Optional[str]:
    items = record.get(key) or []
    if items and isinstance(items[0], dict):
        return items[0].get(field_name)
    return None


def _date_only(value: Optional[str]) -> Optional[str]:
    """'2024-03-05T10:00:00+00:00' -> '2024-03-05'"""
    if not value:
        return None
    return value.split("T")[0]


# ============================================================================
# RECORD MAPPINGS (remote JSON -> local row)
# ============================================================================

def map_contact(record: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(record, ("id", "last_name"))
    name = " ".join(part for part in (record.get("first_name"), record.get("last_name")) if part)
    company = record.get("company") if isinstance(record.get("company"), dict) else {}

    return {
        "teamleader_id": record["id"],
        "name": name,
        "email": _first(record, "emails", "email") or record.get("email"),
        "phone": _first(record, "telephones", "number") or record.get("telephone"),
        "company": company.get("name"),
        "raw_data": record,
    }


def map_company(record: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(record, ("id", "name"))
    address = record.get("primary_address") or {}

    return {
        "teamleader_id": record["id"],
        "name": record["name"],
        "email": _first(record, "emails", "email"),
        "phone": _first(record, "telephones", "number"),
        "vat_number": record.get("vat_number"),
        "website": record.get("web_url"),
        "address": address.get("line_1"),
        "city": address.get("city"),
        "postal_code": address.get("postal_code"),
        "country": address.get("country"),
        "raw_data": record,
    }


def map_deal(record: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(record, ("id", "title"))
    value, currency = _money(record, "estimated_value")
    phase = record.get("phase") or {}
    lead_source = record.get("lead_source") or {}

    return {
        "teamleader_id": record["id"],
        "title": record["title"],
        "description": record.get("description"),
        "value": value,
        "currency": currency,
        "phase": phase.get("name") if isinstance(phase, dict) else None,
        "probability": record.get("estimated_probability"),
        "expected_closing_date": record.get("estimated_closing_date"),
        "actual_closing_date": _date_only(record.get("closed_at")),
        "contact_id": _ref_id(record, "contact"),
        "company_id": _ref_id(record, "company"),
        "responsible_user_id": _ref_id(record, "responsible_user"),
        "lead_source": lead_source.get("name") if isinstance(lead_source, dict) else None,
        "raw_data": record,
    }


def map_invoice(record: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(record, ("id", "status"))
    total, currency = _money(record, "total")

    return {
        "teamleader_id": record["id"],
        "invoice_number": record.get("invoice_number"),
        "title": record.get("title"),
        "description": record.get("description"),
        "total_price": total,
        "currency": currency,
        "status": record["status"],
        "invoice_date": record.get("invoice_date"),
        "due_date": record.get("due_on") or record.get("due_date"),
        "payment_date": _date_only(record.get("paid_at")),
        "contact_id": _ref_id(record, "contact"),
        "company_id": _ref_id(record, "company"),
        "raw_data": record,
    }


def map_quote(record: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(record, ("id", "status"))
    total, currency = _money(record, "total")

    return {
        "teamleader_id": record["id"],
        "quote_number": record.get("quotation_number"),
        "title": record.get("title") or record.get("name"),
        "description": record.get("description"),
        "total_price": total,
        "currency": currency,
        "status": record["status"],
        "quote_date": _date_only(record.get("sent_at")),
        "valid_until": record.get("expires_on"),
        "contact_id": _ref_id(record, "contact"),
        "company_id": _ref_id(record, "company"),
        "deal_id": _ref_id(record, "deal"),
        "raw_data": record,
    }


def map_project(record: Dict[str, Any]) -> Dict[str, Any]:
    require_fields(record, ("id", "title"))
    budget, currency = _money(record, "budget")

    return {
        "teamleader_id": record["id"],
        "title": record["title"],
        "description": record.get("description"),
        "status": record.get("status"),
        "start_date": record.get("starts_on"),
        "end_date": record.get("ends_on"),
        "budget": budget,
        "currency": currency,
        "company_id": _ref_id(record, "company"),
        "responsible_user_id": _ref_id(record, "responsible_user"),
        "raw_data": record,
    }


@dataclass(frozen=True)
class EntitySpec:
    """How one TeamLeader entity type is listed and mirrored."""
    name: str
    endpoint: str
    table: str
    mapper: Callable[[Dict[str, Any]], Dict[str, Any]]
    supports_updated_since: bool = True


ENTITIES: Dict[str, EntitySpec] = {
    "contacts": EntitySpec("contacts", "contacts.list", "customers", map_contact),
    "companies": EntitySpec("companies", "companies.list", "teamleader_companies", map_company),
    "deals": EntitySpec("deals", "deals.list", "teamleader_deals", map_deal),
    "invoices": EntitySpec("invoices", "invoices.list", "teamleader_invoices", map_invoice),
    "quotes": EntitySpec("quotes", "quotations.list", "teamleader_quotes", map_quote, supports_updated_since=False),
    "projects": EntitySpec("projects", "projects.list", "teamleader_projects", map_project, supports_updated_since=False),
}


def get_entity(name: str) -> EntitySpec:
    """
    Raises:
        ValueError: Unknown entity type
    """
    if name not in ENTITIES:
        raise ValueError(f"Invalid import type '{name}'. Must be one of: {', '.join(ENTITIES)}")
    return ENTITIES[name]


# ============================================================================
# API CALLS
# ============================================================================

async def teamleader_list(
    http_client: httpx.AsyncClient,
    access_token: str,
    endpoint: str,
    page_number: int,
    page_size: int,
    filters: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Call one TeamLeader *.list endpoint.

    Raises:
        AuthError: 401 from TeamLeader
        ProviderApiError: Any other non-2xx response
    """
    body: Dict[str, Any] = {"page": {"size": page_size, "number": page_number}}
    if filters:
        body["filter"] = filters

    response = await http_client.post(
        f"{TEAMLEADER_API}/{endpoint}",
        headers={"Authorization": f"Bearer {access_token}"},
        json=body,
    )

    if response.status_code == 401:
        raise AuthError(TEAMLEADER, "access token rejected")
    if not response.is_success:
        logger.error(f"❌ TeamLeader {endpoint} failed: {response.status_code} - {response.text[:200]}")
        raise ProviderApiError(TEAMLEADER, response.status_code, response.text)

    return response.json()


def _explicit_has_more(payload: Dict[str, Any]) -> Optional[bool]:
    pagination = (payload.get("meta") or {}).get("pagination") or {}
    has_more = pagination.get("has_more")
    return bool(has_more) if has_more is not None else None


async def fetch_page(
    http_client: httpx.AsyncClient,
    supabase: Client,
    connection: Connection,
    entity: EntitySpec,
    page_number: int,
    page_size: int,
    updated_since: Optional[datetime] = None,
    throttle: Optional[ProviderThrottle] = None
) -> PageResult:
    """
    Fetch one page of an entity type and upsert it into its mirror table.

    Args:
        http_client: Async HTTP client
        supabase: Supabase client
        connection: Fresh TeamLeader connection
        entity: Entity spec (endpoint, table, mapper)
        page_number: 1-based page number
        page_size: Requested page size (clamped to 100)
        updated_since: Only records updated after this time
        throttle: Outbound rate limiter

    Returns:
        PageResult with last_cursor set to the page number just fetched
    """
    page_size = min(page_size, MAX_PAGE_SIZE)

    filters = None
    if updated_since and entity.supports_updated_since:
        filters = {"updated_since": updated_since.isoformat()}

    if throttle:
        await throttle.acquire(TEAMLEADER, connection.id or connection.user_id)

    payload = await teamleader_list(
        http_client, connection.access_token, entity.endpoint, page_number, page_size, filters
    )
    records = payload.get("data") or []

    synced_at = datetime.now(timezone.utc).isoformat()
    imported, errors, _last_id = map_and_upsert(
        supabase,
        entity.table,
        "teamleader_id",
        records,
        lambda record: {**entity.mapper(record), "synced_at": synced_at},
    )

    has_more = not is_last_page(_explicit_has_more(payload), len(records), page_size)

    logger.info(f"📄 TeamLeader {entity.name} page {page_number}: {imported}/{len(records)} imported, has_more={has_more}")

    return PageResult(
        imported_count=imported,
        has_more=has_more,
        last_cursor=str(page_number),
        errors=errors,
        fetched_count=len(records),
    )
