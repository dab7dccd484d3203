"""
Gmail REST client and message normalization
messages.list / messages.get / messages.send against gmail.googleapis.com
"""
import base64
import logging
from datetime import date, datetime, timedelta, timezone
from email.message import EmailMessage
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional

import httpx
from supabase import Client

from app.core.errors import AuthError, ProviderApiError
from app.models.schemas.connection import Connection, GMAIL
from app.services.sync.brands import BrandRules, DEFAULT_BRAND_RULES, detect_brand, extract_address
from app.services.sync.fetcher import PageResult, map_and_upsert, require_fields
from app.services.sync.throttle import (
    GMAIL_GET_COST,
    GMAIL_LIST_COST,
    GMAIL_SEND_COST,
    ProviderThrottle,
    QuotaBudget,
)

logger = logging.getLogger(__name__)

GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users/me"


# ============================================================================
# QUERY BUILDING
# ============================================================================

def build_query(after: Optional[Any] = None, before: Optional[date] = None) -> str:
    """
    Gmail search query for the inbox.

    `after` may be a datetime (exact, epoch seconds) or a date (whole day).
    `before` is an inclusive end date; Gmail's before: is exclusive so the
    next day is used.
    """
    parts = ["in:inbox"]

    if isinstance(after, datetime):
        parts.append(f"after:{int(after.timestamp())}")
    elif isinstance(after, date):
        parts.append(f"after:{after.strftime('%Y/%m/%d')}")

    if before is not None:
        parts.append(f"before:{(before + timedelta(days=1)).strftime('%Y/%m/%d')}")

    return " ".join(parts)


# ============================================================================
# NORMALIZATION
# ============================================================================

def decode_base64url(data: str) -> str:
    """Decode Gmail's URL-safe base64 (padding optional)."""
    padding = len(data) % 4
    if padding:
        data += "=" * (4 - padding)
    return base64.urlsafe_b64decode(data).decode("utf-8", errors="replace")


def get_header(headers: List[Dict[str, str]], name: str) -> str:
    for header in headers or []:
        if header.get("name", "").lower() == name.lower():
            return header.get("value", "")
    return ""


def extract_body(payload: Dict[str, Any], snippet: str = "") -> str:
    """
    Message body text.

    Order: the payload's own body, then the first text/plain part (searched
    depth-first), then the snippet.
    """
    data = (payload.get("body") or {}).get("data")
    if data:
        return decode_base64url(data)

    for part in payload.get("parts") or []:
        if part.get("mimeType") == "text/plain" and (part.get("body") or {}).get("data"):
            return decode_base64url(part["body"]["data"])
        if part.get("parts"):
            nested = extract_body(part, "")
            if nested:
                return nested

    return snippet or ""


def _received_at(message: Dict[str, Any], date_header: str) -> Optional[str]:
    if date_header:
        try:
            return parsedate_to_datetime(date_header).astimezone(timezone.utc).isoformat()
        except (TypeError, ValueError):
            logger.debug(f"Unparseable Date header: {date_header}")

    internal = message.get("internalDate")
    if internal:
        return datetime.fromtimestamp(int(internal) / 1000, tz=timezone.utc).isoformat()
    return None


def normalize_gmail_message(
    message: Dict[str, Any],
    connection: Connection,
    brand_rules: BrandRules = DEFAULT_BRAND_RULES
) -> Dict[str, Any]:
    """
    Normalize a Gmail API message (format=full) into an email_history row.

    Raises:
        MappingError: The message has no id or no headers
    """
    require_fields(message, ("id", "payload.headers"))

    payload = message["payload"]
    headers = payload["headers"]
    from_header = get_header(headers, "From")
    to_header = get_header(headers, "To")

    from_address = extract_address(from_header)
    own_address = (connection.account_email or "").lower()
    direction = "outgoing" if own_address and from_address == own_address else "incoming"

    return {
        "user_id": connection.user_id,
        "external_id": message["id"],
        "thread_id": message.get("threadId"),
        "subject": get_header(headers, "Subject") or "(no subject)",
        "from_address": from_header,
        "to_address": to_header,
        "body": extract_body(payload, message.get("snippet", "")),
        "brand": detect_brand(to_header, brand_rules),
        "direction": direction,
        "received_at": _received_at(message, get_header(headers, "Date")),
        "analysis_status": "pending",
    }


# ============================================================================
# API CALLS
# ============================================================================

def _check(response: httpx.Response, operation: str):
    if response.status_code == 401:
        raise AuthError(GMAIL, "access token rejected")
    if not response.is_success:
        logger.error(f"❌ Gmail {operation} failed: {response.status_code} - {response.text[:200]}")
        raise ProviderApiError(GMAIL, response.status_code, response.text)


async def gmail_list_messages(
    http_client: httpx.AsyncClient,
    access_token: str,
    query: str,
    max_results: int,
    page_token: Optional[str] = None
) -> Dict[str, Any]:
    """
    messages.list

    Returns:
        {"messages": [{"id", "threadId"}], "nextPageToken"?: str}
    """
    params = {"q": query, "maxResults": max_results}
    if page_token:
        params["pageToken"] = page_token

    response = await http_client.get(
        f"{GMAIL_API}/messages",
        headers={"Authorization": f"Bearer {access_token}"},
        params=params,
    )
    _check(response, "messages.list")
    return response.json()


async def gmail_get_message(
    http_client: httpx.AsyncClient,
    access_token: str,
    message_id: str
) -> Dict[str, Any]:
    """messages.get (format=full)"""
    response = await http_client.get(
        f"{GMAIL_API}/messages/{message_id}",
        headers={"Authorization": f"Bearer {access_token}"},
        params={"format": "full"},
    )
    _check(response, "messages.get")
    return response.json()


async def gmail_send_message(
    http_client: httpx.AsyncClient,
    access_token: str,
    raw: str,
    thread_id: Optional[str] = None
) -> Dict[str, Any]:
    """messages.send with a base64url-encoded RFC 2822 message."""
    body = {"raw": raw}
    if thread_id:
        body["threadId"] = thread_id

    response = await http_client.post(
        f"{GMAIL_API}/messages/send",
        headers={"Authorization": f"Bearer {access_token}"},
        json=body,
    )
    _check(response, "messages.send")
    return response.json()


def build_raw_message(sender: Optional[str], to: str, subject: str, body: str) -> str:
    """Encode a plain-text email for messages.send."""
    message = EmailMessage()
    if sender:
        message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body)

    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii")


# ============================================================================
# PAGE FETCH
# ============================================================================

async def fetch_page(
    http_client: httpx.AsyncClient,
    supabase: Client,
    connection: Connection,
    query: str,
    page_size: int,
    page_token: Optional[str] = None,
    throttle: Optional[ProviderThrottle] = None,
    budget: Optional[QuotaBudget] = None,
    brand_rules: BrandRules = DEFAULT_BRAND_RULES
) -> PageResult:
    """
    Fetch one page of messages and store them in email_history.

    One list call plus one detail call per message. A failed detail call is
    recorded in `errors` and the rest of the page continues; an expired token
    aborts the page.

    Returns:
        PageResult with last_cursor = nextPageToken (None on the last page)
    """
    key = connection.id or connection.user_id
    quota_used = 0

    if throttle:
        await throttle.acquire(GMAIL, key, cost=GMAIL_LIST_COST)
    listing = await gmail_list_messages(http_client, connection.access_token, query, page_size, page_token)
    quota_used += GMAIL_LIST_COST

    stubs = listing.get("messages") or []
    next_token = listing.get("nextPageToken")

    messages = []
    errors = []
    for stub in stubs:
        if throttle:
            await throttle.acquire(GMAIL, key, cost=GMAIL_GET_COST)
        try:
            messages.append(await gmail_get_message(http_client, connection.access_token, stub["id"]))
        except ProviderApiError as e:
            logger.warning(f"⚠️  Could not fetch message {stub['id']}: {e.provider_status}")
            errors.append({"id": stub["id"], "error": e.message})
        finally:
            quota_used += GMAIL_GET_COST

    imported, mapping_errors, _last_id = map_and_upsert(
        supabase,
        "email_history",
        "external_id",
        messages,
        lambda message: normalize_gmail_message(message, connection, brand_rules),
        ignore_duplicates=True,
    )

    if budget:
        budget.charge(quota_used)

    logger.info(f"📧 Gmail page: {imported}/{len(stubs)} stored, next={'yes' if next_token else 'no'}")

    return PageResult(
        imported_count=imported,
        has_more=bool(next_token),
        last_cursor=next_token,
        errors=errors + mapping_errors,
        quota_used=quota_used,
        fetched_count=len(stubs),
    )
