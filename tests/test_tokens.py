"""Tests for the token refresher and the authorization code flow."""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from app.core.errors import AuthError
from app.services.sync.orchestration.teamleader_sync import sync_teamleader_for_user
from app.services.sync.tokens import (
    build_authorization_url,
    ensure_fresh,
    exchange_code,
    refresh,
    refresh_expiring_connections,
)
from tests.conftest import NOW, SAMPLE_USER_ID

TEAMLEADER_TOKEN_PATH = "/oauth2/access_token"
GOOGLE_TOKEN_PATH = "/token"


def form(request: httpx.Request) -> dict:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


def soon(minutes: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(minutes=minutes)).isoformat()


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_before_first_list_call(supabase, make_connection, router, http_client):
    connection = make_connection("teamleader", expires_at=(NOW - timedelta(minutes=1)).isoformat())
    router.add("POST", TEAMLEADER_TOKEN_PATH, httpx.Response(200, json={
        "access_token": "tl-new-access",
        "refresh_token": "tl-new-refresh",
        "expires_in": 3600,
    }))
    router.add("POST", "/contacts.list", httpx.Response(200, json={"data": [], "meta": {"pagination": {"has_more": False}}}))

    await sync_teamleader_for_user(http_client, supabase, connection, entity_types=["contacts"], now=NOW)

    assert router.paths() == [TEAMLEADER_TOKEN_PATH, "/contacts.list"]
    assert form(router.requests[0])["grant_type"] == "refresh_token"
    assert form(router.requests[0])["refresh_token"] == "teamleader-refresh"
    assert router.requests[1].headers["Authorization"] == "Bearer tl-new-access"

    row = supabase.rows("connections")[0]
    assert row["access_token"] == "tl-new-access"
    assert row["refresh_token"] == "tl-new-refresh"
    assert row["expires_at"] == (NOW + timedelta(hours=1)).isoformat()


@pytest.mark.asyncio
async def test_token_inside_buffer_is_refreshed(supabase, make_connection, router, http_client):
    connection = make_connection("gmail", expires_at=(NOW + timedelta(minutes=3)).isoformat())
    router.add("POST", GOOGLE_TOKEN_PATH, httpx.Response(200, json={"access_token": "g-new", "expires_in": 3599}))

    fresh = await ensure_fresh(http_client, supabase, connection, now=NOW)

    assert fresh.access_token == "g-new"


@pytest.mark.asyncio
async def test_valid_token_is_left_alone(supabase, make_connection, router, http_client):
    connection = make_connection("gmail", expires_at=(NOW + timedelta(minutes=30)).isoformat())

    fresh = await ensure_fresh(http_client, supabase, connection, now=NOW)

    assert fresh == connection
    assert router.requests == []


@pytest.mark.asyncio
async def test_failed_refresh_leaves_stored_tokens_untouched(supabase, make_connection, router, http_client):
    expires_at = (NOW - timedelta(minutes=10)).isoformat()
    connection = make_connection("teamleader", expires_at=expires_at)
    router.add("POST", TEAMLEADER_TOKEN_PATH, httpx.Response(400, json={"error": "invalid_grant"}))

    with pytest.raises(AuthError):
        await sync_teamleader_for_user(http_client, supabase, connection, entity_types=["contacts"], now=NOW)

    row = supabase.rows("connections")[0]
    assert row["access_token"] == "teamleader-access"
    assert row["refresh_token"] == "teamleader-refresh"
    assert row["expires_at"] == expires_at
    # Counted against the connection, no provider call made
    assert row["sync_error_count"] == 1
    assert "authentication failed" in row["last_sync_error"]
    assert router.paths() == [TEAMLEADER_TOKEN_PATH]


@pytest.mark.asyncio
async def test_refresh_keeps_refresh_token_when_provider_omits_it(supabase, make_connection, router, http_client):
    connection = make_connection("gmail")
    router.add("POST", GOOGLE_TOKEN_PATH, httpx.Response(200, json={"access_token": "g-new"}))

    refreshed = await refresh(http_client, supabase, connection, now=NOW)

    assert refreshed.refresh_token == "gmail-refresh"
    # expires_in defaults to one hour
    assert refreshed.expires_at == NOW + timedelta(hours=1)
    assert supabase.rows("connections")[0]["refresh_token"] == "gmail-refresh"


@pytest.mark.asyncio
async def test_missing_refresh_token_fails_without_calling_provider(supabase, make_connection, router, http_client):
    connection = make_connection("gmail", refresh_token=None)

    with pytest.raises(AuthError, match="no refresh token"):
        await refresh(http_client, supabase, connection)

    assert router.requests == []


@pytest.mark.asyncio
async def test_sweep_refreshes_expiring_connections_and_counts_failures(supabase, make_connection, router, http_client):
    make_connection("gmail", expires_at=soon(10))
    make_connection("teamleader", expires_at=soon(10))
    make_connection("gmail", user_id="other-user", expires_at=soon(120))

    router.add("POST", GOOGLE_TOKEN_PATH, httpx.Response(200, json={"access_token": "g-new", "expires_in": 3600}))
    router.add("POST", TEAMLEADER_TOKEN_PATH, httpx.Response(401, json={"error": "invalid_client"}))

    result = await refresh_expiring_connections(http_client, supabase)

    assert result["refreshed"] == 1
    assert result["failed"] == 1
    rows = {(row["user_id"], row["provider"]): row for row in supabase.rows("connections")}
    assert rows[(SAMPLE_USER_ID, "gmail")]["access_token"] == "g-new"
    assert rows[(SAMPLE_USER_ID, "teamleader")]["sync_error_count"] == 1
    assert rows[("other-user", "gmail")]["access_token"] == "gmail-access"


def test_gmail_authorization_url_requests_offline_access():
    url = build_authorization_url("gmail", state="csrf-123")

    assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    assert "access_type=offline" in url
    assert "prompt=consent" in url
    assert "state=csrf-123" in url
    assert "client_id=gmail-client" in url
    assert "gmail.readonly" in url


def test_unknown_provider_is_rejected():
    with pytest.raises(ValueError):
        build_authorization_url("outlook")


@pytest.mark.asyncio
async def test_code_exchange_stores_connection(supabase, router, http_client):
    router.add("POST", GOOGLE_TOKEN_PATH, httpx.Response(200, json={
        "access_token": "g-access",
        "refresh_token": "g-refresh",
        "expires_in": 3600,
    }))
    router.add("GET", "/oauth2/v2/userinfo", httpx.Response(200, json={"email": "Sales@ContainerDirect.nl"}))

    connection = await exchange_code(http_client, supabase, "gmail", "auth-code", SAMPLE_USER_ID)

    assert connection.account_email == "Sales@ContainerDirect.nl"
    assert form(router.requests[0])["grant_type"] == "authorization_code"
    row = supabase.rows("connections")[0]
    assert row["user_id"] == SAMPLE_USER_ID
    assert row["provider"] == "gmail"
    assert row["refresh_token"] == "g-refresh"
    assert row["is_active"] is True


@pytest.mark.asyncio
async def test_rejected_code_is_an_auth_error(supabase, router, http_client):
    router.add("POST", GOOGLE_TOKEN_PATH, httpx.Response(400, json={"error": "invalid_grant"}))

    with pytest.raises(AuthError):
        await exchange_code(http_client, supabase, "gmail", "stale-code", SAMPLE_USER_ID)

    assert supabase.rows("connections") == []
