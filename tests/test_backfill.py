"""Tests for the month-windowed Gmail backfill and its progress rows."""

from datetime import date

import httpx
import pytest

from app.core.config import settings
from app.core.errors import AuthError
from app.services.sync.orchestration.email_sync import BACKFILL_IMPORT_TYPE, backfill_status, run_gmail_backfill
from tests.gmail_fixtures import GMAIL_MESSAGES_PATH, gmail_message, list_by_window, listing, serve_messages


def progress_rows(supabase):
    return sorted(supabase.rows("sync_progress"), key=lambda row: row["range_key"])


def list_requests(router):
    return [r for r in router.requests if r.url.path == GMAIL_MESSAGES_PATH]


@pytest.mark.asyncio
async def test_range_creates_one_progress_row_per_month(supabase, make_connection, router, http_client):
    connection = make_connection("gmail")
    router.add("GET", GMAIL_MESSAGES_PATH, list_by_window({
        ("2024/01/01", None): listing(["jan-1", "jan-2"]),
        ("2024/02/01", None): listing(["feb-1"]),
        ("2024/03/01", None): listing([]),
    }))
    serve_messages(router, [gmail_message("jan-1"), gmail_message("jan-2"), gmail_message("feb-1")])

    summary = await run_gmail_backfill(
        http_client, supabase, connection, date(2024, 1, 1), date(2024, 3, 15), max_batches=10
    )

    assert summary["ranges_total"] == 3
    assert summary["ranges_completed"] == 3
    assert summary["emails_processed"] == 3
    assert summary["has_more"] is False
    assert summary["quota_exceeded"] is False

    rows = progress_rows(supabase)
    assert [row["range_key"] for row in rows] == [
        "2024-01-01..2024-01-31",
        "2024-02-01..2024-02-29",
        "2024-03-01..2024-03-15",
    ]
    assert all(row["status"] == "completed" for row in rows)
    assert all(row["import_type"] == BACKFILL_IMPORT_TYPE for row in rows)
    assert [row["records_processed"] for row in rows] == [2, 1, 0]

    # list=1 unit per page, get=5 units per message
    assert summary["quota_used"] == 3 + 5 * 3
    assert supabase.rows("connections")[0]["quota_usage"] == 18


@pytest.mark.asyncio
async def test_completed_windows_are_not_fetched_again(supabase, make_connection, router, http_client):
    connection = make_connection("gmail")
    router.add("GET", GMAIL_MESSAGES_PATH, list_by_window({
        ("2024/01/01", None): listing(["jan-1"]),
        ("2024/02/01", None): listing(["feb-1"]),
    }))
    serve_messages(router, [gmail_message("jan-1"), gmail_message("feb-1")])

    await run_gmail_backfill(http_client, supabase, connection, date(2024, 1, 1), date(2024, 2, 29), max_batches=10)
    requests_after_first_run = len(router.requests)

    summary = await run_gmail_backfill(http_client, supabase, connection, date(2024, 1, 1), date(2024, 2, 29), max_batches=10)

    assert summary["ranges_skipped"] == 2
    assert summary["emails_processed"] == 0
    assert len(router.requests) == requests_after_first_run
    assert len(supabase.rows("sync_progress")) == 2


@pytest.mark.asyncio
async def test_batch_ceiling_leaves_window_resumable(supabase, make_connection, router, http_client):
    connection = make_connection("gmail")
    router.add("GET", GMAIL_MESSAGES_PATH, list_by_window({
        ("2024/01/01", None): listing(["jan-1"], next_token="jan-page-2"),
        ("2024/01/01", "jan-page-2"): listing(["jan-2"]),
    }))
    serve_messages(router, [gmail_message("jan-1"), gmail_message("jan-2")])

    first = await run_gmail_backfill(http_client, supabase, connection, date(2024, 1, 1), date(2024, 1, 31), max_batches=1)

    assert first["has_more"] is True
    assert first["ranges_completed"] == 0
    row = supabase.rows("sync_progress")[0]
    assert row["status"] == "in_progress"
    assert row["cursor"] == "jan-page-2"
    assert row["records_processed"] == 1

    listed_before = len(list_requests(router))
    second = await run_gmail_backfill(http_client, supabase, connection, date(2024, 1, 1), date(2024, 1, 31), max_batches=5)

    resumed = list_requests(router)[listed_before]
    assert resumed.url.params["pageToken"] == "jan-page-2"
    assert second["ranges_completed"] == 1
    assert second["has_more"] is False

    row = supabase.rows("sync_progress")[0]
    assert row["status"] == "completed"
    assert row["records_processed"] == 2


@pytest.mark.asyncio
async def test_failed_window_does_not_stop_later_windows(supabase, make_connection, router, http_client):
    connection = make_connection("gmail")
    router.add("GET", GMAIL_MESSAGES_PATH, list_by_window({
        ("2024/01/01", None): listing(["jan-1"]),
        ("2024/02/01", None): httpx.Response(500, json={"error": {"message": "backend error"}}),
        ("2024/03/01", None): listing(["mar-1"]),
    }))
    serve_messages(router, [gmail_message("jan-1"), gmail_message("mar-1")])

    summary = await run_gmail_backfill(http_client, supabase, connection, date(2024, 1, 1), date(2024, 3, 31), max_batches=10)

    assert summary["ranges_completed"] == 2
    assert summary["ranges_failed"] == 1
    statuses = [row["status"] for row in progress_rows(supabase)]
    assert statuses == ["completed", "failed", "completed"]
    assert "500" in progress_rows(supabase)[1]["error_details"]


@pytest.mark.asyncio
async def test_timed_out_window_does_not_stop_later_windows(supabase, make_connection, router, http_client):
    connection = make_connection("gmail")
    by_window = list_by_window({
        ("2024/01/01", None): listing(["jan-1"]),
        ("2024/03/01", None): listing(["mar-1"]),
    })

    def handle(request):
        if "after:2024/02/01" in request.url.params["q"]:
            raise httpx.ConnectTimeout("connect timed out", request=request)
        return by_window(request)

    router.add("GET", GMAIL_MESSAGES_PATH, handle)
    serve_messages(router, [gmail_message("jan-1"), gmail_message("mar-1")])

    summary = await run_gmail_backfill(http_client, supabase, connection, date(2024, 1, 1), date(2024, 3, 31), max_batches=10)

    assert summary["ranges_completed"] == 2
    assert summary["ranges_failed"] == 1
    rows = progress_rows(supabase)
    assert [row["status"] for row in rows] == ["completed", "failed", "completed"]
    assert "ConnectTimeout" in rows[1]["error_details"]
    assert supabase.rows("connections")[0]["sync_status"] == "idle"


@pytest.mark.asyncio
async def test_rejected_token_aborts_backfill(supabase, make_connection, router, http_client):
    connection = make_connection("gmail")
    router.add("GET", GMAIL_MESSAGES_PATH, httpx.Response(401, json={"error": "unauthorized"}))

    with pytest.raises(AuthError):
        await run_gmail_backfill(http_client, supabase, connection, date(2024, 1, 1), date(2024, 2, 29), max_batches=10)

    rows = progress_rows(supabase)
    assert len(rows) == 1
    assert rows[0]["status"] == "failed"


@pytest.mark.asyncio
async def test_quota_ceiling_stops_mid_window(supabase, make_connection, router, http_client, monkeypatch):
    monkeypatch.setattr(settings, "gmail_daily_quota", 1000)
    connection = make_connection("gmail", quota_usage=790)

    ids = [f"jan-{n}" for n in range(22)]
    router.add("GET", GMAIL_MESSAGES_PATH, list_by_window({
        ("2024/01/01", None): listing(ids, next_token="jan-page-2"),
    }))
    serve_messages(router, [gmail_message(i) for i in ids])

    summary = await run_gmail_backfill(http_client, supabase, connection, date(2024, 1, 1), date(2024, 2, 29), max_batches=10)

    assert summary["quota_exceeded"] is True
    assert summary["has_more"] is True
    assert summary["emails_processed"] == 22
    assert summary["quota_used"] == 1 + 5 * 22

    # One page fetched, then stopped: January stays open, February never started
    assert len(list_requests(router)) == 1
    rows = progress_rows(supabase)
    assert len(rows) == 1
    assert rows[0]["status"] == "in_progress"
    assert rows[0]["cursor"] == "jan-page-2"

    stored = supabase.rows("connections")[0]
    assert stored["quota_usage"] == 790 + 111
    assert stored["sync_status"] == "quota_limited"


@pytest.mark.asyncio
async def test_backfill_refuses_to_start_near_daily_quota(supabase, make_connection, router, http_client, monkeypatch):
    monkeypatch.setattr(settings, "gmail_daily_quota", 1000)
    connection = make_connection("gmail", quota_usage=850)

    summary = await run_gmail_backfill(http_client, supabase, connection, date(2024, 1, 1), date(2024, 3, 31))

    assert summary["quota_exceeded"] is True
    assert summary["has_more"] is True
    assert router.requests == []
    assert supabase.rows("sync_progress") == []


@pytest.mark.asyncio
async def test_status_lists_windows_in_order(supabase, make_connection, router, http_client):
    connection = make_connection("gmail")
    router.add("GET", GMAIL_MESSAGES_PATH, list_by_window({}))

    await run_gmail_backfill(http_client, supabase, connection, date(2024, 1, 1), date(2024, 2, 10), max_batches=10)

    status = backfill_status(supabase, connection.user_id)
    assert [row["range_key"] for row in status] == ["2024-01-01..2024-01-31", "2024-02-01..2024-02-10"]
    assert all(row["status"] == "completed" for row in status)
