"""Tests for the resumable TeamLeader batch import."""

import httpx
import pytest

from app.core.errors import ProviderApiError
from app.services.sync import progress as tracker
from app.services.sync.orchestration.teamleader_sync import run_teamleader_batch_import
from tests.conftest import SAMPLE_USER_ID, request_json


def contacts(start, count):
    return [{"id": f"c-{n}", "first_name": "Jan", "last_name": f"Peeters {n}"} for n in range(start, start + count)]


def pages_by_number(pages):
    """contacts.list handler serving pages keyed by page number."""

    def handle(request):
        number = request_json(request)["page"]["number"]
        return httpx.Response(200, json={"data": pages.get(number, [])})

    return handle


def serve_window(records):
    """contacts.list handler slicing `records` by the requested page number and size."""

    def handle(request):
        page = request_json(request)["page"]
        start = (page["number"] - 1) * page["size"]
        return httpx.Response(200, json={"data": records[start:start + page["size"]]})

    return handle


@pytest.mark.asyncio
async def test_import_resumes_from_checkpoint(supabase, make_connection, router, http_client):
    connection = make_connection("teamleader")
    router.add("POST", "/contacts.list", pages_by_number({
        1: contacts(0, 2),
        2: contacts(2, 2),
        3: contacts(4, 1),
    }))

    first = await run_teamleader_batch_import(http_client, supabase, connection, "contacts", batch_size=2, max_batches=2)

    assert first["status"] == tracker.IN_PROGRESS
    assert first["has_more"] is True
    assert first["offset"] == 4
    assert first["total_imported"] == 4

    second = await run_teamleader_batch_import(http_client, supabase, connection, "contacts", batch_size=2, max_batches=2)

    assert second["status"] == tracker.COMPLETED
    assert second["has_more"] is False
    assert second["imported"] == 1
    assert second["total_imported"] == 5

    numbers = [request_json(r)["page"]["number"] for r in router.requests]
    assert numbers == [1, 2, 3]
    assert len(supabase.rows("customers")) == 5

    progress = tracker.get_progress(supabase, SAMPLE_USER_ID, "teamleader_contacts")
    assert progress.cursor == "5"
    assert progress.status == tracker.COMPLETED


@pytest.mark.asyncio
async def test_completed_import_is_not_fetched_again(supabase, make_connection, router, http_client):
    connection = make_connection("teamleader")
    router.add("POST", "/contacts.list", pages_by_number({1: contacts(0, 1)}))

    await run_teamleader_batch_import(http_client, supabase, connection, "contacts", batch_size=2)
    result = await run_teamleader_batch_import(http_client, supabase, connection, "contacts", batch_size=2)

    assert result["status"] == tracker.COMPLETED
    assert result["imported"] == 0
    assert len(router.requests) == 1


@pytest.mark.asyncio
async def test_failed_page_is_recorded_and_retried_next_run(supabase, make_connection, router, http_client):
    connection = make_connection("teamleader")
    router.add("POST", "/contacts.list", [
        httpx.Response(200, json={"data": contacts(0, 2)}),
        httpx.Response(502, text="bad gateway"),
        httpx.Response(200, json={"data": contacts(2, 1)}),
    ])

    with pytest.raises(ProviderApiError):
        await run_teamleader_batch_import(http_client, supabase, connection, "contacts", batch_size=2, max_batches=5)

    progress = tracker.get_progress(supabase, SAMPLE_USER_ID, "teamleader_contacts")
    assert progress.status == tracker.FAILED
    assert progress.cursor == "2"
    assert "502" in progress.error_details

    result = await run_teamleader_batch_import(http_client, supabase, connection, "contacts", batch_size=2, max_batches=5)

    assert result["status"] == tracker.COMPLETED
    assert result["total_imported"] == 3
    assert request_json(router.requests[-1])["page"]["number"] == 2


@pytest.mark.asyncio
async def test_unknown_import_type(supabase, make_connection, http_client):
    connection = make_connection("teamleader")

    with pytest.raises(ValueError):
        await run_teamleader_batch_import(http_client, supabase, connection, "leads")


@pytest.mark.asyncio
@pytest.mark.parametrize("first_batches", [2, 3])
async def test_resume_with_larger_batch_size_imports_every_record(supabase, make_connection, router, http_client, first_batches):
    connection = make_connection("teamleader")
    router.add("POST", "/contacts.list", serve_window(contacts(0, 300)))

    first = await run_teamleader_batch_import(
        http_client, supabase, connection, "contacts", batch_size=50, max_batches=first_batches
    )
    assert first["offset"] == 50 * first_batches

    second = await run_teamleader_batch_import(http_client, supabase, connection, "contacts", batch_size=100, max_batches=10)

    assert second["status"] == tracker.COMPLETED
    assert second["total_imported"] == 300
    assert second["offset"] == 300
    assert {row["teamleader_id"] for row in supabase.rows("customers")} == {f"c-{n}" for n in range(300)}


@pytest.mark.asyncio
async def test_resume_with_smaller_batch_size_imports_every_record(supabase, make_connection, router, http_client):
    connection = make_connection("teamleader")
    router.add("POST", "/contacts.list", serve_window(contacts(0, 250)))

    await run_teamleader_batch_import(http_client, supabase, connection, "contacts", batch_size=100, max_batches=1)
    second = await run_teamleader_batch_import(http_client, supabase, connection, "contacts", batch_size=30, max_batches=20)

    assert second["status"] == tracker.COMPLETED
    assert second["total_imported"] == 250
    assert len(supabase.rows("customers")) == 250
