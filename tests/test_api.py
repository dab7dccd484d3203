"""Endpoint tests: response envelope, auth and error status mapping."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from app.core.dependencies import get_http_client, get_llm_client, get_supabase
from app.core.security import get_current_user_context
from app.middleware.rate_limit import limiter
from app.services.jobs import tasks
from main import app
from tests.conftest import SAMPLE_USER_ID
from tests.gmail_fixtures import GMAIL_MESSAGES_PATH

API_KEY = {"X-API-Key": "test-scheduler-key"}


@pytest.fixture
def client(supabase, router, llm):
    async def override_http_client():
        async with httpx.AsyncClient(transport=httpx.MockTransport(router)) as http:
            yield http

    app.dependency_overrides[get_supabase] = lambda: supabase
    app.dependency_overrides[get_current_user_context] = lambda: {"user_id": SAMPLE_USER_ID, "email": "owner@containerdirect.nl"}
    app.dependency_overrides[get_http_client] = override_http_client
    app.dependency_overrides[get_llm_client] = lambda: llm
    limiter.enabled = False

    # No context manager: the lifespan would connect to real Supabase
    yield TestClient(app, raise_server_exceptions=False)

    app.dependency_overrides.clear()
    limiter.enabled = True


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_unknown_route_uses_error_envelope(client):
    response = client.get("/nope")

    assert response.status_code == 404
    assert response.json()["success"] is False


def test_invalid_model_reply_is_a_500_envelope(client, supabase, llm):
    email = supabase.add("email_history", {"subject": "Offerte", "from_address": "a@b.nl", "analysis_status": "pending"})
    llm.complete.return_value = "definitely not json"

    response = client.post("/analysis/email_classification", json={"record_id": email["id"]})

    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert "Invalid response from model" in body["error"]
    assert supabase.rows("email_analytics") == []


def test_analysis_success(client, supabase, llm):
    customer = supabase.add("customers", {"name": "Havenlogistiek BV", "email": "piet@havenlogistiek.nl"})
    llm.complete.return_value = json.dumps({"recommended_price": 2450, "win_probability": 0.6})

    response = client.post("/analysis/pricing", json={"record_id": customer["id"], "params": {"route": "NL-BE"}})

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "kind": "pricing",
        "record_id": customer["id"],
        "analysis": {"recommended_price": 2450, "win_probability": 0.6},
    }


def test_unknown_analysis_kind_is_400(client):
    response = client.post("/analysis/horoscope", json={"record_id": "customers-1"})

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_missing_record_is_400(client):
    response = client.post("/analysis/pricing", json={"record_id": "customers-404"})

    assert response.status_code == 400
    assert "not found" in response.json()["error"]


def test_sync_without_connection_is_400(client):
    response = client.post("/sync/gmail", json={})

    assert response.status_code == 400
    assert response.json()["error"].startswith("No active gmail connection")


def test_backfill_start_requires_dates(client, make_connection):
    make_connection("gmail")

    response = client.post("/sync/gmail/backfill", json={"action": "start"})

    assert response.status_code == 400
    assert "start_date" in response.json()["error"]


def test_backfill_status_lists_ranges(client, supabase):
    supabase.add("sync_progress", {
        "user_id": SAMPLE_USER_ID,
        "import_type": "gmail_backfill",
        "range_key": "2024-01",
        "range_start": "2024-01-01",
        "range_end": "2024-01-31",
        "status": "completed",
        "records_processed": 12,
    })

    response = client.post("/sync/gmail/backfill", json={"action": "status"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert len(body["ranges"]) == 1


def test_failed_token_refresh_is_401(client, make_connection, router):
    make_connection("teamleader", expires_at=(datetime.now(timezone.utc) - timedelta(minutes=5)).isoformat())
    router.add("POST", "/oauth2/access_token", httpx.Response(400, json={"error": "invalid_grant"}))

    response = client.post("/sync/teamleader", json={})

    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["error_type"] == "AuthError"


def test_teamleader_import_success(client, make_connection, router):
    make_connection("teamleader")
    router.add("POST", "/contacts.list", httpx.Response(200, json={
        "data": [{"id": "c-1", "last_name": "Peeters"}],
        "meta": {"pagination": {"has_more": False}},
    }))

    response = client.post("/sync/teamleader/import", json={"import_type": "contacts"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["import_type"] == "contacts"
    assert body["status"] == "completed"
    assert body["imported"] == 1


def test_teamleader_import_rejects_unknown_type(client, make_connection):
    make_connection("teamleader")

    response = client.post("/sync/teamleader/import", json={"import_type": "leads"})

    assert response.status_code == 400
    assert "Invalid import type" in response.json()["error"]


def test_send_email(client, supabase, make_connection, router):
    make_connection("gmail")
    router.add("POST", f"{GMAIL_MESSAGES_PATH}/send", httpx.Response(200, json={"id": "sent-1", "threadId": "thread-9"}))

    response = client.post("/email/send", json={
        "to": "piet@havenlogistiek.nl",
        "subject": "Offerte 20ft",
        "body": "Zie bijlage.",
        "thread_id": "thread-9",
    })

    assert response.status_code == 200
    assert response.json() == {"success": True, "message_id": "sent-1", "thread_id": "thread-9"}
    stored = supabase.rows("email_history")[0]
    assert stored["direction"] == "outgoing"


def test_scheduled_sync_requires_api_key(client):
    response = client.post("/sync/scheduled", json={"provider": "gmail"})

    assert response.status_code == 401
    assert response.json()["success"] is False


def test_scheduled_sync_enqueues_job(client, supabase, monkeypatch):
    sent = []
    monkeypatch.setattr(tasks.scheduled_sync_task, "send", lambda *args: sent.append(args))

    response = client.post("/sync/scheduled", json={"provider": "teamleader"}, headers=API_KEY)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "queued"
    assert sent == [("teamleader", body["job_id"])]
    assert supabase.rows("sync_jobs")[0]["status"] == "queued"


def test_token_sweep(client, make_connection, router):
    make_connection("gmail", expires_at=(datetime.now(timezone.utc) + timedelta(minutes=1)).isoformat())
    router.add("POST", "/token", httpx.Response(200, json={"access_token": "new-access", "expires_in": 3600}))

    response = client.post("/tokens/refresh", headers=API_KEY)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["refreshed"] == 1


def test_user_routes_require_bearer_token(client):
    app.dependency_overrides.pop(get_current_user_context)

    response = client.post("/sync/gmail", json={})

    assert response.status_code == 401
