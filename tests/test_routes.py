"""HTTP surface: webhook, sync trigger/status and calendar routes."""

import hashlib
import hmac
import json
from unittest.mock import patch

import httpx
import pytest
from fastapi import FastAPI

from emergent_sync.api.v1.routes.calendar import router as calendar_router
from emergent_sync.api.v1.routes.sync import BACKGROUND_WARNING
from emergent_sync.api.v1.routes.sync import router as sync_router
from emergent_sync.api.v1.routes.webhook import router as webhook_router
from emergent_sync.core.config import settings
from emergent_sync.core.dependencies import get_briefing_notifier, get_http_client, get_supabase
from emergent_sync.core.errors import (
    ConnectionBusyError,
    DlpBlockedError,
    PersistenceError,
    ProviderUnavailableError,
)
from emergent_sync.core.security import get_current_user_id
from emergent_sync.middleware.error_handler import ErrorHandlerMiddleware, http_status_for
from emergent_sync.middleware.rate_limit import limiter
from emergent_sync.models.schemas.sync import ConnectionStatus, PollResult, Provider, SyncTrigger
from tests.fakes.builders import USER_ID, at, seed_connection

SYNC_ROUTES = "emergent_sync.api.v1.routes.sync"


@pytest.fixture
def app(supabase, http_client, notifier):
    app = FastAPI()
    app.state.limiter = limiter
    app.add_middleware(ErrorHandlerMiddleware)
    app.include_router(webhook_router)
    app.include_router(sync_router)
    app.include_router(calendar_router)
    app.dependency_overrides[get_supabase] = lambda: supabase
    app.dependency_overrides[get_current_user_id] = lambda: USER_ID
    app.dependency_overrides[get_http_client] = lambda: http_client
    app.dependency_overrides[get_briefing_notifier] = lambda: notifier
    return app


@pytest.fixture
async def api(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


def auth_body() -> bytes:
    return json.dumps({
        "type": "auth",
        "success": True,
        "connectionId": "nango-abc",
        "providerConfigKey": "google-mail",
        "endUser": {"id": USER_ID},
    }).encode("utf-8")


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(api, monkeypatch):
    monkeypatch.setattr(settings, "nango_webhook_secret", "shh")

    response = await api.post("/nango/webhook", content=auth_body(), headers={"X-Nango-Signature": "nope"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_webhook_accepts_signed_auth_event(api, supabase, monkeypatch):
    monkeypatch.setattr(settings, "nango_webhook_secret", "shh")
    body = auth_body()
    signature = hmac.new(b"shh", body, hashlib.sha256).hexdigest()

    with patch("emergent_sync.services.sync.orchestration.connections.enqueue_sync") as enqueue:
        response = await api.post("/nango/webhook", content=body, headers={"X-Nango-Signature": signature})

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "provider": "gmail"}
    enqueue.assert_called_once_with(Provider.GMAIL, USER_ID, SyncTrigger.CONNECT)
    assert supabase.rows("connections")[0]["provider"] == "gmail"


@pytest.mark.asyncio
async def test_webhook_malformed_and_ignored(api):
    assert (await api.post("/nango/webhook", content=b"not json")).status_code == 400

    response = await api.post("/nango/webhook", json={"type": "sync", "success": True})
    assert response.json() == {"status": "ignored"}


@pytest.mark.asyncio
async def test_trigger_without_wait_only_queues(api, supabase):
    seed_connection(supabase)
    with patch(f"{SYNC_ROUTES}.enqueue_sync") as enqueue:
        response = await api.post("/sync/calendar", json={"wait": False})

    assert response.status_code == 200
    assert response.json()["queued"] is True
    enqueue.assert_called_once_with(Provider.CALENDAR, USER_ID, SyncTrigger.MANUAL)


@pytest.mark.asyncio
async def test_trigger_timeout_is_a_warning_not_a_failure(api, supabase):
    seed_connection(supabase, Provider.GMAIL)
    with patch(f"{SYNC_ROUTES}.enqueue_sync"), \
            patch(f"{SYNC_ROUTES}.wait_for_sync_completion",
                  return_value=PollResult(timed_out=True, status="fetching")) as wait:
        response = await api.post("/sync/gmail", json={})

    assert wait.call_args.kwargs["provider"] is Provider.GMAIL
    body = response.json()
    assert body["success"] is True
    assert body["warning"] == BACKGROUND_WARNING


@pytest.mark.asyncio
async def test_trigger_reports_cycle_error(api, supabase):
    seed_connection(supabase)
    with patch(f"{SYNC_ROUTES}.enqueue_sync"), \
            patch(f"{SYNC_ROUTES}.wait_for_sync_completion",
                  return_value=PollResult(completed=True, status="error", error="provider down")):
        response = await api.post("/sync/calendar", json={"trigger": "manual"})

    assert response.json()["success"] is False
    assert response.json()["error"] == "provider down"


@pytest.mark.asyncio
async def test_trigger_with_queue_down(api, supabase):
    seed_connection(supabase)
    with patch(f"{SYNC_ROUTES}.enqueue_sync", side_effect=ConnectionError("redis down")):
        response = await api.post("/sync/calendar", json={"wait": False})

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_trigger_without_connection_queues_nothing(api, supabase):
    seed_connection(supabase, Provider.GMAIL)
    with patch(f"{SYNC_ROUTES}.enqueue_sync") as enqueue:
        response = await api.post("/sync/calendar", json={})

    body = response.json()
    assert response.status_code == 200
    assert body["success"] is False
    assert body["status"] == "not_connected"
    assert body["queued"] is False
    enqueue.assert_not_called()


@pytest.mark.asyncio
async def test_trigger_after_disconnect_is_not_connected(api, supabase):
    seed_connection(supabase, status=ConnectionStatus.DISCONNECTED)
    with patch(f"{SYNC_ROUTES}.enqueue_sync") as enqueue:
        response = await api.post("/sync/calendar", json={"wait": False})

    assert response.json()["status"] == "not_connected"
    enqueue.assert_not_called()


@pytest.mark.asyncio
async def test_status_is_idle_before_any_sync(api):
    response = await api.get("/sync/status")

    assert response.status_code == 200
    assert response.json()["status"] == "idle"


@pytest.mark.asyncio
async def test_disconnect_unknown_provider_connection(api):
    response = await api.post("/sync/gmail/disconnect")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_create_event_requires_a_connection(api):
    response = await api.post("/calendar/events", json={
        "title": "Standup",
        "start_time": at(9).isoformat(),
        "end_time": at(10).isoformat(),
    })

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_event_rejects_inverted_times(api):
    response = await api.post("/calendar/events", json={
        "title": "Standup",
        "start_time": at(10).isoformat(),
        "end_time": at(9).isoformat(),
    })

    assert response.status_code == 422


@pytest.mark.parametrize("error,expected", [
    (DlpBlockedError("gate down"), 422),
    (ConnectionBusyError("locked"), 409),
    (PersistenceError("db down"), 503),
    (ProviderUnavailableError("502 from proxy"), 502),
    (ProviderUnavailableError("401 from proxy", status_code=401, action="reconnect"), 409),
    (RuntimeError("boom"), 500),
])
def test_http_status_for(error, expected):
    assert http_status_for(error) == expected
