"""End-to-end sync cycles against fake Nango, Nightfall, Supabase and Redis."""

import copy
from unittest.mock import patch

import pytest

from emergent_sync.core.errors import ProviderUnavailableError
from emergent_sync.models.schemas.sync import Provider, SyncResponse, SyncTrigger
from emergent_sync.services.dlp.redaction import RedactionGate
from emergent_sync.services.sync.locks import lock_key
from emergent_sync.services.sync.orchestration.calendar_sync import run_calendar_sync
from emergent_sync.services.sync.orchestration.common import is_fatal, run_cycle
from emergent_sync.services.sync.orchestration.email_sync import run_gmail_sync
from emergent_sync.services.sync.persistence import read_sync_status, write_sync_status
from emergent_sync.services.sync.providers.gmail import _parse_mail_token
from emergent_sync.services.sync.state import SyncState
from tests.fakes.builders import (
    EVENTS_PATH,
    MESSAGES_PATH,
    USER_ID,
    VAULT_KEY_B64,
    at,
    gmail_message,
    google_event,
    seed_connection,
)


def serve_calendar(provider_api, items, sync_token="sync-1"):
    provider_api.json("GET", EVENTS_PATH, {"items": items, "nextSyncToken": sync_token})


def status_writes(supabase):
    return [op for table, op in supabase.calls if table == "sync_status" and op == "upsert"]


@pytest.mark.asyncio
async def test_calendar_cycle_persists_redacted_rows_flags_and_token(
    supabase, redis_client, http_client, provider_api, gate, notifier
):
    seed_connection(supabase)
    provider_api.sensitive = {"Dana": "PERSON_NAME"}
    serve_calendar(provider_api, [
        google_event("E1", at(9), at(10), summary="1:1 with Dana"),
        google_event("E2", at(9, 30), at(10, 30)),
        google_event("E3", at(11), at(12)),
    ])

    result = await run_calendar_sync(http_client, supabase, redis_client, USER_ID, SyncTrigger.MANUAL, notifier, gate)

    assert result.status == "complete"
    assert (result.items_fetched, result.items_upserted, result.events_with_conflicts) == (3, 3, 2)
    rows = {r["event_id"]: r for r in supabase.rows("calendar_events")}
    assert "Dana" not in rows["E1"]["title"]
    assert rows["E1"]["conflict_with"] == ["E2"]
    assert rows["E3"]["has_conflict"] is False
    assert all(r["security_verified"] for r in rows.values())
    assert supabase.rows("connections")[0]["metadata"]["delta_token"] == "sync-1"
    assert read_sync_status(supabase, USER_ID).status == SyncState.COMPLETE.value
    assert len(status_writes(supabase)) == 4  # fetching, securing, analyzing, complete
    notifier.notify.assert_called_once_with(USER_ID)
    assert redis_client.get(lock_key(USER_ID, Provider.CALENDAR)) is None


@pytest.mark.asyncio
async def test_rerunning_a_cycle_on_unchanged_data_changes_nothing(
    supabase, redis_client, http_client, provider_api, gate, notifier
):
    seed_connection(supabase)
    serve_calendar(provider_api, [
        google_event("E1", at(9), at(10)),
        google_event("E2", at(9, 30), at(10, 30)),
        google_event("E3", at(11), at(12)),
    ])

    first = await run_calendar_sync(http_client, supabase, redis_client, USER_ID, SyncTrigger.MANUAL, notifier, gate)
    rows_after_first = sorted(copy.deepcopy(supabase.rows("calendar_events")), key=lambda r: r["event_id"])
    second = await run_calendar_sync(http_client, supabase, redis_client, USER_ID, SyncTrigger.MANUAL, notifier, gate)
    rows_after_second = sorted(supabase.rows("calendar_events"), key=lambda r: r["event_id"])

    assert (first.status, second.status) == ("complete", "complete")
    assert second.sync_type == "delta"
    assert rows_after_second == rows_after_first
    assert {r["event_id"]: r["conflict_with"] for r in rows_after_second} == {"E1": ["E2"], "E2": ["E1"], "E3": []}
    assert first.events_with_conflicts == second.events_with_conflicts == 2


@pytest.mark.asyncio
async def test_empty_fetch_skips_analysis_and_still_commits_the_token(
    supabase, redis_client, http_client, provider_api, gate, notifier
):
    seed_connection(supabase, metadata={"delta_token": "tok"})
    serve_calendar(provider_api, [], sync_token="tok-2")

    with patch("emergent_sync.services.sync.state.write_sync_status", wraps=write_sync_status) as writes:
        result = await run_calendar_sync(
            http_client, supabase, redis_client, USER_ID, SyncTrigger.MANUAL, notifier, gate
        )

    assert result.status == "complete"
    assert result.items_fetched == 0
    assert [c.args[2] for c in writes.call_args_list] == ["fetching", "securing", "complete"]
    assert supabase.rows("connections")[0]["metadata"]["delta_token"] == "tok-2"
    assert supabase.rows("calendar_events") == []


@pytest.mark.asyncio
async def test_token_is_committed_only_after_rows_are_durable(
    supabase, redis_client, http_client, provider_api, gate, notifier
):
    seed_connection(supabase, metadata={"delta_token": "previous"})
    provider_api.json("GET", EVENTS_PATH, {
        "items": [google_event("E1", at(9), at(10))],
        "nextSyncToken": "next",
    })
    supabase.fail_on.add(("calendar_events", "upsert"))

    result = await run_calendar_sync(http_client, supabase, redis_client, USER_ID, SyncTrigger.MANUAL, notifier, gate)

    assert result.status == "error"
    assert supabase.rows("connections")[0]["metadata"]["delta_token"] == "previous"
    status = read_sync_status(supabase, USER_ID)
    assert status.status == "error"
    assert "calendar_events" in status.error_message
    notifier.notify.assert_not_called()


@pytest.mark.asyncio
async def test_delta_cycle_deletes_cancelled_events(supabase, redis_client, http_client, provider_api, gate, notifier):
    seed_connection(supabase, metadata={"delta_token": "tok"})
    supabase.tables["calendar_events"] = [{
        "user_id": USER_ID, "event_id": "gone", "title": "Old",
        "start_time": at(9).isoformat(), "end_time": at(10).isoformat(), "status": "confirmed",
    }]
    provider_api.json("GET", EVENTS_PATH, {"items": [{"id": "gone", "status": "cancelled"}], "nextSyncToken": "tok-2"})

    result = await run_calendar_sync(http_client, supabase, redis_client, USER_ID, SyncTrigger.AUTO, notifier, gate)

    assert (result.sync_type, result.items_deleted, result.items_upserted) == ("delta", 1, 0)
    assert supabase.rows("calendar_events") == []
    notifier.notify.assert_called_once()


@pytest.mark.asyncio
async def test_unchanged_auto_cycle_skips_briefing(supabase, redis_client, http_client, provider_api, gate, notifier):
    seed_connection(supabase, metadata={"delta_token": "tok"})
    serve_calendar(provider_api, [], sync_token="tok")

    result = await run_calendar_sync(http_client, supabase, redis_client, USER_ID, SyncTrigger.AUTO, notifier, gate)

    assert result.status == "complete"
    assert result.data_changed is False
    notifier.notify.assert_not_called()
    assert supabase.rows("connections")[0]["last_sync_at"] is not None


@pytest.mark.asyncio
async def test_bulk_sync_stores_unverified_rows_when_dlp_is_unconfigured(
    supabase, redis_client, http_client, provider_api, notifier
):
    seed_connection(supabase)
    serve_calendar(provider_api, [google_event("E1", at(9), at(10), summary="1:1 with Dana")])
    unconfigured = RedactionGate(supabase, http_client, api_key="", vault_key_b64=VAULT_KEY_B64)

    result = await run_calendar_sync(
        http_client, supabase, redis_client, USER_ID, SyncTrigger.MANUAL, notifier, unconfigured
    )

    assert result.status == "complete"
    assert result.unverified is True
    row = supabase.rows("calendar_events")[0]
    assert row["security_verified"] is False
    assert row["title"] == "1:1 with Dana"
    assert provider_api.scans == []


@pytest.mark.asyncio
async def test_missing_connection_is_a_soft_result(supabase, redis_client, http_client, gate, notifier):
    result = await run_calendar_sync(http_client, supabase, redis_client, USER_ID, SyncTrigger.MANUAL, notifier, gate)

    assert result.status == "not_connected"
    assert supabase.rows("sync_status") == []


@pytest.mark.asyncio
async def test_held_lock_skips_the_cycle(supabase, redis_client, http_client, provider_api, gate, notifier):
    seed_connection(supabase)
    redis_client.set(lock_key(USER_ID, Provider.CALENDAR), "other-worker", nx=True, ex=60)

    result = await run_calendar_sync(http_client, supabase, redis_client, USER_ID, SyncTrigger.MANUAL, notifier, gate)

    assert result.status == "skipped"
    assert provider_api.requests == []


@pytest.mark.asyncio
async def test_auth_failure_marks_connection_error(supabase, redis_client, http_client, provider_api, gate, notifier):
    seed_connection(supabase)
    provider_api.json("GET", EVENTS_PATH, {"error": "invalid_grant"}, status=401)

    result = await run_calendar_sync(http_client, supabase, redis_client, USER_ID, SyncTrigger.MANUAL, notifier, gate)

    assert result.status == "error"
    assert supabase.rows("connections")[0]["status"] == "error"
    assert read_sync_status(supabase, USER_ID).status == "error"


@pytest.mark.asyncio
async def test_fatal_errors_are_reraised_after_recording_status(supabase, redis_client, notifier):
    seed_connection(supabase, Provider.GMAIL)

    async def pipeline(connection, machine):
        machine.transition(SyncState.FETCHING)
        raise ProviderUnavailableError("Nango down", status_code=503, category="server", retryable=True)

    with pytest.raises(ProviderUnavailableError):
        await run_cycle(supabase, redis_client, USER_ID, Provider.GMAIL, SyncTrigger.AUTO, pipeline, notifier)

    assert read_sync_status(supabase, USER_ID).error_message == "Nango down"
    assert redis_client.get(lock_key(USER_ID, Provider.GMAIL)) is None


@pytest.mark.asyncio
async def test_manual_cycle_notifies_even_without_changes(supabase, redis_client, notifier):
    seed_connection(supabase, Provider.GMAIL)

    async def pipeline(connection, machine):
        return SyncResponse(status="complete", user_id=USER_ID, provider=Provider.GMAIL)

    await run_cycle(supabase, redis_client, USER_ID, Provider.GMAIL, SyncTrigger.MANUAL, pipeline, notifier)

    notifier.notify.assert_called_once_with(USER_ID)


def test_is_fatal():
    assert is_fatal(RuntimeError("unexpected")) is True
    assert is_fatal(ProviderUnavailableError("503", retryable=True)) is True
    assert is_fatal(ProviderUnavailableError("401", retryable=False, action="reconnect")) is False


@pytest.mark.asyncio
async def test_gmail_cycle_stores_messages_and_timestamp_token(
    supabase, redis_client, http_client, provider_api, gate, notifier
):
    seed_connection(supabase, Provider.GMAIL)
    provider_api.sensitive = {"ann@example.com": "EMAIL_ADDRESS"}
    provider_api.json("GET", MESSAGES_PATH, {"messages": [{"id": "m1"}, {"id": "m2"}]})
    provider_api.json("GET", f"{MESSAGES_PATH}/m1", gmail_message("m1"))
    provider_api.json("GET", f"{MESSAGES_PATH}/m2", gmail_message("m2", subject="Invoice"))

    result = await run_gmail_sync(http_client, supabase, redis_client, USER_ID, SyncTrigger.CONNECT, notifier, gate)

    assert (result.status, result.items_upserted) == ("complete", 2)
    rows = supabase.rows("emails")
    assert all("ann@example.com" not in row["sender"] for row in rows)
    token = supabase.rows("connections")[0]["metadata"]["delta_token"]
    assert _parse_mail_token(token).tzinfo is not None
    assert read_sync_status(supabase, USER_ID).status == "complete"
    assert len(status_writes(supabase)) == 3  # no analyzing step for mail
    notifier.notify.assert_called_once_with(USER_ID)
