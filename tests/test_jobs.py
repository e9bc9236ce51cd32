"""Briefing notifications and sync job fan-out."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from dramatiq.brokers.stub import StubBroker

from emergent_sync.models.schemas.sync import ConnectionStatus, Provider, SyncResponse, SyncTrigger
from emergent_sync.services.jobs import tasks
from emergent_sync.services.jobs.notifications import BriefingNotifier, should_notify_briefing
from tests.fakes.builders import USER_ID, seed_connection


@pytest.mark.parametrize("trigger,changed,expected", [
    (SyncTrigger.AUTO, False, False),
    (SyncTrigger.AUTO, True, True),
    (SyncTrigger.MANUAL, False, True),
    (SyncTrigger.CONNECT, False, True),
])
def test_should_notify_briefing(trigger, changed, expected):
    assert should_notify_briefing(trigger, changed) is expected


def test_notify_builds_generate_briefing_message():
    broker = MagicMock()
    notifier = BriefingNotifier(broker=broker, queue_name="briefings")
    timestamp = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    assert notifier.notify(USER_ID, timestamp) is True

    broker.declare_queue.assert_called_once_with("briefings")
    message = broker.enqueue.call_args.args[0]
    assert message.queue_name == "briefings"
    assert message.actor_name == "generate_briefing"
    assert message.args == (USER_ID, "2024-05-01T09:00:00+00:00")


def test_notify_enqueues_on_a_real_broker():
    broker = StubBroker()
    notifier = BriefingNotifier(broker=broker, queue_name="briefings")

    assert notifier.notify(USER_ID) is True
    assert broker.queues["briefings"].qsize() == 1


def test_notify_failure_is_swallowed():
    broker = MagicMock()
    broker.enqueue.side_effect = ConnectionError("redis down")

    assert BriefingNotifier(broker=broker).notify(USER_ID) is False


def test_enqueue_sync_sends_to_the_provider_actor():
    with patch.object(tasks.sync_gmail_task, "send") as send:
        tasks.enqueue_sync(Provider.GMAIL, USER_ID, SyncTrigger.MANUAL)

    send.assert_called_once_with(USER_ID, "manual")


def test_auto_fan_out_covers_connected_providers_only(supabase):
    seed_connection(supabase, Provider.CALENDAR)
    seed_connection(supabase, Provider.GMAIL, status=ConnectionStatus.DISCONNECTED)
    seed_connection(supabase, Provider.GMAIL, user_id="user-2")

    with patch.object(tasks, "enqueue_sync") as enqueue:
        assert tasks.enqueue_auto_syncs(supabase) == 2

    enqueue.assert_any_call(Provider.CALENDAR, USER_ID, SyncTrigger.AUTO)
    enqueue.assert_any_call(Provider.GMAIL, "user-2", SyncTrigger.AUTO)


@pytest.mark.asyncio
@pytest.mark.parametrize("fails", [False, True])
async def test_provider_sync_closes_http_and_redis_clients(supabase, fails):
    http_client = MagicMock(aclose=AsyncMock())
    redis_client = MagicMock()
    runner = AsyncMock(
        side_effect=RuntimeError("boom") if fails else None,
        return_value=SyncResponse(status="complete", user_id=USER_ID, provider=Provider.CALENDAR),
    )

    with patch.object(tasks, "get_sync_dependencies", return_value=(http_client, supabase, redis_client)), \
            patch("emergent_sync.services.sync.orchestration.calendar_sync.run_calendar_sync", runner):
        if fails:
            with pytest.raises(RuntimeError):
                await tasks._run_provider_sync(Provider.CALENDAR, USER_ID, SyncTrigger.MANUAL)
        else:
            result = await tasks._run_provider_sync(Provider.CALENDAR, USER_ID, SyncTrigger.MANUAL)
            assert result["status"] == "complete"

    runner.assert_awaited_once_with(http_client, supabase, redis_client, USER_ID, SyncTrigger.MANUAL)
    http_client.aclose.assert_awaited_once()
    redis_client.close.assert_called_once()
