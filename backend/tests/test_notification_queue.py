"""Tests for the notification dispatch queue"""
import asyncio
from datetime import datetime, timedelta

import pytest

from choreflow.models.notification import (
    EventType,
    MessageTemplate,
    NotificationRule,
    PriorityOverride,
    QueueKey,
    QuietHours,
    RecipientRole,
    Severity,
    TaskCompletedPayload,
    TaskCreatedPayload,
    UserNotificationPreferences,
)
from conftest import START


def make_rule(severity=Severity.MEDIUM):
    return NotificationRule(
        id=f"task_created_{severity.value}",
        event_type=EventType.TASK_CREATED,
        severity=severity,
        recipients=RecipientRole.ASSIGNED_CHILD,
        template=MessageTemplate(title="New Task Assigned", body="📋 {taskTitle} has been assigned to you"),
    )


PAYLOAD = TaskCreatedPayload(family_id="fam-1", task_id="task-1", task_title="Empty Dishwasher")


async def set_preferences(queue, **fields):
    await queue.update_preferences(UserNotificationPreferences(user_id="child-1", **fields))


@pytest.mark.asyncio
async def test_enqueue_admits_under_composite_key(queue):
    keys = await queue.enqueue("evt-1", make_rule(), PAYLOAD, ["child-1"])

    assert keys == [QueueKey("evt-1", "child-1")]
    entry = queue.get(keys[0])
    assert entry.scheduled_for == START
    assert entry.attempts == 0
    assert entry.sent is False


@pytest.mark.asyncio
async def test_readmission_with_same_key_replaces_entry(queue):
    await queue.enqueue("evt-1", make_rule(), PAYLOAD, ["child-1"])
    await queue.enqueue("evt-1", make_rule(Severity.HIGH), PAYLOAD, ["child-1"])

    assert len(queue) == 1
    assert queue.get(QueueKey("evt-1", "child-1")).rule.severity == Severity.HIGH


@pytest.mark.asyncio
async def test_payload_must_match_rule(queue):
    payload = TaskCompletedPayload(family_id="fam-1", task_id="task-1", task_title="Dishes", child_name="Sam")

    with pytest.raises(ValueError):
        await queue.enqueue("evt-1", make_rule(), payload, ["child-1"])


@pytest.mark.asyncio
async def test_disabled_event_type_is_rejected(queue):
    await set_preferences(queue, enabled_types=["task_completed"])

    assert await queue.enqueue("evt-1", make_rule(), PAYLOAD, ["child-1"]) == []
    assert queue.metrics.rejections["type_disabled"] == 1


@pytest.mark.asyncio
async def test_severity_override_never_drops(queue):
    await set_preferences(queue, priority_overrides={Severity.MEDIUM: PriorityOverride.NEVER})

    assert await queue.enqueue("evt-1", make_rule(), PAYLOAD, ["child-1"]) == []
    assert queue.metrics.rejections["severity_muted"] == 1


@pytest.mark.asyncio
async def test_rate_limit_rejects_non_critical(queue):
    await set_preferences(queue, max_per_hour=3)
    for minutes in (10, 20, 30):
        queue.record_send("child-1", START - timedelta(minutes=minutes))

    assert await queue.enqueue("evt-4", make_rule(Severity.MEDIUM), PAYLOAD, ["child-1"]) == []
    assert await queue.enqueue("evt-5", make_rule(Severity.CRITICAL), PAYLOAD, ["child-1"]) == [
        QueueKey("evt-5", "child-1")
    ]
    assert queue.metrics.rejections["rate_limited"] == 1


@pytest.mark.asyncio
async def test_rate_limit_only_counts_the_trailing_hour(queue):
    await set_preferences(queue, max_per_hour=3)
    for minutes in (61, 70, 90):
        queue.record_send("child-1", START - timedelta(minutes=minutes))

    assert queue.recent_send_count("child-1") == 0
    assert await queue.enqueue("evt-4", make_rule(), PAYLOAD, ["child-1"]) == [QueueKey("evt-4", "child-1")]


def test_send_history_is_evicted_after_retention(queue):
    queue.record_send("child-1", START - timedelta(hours=30))
    queue.record_send("child-1", START)

    assert len(queue._recent_sends["child-1"]) == 1


@pytest.mark.asyncio
async def test_quiet_hours_defer_non_critical(queue, clock):
    clock.set(datetime(2025, 3, 4, 22, 30, tzinfo=START.tzinfo))

    keys = await queue.enqueue("evt-1", make_rule(), PAYLOAD, ["child-1"])

    assert queue.get(keys[0]).scheduled_for == datetime(2025, 3, 5, 7, 0, tzinfo=START.tzinfo)


@pytest.mark.asyncio
async def test_critical_bypasses_quiet_hours(queue, clock):
    late = datetime(2025, 3, 4, 22, 30, tzinfo=START.tzinfo)
    clock.set(late)

    keys = await queue.enqueue("evt-1", make_rule(Severity.CRITICAL), PAYLOAD, ["child-1"])

    assert queue.get(keys[0]).scheduled_for == late


@pytest.mark.asyncio
async def test_critical_respects_quiet_hours_when_asked(queue, clock):
    clock.set(datetime(2025, 3, 4, 22, 30, tzinfo=START.tzinfo))
    await set_preferences(queue, priority_overrides={Severity.CRITICAL: PriorityOverride.QUIET_HOURS_ONLY})

    keys = await queue.enqueue("evt-1", make_rule(Severity.CRITICAL), PAYLOAD, ["child-1"])

    assert queue.get(keys[0]).scheduled_for == datetime(2025, 3, 5, 7, 0, tzinfo=START.tzinfo)


@pytest.mark.asyncio
async def test_grouping_coalesces_nearby_sends(queue):
    first = await queue.enqueue("evt-1", make_rule(), PAYLOAD, ["child-1"], scheduled_for=START + timedelta(minutes=10))
    second = await queue.enqueue("evt-2", make_rule(), PAYLOAD, ["child-1"], scheduled_for=START + timedelta(minutes=15))

    assert queue.get(second[0]).scheduled_for == queue.get(first[0]).scheduled_for == START + timedelta(minutes=10)


@pytest.mark.asyncio
async def test_grouping_leaves_distant_and_critical_sends_alone(queue):
    await queue.enqueue("evt-1", make_rule(), PAYLOAD, ["child-1"], scheduled_for=START + timedelta(minutes=10))
    distant = await queue.enqueue("evt-2", make_rule(), PAYLOAD, ["child-1"], scheduled_for=START + timedelta(minutes=40))
    critical = await queue.enqueue(
        "evt-3", make_rule(Severity.CRITICAL), PAYLOAD, ["child-1"], scheduled_for=START + timedelta(minutes=12)
    )

    assert queue.get(distant[0]).scheduled_for == START + timedelta(minutes=40)
    assert queue.get(critical[0]).scheduled_for == START + timedelta(minutes=12)


@pytest.mark.asyncio
async def test_grouping_never_joins_a_send_inside_quiet_hours(queue, clock):
    clock.set(datetime(2025, 3, 4, 20, 0, tzinfo=START.tzinfo))
    critical_at = datetime(2025, 3, 4, 21, 5, tzinfo=START.tzinfo)
    await queue.enqueue("evt-1", make_rule(Severity.CRITICAL), PAYLOAD, ["child-1"], scheduled_for=critical_at)

    medium_at = datetime(2025, 3, 4, 20, 55, tzinfo=START.tzinfo)
    keys = await queue.enqueue("evt-2", make_rule(), PAYLOAD, ["child-1"], scheduled_for=medium_at)

    assert queue.get(QueueKey("evt-1", "child-1")).scheduled_for == critical_at
    assert queue.get(keys[0]).scheduled_for == medium_at


@pytest.mark.asyncio
async def test_drain_delivers_due_entries(queue, push, store):
    await queue.enqueue("evt-1", make_rule(), PAYLOAD, ["child-1"])
    await queue.enqueue("evt-2", make_rule(), PAYLOAD, ["child-1"], scheduled_for=START + timedelta(hours=1))

    result = await queue.drain()

    assert result.sent == 1
    assert push.sent[0]["token"] == "ExponentPushToken[child]"
    assert push.sent[0]["body"] == "📋 Empty Dishwasher has been assigned to you"
    assert push.sent[0]["data"]["eventId"] == "evt-1"
    assert queue.get(QueueKey("evt-1", "child-1")) is None
    assert queue.get(QueueKey("evt-2", "child-1")) is not None
    assert queue.recent_send_count("child-1") == 1
    assert [doc["event_id"] for doc in store.all("notifications")] == ["evt-1"]


@pytest.mark.asyncio
async def test_failing_delivery_is_evicted_after_three_attempts(queue, push):
    push.fail = True
    await queue.enqueue("evt-1", make_rule(), PAYLOAD, ["child-1"])

    results = [await queue.drain() for _ in range(4)]

    assert push.attempts == 3
    assert [result.failed for result in results] == [1, 1, 1, 0]
    assert results[2].evicted == 1
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_missing_token_is_skipped_without_attempt(queue, push, store):
    store.seed("users", "child-2", {"family_id": "fam-1", "display_name": "Alex", "role": "child"})
    await queue.enqueue("evt-1", make_rule(), PAYLOAD, ["child-2"])

    result = await queue.drain()

    assert result.skipped == 1
    assert result.failed == 0
    assert push.attempts == 0
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_store_failure_defers_delivery(queue, push, store):
    await queue.enqueue("evt-1", make_rule(), PAYLOAD, ["child-1"])
    store.fail("get", "users")

    result = await queue.drain()

    assert result.deferred == 1
    assert queue.get(QueueKey("evt-1", "child-1")).attempts == 0

    store.recover()
    assert (await queue.drain()).sent == 1


@pytest.mark.asyncio
async def test_cancel_removes_entries(queue):
    await queue.enqueue("evt-1", make_rule(), PAYLOAD, ["child-1", "parent-1"])

    assert await queue.cancel("evt-1", "parent-1") == 1
    assert [entry.recipient_id for entry in queue.pending()] == ["child-1"]


@pytest.mark.asyncio
async def test_admission_waits_for_drain(queue, push):
    gate = asyncio.Event()
    started = asyncio.Event()
    real_send = push.send

    async def slow_send(*args, **kwargs):
        started.set()
        await gate.wait()
        return await real_send(*args, **kwargs)

    push.send = slow_send
    await queue.enqueue("evt-1", make_rule(), PAYLOAD, ["child-1"])

    drain_task = asyncio.create_task(queue.drain())
    await started.wait()
    enqueue_task = asyncio.create_task(
        queue.enqueue("evt-2", make_rule(), PAYLOAD, ["child-1"], scheduled_for=START + timedelta(hours=2))
    )
    await asyncio.sleep(0)
    assert not enqueue_task.done()

    gate.set()
    await drain_task
    await enqueue_task

    assert queue.get(QueueKey("evt-2", "child-1")) is not None


@pytest.mark.asyncio
async def test_preferences_fall_back_to_defaults(queue, store):
    store.fail("get", "notification_preferences")

    prefs = await queue.get_preferences("child-1")

    assert prefs.max_per_hour == 10
    assert prefs.quiet_hours == QuietHours()

    store.recover()
    store.seed("notification_preferences", "child-1", {"user_id": "child-1", "max_per_hour": 2})
    assert (await queue.get_preferences("child-1")).max_per_hour == 2
