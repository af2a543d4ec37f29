"""Tests for the recurring task generator and template catalog"""
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest

from choreflow.models.task import RecurrenceRule, RecurrenceType, Weekday
from choreflow.services.recurring import RecurringTaskGenerator
from choreflow.services.templates import (
    TASK_TEMPLATES,
    daily_routine_templates,
    get_template,
    templates_by_category,
    templates_for_age,
)
from conftest import UTC

MON_WED_9AM = RecurrenceRule(
    type=RecurrenceType.WEEKLY,
    days_of_week=[Weekday.MONDAY, Weekday.WEDNESDAY],
    time="09:00",
)


def at(day, hour, minute=0):
    return datetime(2025, 3, day, hour, minute, tzinfo=UTC)


@pytest.fixture
def on_created():
    return AsyncMock()


@pytest.fixture
def generator(store, clock, on_created):
    return RecurringTaskGenerator(store, clock, on_task_created=on_created)


class TestTemplates:
    def test_catalog_ids_are_unique(self):
        ids = [template.id for template in TASK_TEMPLATES]
        assert len(ids) == len(set(ids))

    def test_unknown_template(self):
        with pytest.raises(ValueError):
            get_template("juggle-chainsaws")

    def test_filters(self):
        assert {template.id for template in templates_by_category("Pet Care")} == {"feed-pet"}
        assert all(t.age_range[0] <= 9 <= t.age_range[1] for t in templates_for_age(9))
        assert all(t.recurrence.type == RecurrenceType.DAILY for t in daily_routine_templates(12))


class TestScheduling:
    @pytest.mark.asyncio
    async def test_add_uses_template_recurrence(self, generator, store):
        scheduled = await generator.add_recurring_task("fam-1", "make-bed", "child-1")

        assert scheduled.next_run_date == at(5, 7)
        assert scheduled.id in store.collections["scheduled_tasks"]
        assert generator.get_scheduled_tasks("fam-1") == [scheduled]

    @pytest.mark.asyncio
    async def test_custom_recurrence_overrides_template(self, generator):
        scheduled = await generator.add_recurring_task("fam-1", "read-20min", "child-1", MON_WED_9AM)

        assert scheduled.next_run_date == at(5, 9)

    @pytest.mark.asyncio
    async def test_unknown_template_is_rejected(self, generator):
        with pytest.raises(ValueError):
            await generator.add_recurring_task("fam-1", "juggle-chainsaws", "child-1")

    @pytest.mark.asyncio
    async def test_template_without_recurrence_needs_one(self, generator):
        bare = get_template("make-bed").model_copy(update={"recurrence": None})

        with patch("choreflow.services.recurring.get_template", return_value=bare):
            with pytest.raises(ValueError):
                await generator.add_recurring_task("fam-1", "make-bed", "child-1")

    @pytest.mark.asyncio
    async def test_daily_routines_for_age(self, generator, store):
        ids = await generator.schedule_daily_routines("fam-1", "child-1", 12)

        assert len(ids) == len(daily_routine_templates(12))
        assert len(store.all("scheduled_tasks")) == len(ids)

    @pytest.mark.asyncio
    async def test_initialize_loads_stored_schedules(self, generator, store):
        store.seed("scheduled_tasks", "sched-1", {
            "template_id": "make-bed",
            "family_id": "fam-1",
            "assigned_to": "child-1",
            "recurrence": {"type": "daily", "time": "07:00"},
            "next_run_date": at(5, 7).isoformat(),
            "is_active": True,
        })

        await generator.initialize("fam-1")

        assert [scheduled.id for scheduled in generator.get_scheduled_tasks("fam-1")] == ["sched-1"]


class TestRunDue:
    @pytest.mark.asyncio
    async def test_due_schedule_creates_one_task(self, generator, store, clock, on_created):
        scheduled = await generator.add_recurring_task("fam-1", "make-bed", "child-1")
        clock.set(at(5, 7))

        created = await generator.run_due()

        assert len(created) == 1
        task = store.collections["tasks"][created[0]]
        assert task["title"] == "Make Your Bed"
        assert task["assigned_by"] == "system"
        assert task["due_date"] == at(5, 7).isoformat()
        assert task["requires_photo"] is True
        assert task["metadata"]["scheduled_task_id"] == scheduled.id
        assert scheduled.next_run_date == at(6, 7)
        assert store.collections["scheduled_tasks"][scheduled.id]["next_run_date"] == at(6, 7).isoformat()
        on_created.assert_awaited_once()
        assert on_created.await_args.args[0]["id"] == created[0]

        assert await generator.run_due() == []

    @pytest.mark.asyncio
    async def test_nothing_runs_before_next_run(self, generator, clock):
        await generator.add_recurring_task("fam-1", "make-bed", "child-1")
        clock.set(at(5, 6, 59))

        assert await generator.run_due() == []

    @pytest.mark.asyncio
    async def test_failed_materialization_retries_next_tick(self, generator, store, clock):
        scheduled = await generator.add_recurring_task("fam-1", "make-bed", "child-1")
        clock.set(at(5, 7))
        store.fail("add", "tasks")

        assert await generator.run_due() == []
        assert scheduled.next_run_date == at(5, 7)

        store.recover()
        assert len(await generator.run_due()) == 1

    @pytest.mark.asyncio
    async def test_callback_failure_does_not_stop_generation(self, generator, clock, on_created):
        on_created.side_effect = RuntimeError("boom")
        await generator.add_recurring_task("fam-1", "make-bed", "child-1")
        clock.set(at(5, 7))

        assert len(await generator.run_due()) == 1

    @pytest.mark.asyncio
    async def test_paused_schedule_is_skipped_until_resumed(self, generator, store, clock):
        scheduled = await generator.add_recurring_task("fam-1", "make-bed", "child-1")
        await generator.pause_scheduled_task("fam-1", scheduled.id)
        clock.set(at(5, 7))

        assert await generator.run_due() == []
        assert store.collections["scheduled_tasks"][scheduled.id]["is_active"] is False

        clock.set(at(5, 12))
        resumed = await generator.resume_scheduled_task("fam-1", scheduled.id)
        assert resumed.next_run_date == at(6, 7)

    @pytest.mark.asyncio
    async def test_delete_schedule(self, generator, store):
        scheduled = await generator.add_recurring_task("fam-1", "make-bed", "child-1")

        await generator.delete_scheduled_task("fam-1", scheduled.id)

        assert generator.get_scheduled_tasks("fam-1") == []
        assert scheduled.id not in store.collections["scheduled_tasks"]

    @pytest.mark.asyncio
    async def test_unknown_or_foreign_schedule_is_rejected(self, generator):
        scheduled = await generator.add_recurring_task("fam-1", "make-bed", "child-1")

        with pytest.raises(ValueError):
            await generator.pause_scheduled_task("fam-1", "missing")
        with pytest.raises(ValueError):
            await generator.delete_scheduled_task("fam-2", scheduled.id)


class TestUpcoming:
    @pytest.mark.asyncio
    async def test_lists_every_occurrence_in_the_window(self, generator):
        await generator.add_recurring_task("fam-1", "make-bed", "child-1")
        await generator.add_recurring_task("fam-1", "read-20min", "child-1", MON_WED_9AM)

        upcoming = generator.get_upcoming_tasks(days=7)

        assert len(upcoming) == 9
        assert upcoming[0].due_date == at(5, 7)
        assert upcoming[1].due_date == at(5, 9)
        assert [item.due_date for item in upcoming] == sorted(item.due_date for item in upcoming)

    @pytest.mark.asyncio
    async def test_filters_by_family_and_skips_paused(self, generator):
        await generator.add_recurring_task("fam-1", "make-bed", "child-1")
        other = await generator.add_recurring_task("fam-2", "make-bed", "child-9")
        paused = await generator.add_recurring_task("fam-1", "read-20min", "child-1", MON_WED_9AM)
        await generator.pause_scheduled_task("fam-1", paused.id)

        assert len(generator.get_upcoming_tasks(days=1, family_id="fam-1")) == 1
        assert {item.scheduled_task.id for item in generator.get_upcoming_tasks(days=1)} == {
            item.scheduled_task.id for item in generator.get_scheduled_tasks("fam-1") if item.is_active
        } | {other.id}

    def test_negative_window_is_rejected(self, generator):
        with pytest.raises(ValueError):
            generator.get_upcoming_tasks(days=-1)
