"""Recurring task generator"""
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from choreflow.database import DocumentStore
from choreflow.models.task import (
    RecurrenceRule,
    ScheduledTaskTemplate,
    TaskStatus,
    TaskTemplate,
    UpcomingTask,
)
from choreflow.services.templates import daily_routine_templates, get_template
from choreflow.utils.clock import Clock
from choreflow.utils.monitoring import StructuredLogger, error_handler
from choreflow.utils.recurrence import calculate_next_run_date
from choreflow.utils.time_windows import at_time_of_day

TaskCreatedCallback = Callable[[Dict[str, Any]], Awaitable[None]]


class RecurringTaskGenerator:
    """
    Materializes concrete tasks from scheduled templates.

    ``run_due`` is called on a fixed tick. Every active schedule whose next
    run has come creates one task due today at the recurrence time, then
    moves its next run strictly past ``now`` before anything is persisted.
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock,
        on_task_created: Optional[TaskCreatedCallback] = None,
    ):
        self.store = store
        self.clock = clock
        self.on_task_created = on_task_created
        self._scheduled: Dict[str, ScheduledTaskTemplate] = {}

    def __len__(self) -> int:
        return len(self._scheduled)

    async def initialize(self, family_id: str) -> None:
        try:
            rows = await self.store.query("scheduled_tasks", {"family_id": family_id})
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "load_scheduled_tasks", "family_id": family_id})
            return

        for row in rows:
            scheduled = ScheduledTaskTemplate.model_validate(row)
            self._scheduled[scheduled.id] = scheduled

        StructuredLogger.log_event(
            "recurring_tasks_loaded",
            f"Loaded {len(rows)} scheduled tasks for family {family_id}",
            metadata={"family_id": family_id, "count": len(rows)},
        )

    @error_handler
    async def add_recurring_task(
        self,
        family_id: str,
        template_id: str,
        assigned_to: str,
        recurrence: Optional[RecurrenceRule] = None,
    ) -> ScheduledTaskTemplate:
        """
        Schedule a template for a child.

        Raises:
            ValueError: unknown template, or neither a custom nor a default recurrence
        """
        template = get_template(template_id)
        recurrence = recurrence or template.recurrence
        if recurrence is None:
            raise ValueError(f"No recurrence pattern specified for template {template_id}")

        scheduled = ScheduledTaskTemplate(
            template_id=template_id,
            family_id=family_id,
            assigned_to=assigned_to,
            recurrence=recurrence,
            next_run_date=calculate_next_run_date(recurrence, self.clock.now()),
        )
        scheduled.id = await self.store.add(
            "scheduled_tasks", scheduled.model_dump(mode="json", exclude={"id"})
        )
        self._scheduled[scheduled.id] = scheduled

        StructuredLogger.log_event(
            "recurring_task_added",
            f"Scheduled {template_id} for {assigned_to}",
            user_id=assigned_to,
            metadata={
                "scheduled_task_id": scheduled.id,
                "family_id": family_id,
                "next_run_date": scheduled.next_run_date.isoformat(),
            },
        )
        return scheduled

    async def run_due(self) -> List[str]:
        """Create tasks for every schedule that is due. Returns the new task ids."""
        now = self.clock.now()
        created = []

        for scheduled in list(self._scheduled.values()):
            if not scheduled.is_active or self.clock.localize(scheduled.next_run_date) > now:
                continue

            try:
                task = await self._materialize(scheduled, now)
            except Exception as e:
                StructuredLogger.log_error(
                    e,
                    context={"function": "materialize_scheduled_task", "scheduled_task_id": scheduled.id},
                )
                continue

            scheduled.next_run_date = calculate_next_run_date(scheduled.recurrence, now)
            scheduled.last_run_at = now
            created.append(task["id"])

            try:
                await self.store.update("scheduled_tasks", scheduled.id, {
                    "next_run_date": scheduled.next_run_date.isoformat(),
                    "last_run_at": now.isoformat(),
                })
            except Exception as e:
                StructuredLogger.log_error(
                    e,
                    context={"function": "update_scheduled_task", "scheduled_task_id": scheduled.id},
                )

            if self.on_task_created is not None:
                try:
                    await self.on_task_created(task)
                except Exception as e:
                    StructuredLogger.log_error(e, context={"function": "on_task_created", "task_id": task["id"]})

        return created

    async def _materialize(self, scheduled: ScheduledTaskTemplate, now: datetime) -> Dict[str, Any]:
        template = get_template(scheduled.template_id)
        due_date = at_time_of_day(now, scheduled.recurrence.time)

        task = {
            "family_id": scheduled.family_id,
            "title": template.title,
            "description": template.description,
            "category": template.category.model_dump(),
            "assigned_to": scheduled.assigned_to,
            "assigned_by": "system",
            "status": TaskStatus.PENDING.value,
            "requires_photo": template.requires_photo,
            "due_date": due_date.isoformat(),
            "is_recurring": True,
            "reminder_enabled": True,
            "priority": template.priority.value,
            "points": template.points,
            "escalation_level": 0,
            "created_at": now.isoformat(),
            "updated_at": now.isoformat(),
            "metadata": {
                "template_id": template.id,
                "scheduled_task_id": scheduled.id,
                "estimated_minutes": template.estimated_minutes,
                "photo_instructions": template.photo_instructions,
                "tags": template.tags,
            },
        }
        task["id"] = await self.store.add("tasks", task)

        StructuredLogger.log_event(
            "recurring_task_created",
            f"Created task {task['id']} from {template.id}",
            user_id=scheduled.assigned_to,
            metadata={"scheduled_task_id": scheduled.id, "due_date": task["due_date"]},
        )
        return task

    def _get_owned(self, family_id: str, scheduled_id: str) -> ScheduledTaskTemplate:
        scheduled = self._scheduled.get(scheduled_id)
        if scheduled is None or scheduled.family_id != family_id:
            raise ValueError(f"Scheduled task not found: {scheduled_id}")
        return scheduled

    async def pause_scheduled_task(self, family_id: str, scheduled_id: str) -> ScheduledTaskTemplate:
        scheduled = self._get_owned(family_id, scheduled_id)
        scheduled.is_active = False
        await self.store.update("scheduled_tasks", scheduled_id, {"is_active": False})
        return scheduled

    async def resume_scheduled_task(self, family_id: str, scheduled_id: str) -> ScheduledTaskTemplate:
        scheduled = self._get_owned(family_id, scheduled_id)
        scheduled.is_active = True
        scheduled.next_run_date = calculate_next_run_date(scheduled.recurrence, self.clock.now())
        await self.store.update("scheduled_tasks", scheduled_id, {
            "is_active": True,
            "next_run_date": scheduled.next_run_date.isoformat(),
        })
        return scheduled

    async def delete_scheduled_task(self, family_id: str, scheduled_id: str) -> None:
        self._get_owned(family_id, scheduled_id)
        del self._scheduled[scheduled_id]
        await self.store.delete("scheduled_tasks", scheduled_id)

    def get_scheduled_tasks(self, family_id: str) -> List[ScheduledTaskTemplate]:
        return sorted(
            (scheduled for scheduled in self._scheduled.values() if scheduled.family_id == family_id),
            key=lambda scheduled: scheduled.next_run_date,
        )

    async def schedule_daily_routines(self, family_id: str, child_id: str, child_age: int) -> List[str]:
        """Schedule every daily template suitable for the child's age"""
        scheduled_ids = []
        for template in daily_routine_templates(child_age):
            try:
                scheduled = await self.add_recurring_task(family_id, template.id, child_id, template.recurrence)
            except Exception as e:
                StructuredLogger.log_error(
                    e,
                    context={"function": "schedule_daily_routines", "template_id": template.id},
                    user_id=child_id,
                )
                continue
            scheduled_ids.append(scheduled.id)
        return scheduled_ids

    def get_upcoming_tasks(self, days: int = 7, family_id: Optional[str] = None) -> List[UpcomingTask]:
        """
        Every occurrence of every active schedule within the next ``days`` days.

        Raises:
            ValueError: if ``days`` is negative
        """
        if days < 0:
            raise ValueError("days must not be negative")

        horizon = self.clock.now() + timedelta(days=days)
        upcoming = []

        for scheduled in self._scheduled.values():
            if not scheduled.is_active or (family_id and scheduled.family_id != family_id):
                continue
            template = self._find_template(scheduled.template_id)
            if template is None:
                continue

            occurrence = self.clock.localize(scheduled.next_run_date)
            while occurrence <= horizon:
                upcoming.append(UpcomingTask(scheduled_task=scheduled, template=template, due_date=occurrence))
                occurrence = calculate_next_run_date(scheduled.recurrence, occurrence)

        return sorted(upcoming, key=lambda item: item.due_date)

    @staticmethod
    def _find_template(template_id: str) -> Optional[TaskTemplate]:
        try:
            return get_template(template_id)
        except ValueError:
            return None
