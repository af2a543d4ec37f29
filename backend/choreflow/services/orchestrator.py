"""Routes task and photo change events to notifications, escalation and reminders"""
from typing import Any, Awaitable, Dict, List, Optional

from choreflow.database import DocumentStore
from choreflow.models.events import ChangeEvent, ChangeType
from choreflow.models.notification import (
    EventPayload,
    EventType,
    NotificationRule,
    PhotoPayload,
    QueueKey,
    StreakPayload,
    TaskCompletedPayload,
    TaskCreatedPayload,
    TaskOverduePayload,
)
from choreflow.models.task import Task, TaskStatus
from choreflow.services.directory import FamilyDirectory
from choreflow.services.escalation import EscalationService
from choreflow.services.notification import NotificationDispatchQueue
from choreflow.services.reminders import SmartReminderService
from choreflow.services.rules import HABIT_MILESTONE, STREAK_MILESTONES, RuleBook
from choreflow.utils.clock import Clock
from choreflow.utils.monitoring import StructuredLogger

PHOTO_REVIEW_EVENTS = {
    "approved": EventType.PHOTO_APPROVED,
    "rejected": EventType.PHOTO_REJECTED,
}


class NotificationOrchestrator:
    """Turns change-feed events into queue admissions and state machine calls"""

    def __init__(
        self,
        store: DocumentStore,
        dispatch: NotificationDispatchQueue,
        escalations: EscalationService,
        reminders: SmartReminderService,
        directory: FamilyDirectory,
        clock: Clock,
        rules: Optional[RuleBook] = None,
    ):
        self.store = store
        self.dispatch = dispatch
        self.escalations = escalations
        self.reminders = reminders
        self.directory = directory
        self.clock = clock
        self.rules = rules or RuleBook()

    async def notify(
        self,
        event_id: str,
        rule: NotificationRule,
        payload: EventPayload,
        child_id: str,
    ) -> List[QueueKey]:
        recipients = await self.directory.resolve_recipients(rule.recipients, payload.family_id, child_id)
        return await self.dispatch.enqueue(event_id, rule, payload, recipients)

    async def _guarded(self, step: str, awaitable: Awaitable[Any], **context) -> Any:
        """Run one step of a handler; a failure is logged and the remaining steps still run"""
        try:
            return await awaitable
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": step, **context})
            return None

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def handle_task_change(self, event: ChangeEvent) -> None:
        if not event.doc.get("id"):
            StructuredLogger.log_event(
                "change_event_ignored",
                "Task change without an id",
                metadata={"type": event.type.value},
                level="WARNING",
            )
            return

        # Delete events may carry only the record key
        if event.type == ChangeType.REMOVED:
            self.reminders.cancel_reminders(event.doc["id"], include_response_checks=True)
            return

        task = Task.model_validate(event.doc)
        if event.type == ChangeType.ADDED:
            await self._on_task_created(task)
        else:
            await self._on_task_updated(task, event.previous or {})

    async def _on_task_created(self, task: Task) -> None:
        if not task.is_pending:
            return

        rule = self.rules.select(EventType.TASK_CREATED)
        if rule is not None:
            payload = TaskCreatedPayload(family_id=task.family_id, task_id=task.id, task_title=task.title)
            await self._guarded(
                "notify_task_created",
                self.notify(f"task_created:{task.id}", rule, payload, task.assigned_to),
                task_id=task.id,
            )

        await self._guarded("check_task_escalation", self.escalations.check_task_escalation(task), task_id=task.id)
        await self._guarded("schedule_smart_reminder", self.reminders.schedule_smart_reminder(task), task_id=task.id)

    async def _on_task_updated(self, task: Task, previous: Dict[str, Any]) -> None:
        if task.is_completed:
            if previous.get("status") != TaskStatus.COMPLETED.value:
                await self._on_task_completed(task)
            return

        if not task.is_pending:
            self.reminders.cancel_reminders(task.id)
            return

        hours_overdue = task.hours_overdue(self.clock.now())
        if hours_overdue:
            await self._guarded("notify_task_overdue", self._notify_overdue(task, hours_overdue), task_id=task.id)
            await self._guarded(
                "check_task_escalation", self.escalations.check_task_escalation(task), task_id=task.id
            )

        await self._guarded("schedule_smart_reminder", self.reminders.schedule_smart_reminder(task), task_id=task.id)

    async def _on_task_completed(self, task: Task) -> None:
        self.reminders.cancel_reminders(task.id)
        await self._guarded("resolve_escalation", self.escalations.resolve_escalation(task.id), task_id=task.id)
        await self._guarded("record_completion", self.reminders.record_completion(task), task_id=task.id)

        rule = self.rules.select(EventType.TASK_COMPLETED)
        if rule is not None:
            await self._guarded("notify_task_completed", self._notify_completed(task, rule), task_id=task.id)

        await self._guarded(
            "check_streak_milestone",
            self.check_streak_milestone(task.assigned_to, task.family_id),
            task_id=task.id,
        )

        StructuredLogger.log_event(
            "task_completed",
            f"Task {task.id} completed",
            user_id=task.assigned_to,
            metadata={"task_id": task.id, "family_id": task.family_id},
        )

    async def _notify_completed(self, task: Task, rule: NotificationRule) -> List[QueueKey]:
        payload = TaskCompletedPayload(
            family_id=task.family_id,
            task_id=task.id,
            task_title=task.title,
            child_name=await self.directory.display_name(task.assigned_to),
        )
        return await self.notify(f"task_completed:{task.id}", rule, payload, task.assigned_to)

    async def _notify_overdue(self, task: Task, hours_overdue: int) -> List[QueueKey]:
        rule = self.rules.select(EventType.TASK_OVERDUE, hours_overdue=hours_overdue)
        if rule is None:
            return []
        payload = TaskOverduePayload(
            family_id=task.family_id,
            task_id=task.id,
            task_title=task.title,
            hours=hours_overdue,
        )
        # One notification per whole overdue hour; repeats within the hour upsert
        return await self.notify(f"task_overdue:{task.id}:{hours_overdue}h", rule, payload, task.assigned_to)

    async def check_streak_milestone(self, child_id: str, family_id: str) -> List[QueueKey]:
        data = await self.store.get("streaks", child_id) or {}
        streak = int(data.get("streak") or 0)
        if streak not in STREAK_MILESTONES:
            return []

        event_type = EventType.HABIT_FORMED if streak == HABIT_MILESTONE else EventType.STREAK_MILESTONE
        rule = self.rules.select(event_type, streak=streak)
        if rule is None:
            return []

        payload = StreakPayload(
            event_type=event_type,
            family_id=family_id,
            child_id=child_id,
            child_name=await self.directory.display_name(child_id),
            milestone=streak,
        )
        return await self.notify(f"{event_type.value}:{child_id}:{streak}", rule, payload, child_id)

    # ------------------------------------------------------------------
    # Photo submissions
    # ------------------------------------------------------------------

    async def handle_photo_change(self, event: ChangeEvent) -> None:
        submission = event.doc
        if event.type == ChangeType.REMOVED or not submission.get("id"):
            return

        if event.type == ChangeType.ADDED:
            event_type = EventType.PHOTO_SUBMITTED
        else:
            status = submission.get("status")
            previous_status = (event.previous or {}).get("status")
            event_type = PHOTO_REVIEW_EVENTS.get(status)
            if event_type is None or status == previous_status:
                return

        try:
            await self._notify_photo(submission, event_type)
        except Exception as e:
            StructuredLogger.log_error(
                e,
                context={"function": "handle_photo_change", "submission_id": submission.get("id")},
            )

    async def _notify_photo(self, submission: Dict[str, Any], event_type: EventType) -> List[QueueKey]:
        rule = self.rules.select(event_type)
        if rule is None:
            return []

        task_data = await self.store.get("tasks", submission.get("task_id", "")) or {}
        child_id = submission.get("child_id") or task_data.get("assigned_to")
        family_id = submission.get("family_id") or task_data.get("family_id")
        if not child_id or not family_id:
            StructuredLogger.log_event(
                "change_event_ignored",
                f"Photo submission {submission['id']} has no child or family",
                metadata={"submission_id": submission["id"]},
                level="WARNING",
            )
            return []

        payload = PhotoPayload(
            event_type=event_type,
            family_id=family_id,
            submission_id=submission["id"],
            task_id=submission.get("task_id", ""),
            task_title=task_data.get("title", "your task"),
            child_name=await self.directory.display_name(child_id),
            feedback=submission.get("feedback") or "",
        )
        return await self.notify(f"{event_type.value}:{submission['id']}", rule, payload, child_id)
