"""Adaptive reminder scheduling"""
from collections import defaultdict
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Dict, List, Optional, Union

from choreflow.config import Settings, settings as default_settings
from choreflow.database import DocumentStore
from choreflow.models.reminder import (
    CompletionHistoryEntry,
    ReminderEffectiveness,
    ReminderPattern,
    ReminderStrategy,
    StrategyType,
)
from choreflow.models.task import Task, TaskPriority, TaskStatus
from choreflow.services.directory import FamilyDirectory
from choreflow.services.push import PushProvider
from choreflow.utils.clock import Clock
from choreflow.utils.monitoring import StructuredLogger
from choreflow.utils.scheduler import TimerRegistry
from choreflow.utils.time_windows import adjust_for_quiet_hours, is_within_window, snap_to_optimal_time

LOW_COMPLETION_RATE = 0.4
URGENT_WINDOW_HOURS = 2


def _localize(value: datetime, now: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=now.tzinfo)


def select_strategy(task: Task, pattern: ReminderPattern, now: datetime) -> ReminderStrategy:
    """
    Classify a pending task into a reminder strategy.

    First match wins: overdue -> escalated, high priority or due within two
    hours -> urgent, photo required or low completion rate -> moderate,
    otherwise gentle at the child's preferred lead time.
    """
    title = task.title
    due = _localize(task.due_date, now) if task.due_date else None

    if due is not None and due < now:
        return ReminderStrategy(
            type=StrategyType.ESCALATED,
            frequency=4,
            lead_times=[0],
            messages=[
                f"⚠️ {title} is overdue! Please complete it immediately.",
                f"🚨 URGENT: {title} needs to be done NOW!",
                f"❗ Final reminder: {title} is significantly overdue.",
            ],
        )

    hours_until_due = (due - now).total_seconds() / 3600 if due is not None else None
    if task.priority in (TaskPriority.HIGH, TaskPriority.URGENT) or (
        hours_until_due is not None and hours_until_due < URGENT_WINDOW_HOURS
    ):
        return ReminderStrategy(
            type=StrategyType.URGENT,
            frequency=3,
            lead_times=[120, 60, 30],
            messages=[
                f"⏰ Important: {title} is due soon!",
                f"⚡ Don't forget: {title} needs to be completed.",
                f"🔔 Last chance: {title} is almost due!",
            ],
        )

    if task.requires_photo or pattern.completion_rate < LOW_COMPLETION_RATE:
        first = f"📸 Remember: {title} (photo required)" if task.requires_photo else f"📝 Remember: {title}"
        return ReminderStrategy(
            type=StrategyType.MODERATE,
            frequency=2,
            lead_times=[180, 60],
            messages=[first, f"✅ Time to complete: {title}"],
        )

    return ReminderStrategy(
        type=StrategyType.GENTLE,
        frequency=1,
        lead_times=[pattern.preferred_lead_time],
        messages=[f"💫 Friendly reminder: {title}"],
    )


def calculate_reminder_times(
    task: Task,
    pattern: ReminderPattern,
    strategy: ReminderStrategy,
    now: datetime,
    snap_minutes: int = 60,
) -> List[datetime]:
    """
    Concrete send times for a strategy, sorted and de-duplicated.

    Overdue tasks are reminded from ``now`` onwards, spread evenly over the
    next day. Otherwise each lead time gives ``due - lead``; past times are
    dropped, the rest leave the child's quiet hours and snap to a learned
    optimal time when one is close, as long as the snapped time is still in
    the future, before the due time and outside quiet hours.
    """
    if task.due_date is None:
        return []

    due = _localize(task.due_date, now)
    times = []

    if strategy.type == StrategyType.ESCALATED:
        spacing = timedelta(hours=24) / strategy.frequency
        for index in range(strategy.frequency):
            times.append(adjust_for_quiet_hours(now + spacing * index, pattern.quiet_hours, now=now))
        return sorted(set(times))

    for lead_time in strategy.lead_times:
        candidate = due - timedelta(minutes=lead_time)
        if candidate <= now:
            continue

        adjusted = adjust_for_quiet_hours(candidate, pattern.quiet_hours, now=now)
        snapped = snap_to_optimal_time(adjusted, pattern.optimal_times, tolerance_minutes=snap_minutes)
        if (
            now < snapped < due
            and not (pattern.quiet_hours.enabled and is_within_window(snapped, pattern.quiet_hours.start, pattern.quiet_hours.end))
        ):
            adjusted = snapped
        times.append(adjusted)

    return sorted(set(times))


class ReminderPatternStore:
    """Per-child reminder patterns, created with defaults on first use"""

    def __init__(self, store: DocumentStore, clock: Clock):
        self.store = store
        self.clock = clock
        self._patterns: Dict[str, ReminderPattern] = {}

    async def get(self, child_id: str) -> ReminderPattern:
        pattern = self._patterns.get(child_id)
        if pattern is not None:
            return pattern

        try:
            data = await self.store.get("reminder_patterns", child_id)
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "load_reminder_pattern"}, user_id=child_id)
            return ReminderPattern(child_id=child_id)

        if data:
            pattern = ReminderPattern.model_validate({**data, "child_id": child_id})
        else:
            pattern = ReminderPattern(child_id=child_id, updated_at=self.clock.now())
            await self._save(pattern)

        self._patterns[child_id] = pattern
        return pattern

    async def record_response(self, child_id: str, responded: bool, response_minutes: float) -> ReminderPattern:
        """
        Fold one observed reminder response into the child's pattern.

        Completion rate moves 10% toward 1 and response latency 20% toward
        the observed delay. A non-response changes nothing.
        """
        pattern = await self.get(child_id)
        if not responded:
            return pattern

        pattern.completion_rate = min(1.0, pattern.completion_rate * 0.9 + 0.1)
        pattern.average_response_time = pattern.average_response_time * 0.8 + max(0.0, response_minutes) * 0.2
        pattern.updated_at = self.clock.now()
        await self._save(pattern)

        StructuredLogger.log_event(
            "reminder_pattern_updated",
            f"Reminder pattern updated for {child_id}",
            user_id=child_id,
            metadata={
                "completion_rate": round(pattern.completion_rate, 4),
                "average_response_time": round(pattern.average_response_time, 2),
            },
            level="DEBUG",
        )
        return pattern

    async def _save(self, pattern: ReminderPattern) -> None:
        try:
            await self.store.set("reminder_patterns", pattern.child_id, pattern.model_dump(mode="json"))
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "save_reminder_pattern"}, user_id=pattern.child_id)


class SmartReminderService:
    """
    Schedules per-task reminder timers and learns from the responses.

    Reminder timers live in the group ``("reminder", task_id)`` and response
    checks in ``("response", task_id)`` so either set can be cancelled
    without touching the other.
    """

    def __init__(
        self,
        store: DocumentStore,
        timers: TimerRegistry,
        patterns: ReminderPatternStore,
        directory: FamilyDirectory,
        push: PushProvider,
        clock: Clock,
        config: Optional[Settings] = None,
    ):
        self.store = store
        self.timers = timers
        self.patterns = patterns
        self.directory = directory
        self.push = push
        self.clock = clock
        self.config = config or default_settings

        self._sent_counts: Dict[str, int] = defaultdict(int)
        self._last_sent: Dict[str, datetime] = {}

    async def schedule_smart_reminder(self, task: Union[Task, Dict[str, Any]]) -> List[datetime]:
        """
        Replace every pending reminder of ``task`` with a fresh schedule.

        Returns:
            The send times registered (empty when the task needs no reminders)
        """
        if not isinstance(task, Task):
            task = Task.model_validate(task)

        self.cancel_reminders(task.id)
        if not task.is_pending or not task.reminder_enabled or task.due_date is None:
            return []

        now = self.clock.now()
        pattern = await self.patterns.get(task.assigned_to)
        strategy = select_strategy(task, pattern, now)
        times = calculate_reminder_times(
            task, pattern, strategy, now, snap_minutes=self.config.OPTIMAL_TIME_SNAP_MINUTES
        )

        for index, fire_at in enumerate(times):
            self.timers.schedule(
                ("reminder", task.id, index),
                fire_at,
                partial(self._send_reminder, task, strategy),
                group=("reminder", task.id),
            )

        StructuredLogger.log_event(
            "reminders_scheduled",
            f"Scheduled {len(times)} {strategy.type.value} reminders for task {task.id}",
            user_id=task.assigned_to,
            metadata={
                "task_id": task.id,
                "strategy": strategy.type.value,
                "times": [fire_at.isoformat() for fire_at in times],
            },
        )
        return times

    def cancel_reminders(self, task_id: str, include_response_checks: bool = False) -> int:
        cancelled = self.timers.cancel_group(("reminder", task_id))
        if include_response_checks:
            cancelled += self.timers.cancel_group(("response", task_id))
            self._sent_counts.pop(task_id, None)
            self._last_sent.pop(task_id, None)
        return cancelled

    def reminders_sent(self, task_id: str) -> int:
        return self._sent_counts.get(task_id, 0)

    async def _send_reminder(self, task: Task, strategy: ReminderStrategy) -> None:
        try:
            token = await self.directory.get_push_token(task.assigned_to)
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "send_reminder", "task_id": task.id})
            return

        if not token:
            StructuredLogger.log_event(
                "push_token_missing",
                f"No push token for user {task.assigned_to}",
                user_id=task.assigned_to,
                metadata={"task_id": task.id},
                level="WARNING",
            )
            return

        message = strategy.message_for(self.reminders_sent(task.id))
        delivered = await self.push.send(token, "Task Reminder", message, {
            "type": "task_reminder",
            "taskId": task.id,
            "priority": task.priority.value,
            "strategyType": strategy.type.value,
        })
        if not delivered:
            StructuredLogger.log_event(
                "reminder_failed",
                f"Reminder for task {task.id} was not delivered",
                user_id=task.assigned_to,
                metadata={"task_id": task.id, "strategy": strategy.type.value},
                level="WARNING",
            )
            return

        sent_at = self.clock.now()
        self._sent_counts[task.id] += 1
        self._last_sent[task.id] = sent_at
        tracking_id = await self._track_reminder(task, sent_at)

        self.timers.schedule(
            ("response", task.id, self._sent_counts[task.id]),
            sent_at + timedelta(minutes=self.config.RESPONSE_OBSERVATION_MINUTES),
            partial(self._check_response, task.id, task.assigned_to, sent_at, tracking_id),
            group=("response", task.id),
        )
        StructuredLogger.log_event(
            "reminder_sent",
            f"Sent {strategy.type.value} reminder for task {task.id}",
            user_id=task.assigned_to,
            metadata={"task_id": task.id, "reminders_sent": self._sent_counts[task.id]},
        )

    async def _track_reminder(self, task: Task, sent_at: datetime) -> Optional[str]:
        try:
            return await self.store.add("reminder_tracking", {
                "task_id": task.id,
                "child_id": task.assigned_to,
                "family_id": task.family_id,
                "sent_at": sent_at.isoformat(),
                "responded": False,
            })
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "track_reminder", "task_id": task.id})
            return None

    async def _check_response(
        self,
        task_id: str,
        child_id: str,
        sent_at: datetime,
        tracking_id: Optional[str],
    ) -> None:
        try:
            data = await self.store.get("tasks", task_id)
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "check_reminder_response", "task_id": task_id})
            return

        if not data or data.get("status") != TaskStatus.COMPLETED.value:
            return

        task = Task.model_validate({**data, "id": task_id})
        latency = float(self.config.RESPONSE_OBSERVATION_MINUTES)
        if task.completed_at is not None:
            completed_at = self.clock.localize(task.completed_at)
            if completed_at >= sent_at:
                latency = (completed_at - sent_at).total_seconds() / 60

        await self.patterns.record_response(child_id, True, latency)

        if tracking_id:
            try:
                await self.store.update("reminder_tracking", tracking_id, {"responded": True})
            except Exception as e:
                StructuredLogger.log_error(e, context={"function": "check_reminder_response", "task_id": task_id})

    async def record_completion(self, task: Union[Task, Dict[str, Any]]) -> Optional[CompletionHistoryEntry]:
        """Append a completion history entry for a task that was just completed"""
        if not isinstance(task, Task):
            task = Task.model_validate(task)

        completed_at = self.clock.localize(task.completed_at) if task.completed_at else self.clock.now()
        last_sent = self._last_sent.pop(task.id, None)
        entry = CompletionHistoryEntry(
            family_id=task.family_id,
            task_id=task.id,
            child_id=task.assigned_to,
            completed_at=completed_at,
            due_date=task.due_date,
            reminders_sent=self._sent_counts.pop(task.id, 0),
            response_time=(completed_at - last_sent).total_seconds() / 60 if last_sent else None,
        )
        try:
            await self.store.add("completion_history", entry.model_dump(mode="json"))
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "record_completion", "task_id": task.id})
            return None
        return entry

    async def analyze_reminder_effectiveness(self, child_id: str) -> ReminderEffectiveness:
        """
        Summarize how a child responds to reminders.

        Best times are the (up to four) hours of day with the fastest
        average response; without history the learned optimal times are
        returned instead.
        """
        pattern = await self.patterns.get(child_id)

        try:
            rows = await self.store.query("completion_history", {"child_id": child_id})
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "analyze_reminder_effectiveness"}, user_id=child_id)
            rows = []

        response_by_hour: Dict[int, List[float]] = defaultdict(list)
        for row in rows:
            entry = CompletionHistoryEntry.model_validate(row)
            if entry.response_time is None:
                continue
            response_by_hour[self.clock.localize(entry.completed_at).hour].append(entry.response_time)

        ranked = sorted(response_by_hour.items(), key=lambda item: sum(item[1]) / len(item[1]))
        best_times = [f"{hour:02d}:00" for hour, _ in ranked[:4]]

        recommendations = []
        if pattern.completion_rate < 0.3:
            recommendations.append("Consider increasing reminder frequency")
            recommendations.append("Try adding photo verification for accountability")
        if pattern.average_response_time > 60:
            recommendations.append("Reminders may be too early - try closer to due time")
        if pattern.average_response_time < 15:
            recommendations.append("Great response time! Consider reducing reminder frequency")

        return ReminderEffectiveness(
            best_times=best_times or list(pattern.optimal_times),
            average_response_time=pattern.average_response_time,
            completion_rate=pattern.completion_rate,
            recommendations=recommendations,
        )
