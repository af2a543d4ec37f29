"""Escalation state machine for overdue tasks"""
import asyncio
import uuid
from collections import defaultdict
from datetime import timedelta
from typing import Any, Dict, List, Optional, Union

from choreflow.config import Settings, settings as default_settings
from choreflow.database import DocumentStore
from choreflow.models.escalation import (
    DeviceRestriction,
    EscalationAction,
    EscalationActionType,
    EscalationConfig,
    EscalationLevel,
    EscalationRecord,
    EscalationSummary,
)
from choreflow.models.notification import (
    EscalationPayload,
    EventType,
    MessageTemplate,
    NotificationRule,
    RecipientRole,
)
from choreflow.models.task import Task
from choreflow.services.directory import FamilyDirectory
from choreflow.services.notification import NotificationDispatchQueue
from choreflow.utils.clock import Clock
from choreflow.utils.monitoring import StructuredLogger, error_handler


def next_escalation_levels(
    hours_overdue: float,
    current_level: int,
    levels: List[EscalationLevel],
) -> List[EscalationLevel]:
    """Levels above ``current_level`` whose threshold has been reached, lowest first"""
    return sorted(
        (level for level in levels if hours_overdue >= level.hours_overdue and level.level > current_level),
        key=lambda level: level.level,
    )


class EscalationService:
    """
    Walks overdue pending tasks up the family's escalation levels.

    Both the periodic sweep and change events call ``check_task_escalation``.
    Each task has its own lock and the level reached is compared before any
    transition, so a level fires at most once while the task stays overdue.
    """

    def __init__(
        self,
        store: DocumentStore,
        dispatch: NotificationDispatchQueue,
        directory: FamilyDirectory,
        clock: Clock,
        config: Optional[Settings] = None,
    ):
        self.store = store
        self.dispatch = dispatch
        self.directory = directory
        self.clock = clock
        self.config = config or default_settings

        self._configs: Dict[str, EscalationConfig] = {}
        self._active: Dict[str, EscalationRecord] = {}
        self._current_levels: Dict[str, int] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def initialize(self, family_id: str) -> None:
        self._configs[family_id] = await self.load_config(family_id)
        await self._load_active_escalations(family_id)

    async def load_config(self, family_id: str) -> EscalationConfig:
        try:
            data = await self.store.get("escalation_configs", family_id)
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "load_escalation_config", "family_id": family_id})
            return EscalationConfig(family_id=family_id)

        if data:
            return EscalationConfig.model_validate({**data, "family_id": family_id})
        return EscalationConfig(family_id=family_id)

    async def get_config(self, family_id: str) -> EscalationConfig:
        config = self._configs.get(family_id)
        if config is None:
            config = await self.load_config(family_id)
            self._configs[family_id] = config
        return config

    @error_handler
    async def update_family_config(self, family_id: str, changes: Dict[str, Any]) -> EscalationConfig:
        """
        Merge ``changes`` into the family's configuration and persist it.

        Raises:
            ValidationError: if the merged configuration is invalid
        """
        current = await self.get_config(family_id)
        updated = EscalationConfig.model_validate({
            **current.model_dump(mode="json"),
            **changes,
            "family_id": family_id,
        })
        await self.store.set("escalation_configs", family_id, updated.model_dump(mode="json"))
        self._configs[family_id] = updated
        StructuredLogger.log_event(
            "escalation_config_updated",
            f"Escalation config updated for family {family_id}",
            metadata={"family_id": family_id, "enabled": updated.enabled, "levels": len(updated.levels)},
        )
        return updated

    async def _load_active_escalations(self, family_id: str) -> None:
        try:
            rows = await self.store.query("escalations", {"family_id": family_id, "resolved": False})
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "load_active_escalations", "family_id": family_id})
            return

        for row in rows:
            record = EscalationRecord.model_validate(row)
            self._remember(record)

    def _remember(self, record: EscalationRecord) -> None:
        self._active[record.id] = record
        self._current_levels[record.task_id] = max(self._current_levels.get(record.task_id, 0), record.level)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def current_level(self, task_id: str, persisted_level: int = 0) -> int:
        return max(persisted_level, self._current_levels.get(task_id, 0))

    async def check_task_escalation(self, task: Union[Task, Dict[str, Any]]) -> List[EscalationRecord]:
        """
        Escalate a task through every level it has newly crossed.

        Returns:
            One record per level transition made by this call, in level order
        """
        if not isinstance(task, Task):
            task = Task.model_validate(task)

        config = await self.get_config(task.family_id)
        if not config.enabled or not task.is_pending:
            return []

        now = self.clock.now()
        hours_overdue = task.hours_overdue(now)
        if hours_overdue is None:
            return []

        async with self._locks[task.id]:
            current = self.current_level(task.id, task.escalation_level)
            targets = next_escalation_levels(hours_overdue, current, config.levels)
            if not targets:
                return []

            try:
                child_name = await self.directory.display_name(task.assigned_to)
                parent_ids = [parent.id for parent in await self.directory.get_parents(task.family_id)]
            except Exception as e:
                StructuredLogger.log_error(
                    e,
                    context={"function": "check_task_escalation", "task_id": task.id},
                )
                return []

            records = []
            for level in targets:
                records.append(
                    await self._escalate(task, level, hours_overdue, child_name, parent_ids, config)
                )

            try:
                await self.store.update("tasks", task.id, {
                    "escalation_level": targets[-1].level,
                    "last_escalated_at": now.isoformat(),
                })
            except Exception as e:
                StructuredLogger.log_error(e, context={"function": "update_task_escalation_level", "task_id": task.id})

        return records

    async def _escalate(
        self,
        task: Task,
        level: EscalationLevel,
        hours_overdue: int,
        child_name: str,
        parent_ids: List[str],
        config: EscalationConfig,
    ) -> EscalationRecord:
        for action in level.actions:
            try:
                await self._execute_action(action, task, level, hours_overdue, child_name, parent_ids, config)
            except Exception as e:
                StructuredLogger.log_error(
                    e,
                    context={
                        "function": "execute_escalation_action",
                        "task_id": task.id,
                        "level": level.level,
                        "action": action.type.value,
                    },
                )

        record = EscalationRecord(
            family_id=task.family_id,
            task_id=task.id,
            child_id=task.assigned_to,
            level=level.level,
            level_name=level.name,
            hours_overdue=hours_overdue,
            escalated_at=self.clock.now(),
            actions=level.actions,
        )
        try:
            record.id = await self.store.add("escalations", record.model_dump(mode="json", exclude={"id"}))
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "persist_escalation", "task_id": task.id})
            # Still guard the level in memory for this process
            record.id = f"unsaved-{uuid.uuid4()}"

        self._remember(record)
        StructuredLogger.log_event(
            "task_escalated",
            f"Task {task.id} escalated to level {level.level} ({level.name})",
            user_id=task.assigned_to,
            metadata={"task_id": task.id, "level": level.level, "hours_overdue": hours_overdue},
        )
        return record

    async def _execute_action(
        self,
        action: EscalationAction,
        task: Task,
        level: EscalationLevel,
        hours_overdue: int,
        child_name: str,
        parent_ids: List[str],
        config: EscalationConfig,
    ) -> None:
        if action.type == EscalationActionType.REDUCE_POINTS:
            await self._reduce_points(
                task.assigned_to,
                action.point_reduction,
                f"Points deducted for overdue task: {task.title}",
                task.id,
            )
            return

        if action.type == EscalationActionType.RESTRICT_DEVICE:
            restrictions = config.restriction_settings.filter(action.restrictions)
            if restrictions:
                await self._apply_restrictions(task.assigned_to, restrictions, task.id)
            return

        payload = EscalationPayload(
            family_id=task.family_id,
            task_id=task.id,
            task_title=task.title,
            child_id=task.assigned_to,
            child_name=child_name,
            hours=hours_overdue,
            level=level.level,
        )
        if action.type in (EscalationActionType.NOTIFY_CHILD, EscalationActionType.NOTIFY_BOTH):
            await self._notify(task, level, action, payload, "child", [task.assigned_to])
        if action.type in (EscalationActionType.NOTIFY_PARENT, EscalationActionType.NOTIFY_BOTH):
            await self._notify(task, level, action, payload, "parents", parent_ids)

    async def _notify(
        self,
        task: Task,
        level: EscalationLevel,
        action: EscalationAction,
        payload: EscalationPayload,
        audience: str,
        recipients: List[str],
    ) -> None:
        if not recipients:
            return
        rule = NotificationRule(
            id=f"escalation_level_{level.level}_{audience}",
            event_type=EventType.ESCALATION,
            severity=level.notification_priority,
            recipients=RecipientRole.ASSIGNED_CHILD if audience == "child" else RecipientRole.PARENTS,
            template=MessageTemplate(
                title="Task Overdue" if audience == "child" else "Task Escalation",
                body=action.message,
                sound="alert" if level.notification_priority.rank >= 3 else None,
            ),
        )
        await self.dispatch.enqueue(
            f"escalation:{task.id}:L{level.level}:{action.type.value}:{audience}",
            rule,
            payload,
            recipients,
        )

    async def _reduce_points(self, child_id: str, points: int, reason: str, task_id: str) -> None:
        now = self.clock.now()
        await self.store.add("point_history", {
            "user_id": child_id,
            "points": -points,
            "reason": reason,
            "type": "escalation_penalty",
            "task_id": task_id,
            "timestamp": now.isoformat(),
        })
        user = await self.store.get("users", child_id) or {}
        await self.store.update("users", child_id, {
            "points": max(0, int(user.get("points") or 0) - points),
        })

    async def _apply_restrictions(self, child_id: str, restrictions: List[str], task_id: str) -> None:
        now = self.clock.now()
        restriction = DeviceRestriction(
            child_id=child_id,
            task_id=task_id,
            restrictions=restrictions,
            reason=f"Overdue task: {task_id}",
            applied_at=now,
            expires_at=now + timedelta(hours=self.config.DEVICE_RESTRICTION_HOURS),
        )
        await self.store.set("device_restrictions", child_id, restriction.model_dump(mode="json"))

    async def get_device_restriction(self, child_id: str) -> Optional[DeviceRestriction]:
        """The child's restriction if it is active and not yet expired"""
        data = await self.store.get("device_restrictions", child_id)
        if not data:
            return None
        restriction = DeviceRestriction.model_validate(data)
        return restriction if restriction.is_in_force(self.clock.now()) else None

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def sweep(self) -> int:
        """Check every pending task of every family with escalation enabled"""
        transitions = 0
        for family_id, config in list(self._configs.items()):
            if not config.enabled:
                continue
            try:
                tasks = await self.store.query("tasks", {"family_id": family_id, "status": "pending"})
            except Exception as e:
                StructuredLogger.log_error(e, context={"function": "escalation_sweep", "family_id": family_id})
                continue

            for task in tasks:
                try:
                    transitions += len(await self.check_task_escalation(task))
                except Exception as e:
                    StructuredLogger.log_error(
                        e,
                        context={"function": "escalation_sweep", "task_id": task.get("id")},
                    )
        return transitions

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve_escalation(self, task_id: str) -> int:
        """
        Close every open escalation record of a completed task.

        Lifts the device restriction the task caused and resets the task's
        escalation level. Point deductions are not refunded.

        Returns:
            Number of records resolved
        """
        async with self._locks[task_id]:
            now = self.clock.now()
            records = {record.id: record for record in self._active.values() if record.task_id == task_id}
            try:
                for row in await self.store.query("escalations", {"task_id": task_id, "resolved": False}):
                    stored = EscalationRecord.model_validate(row)
                    records.setdefault(stored.id, stored)
            except Exception as e:
                StructuredLogger.log_error(e, context={"function": "resolve_escalation", "task_id": task_id})

            restricted_children = set()
            for record in records.values():
                if not record.id.startswith("unsaved-"):
                    try:
                        await self.store.update("escalations", record.id, {
                            "resolved": True,
                            "resolved_at": now.isoformat(),
                        })
                    except Exception as e:
                        StructuredLogger.log_error(e, context={"function": "resolve_escalation", "record_id": record.id})
                record.resolved = True
                record.resolved_at = now
                self._active.pop(record.id, None)
                if record.restricted_device:
                    restricted_children.add(record.child_id)

            for child_id in restricted_children:
                await self._remove_restrictions(child_id, task_id)

            self._current_levels.pop(task_id, None)

            try:
                if await self.store.get("tasks", task_id):
                    await self.store.update("tasks", task_id, {"escalation_level": 0, "last_escalated_at": None})
            except Exception as e:
                StructuredLogger.log_error(e, context={"function": "reset_task_escalation_level", "task_id": task_id})

        lock = self._locks.get(task_id)
        if lock is not None and not lock.locked():
            del self._locks[task_id]

        if records:
            StructuredLogger.log_event(
                "escalation_resolved",
                f"Resolved {len(records)} escalation records for task {task_id}",
                metadata={"task_id": task_id, "records": len(records)},
            )
        return len(records)

    async def _remove_restrictions(self, child_id: str, task_id: str) -> None:
        try:
            data = await self.store.get("device_restrictions", child_id)
            if not data or not data.get("active") or data.get("task_id") != task_id:
                return
            await self.store.update("device_restrictions", child_id, {
                "active": False,
                "removed_at": self.clock.now().isoformat(),
            })
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "remove_restrictions", "child_id": child_id})

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_active_escalations(self, family_id: str) -> List[EscalationRecord]:
        return sorted(
            (record for record in self._active.values() if record.family_id == family_id and not record.resolved),
            key=lambda record: (record.task_id, record.level),
        )

    async def get_escalation_summary(self, family_id: str, days: int = 7) -> EscalationSummary:
        if days < 0:
            raise ValueError("days must not be negative")

        start = self.clock.now() - timedelta(days=days)
        try:
            rows = await self.store.query("escalations", {"family_id": family_id})
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "get_escalation_summary", "family_id": family_id})
            return EscalationSummary()

        summary = EscalationSummary()
        total_resolution_hours = 0.0
        resolved_count = 0

        for row in rows:
            record = EscalationRecord.model_validate(row)
            escalated_at = self.clock.localize(record.escalated_at)
            if escalated_at < start:
                continue

            summary.total_escalations += 1
            summary.by_level[record.level] = summary.by_level.get(record.level, 0) + 1
            summary.by_child[record.child_id] = summary.by_child.get(record.child_id, 0) + 1

            if record.resolved and record.resolved_at:
                resolved_at = self.clock.localize(record.resolved_at)
                total_resolution_hours += (resolved_at - escalated_at).total_seconds() / 3600
                resolved_count += 1
            else:
                summary.currently_escalated += 1

        if resolved_count:
            summary.average_resolution_hours = total_resolution_hours / resolved_count
        return summary
