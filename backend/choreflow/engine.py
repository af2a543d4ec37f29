"""Notification engine: one explicit context object owning every component"""
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from choreflow.config import Settings, settings as default_settings
from choreflow.database import DocumentStore
from choreflow.models.escalation import EscalationRecord, EscalationSummary
from choreflow.models.events import ChangeEvent, ChangeType
from choreflow.models.notification import EventPayload, NotificationRule, QueueKey
from choreflow.models.task import RecurrenceRule, ScheduledTaskTemplate, Task, UpcomingTask
from choreflow.models.user import UserRole
from choreflow.services.directory import FamilyDirectory
from choreflow.services.escalation import EscalationService
from choreflow.services.notification import DrainResult, NotificationDispatchQueue
from choreflow.services.orchestrator import NotificationOrchestrator
from choreflow.services.push import PushProvider
from choreflow.services.recurring import RecurringTaskGenerator
from choreflow.services.reminders import ReminderPatternStore, SmartReminderService
from choreflow.services.rules import RuleBook
from choreflow.utils.clock import Clock, SystemClock
from choreflow.utils.monitoring import DispatchMetrics, StructuredLogger
from choreflow.utils.scheduler import PeriodicDriver, TimerRegistry


class NotificationEngine:
    """
    Wires the dispatch queue, escalation state machine, reminder scheduler
    and recurring generator around one store, one push provider and one
    clock.

    Nothing here is a module-level singleton: tests build as many engines
    as they like, each with its own fakes.
    """

    def __init__(
        self,
        store: DocumentStore,
        push: PushProvider,
        clock: Optional[Clock] = None,
        config: Optional[Settings] = None,
        driver: Optional[PeriodicDriver] = None,
        rules: Optional[RuleBook] = None,
    ):
        self.config = config or default_settings
        self.store = store
        self.push = push
        self.clock = clock or SystemClock(self.config.TIMEZONE)
        self.metrics = DispatchMetrics()
        self.timers = TimerRegistry()
        self.driver = driver or PeriodicDriver()

        self.directory = FamilyDirectory(store)
        self.dispatch = NotificationDispatchQueue(
            store, push, self.directory, self.clock, config=self.config, metrics=self.metrics
        )
        self.escalations = EscalationService(store, self.dispatch, self.directory, self.clock, config=self.config)
        self.patterns = ReminderPatternStore(store, self.clock)
        self.reminders = SmartReminderService(
            store, self.timers, self.patterns, self.directory, push, self.clock, config=self.config
        )
        self.recurring = RecurringTaskGenerator(store, self.clock, on_task_created=self._on_recurring_task_created)
        self.orchestrator = NotificationOrchestrator(
            store, self.dispatch, self.escalations, self.reminders, self.directory, self.clock, rules=rules
        )

        self._families: Set[str] = set()
        self._started = False

    @property
    def families(self) -> Set[str]:
        return set(self._families)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self, family_id: str) -> bool:
        """
        Load a family's preferences, patterns, escalation state and schedules.

        Returns:
            False when the family was already initialized (nothing is reloaded)
        """
        if family_id in self._families:
            return False
        self._families.add(family_id)

        try:
            members = await self.directory.get_members(family_id)
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "initialize", "family_id": family_id})
            members = []

        for member in members:
            await self.dispatch.load_preferences(member.id)
            if member.role == UserRole.CHILD:
                await self.patterns.get(member.id)

        await self.escalations.initialize(family_id)
        await self.recurring.initialize(family_id)

        StructuredLogger.log_event(
            "family_initialized",
            f"Notification engine initialized for family {family_id}",
            metadata={"family_id": family_id, "members": len(members)},
        )
        return True

    async def initialize_all(self) -> int:
        """Initialize every family known to the store"""
        try:
            families = await self.store.query("families")
        except Exception as e:
            StructuredLogger.log_error(e, context={"function": "initialize_all"})
            return 0

        initialized = 0
        for family in families:
            if await self.initialize(family["id"]):
                initialized += 1
        return initialized

    def start(self) -> None:
        """Register the periodic jobs and start the driver (needs a running event loop)"""
        if self._started:
            return
        self.driver.add_job(
            "notification_queue_drain",
            "Drain due notifications",
            self.dispatch.drain,
            self.config.QUEUE_DRAIN_INTERVAL_SECONDS,
        )
        self.driver.add_job(
            "escalation_sweep",
            "Escalate overdue tasks",
            self.escalations.sweep,
            self.config.ESCALATION_SWEEP_INTERVAL_SECONDS,
        )
        self.driver.add_job(
            "recurring_task_tick",
            "Materialize recurring tasks",
            self.recurring.run_due,
            self.config.RECURRING_TICK_SECONDS,
        )
        self.driver.add_job(
            "timer_pump",
            "Fire due reminder timers",
            self.pump_timers,
            self.config.TIMER_PUMP_INTERVAL_SECONDS,
        )
        self.driver.start()
        self._started = True

    async def dispose(self) -> None:
        """Stop the periodic jobs and drop every pending timer"""
        self.driver.shutdown()
        pending = len(self.timers)
        self.timers.clear()
        self._started = False
        StructuredLogger.log_event(
            "engine_disposed",
            "Notification engine disposed",
            metadata={"cancelled_timers": pending, "queued_notifications": len(self.dispatch)},
        )

    async def pump_timers(self) -> int:
        return await self.timers.run_due(self.clock.now())

    async def tick(self) -> Dict[str, Any]:
        """Run every periodic job once, in dependency order"""
        created = await self.recurring.run_due()
        transitions = await self.escalations.sweep()
        fired = await self.pump_timers()
        drained = await self.dispatch.drain()
        return {
            "tasks_created": created,
            "escalations": transitions,
            "timers_fired": fired,
            "drain": drained,
        }

    # ------------------------------------------------------------------
    # Operations exposed to the rest of the application
    # ------------------------------------------------------------------

    async def queue_notification(
        self,
        event_id: str,
        rule: NotificationRule,
        payload: EventPayload,
        recipients: Iterable[str],
        scheduled_for=None,
    ) -> List[QueueKey]:
        return await self.dispatch.enqueue(event_id, rule, payload, recipients, scheduled_for=scheduled_for)

    async def drain(self) -> DrainResult:
        return await self.dispatch.drain()

    async def check_task_escalation(self, task: Union[Task, Dict[str, Any]]) -> List[EscalationRecord]:
        return await self.escalations.check_task_escalation(task)

    async def resolve_escalation(self, task_id: str) -> int:
        return await self.escalations.resolve_escalation(task_id)

    async def get_escalation_summary(self, family_id: str, days: int = 7) -> EscalationSummary:
        return await self.escalations.get_escalation_summary(family_id, days)

    async def schedule_smart_reminder(self, task: Union[Task, Dict[str, Any]]):
        return await self.reminders.schedule_smart_reminder(task)

    def cancel_reminders(self, task_id: str) -> int:
        return self.reminders.cancel_reminders(task_id, include_response_checks=True)

    async def add_recurring_task(
        self,
        family_id: str,
        template_id: str,
        assigned_to: str,
        recurrence: Optional[RecurrenceRule] = None,
    ) -> ScheduledTaskTemplate:
        return await self.recurring.add_recurring_task(family_id, template_id, assigned_to, recurrence)

    def get_upcoming_tasks(self, days: int = 7, family_id: Optional[str] = None) -> List[UpcomingTask]:
        return self.recurring.get_upcoming_tasks(days, family_id=family_id)

    async def handle_task_change(self, event: ChangeEvent) -> None:
        await self.orchestrator.handle_task_change(event)

    async def handle_photo_change(self, event: ChangeEvent) -> None:
        await self.orchestrator.handle_photo_change(event)

    async def _on_recurring_task_created(self, task: Dict[str, Any]) -> None:
        await self.orchestrator.handle_task_change(ChangeEvent(type=ChangeType.ADDED, doc=task))
