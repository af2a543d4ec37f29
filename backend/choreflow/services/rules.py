"""Default notification rules and rule selection"""
from typing import Dict, List, Optional

from choreflow.models.notification import (
    EventType,
    MessageTemplate,
    NotificationRule,
    RecipientRole,
    Severity,
    TriggerConditions,
)


DEFAULT_RULES: List[NotificationRule] = [
    NotificationRule(
        id="task_created",
        event_type=EventType.TASK_CREATED,
        severity=Severity.MEDIUM,
        recipients=RecipientRole.ASSIGNED_CHILD,
        template=MessageTemplate(
            title="New Task Assigned",
            body="📋 {taskTitle} has been assigned to you",
        ),
    ),
    NotificationRule(
        id="task_completed",
        event_type=EventType.TASK_COMPLETED,
        severity=Severity.LOW,
        recipients=RecipientRole.PARENTS,
        template=MessageTemplate(
            title="Task Completed",
            body="✅ {childName} completed {taskTitle}",
        ),
    ),
    NotificationRule(
        id="photo_submitted",
        event_type=EventType.PHOTO_SUBMITTED,
        severity=Severity.MEDIUM,
        recipients=RecipientRole.PARENTS,
        template=MessageTemplate(
            title="Photo Verification Needed",
            body="📸 {childName} submitted proof for {taskTitle}",
        ),
    ),
    NotificationRule(
        id="photo_approved",
        event_type=EventType.PHOTO_APPROVED,
        severity=Severity.LOW,
        recipients=RecipientRole.ASSIGNED_CHILD,
        template=MessageTemplate(
            title="Photo Approved!",
            body="✅ Your photo for {taskTitle} was approved!",
        ),
    ),
    NotificationRule(
        id="photo_rejected",
        event_type=EventType.PHOTO_REJECTED,
        severity=Severity.LOW,
        recipients=RecipientRole.ASSIGNED_CHILD,
        template=MessageTemplate(
            title="Photo Rejected",
            body="❌ Your photo for {taskTitle} needs to be retaken. {feedback}",
        ),
    ),
    NotificationRule(
        id="task_overdue_medium",
        event_type=EventType.TASK_OVERDUE,
        severity=Severity.MEDIUM,
        recipients=RecipientRole.ASSIGNED_CHILD,
        template=MessageTemplate(
            title="Task Overdue",
            body="⚠️ {taskTitle} is {hours} hours overdue!",
        ),
    ),
    NotificationRule(
        id="task_overdue_high",
        event_type=EventType.TASK_OVERDUE,
        severity=Severity.HIGH,
        recipients=RecipientRole.ASSIGNED_CHILD,
        conditions=TriggerConditions(hours_overdue=3),
        template=MessageTemplate(
            title="Task Overdue",
            body="⚠️ {taskTitle} is {hours} hours overdue!",
        ),
    ),
    NotificationRule(
        id="task_overdue_critical",
        event_type=EventType.TASK_OVERDUE,
        severity=Severity.CRITICAL,
        recipients=RecipientRole.PARENTS,
        conditions=TriggerConditions(hours_overdue=24),
        template=MessageTemplate(
            title="Urgent: Task Needs Attention",
            body="⚠️ {taskTitle} is {hours} hours overdue!",
            sound="alert",
        ),
    ),
    NotificationRule(
        id="streak_milestone",
        event_type=EventType.STREAK_MILESTONE,
        severity=Severity.MEDIUM,
        recipients=RecipientRole.CHILD_AND_PARENTS,
        conditions=TriggerConditions(min_streak=7),
        template=MessageTemplate(
            title="Streak Milestone! 🔥",
            body="🎉 {childName} has a {milestone}-day streak!",
        ),
    ),
    NotificationRule(
        id="habit_formed",
        event_type=EventType.HABIT_FORMED,
        severity=Severity.HIGH,
        recipients=RecipientRole.CHILD_AND_PARENTS,
        conditions=TriggerConditions(min_streak=21),
        template=MessageTemplate(
            title="Habit Formed! 🌟",
            body="🏆 {childName} completed {milestone} days - habit formed!",
            sound="celebration",
        ),
    ),
]

STREAK_MILESTONES = (7, 14, 21, 30)
HABIT_MILESTONE = 21


class RuleBook:
    """Rule catalog for one family, defaulting to ``DEFAULT_RULES``"""

    def __init__(self, rules: Optional[List[NotificationRule]] = None):
        self._rules: Dict[str, NotificationRule] = {rule.id: rule for rule in (rules or DEFAULT_RULES)}

    def get(self, rule_id: str) -> NotificationRule:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise ValueError(f"Unknown notification rule: {rule_id}")

    def for_event(self, event_type: EventType) -> List[NotificationRule]:
        return [rule for rule in self._rules.values() if rule.event_type == event_type]

    def select(
        self,
        event_type: EventType,
        streak: Optional[int] = None,
        hours_overdue: Optional[float] = None,
        completion_rate: Optional[float] = None,
    ) -> Optional[NotificationRule]:
        """Most specific rule of ``event_type`` whose conditions are satisfied"""
        matching = [
            rule for rule in self.for_event(event_type)
            if rule.conditions is None
            or rule.conditions.matches(streak=streak, hours_overdue=hours_overdue, completion_rate=completion_rate)
        ]
        if not matching:
            return None
        return max(
            matching,
            key=lambda rule: (rule.conditions.specificity if rule.conditions else (0, 0), rule.severity.rank),
        )
