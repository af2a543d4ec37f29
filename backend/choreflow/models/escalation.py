"""Escalation level, record and restriction models"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from choreflow.models.notification import Severity


class EscalationActionType(str, Enum):
    NOTIFY_CHILD = "notify_child"
    NOTIFY_PARENT = "notify_parent"
    NOTIFY_BOTH = "notify_both"
    REDUCE_POINTS = "reduce_points"
    RESTRICT_DEVICE = "restrict_device"


NOTIFY_ACTIONS = {
    EscalationActionType.NOTIFY_CHILD,
    EscalationActionType.NOTIFY_PARENT,
    EscalationActionType.NOTIFY_BOTH,
}


class EscalationAction(BaseModel):
    type: EscalationActionType
    message: Optional[str] = None
    tone: Optional[str] = None  # gentle / moderate / urgent / critical
    point_reduction: Optional[int] = Field(None, ge=0)
    restrictions: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _required_fields(self):
        if self.type in NOTIFY_ACTIONS and not self.message:
            raise ValueError(f"{self.type.value} needs a message template")
        if self.type == EscalationActionType.REDUCE_POINTS and not self.point_reduction:
            raise ValueError("reduce_points needs a positive point_reduction")
        if self.type == EscalationActionType.RESTRICT_DEVICE and not self.restrictions:
            raise ValueError("restrict_device needs at least one restriction")
        return self


class EscalationLevel(BaseModel):
    level: int = Field(..., ge=1)
    name: str
    hours_overdue: float = Field(..., ge=0)
    actions: List[EscalationAction]
    notification_priority: Severity


class RestrictionSettings(BaseModel):
    block_new_tasks: bool = True
    hide_rewards: bool = True
    limit_screen_time: bool = False

    def filter(self, restrictions: List[str]) -> List[str]:
        """Apply the family's restriction switches to a level's restriction list"""
        allowed = [
            item for item in restrictions
            if not (item == "new_tasks" and not self.block_new_tasks)
            and not (item == "rewards" and not self.hide_rewards)
        ]
        if self.limit_screen_time and "screen_time" not in allowed:
            allowed.append("screen_time")
        return allowed


DEFAULT_ESCALATION_LEVELS: List[EscalationLevel] = [
    EscalationLevel(
        level=1,
        name="Gentle Reminder",
        hours_overdue=1,
        notification_priority=Severity.MEDIUM,
        actions=[
            EscalationAction(
                type=EscalationActionType.NOTIFY_CHILD,
                tone="gentle",
                message='Hey! Your task "{taskTitle}" is overdue. Please complete it soon! 🕐',
            ),
        ],
    ),
    EscalationLevel(
        level=2,
        name="Parent Alert",
        hours_overdue=3,
        notification_priority=Severity.HIGH,
        actions=[
            EscalationAction(
                type=EscalationActionType.NOTIFY_BOTH,
                tone="moderate",
                message='⚠️ Task "{taskTitle}" is {hours} hours overdue',
            ),
        ],
    ),
    EscalationLevel(
        level=3,
        name="Urgent Escalation",
        hours_overdue=6,
        notification_priority=Severity.HIGH,
        actions=[
            EscalationAction(
                type=EscalationActionType.NOTIFY_PARENT,
                tone="urgent",
                message='🚨 {childName}\'s task "{taskTitle}" is significantly overdue ({hours} hours)',
            ),
            EscalationAction(type=EscalationActionType.REDUCE_POINTS, point_reduction=5),
        ],
    ),
    EscalationLevel(
        level=4,
        name="Critical Escalation",
        hours_overdue=24,
        notification_priority=Severity.CRITICAL,
        actions=[
            EscalationAction(
                type=EscalationActionType.NOTIFY_PARENT,
                tone="critical",
                message='🔴 URGENT: {childName} has not completed "{taskTitle}" for over 24 hours!',
            ),
            EscalationAction(
                type=EscalationActionType.RESTRICT_DEVICE,
                restrictions=["new_tasks", "rewards"],
            ),
            EscalationAction(type=EscalationActionType.REDUCE_POINTS, point_reduction=10),
        ],
    ),
]


class EscalationConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    family_id: str
    enabled: bool = True
    levels: List[EscalationLevel] = Field(
        default_factory=lambda: [level.model_copy(deep=True) for level in DEFAULT_ESCALATION_LEVELS]
    )
    restriction_settings: RestrictionSettings = Field(default_factory=RestrictionSettings)

    @field_validator("levels")
    @classmethod
    def _ordered_levels(cls, levels: List[EscalationLevel]) -> List[EscalationLevel]:
        numbers = [level.level for level in levels]
        if len(numbers) != len(set(numbers)):
            raise ValueError("Escalation level numbers must be unique")
        ordered = sorted(levels, key=lambda level: (level.hours_overdue, level.level))
        for lower, higher in zip(ordered, ordered[1:]):
            if higher.level < lower.level:
                raise ValueError("Escalation levels must rise with their overdue thresholds")
        return ordered


class EscalationRecord(BaseModel):
    """One level transition of one task; never deleted, only resolved"""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    family_id: str
    task_id: str
    child_id: str
    level: int
    level_name: str = ""
    hours_overdue: int = 0
    escalated_at: datetime
    actions: List[EscalationAction] = Field(default_factory=list)
    resolved: bool = False
    resolved_at: Optional[datetime] = None

    @property
    def restricted_device(self) -> bool:
        return any(action.type == EscalationActionType.RESTRICT_DEVICE for action in self.actions)


class DeviceRestriction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    child_id: str
    task_id: str
    restrictions: List[str]
    reason: str
    applied_at: datetime
    expires_at: datetime
    active: bool = True
    removed_at: Optional[datetime] = None

    def is_in_force(self, now: datetime) -> bool:
        return self.active and self.expires_at > now


class EscalationSummary(BaseModel):
    total_escalations: int = 0
    by_level: Dict[int, int] = Field(default_factory=dict)
    by_child: Dict[str, int] = Field(default_factory=dict)
    average_resolution_hours: float = 0.0
    currently_escalated: int = 0
