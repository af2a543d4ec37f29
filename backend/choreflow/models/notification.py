"""Notification rule, queue entry and preference models"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, NamedTuple, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from choreflow.utils.time_windows import parse_time_of_day


class EventType(str, Enum):
    TASK_CREATED = "task_created"
    TASK_COMPLETED = "task_completed"
    TASK_OVERDUE = "task_overdue"
    PHOTO_SUBMITTED = "photo_submitted"
    PHOTO_APPROVED = "photo_approved"
    PHOTO_REJECTED = "photo_rejected"
    STREAK_MILESTONE = "streak_milestone"
    ESCALATION = "escalation"
    HABIT_FORMED = "habit_formed"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


class RecipientRole(str, Enum):
    ASSIGNED_CHILD = "assigned_child"
    PARENTS = "parents"
    CHILD_AND_PARENTS = "child_and_parents"


class PriorityOverride(str, Enum):
    ALWAYS = "always"
    NEVER = "never"
    QUIET_HOURS_ONLY = "quiet_hours_only"


class TriggerConditions(BaseModel):
    """Thresholds a rule needs before it applies; unset fields are ignored"""
    min_streak: Optional[int] = None
    hours_overdue: Optional[float] = None
    completion_rate: Optional[float] = Field(None, ge=0.0, le=1.0)

    def matches(
        self,
        streak: Optional[int] = None,
        hours_overdue: Optional[float] = None,
        completion_rate: Optional[float] = None,
    ) -> bool:
        if self.min_streak is not None and (streak is None or streak < self.min_streak):
            return False
        if self.hours_overdue is not None and (hours_overdue is None or hours_overdue < self.hours_overdue):
            return False
        # Completion-rate rules target children at or below the threshold
        if self.completion_rate is not None and (completion_rate is None or completion_rate > self.completion_rate):
            return False
        return True

    @property
    def specificity(self) -> Tuple[float, float]:
        return (self.min_streak or 0, self.hours_overdue or 0)


class _SafeFormatDict(dict):
    def __missing__(self, key):
        return "{" + key + "}"


def render_template(template: str, values: Dict[str, str]) -> str:
    """Fill ``{placeholder}`` fields, leaving unknown placeholders untouched"""
    return template.format_map(_SafeFormatDict(values))


class MessageTemplate(BaseModel):
    title: str
    body: str
    sound: Optional[str] = None
    badge: Optional[int] = None

    def render(self, values: Dict[str, str]) -> Tuple[str, str]:
        return render_template(self.title, values), render_template(self.body, values)


class NotificationRule(BaseModel):
    """How one kind of event is announced. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    id: str
    event_type: EventType
    severity: Severity
    recipients: RecipientRole
    conditions: Optional[TriggerConditions] = None
    template: MessageTemplate


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class _PayloadBase(BaseModel):
    family_id: str

    def template_values(self) -> Dict[str, str]:
        values = self.model_dump(exclude={"event_type"})
        return {_camel(key): "" if value is None else str(value) for key, value in values.items()}


class TaskCreatedPayload(_PayloadBase):
    event_type: Literal[EventType.TASK_CREATED] = EventType.TASK_CREATED
    task_id: str
    task_title: str


class TaskCompletedPayload(_PayloadBase):
    event_type: Literal[EventType.TASK_COMPLETED] = EventType.TASK_COMPLETED
    task_id: str
    task_title: str
    child_name: str


class TaskOverduePayload(_PayloadBase):
    event_type: Literal[EventType.TASK_OVERDUE] = EventType.TASK_OVERDUE
    task_id: str
    task_title: str
    hours: int


class PhotoPayload(_PayloadBase):
    event_type: Literal[EventType.PHOTO_SUBMITTED, EventType.PHOTO_APPROVED, EventType.PHOTO_REJECTED]
    submission_id: str
    task_id: str
    task_title: str
    child_name: str
    feedback: str = ""


class StreakPayload(_PayloadBase):
    event_type: Literal[EventType.STREAK_MILESTONE, EventType.HABIT_FORMED]
    child_id: str
    child_name: str
    milestone: int


class EscalationPayload(_PayloadBase):
    event_type: Literal[EventType.ESCALATION] = EventType.ESCALATION
    task_id: str
    task_title: str
    child_id: str
    child_name: str
    hours: int
    level: int


EventPayload = Annotated[
    Union[
        TaskCreatedPayload,
        TaskCompletedPayload,
        TaskOverduePayload,
        PhotoPayload,
        StreakPayload,
        EscalationPayload,
    ],
    Field(discriminator="event_type"),
]


class QueueKey(NamedTuple):
    event_id: str
    recipient_id: str

    def __str__(self) -> str:
        return f"{self.event_id}:{self.recipient_id}"


class QueuedNotification(BaseModel):
    """A pending delivery of one event to one recipient"""
    event_id: str
    recipient_id: str
    rule: NotificationRule
    payload: EventPayload
    scheduled_for: datetime
    sent: bool = False
    attempts: int = 0

    @model_validator(mode="after")
    def _payload_matches_rule(self):
        if self.payload.event_type != self.rule.event_type:
            raise ValueError(
                f"payload for {self.payload.event_type.value} cannot use rule {self.rule.id} "
                f"({self.rule.event_type.value})"
            )
        return self

    @property
    def key(self) -> QueueKey:
        return QueueKey(self.event_id, self.recipient_id)

    def render(self) -> Tuple[str, str]:
        return self.rule.template.render(self.payload.template_values())

    def push_data(self) -> Dict[str, object]:
        return {
            **self.payload.model_dump(mode="json"),
            "eventId": self.event_id,
            "notificationType": self.rule.event_type.value,
            "priority": self.rule.severity.value,
            "sound": self.rule.template.sound,
        }


class TimeWindow(BaseModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _valid_time(cls, value: str) -> str:
        parse_time_of_day(value)
        return value


class QuietHours(TimeWindow):
    enabled: bool = True
    start: str = "21:00"
    end: str = "07:00"


class UserNotificationPreferences(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    enabled_types: List[str] = Field(default_factory=lambda: ["all"])
    quiet_hours: QuietHours = Field(default_factory=QuietHours)
    grouping_window: int = Field(15, ge=0, description="Minutes within which sends are coalesced")
    max_per_hour: int = Field(10, ge=0)
    priority_overrides: Dict[Severity, PriorityOverride] = Field(
        default_factory=lambda: {
            Severity.CRITICAL: PriorityOverride.ALWAYS,
            Severity.HIGH: PriorityOverride.ALWAYS,
        }
    )

    @field_validator("enabled_types")
    @classmethod
    def _known_types(cls, value: List[str]) -> List[str]:
        known = {event.value for event in EventType} | {"all"}
        unknown = [item for item in value if item not in known]
        if unknown:
            raise ValueError(f"Unknown notification types: {', '.join(unknown)}")
        return value

    def allows(self, event_type: EventType) -> bool:
        return "all" in self.enabled_types or event_type.value in self.enabled_types

    def override_for(self, severity: Severity) -> Optional[PriorityOverride]:
        return self.priority_overrides.get(severity)


def default_preferences(user_id: str) -> UserNotificationPreferences:
    return UserNotificationPreferences(user_id=user_id)
