"""Task, task template and recurrence models"""
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from choreflow.utils.time_windows import parse_time_of_day


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskCategory(BaseModel):
    name: str
    color: str = "#607D8B"
    icon: str = ""


class Task(BaseModel):
    """A concrete family task as stored in the ``tasks`` collection"""
    model_config = ConfigDict(extra="ignore")

    id: str
    family_id: str
    title: str
    description: Optional[str] = None
    category: Optional[TaskCategory] = None
    assigned_to: str
    assigned_by: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    requires_photo: bool = False
    due_date: Optional[datetime] = None
    is_recurring: bool = False
    reminder_enabled: bool = True
    priority: TaskPriority = TaskPriority.MEDIUM
    points: int = 0
    escalation_level: int = 0
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_pending(self) -> bool:
        return self.status == TaskStatus.PENDING

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    def hours_overdue(self, now: datetime) -> Optional[int]:
        """Whole hours past the due date, or None when not overdue"""
        if self.due_date is None:
            return None
        due = self.due_date if self.due_date.tzinfo else self.due_date.replace(tzinfo=now.tzinfo)
        if due >= now:
            return None
        return int((now - due).total_seconds() // 3600)


class Weekday(IntEnum):
    """Day-of-week numbering used by recurrence rules (Sunday = 0)"""
    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def of(cls, moment: datetime) -> "Weekday":
        # datetime.weekday() is Monday = 0
        return cls((moment.weekday() + 1) % 7)


class RecurrenceType(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"


class RecurrenceRule(BaseModel):
    type: RecurrenceType
    days_of_week: List[Weekday] = Field(default_factory=list)
    time: str = "08:00"

    @field_validator("time")
    @classmethod
    def _valid_time(cls, value: str) -> str:
        parse_time_of_day(value)
        return value


class TaskTemplate(BaseModel):
    id: str
    title: str
    description: str = ""
    category: TaskCategory
    age_range: Tuple[int, int] = (0, 99)
    requires_photo: bool = False
    photo_instructions: Optional[str] = None
    estimated_minutes: int = 10
    priority: TaskPriority = TaskPriority.MEDIUM
    points: int = 10
    tags: List[str] = Field(default_factory=list)
    recurrence: Optional[RecurrenceRule] = None


class ScheduledTaskTemplate(BaseModel):
    """A recurring assignment of a template to a child"""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    template_id: str
    family_id: str
    assigned_to: str
    recurrence: RecurrenceRule
    next_run_date: datetime
    is_active: bool = True
    last_run_at: Optional[datetime] = None


class UpcomingTask(BaseModel):
    scheduled_task: ScheduledTaskTemplate
    template: TaskTemplate
    due_date: datetime
