"""Reminder pattern and strategy models"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from choreflow.models.notification import QuietHours, TimeWindow
from choreflow.utils.time_windows import parse_time_of_day


class ReminderPattern(BaseModel):
    """Per-child adaptive model of when reminders work best"""
    model_config = ConfigDict(extra="ignore")

    child_id: str
    # Morning, after school, dinner, evening
    optimal_times: List[str] = Field(default_factory=lambda: ["07:00", "15:30", "18:00", "20:00"])
    completion_rate: float = Field(0.5, ge=0.0, le=1.0)
    average_response_time: float = Field(30.0, ge=0.0, description="Minutes from reminder to completion")
    preferred_lead_time: int = Field(60, ge=0, description="Minutes before due")
    school_hours: TimeWindow = Field(default_factory=lambda: TimeWindow(start="08:00", end="15:00"))
    quiet_hours: QuietHours = Field(default_factory=lambda: QuietHours(start="21:00", end="06:00"))
    updated_at: Optional[datetime] = None

    @field_validator("optimal_times")
    @classmethod
    def _sorted_times(cls, value: List[str]) -> List[str]:
        return sorted(value, key=parse_time_of_day)


class StrategyType(str, Enum):
    GENTLE = "gentle"
    MODERATE = "moderate"
    URGENT = "urgent"
    ESCALATED = "escalated"


class ReminderStrategy(BaseModel):
    type: StrategyType
    frequency: int = Field(..., ge=1, description="Reminders per day")
    lead_times: List[int] = Field(..., description="Minutes before due")
    messages: List[str] = Field(..., min_length=1, description="Variants in increasing urgency")

    def message_for(self, reminders_sent: int) -> str:
        return self.messages[min(reminders_sent, len(self.messages) - 1)]


class CompletionHistoryEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    family_id: str
    task_id: str
    child_id: str
    completed_at: datetime
    due_date: Optional[datetime] = None
    reminders_sent: int = 0
    response_time: Optional[float] = None  # Minutes from last reminder


class ReminderEffectiveness(BaseModel):
    best_times: List[str]
    average_response_time: float
    completion_rate: float
    recommendations: List[str] = Field(default_factory=list)
