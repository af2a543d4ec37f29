"""Smart reminder endpoints"""
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from choreflow.api.deps import get_engine
from choreflow.engine import NotificationEngine
from choreflow.models.reminder import ReminderEffectiveness
from choreflow.models.task import Task
from choreflow.utils.monitoring import StructuredLogger

router = APIRouter()


class ReminderScheduleResponse(BaseModel):
    task_id: str
    reminders: List[datetime]


@router.post("/schedule", response_model=ReminderScheduleResponse)
async def schedule_smart_reminder(
    task: Task,
    engine: NotificationEngine = Depends(get_engine),
):
    """(Re)schedule the reminders of a task"""
    try:
        times = await engine.schedule_smart_reminder(task)
    except Exception as e:
        StructuredLogger.log_error(e, context={"function": "schedule_smart_reminder", "task_id": task.id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to schedule reminders: {str(e)}",
        )
    return ReminderScheduleResponse(task_id=task.id, reminders=times)


@router.delete("/{task_id}")
async def cancel_reminders(
    task_id: str,
    engine: NotificationEngine = Depends(get_engine),
):
    cancelled = engine.cancel_reminders(task_id)
    return {"task_id": task_id, "cancelled": cancelled}


@router.get("/effectiveness/{child_id}", response_model=ReminderEffectiveness)
async def analyze_reminder_effectiveness(
    child_id: str,
    engine: NotificationEngine = Depends(get_engine),
):
    return await engine.reminders.analyze_reminder_effectiveness(child_id)
