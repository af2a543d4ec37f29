"""Recurring task endpoints"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from choreflow.api.deps import get_engine
from choreflow.engine import NotificationEngine
from choreflow.models.task import RecurrenceRule, ScheduledTaskTemplate, TaskTemplate, UpcomingTask
from choreflow.services.templates import TASK_TEMPLATES
from choreflow.utils.monitoring import StructuredLogger

router = APIRouter()


class AddRecurringTaskRequest(BaseModel):
    family_id: str
    template_id: str
    assigned_to: str
    recurrence: Optional[RecurrenceRule] = None


class DailyRoutinesRequest(BaseModel):
    child_id: str
    child_age: int = Field(..., ge=0)


@router.post("", response_model=ScheduledTaskTemplate, status_code=status.HTTP_201_CREATED)
async def add_recurring_task(
    request: AddRecurringTaskRequest,
    engine: NotificationEngine = Depends(get_engine),
):
    """Schedule a template for a child, with its default or a custom recurrence"""
    try:
        return await engine.add_recurring_task(
            request.family_id,
            request.template_id,
            request.assigned_to,
            request.recurrence,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except Exception as e:
        StructuredLogger.log_error(
            e,
            context={"function": "add_recurring_task", "template_id": request.template_id},
            user_id=request.assigned_to,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to add recurring task: {str(e)}",
        )


@router.get("/templates", response_model=List[TaskTemplate])
async def list_templates():
    return TASK_TEMPLATES


@router.get("/upcoming", response_model=List[UpcomingTask])
async def get_upcoming_tasks(
    days: int = Query(7, ge=0, description="Horizon in days"),
    family_id: Optional[str] = Query(None, description="Only this family's schedules"),
    engine: NotificationEngine = Depends(get_engine),
):
    """Every occurrence of every active schedule within the horizon"""
    return engine.get_upcoming_tasks(days, family_id=family_id)


@router.get("/{family_id}", response_model=List[ScheduledTaskTemplate])
async def get_scheduled_tasks(
    family_id: str,
    engine: NotificationEngine = Depends(get_engine),
):
    return engine.recurring.get_scheduled_tasks(family_id)


@router.post("/{family_id}/routines")
async def schedule_daily_routines(
    family_id: str,
    request: DailyRoutinesRequest,
    engine: NotificationEngine = Depends(get_engine),
):
    """Schedule every age-appropriate daily routine for a child"""
    scheduled_ids = await engine.recurring.schedule_daily_routines(family_id, request.child_id, request.child_age)
    return {"family_id": family_id, "scheduled": scheduled_ids}


@router.post("/{family_id}/{scheduled_id}/pause", response_model=ScheduledTaskTemplate)
async def pause_scheduled_task(
    family_id: str,
    scheduled_id: str,
    engine: NotificationEngine = Depends(get_engine),
):
    try:
        return await engine.recurring.pause_scheduled_task(family_id, scheduled_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/{family_id}/{scheduled_id}/resume", response_model=ScheduledTaskTemplate)
async def resume_scheduled_task(
    family_id: str,
    scheduled_id: str,
    engine: NotificationEngine = Depends(get_engine),
):
    try:
        return await engine.recurring.resume_scheduled_task(family_id, scheduled_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.delete("/{family_id}/{scheduled_id}", status_code=status.HTTP_200_OK)
async def delete_scheduled_task(
    family_id: str,
    scheduled_id: str,
    engine: NotificationEngine = Depends(get_engine),
):
    try:
        await engine.recurring.delete_scheduled_task(family_id, scheduled_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return {"success": True, "message": "Scheduled task deleted"}
