"""Escalation endpoints"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import ValidationError

from choreflow.api.deps import get_engine
from choreflow.engine import NotificationEngine
from choreflow.models.escalation import EscalationConfig, EscalationRecord, EscalationSummary
from choreflow.models.task import Task
from choreflow.utils.monitoring import StructuredLogger

router = APIRouter()


@router.post("/check", response_model=List[EscalationRecord])
async def check_task_escalation(
    task: Task,
    engine: NotificationEngine = Depends(get_engine),
):
    """Escalate a task through every level it has crossed; returns the new records"""
    try:
        return await engine.check_task_escalation(task)
    except Exception as e:
        StructuredLogger.log_error(e, context={"function": "check_task_escalation", "task_id": task.id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to check escalation: {str(e)}",
        )


@router.post("/{task_id}/resolve")
async def resolve_escalation(
    task_id: str,
    engine: NotificationEngine = Depends(get_engine),
):
    resolved = await engine.resolve_escalation(task_id)
    return {"task_id": task_id, "resolved": resolved}


@router.get("/summary/{family_id}", response_model=EscalationSummary)
async def get_escalation_summary(
    family_id: str,
    days: int = Query(7, ge=0, description="Look-back window in days"),
    engine: NotificationEngine = Depends(get_engine),
):
    return await engine.get_escalation_summary(family_id, days)


@router.get("/active/{family_id}", response_model=List[EscalationRecord])
async def get_active_escalations(
    family_id: str,
    engine: NotificationEngine = Depends(get_engine),
):
    """Unresolved escalation records of a family"""
    return engine.escalations.get_active_escalations(family_id)


@router.put("/config/{family_id}", response_model=EscalationConfig)
async def update_escalation_config(
    family_id: str,
    changes: Dict[str, Any],
    engine: NotificationEngine = Depends(get_engine),
):
    """Merge a partial update into the family's escalation configuration"""
    try:
        return await engine.escalations.update_family_config(family_id, changes)
    except (ValidationError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except Exception as e:
        StructuredLogger.log_error(e, context={"function": "update_escalation_config", "family_id": family_id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update escalation config: {str(e)}",
        )
