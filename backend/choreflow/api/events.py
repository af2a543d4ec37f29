"""Change-feed webhook endpoints"""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError

from choreflow.api.deps import get_engine, verify_webhook_secret
from choreflow.engine import NotificationEngine
from choreflow.models.events import WebhookPayload
from choreflow.utils.monitoring import StructuredLogger

router = APIRouter(dependencies=[Depends(verify_webhook_secret)])


@router.post("/tasks", status_code=status.HTTP_202_ACCEPTED)
async def task_changed(
    payload: WebhookPayload,
    engine: NotificationEngine = Depends(get_engine),
):
    """Feed a task insert/update/delete into the engine"""
    event = payload.to_change_event()
    family_id = event.doc.get("family_id")
    try:
        if family_id:
            await engine.initialize(family_id)
        await engine.handle_task_change(event)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid task record: {str(e)}",
        )
    except Exception as e:
        StructuredLogger.log_error(
            e,
            context={"function": "task_changed", "task_id": event.doc.get("id"), "type": payload.type},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process task change: {str(e)}",
        )
    return {"success": True, "type": event.type.value}


@router.post("/photo-submissions", status_code=status.HTTP_202_ACCEPTED)
async def photo_submission_changed(
    payload: WebhookPayload,
    engine: NotificationEngine = Depends(get_engine),
):
    """Feed a photo submission insert/update into the engine"""
    event = payload.to_change_event()
    try:
        await engine.handle_photo_change(event)
    except Exception as e:
        StructuredLogger.log_error(
            e,
            context={"function": "photo_submission_changed", "submission_id": event.doc.get("id")},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to process photo submission: {str(e)}",
        )
    return {"success": True, "type": event.type.value}
