"""Notification queue and preference endpoints"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, model_validator

from choreflow.api.deps import get_engine
from choreflow.engine import NotificationEngine
from choreflow.models.notification import EventPayload, NotificationRule, UserNotificationPreferences
from choreflow.utils.monitoring import StructuredLogger

router = APIRouter()


class QueueNotificationRequest(BaseModel):
    """Admit a notification; either a catalog rule id or a full rule"""
    event_id: str
    rule_id: Optional[str] = None
    rule: Optional[NotificationRule] = None
    payload: EventPayload
    recipients: List[str] = Field(..., min_length=1)
    scheduled_for: Optional[datetime] = None

    @model_validator(mode="after")
    def _rule_given(self):
        if (self.rule_id is None) == (self.rule is None):
            raise ValueError("Provide exactly one of rule_id or rule")
        return self


class QueuedNotificationResponse(BaseModel):
    event_id: str
    recipient_id: str
    rule_id: str
    event_type: str
    severity: str
    scheduled_for: datetime
    attempts: int


@router.post("/queue", status_code=status.HTTP_201_CREATED)
async def queue_notification(
    request: QueueNotificationRequest,
    engine: NotificationEngine = Depends(get_engine),
):
    """Queue a notification for one or more recipients"""
    try:
        rule = request.rule or engine.orchestrator.rules.get(request.rule_id)
        keys = await engine.queue_notification(
            request.event_id,
            rule,
            request.payload,
            request.recipients,
            scheduled_for=request.scheduled_for,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except Exception as e:
        StructuredLogger.log_error(
            e,
            context={"function": "queue_notification", "event_id": request.event_id},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to queue notification: {str(e)}",
        )

    return {
        "queued": [str(key) for key in keys],
        "rejected": [recipient for recipient in request.recipients if recipient not in {key.recipient_id for key in keys}],
    }


@router.get("/queue", response_model=List[QueuedNotificationResponse])
async def get_queue(
    recipient_id: Optional[str] = Query(None, description="Only entries for this recipient"),
    engine: NotificationEngine = Depends(get_engine),
):
    """Pending (unsent) notifications, earliest first"""
    return [
        QueuedNotificationResponse(
            event_id=entry.event_id,
            recipient_id=entry.recipient_id,
            rule_id=entry.rule.id,
            event_type=entry.rule.event_type.value,
            severity=entry.rule.severity.value,
            scheduled_for=entry.scheduled_for,
            attempts=entry.attempts,
        )
        for entry in engine.dispatch.pending(recipient_id)
    ]


@router.get("/preferences/{user_id}", response_model=UserNotificationPreferences)
async def get_preferences(
    user_id: str,
    engine: NotificationEngine = Depends(get_engine),
):
    """A user's notification preferences (defaults when none are stored)"""
    return await engine.dispatch.get_preferences(user_id)


@router.put("/preferences/{user_id}", response_model=UserNotificationPreferences)
async def update_preferences(
    user_id: str,
    preferences: UserNotificationPreferences,
    engine: NotificationEngine = Depends(get_engine),
):
    """Replace a user's notification preferences"""
    if preferences.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="user_id in body does not match the path",
        )
    try:
        return await engine.dispatch.update_preferences(preferences)
    except Exception as e:
        StructuredLogger.log_error(e, context={"function": "update_preferences"}, user_id=user_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update preferences: {str(e)}",
        )
