"""Shared API dependencies"""
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from choreflow.config import settings
from choreflow.engine import NotificationEngine


def get_engine(request: Request) -> NotificationEngine:
    """The engine built by the application lifespan"""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Notification engine is not running",
        )
    return engine


async def verify_webhook_secret(x_webhook_secret: Optional[str] = Header(None)):
    """Reject change-feed calls without the shared secret (when one is configured)"""
    if settings.WEBHOOK_SECRET and x_webhook_secret != settings.WEBHOOK_SECRET:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret",
        )
