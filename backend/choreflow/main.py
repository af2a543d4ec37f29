"""FastAPI application entry point"""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from choreflow.api import escalations, events, families, notifications, recurring, reminders
from choreflow.config import settings
from choreflow.database import SupabaseDocumentStore
from choreflow.engine import NotificationEngine
from choreflow.services.push import ExpoPushProvider


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan"""
    # Startup
    engine = getattr(app.state, "engine", None)
    if engine is None:
        engine = NotificationEngine(SupabaseDocumentStore(), ExpoPushProvider())
        app.state.engine = engine
    await engine.initialize_all()
    engine.start()
    yield
    # Shutdown
    await engine.dispose()


def create_app(engine: Optional[NotificationEngine] = None) -> FastAPI:
    app = FastAPI(
        title="ChoreFlow Notifications API",
        description="Notification scheduling and escalation engine for family task management",
        version="1.0.0",
        lifespan=lifespan,
    )
    if engine is not None:
        app.state.engine = engine

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(events.router, prefix="/api/events", tags=["events"])
    app.include_router(families.router, prefix="/api/families", tags=["families"])
    app.include_router(notifications.router, prefix="/api/notifications", tags=["notifications"])
    app.include_router(escalations.router, prefix="/api/escalations", tags=["escalations"])
    app.include_router(reminders.router, prefix="/api/reminders", tags=["reminders"])
    app.include_router(recurring.router, prefix="/api/recurring", tags=["recurring"])

    @app.get("/api/health")
    async def health_check(request: Request):
        """Health check endpoint"""
        engine = getattr(request.app.state, "engine", None)
        if engine is None:
            return {"status": "starting", "service": "ChoreFlow Notifications API"}
        return {
            "status": "healthy",
            "service": "ChoreFlow Notifications API",
            "families": len(engine.families),
            "queued_notifications": len(engine.dispatch),
            "pending_timers": len(engine.timers),
            "metrics": engine.metrics.get_metrics(),
        }

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {"message": "ChoreFlow Notifications API", "version": "1.0.0"}

    return app


app = create_app()
