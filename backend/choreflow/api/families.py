"""Family lifecycle endpoints"""
from fastapi import APIRouter, Depends, status

from choreflow.api.deps import get_engine
from choreflow.engine import NotificationEngine

router = APIRouter()


@router.post("/{family_id}/initialize", status_code=status.HTTP_200_OK)
async def initialize_family(
    family_id: str,
    engine: NotificationEngine = Depends(get_engine),
):
    """Load a family into the engine; calling it again is a no-op"""
    initialized = await engine.initialize(family_id)
    return {"family_id": family_id, "initialized": initialized}
