"""Daily resurfaced event"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db, User
from app.api.deps import get_current_user
from app.schemas import EventResponse, ResurfacingResponse
from app.services.resurfacing_service import get_resurfacing_service

router = APIRouter(prefix="/resurfacing", tags=["Resurfacing"])


@router.get("/daily", response_model=ResurfacingResponse)
async def daily_event(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Today's event worth revisiting, or an empty body when none is old enough"""
    result = await get_resurfacing_service(db).get_daily_event(current_user.id)
    if result is None:
        return ResurfacingResponse()
    return ResurfacingResponse(
        event=EventResponse.model_validate(result.event),
        reason=result.reason,
        score=result.score,
        notification_text=result.notification_text,
    )
