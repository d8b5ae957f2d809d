"""Shared API dependencies"""

from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db, User, Memory
from app.services.clustering_service import Location
from app.services.graph_store import GraphStore, memory_location
from app.schemas import MemoryResponse


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Owner of the request. The upstream auth gateway sets X-User-Id after verifying the session."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user identity",
        )
    user = await db.get(User, x_user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown or inactive user",
        )
    return user


async def get_owned_memory(memory_id: str, user: User, db: AsyncSession) -> Memory:
    memory = await GraphStore(db).get_memory(memory_id, user.id)
    if memory is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Memory not found")
    return memory


def memory_to_response(memory: Memory) -> MemoryResponse:
    location: Location = memory_location(memory)
    return MemoryResponse(
        id=memory.id,
        captured_at=memory.captured_at,
        source=memory.source,
        media_type=memory.media_type,
        transcript=memory.transcript,
        ai_summary=memory.ai_summary,
        processing_status=memory.processing_status,
        location_name=location.name,
        latitude=location.lat,
        longitude=location.lng,
    )
