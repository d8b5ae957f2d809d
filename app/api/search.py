"""Hybrid memory search"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db, User
from app.api.deps import get_current_user, memory_to_response
from app.schemas import MemorySearchRequest, MemorySearchResponse, MemoryWithScore
from app.services.retrieval_service import SearchFilters, get_retrieval_service

router = APIRouter(prefix="/search", tags=["Search"])


@router.post("", response_model=MemorySearchResponse)
async def search_memories(
    body: MemorySearchRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    filters = SearchFilters(
        start=body.start_date,
        end=body.end_date,
        latitude=body.latitude,
        longitude=body.longitude,
        radius_km=body.radius_km,
        limit=body.limit,
    )
    results = await get_retrieval_service(db).search_memories(body.query, current_user.id, filters)
    return MemorySearchResponse(
        query=body.query,
        results=[
            MemoryWithScore(memory=memory_to_response(r.memory), score=r.score, breakdown=r.breakdown)
            for r in results
        ],
        total=len(results),
    )
