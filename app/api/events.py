"""Event listing, detail and event-first search"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db, User
from app.api.deps import get_current_user, memory_to_response
from app.schemas import (
    EventResponse, EventListResponse, EventWithMemoriesResponse,
    EventSearchRequest, EventSearchResponse, TemporalIntentResponse,
)
from app.services.event_retrieval_service import (
    EventSearchFilters, RankedEvent, assign_linked_memories, get_event_retrieval_service,
)
from app.services.graph_store import GraphStore

router = APIRouter(prefix="/events", tags=["Events"])


def ranked_to_response(ranked: RankedEvent) -> EventWithMemoriesResponse:
    return EventWithMemoriesResponse(
        event=EventResponse.model_validate(ranked.event),
        relevance=ranked.relevance,
        primary_memory=memory_to_response(ranked.primary_memory) if ranked.primary_memory else None,
        supporting_memories=[memory_to_response(m) for m in ranked.supporting_memories],
        context_memories=[memory_to_response(m) for m in ranked.context_memories],
    )


@router.get("", response_model=EventListResponse)
async def list_events(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    events = await GraphStore(db).list_recent_events(current_user.id, limit, offset)
    return EventListResponse(
        events=[EventResponse.model_validate(e) for e in events],
        total=len(events),
    )


@router.post("/search", response_model=EventSearchResponse)
async def search_events(
    body: EventSearchRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    filters = EventSearchFilters(
        start_after=body.start_after,
        start_before=body.start_before,
        latitude=body.latitude,
        longitude=body.longitude,
        radius_km=body.radius_km,
        min_confidence=body.min_confidence,
    )
    result = await get_event_retrieval_service(db).search_events(
        body.query, current_user.id, limit=body.limit, filters=filters
    )
    intent = result.intent
    return EventSearchResponse(
        query=result.query,
        intent=TemporalIntentResponse(
            type=intent.type.value,
            sort_order=intent.sort_order.value,
            reference_date=intent.reference_date,
            start=intent.start,
            end=intent.end,
            phrase=intent.phrase,
        ),
        events=[ranked_to_response(r) for r in result.events],
        total=len(result.events),
        processing_time_ms=result.processing_time_ms,
    )


@router.get("/{event_id}", response_model=EventWithMemoriesResponse)
async def get_event(
    event_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    store = GraphStore(db)
    event = await store.get_event(event_id, current_user.id)
    if event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Event not found")

    ranked = RankedEvent(event=event)
    assign_linked_memories(ranked, await store.get_linked_memories(event.id, current_user.id))
    return ranked_to_response(ranked)
