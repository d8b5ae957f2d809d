"""Memory endpoints: processing trigger and user confirmation of context"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_db, User
from app.api.deps import get_current_user, get_owned_memory, memory_to_response
from app.schemas import (
    ContextConfirmRequest, ContextResponse, TagConfirmRequest, TagResponse,
    PersonConfirmRequest, PersonResponse, MemoryReadyResponse, QueuedTaskResponse,
    MemoryResponse, MemoryContextView, AcceptSuggestionsRequest,
)
from app.services.clustering_service import Location
from app.services.graph_store import GraphStore
from app.services.task_queue import on_memory_ready

router = APIRouter(prefix="/memories", tags=["Memories"])


@router.get("/{memory_id}", response_model=MemoryResponse)
async def get_memory(
    memory_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    memory = await get_owned_memory(memory_id, current_user, db)
    return memory_to_response(memory)


@router.post("/{memory_id}/ready", response_model=MemoryReadyResponse, status_code=status.HTTP_202_ACCEPTED)
async def memory_ready(
    memory_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Signal that ingestion committed a completed memory; queues event formation and context inference"""
    await get_owned_memory(memory_id, current_user, db)
    tasks = await on_memory_ready(db, memory_id)
    return MemoryReadyResponse(
        memory_id=memory_id,
        tasks=[QueuedTaskResponse(id=t.id, kind=t.kind, status=t.status) for t in tasks],
    )


@router.put("/{memory_id}/context", response_model=ContextResponse)
async def confirm_context(
    memory_id: str,
    body: ContextConfirmRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Set place/note for a memory. Confirmed context is never overwritten by inference."""
    await get_owned_memory(memory_id, current_user, db)
    location = Location.from_raw(body.location_name, body.latitude, body.longitude)
    ctx = await GraphStore(db).confirm_context(memory_id, user_note=body.user_note, location=location)
    await db.commit()
    return ContextResponse.model_validate(ctx)


@router.post("/{memory_id}/tags", response_model=TagResponse)
async def confirm_tag(
    memory_id: str,
    body: TagConfirmRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await get_owned_memory(memory_id, current_user, db)
    tag = await GraphStore(db).confirm_tag(memory_id, body.tag)
    await db.commit()
    return TagResponse.model_validate(tag)


@router.post("/{memory_id}/people", response_model=PersonResponse)
async def confirm_person(
    memory_id: str,
    body: PersonConfirmRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await get_owned_memory(memory_id, current_user, db)
    person = await GraphStore(db).confirm_person(memory_id, body.name)
    await db.commit()
    return PersonResponse.model_validate(person)


async def context_view(db: AsyncSession, memory_id: str) -> MemoryContextView:
    ctx, tags, people = await GraphStore(db).get_context_view(memory_id)
    return MemoryContextView(
        context=ContextResponse.model_validate(ctx) if ctx is not None else None,
        tags=[TagResponse.model_validate(t) for t in tags],
        people=[PersonResponse.model_validate(p) for p in people],
    )


@router.get("/{memory_id}/context", response_model=MemoryContextView)
async def get_context(
    memory_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Place, note, tags and people of a memory, with inferred suggestions still unconfirmed"""
    await get_owned_memory(memory_id, current_user, db)
    return await context_view(db, memory_id)


@router.post("/{memory_id}/accept-suggestions", response_model=MemoryContextView)
async def accept_suggestions(
    memory_id: str,
    body: AcceptSuggestionsRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Confirm the inferred place and any listed people and tags in one call"""
    await get_owned_memory(memory_id, current_user, db)
    await GraphStore(db).accept_suggestions(memory_id, place=body.place, people=body.people, tags=body.tags)
    await db.commit()
    return await context_view(db, memory_id)
