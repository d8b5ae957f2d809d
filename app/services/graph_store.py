"""
Graph Store - owner-scoped access to memories, context, events and links

Every read used by event formation, inference and retrieval goes through this
class so that owner scoping lives in one place. The store never commits; the
calling service owns the transaction.
"""

import asyncio
import json
import logging
import weakref
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, func, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.db.database import is_postgres
from app.db.models import (
    Memory, MemoryContext, MemoryTag, MemoryPerson, Event, MemoryEventLink,
    MemoryEmbedding, EventEmbedding, RetrievalLog,
    ProcessingStatus, RelationshipType, TagOrigin,
)
from app.services.clustering_service import Location, MemorySnapshot

logger = logging.getLogger(__name__)

# Process-local owner locks for engines without advisory locks (SQLite).
# An entry lives only while some coroutine holds or awaits the lock.
_owner_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def memory_location(memory: Memory) -> Location:
    ctx = memory.context
    if ctx is None:
        return Location()
    return Location.from_raw(ctx.location_name, ctx.latitude, ctx.longitude)


def to_snapshot(memory: Memory) -> MemorySnapshot:
    return MemorySnapshot(
        id=memory.id,
        user_id=memory.user_id,
        captured_at=memory.captured_at,
        text=memory.transcript or "",
        location=memory_location(memory),
    )


class GraphStore:
    """Repository for the memory/event graph"""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ============ Locking ============

    @asynccontextmanager
    async def owner_lock(self, user_id: str) -> AsyncIterator[None]:
        """
        Serialize attach/create decisions for one owner.

        PostgreSQL: transaction-scoped advisory lock, released on commit/rollback.
        Other engines: per-process asyncio lock held for the block.
        """
        if is_postgres(self.db):
            await self.db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:owner))"),
                {"owner": user_id},
            )
            yield
            return

        lock = _owner_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            _owner_locks[user_id] = lock
        async with lock:
            yield

    # ============ Memories ============

    def _memory_query(self):
        return select(Memory).options(
            selectinload(Memory.context),
            selectinload(Memory.tags),
            selectinload(Memory.people),
        )

    async def get_memory(self, memory_id: str, user_id: Optional[str] = None) -> Optional[Memory]:
        """Load a memory with context, tags and people. Scoped to user_id when given."""
        query = self._memory_query().where(Memory.id == memory_id)
        if user_id is not None:
            query = query.where(Memory.user_id == user_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_memories(self, memory_ids: Sequence[str], user_id: str) -> List[Memory]:
        """Owner's memories by id, in the order given (unknown ids skipped)"""
        if not memory_ids:
            return []
        result = await self.db.execute(
            self._memory_query().where(Memory.id.in_(list(memory_ids)), Memory.user_id == user_id)
        )
        by_id = {m.id: m for m in result.scalars().all()}
        return [by_id[mid] for mid in memory_ids if mid in by_id]

    async def list_recent_with_context(self, user_id: str, limit: int) -> List[Memory]:
        """The owner's most recently captured completed memories, context attached"""
        result = await self.db.execute(
            self._memory_query()
            .where(
                Memory.user_id == user_id,
                Memory.processing_status == ProcessingStatus.COMPLETED.value,
            )
            .order_by(Memory.captured_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_recent_memory_ids(self, limit: int, user_id: Optional[str] = None) -> List[Tuple[str, str]]:
        """(memory_id, user_id) pairs of completed memories, newest first"""
        query = select(Memory.id, Memory.user_id).where(
            Memory.processing_status == ProcessingStatus.COMPLETED.value
        )
        if user_id is not None:
            query = query.where(Memory.user_id == user_id)
        result = await self.db.execute(query.order_by(Memory.captured_at.desc()).limit(limit))
        return [(row[0], row[1]) for row in result.all()]

    # ============ Embeddings ============

    def _apply_vector(self, row, vector: Sequence[float], model_version: str) -> None:
        row.embedding_json = json.dumps([float(x) for x in vector])
        row.model_version = model_version
        if is_postgres(self.db):
            row.embedding = list(vector)

    async def get_memory_embedding(self, memory_id: str) -> Optional[List[float]]:
        result = await self.db.execute(
            select(MemoryEmbedding.embedding_json).where(MemoryEmbedding.memory_id == memory_id)
        )
        raw = result.scalar_one_or_none()
        return json.loads(raw) if raw else None

    async def store_event_embedding(self, event_id: str, vector: Sequence[float], model_version: str) -> EventEmbedding:
        """Create or replace (in place) the event's vector"""
        result = await self.db.execute(select(EventEmbedding).where(EventEmbedding.event_id == event_id))
        row = result.scalar_one_or_none()
        if row is None:
            row = EventEmbedding(event_id=event_id)
            self.db.add(row)
        self._apply_vector(row, vector, model_version)
        row.created_at = datetime.utcnow()
        return row

    # ============ Events & links ============

    async def get_event(self, event_id: str, user_id: str) -> Optional[Event]:
        result = await self.db.execute(
            select(Event).where(Event.id == event_id, Event.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_events(self, event_ids: Sequence[str], user_id: str) -> List[Event]:
        """Owner's events by id, in the order given"""
        if not event_ids:
            return []
        result = await self.db.execute(
            select(Event).where(Event.id.in_(list(event_ids)), Event.user_id == user_id)
        )
        by_id = {e.id: e for e in result.scalars().all()}
        return [by_id[eid] for eid in event_ids if eid in by_id]

    async def list_recent_events(self, user_id: str, limit: int, offset: int = 0) -> List[Event]:
        result = await self.db.execute(
            select(Event)
            .where(Event.user_id == user_id)
            .order_by(Event.start_time.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def create_event(
        self,
        user_id: str,
        start_time: datetime,
        end_time: datetime,
        title: str,
        summary: Optional[str],
        location: Location,
        confidence: float,
    ) -> Event:
        now = datetime.utcnow()
        event = Event(
            user_id=user_id,
            start_time=start_time,
            end_time=end_time,
            title=title,
            summary=summary,
            location_name=location.name,
            location_lat=location.lat,
            location_lng=location.lng,
            confidence_score=confidence,
            created_at=now,
            updated_at=now,
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def find_events_for_memories(self, memory_ids: Sequence[str], user_id: str) -> List[Tuple[str, Event]]:
        """
        (memory_id, event) pairs for owner's events linked to any of memory_ids,
        ordered like memory_ids. A memory linked to several events yields its
        earliest link first.
        """
        if not memory_ids:
            return []
        result = await self.db.execute(
            select(MemoryEventLink.memory_id, Event)
            .join(Event, Event.id == MemoryEventLink.event_id)
            .where(
                MemoryEventLink.memory_id.in_(list(memory_ids)),
                Event.user_id == user_id,
            )
            .order_by(MemoryEventLink.created_at)
        )
        rows = result.all()
        position = {mid: i for i, mid in enumerate(memory_ids)}
        rows.sort(key=lambda row: position[row[0]])
        return [(row[0], row[1]) for row in rows]

    async def is_memory_linked(self, memory_id: str) -> bool:
        result = await self.db.execute(
            select(func.count(MemoryEventLink.id)).where(MemoryEventLink.memory_id == memory_id)
        )
        return (result.scalar() or 0) > 0

    async def count_event_links(self, event_id: str) -> int:
        result = await self.db.execute(
            select(func.count(MemoryEventLink.id)).where(MemoryEventLink.event_id == event_id)
        )
        return result.scalar() or 0

    async def link_memory(self, memory_id: str, event_id: str, relationship_type: RelationshipType) -> bool:
        """Link a memory to an event. Returns False when the link already exists."""
        result = await self.db.execute(
            select(MemoryEventLink.id).where(
                MemoryEventLink.memory_id == memory_id,
                MemoryEventLink.event_id == event_id,
            )
        )
        if result.scalar_one_or_none() is not None:
            return False

        self.db.add(MemoryEventLink(
            memory_id=memory_id,
            event_id=event_id,
            relationship_type=relationship_type.value,
        ))
        await self.db.flush()
        return True

    async def get_linked_memories(self, event_id: str, user_id: str) -> List[Tuple[Memory, str]]:
        """(memory, relationship_type) for every memory linked to the event, by capture time"""
        result = await self.db.execute(
            select(Memory, MemoryEventLink.relationship_type)
            .join(MemoryEventLink, MemoryEventLink.memory_id == Memory.id)
            .where(MemoryEventLink.event_id == event_id, Memory.user_id == user_id)
            .options(selectinload(Memory.context))
            .order_by(Memory.captured_at)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def get_linked_memories_for_events(
        self, event_ids: Sequence[str], user_id: str
    ) -> Dict[str, List[Tuple[Memory, str]]]:
        """Linked memories for several events in one query, keyed by event id"""
        grouped: Dict[str, List[Tuple[Memory, str]]] = {eid: [] for eid in event_ids}
        if not event_ids:
            return grouped
        result = await self.db.execute(
            select(MemoryEventLink.event_id, Memory, MemoryEventLink.relationship_type)
            .join(Memory, MemoryEventLink.memory_id == Memory.id)
            .where(MemoryEventLink.event_id.in_(list(event_ids)), Memory.user_id == user_id)
            .options(selectinload(Memory.context))
            .order_by(Memory.captured_at)
        )
        for event_id, memory, relationship_type in result.all():
            grouped[event_id].append((memory, relationship_type))
        return grouped

    # ============ Context, tags, people ============

    async def fill_context(self, memory_id: str, location: Location) -> bool:
        """
        Write inferred place data into empty slots only.

        A confirmed context is never touched. Returns True when anything changed.
        """
        result = await self.db.execute(select(MemoryContext).where(MemoryContext.memory_id == memory_id))
        ctx = result.scalar_one_or_none()
        if ctx is None:
            self.db.add(MemoryContext(
                memory_id=memory_id,
                location_name=location.name,
                latitude=location.lat,
                longitude=location.lng,
                confirmed=False,
            ))
            return True
        if ctx.confirmed:
            return False

        changed = False
        if not ctx.location_name and location.name:
            ctx.location_name = location.name
            changed = True
        if (ctx.latitude is None or ctx.longitude is None) and location.has_coordinates:
            ctx.latitude = location.lat
            ctx.longitude = location.lng
            changed = True
        return changed

    async def confirm_context(
        self,
        memory_id: str,
        user_note: Optional[str] = None,
        location: Optional[Location] = None,
    ) -> MemoryContext:
        """User-supplied context. Sets the given values and marks the row confirmed."""
        result = await self.db.execute(select(MemoryContext).where(MemoryContext.memory_id == memory_id))
        ctx = result.scalar_one_or_none()
        if ctx is None:
            ctx = MemoryContext(memory_id=memory_id)
            self.db.add(ctx)
        if user_note is not None:
            ctx.user_note = user_note
        if location is not None:
            if location.name is not None:
                ctx.location_name = location.name
            if location.has_coordinates:
                ctx.latitude = location.lat
                ctx.longitude = location.lng
        ctx.confirmed = True
        return ctx

    async def add_inferred_tag(self, memory_id: str, tag: str, confidence: float) -> bool:
        """Insert an AI tag unless the memory already has it (any origin)"""
        tag = tag.strip().lower()
        result = await self.db.execute(
            select(MemoryTag.id).where(MemoryTag.memory_id == memory_id, func.lower(MemoryTag.tag) == tag)
        )
        if result.first() is not None:
            return False
        self.db.add(MemoryTag(memory_id=memory_id, tag=tag, confidence=confidence, origin=TagOrigin.AI.value))
        return True

    async def add_inferred_person(self, memory_id: str, name: str, confidence: float) -> bool:
        """Insert an unconfirmed person unless the memory already has them"""
        name = name.strip()
        result = await self.db.execute(
            select(MemoryPerson.id).where(MemoryPerson.memory_id == memory_id, MemoryPerson.person_name == name)
        )
        if result.first() is not None:
            return False
        self.db.add(MemoryPerson(memory_id=memory_id, person_name=name, confidence=confidence, confirmed=False))
        return True

    async def confirm_tag(self, memory_id: str, tag: str) -> MemoryTag:
        """Promote a matching AI tag to a user tag, or add a new user tag"""
        tag = tag.strip().lower()
        result = await self.db.execute(
            select(MemoryTag).where(MemoryTag.memory_id == memory_id, func.lower(MemoryTag.tag) == tag)
        )
        row = result.scalars().first()
        if row is None:
            row = MemoryTag(memory_id=memory_id, tag=tag)
            self.db.add(row)
        row.origin = TagOrigin.USER.value
        row.confidence = None
        return row

    async def confirm_person(self, memory_id: str, name: str) -> MemoryPerson:
        name = name.strip()
        result = await self.db.execute(
            select(MemoryPerson).where(MemoryPerson.memory_id == memory_id, MemoryPerson.person_name == name)
        )
        row = result.scalars().first()
        if row is None:
            row = MemoryPerson(memory_id=memory_id, person_name=name)
            self.db.add(row)
        row.confirmed = True
        row.confidence = None
        return row

    async def get_context_view(
        self, memory_id: str
    ) -> Tuple[Optional[MemoryContext], List[MemoryTag], List[MemoryPerson]]:
        """Context row, tags and people of a memory, AI suggestions included"""
        ctx = (await self.db.execute(
            select(MemoryContext).where(MemoryContext.memory_id == memory_id)
        )).scalar_one_or_none()
        tags = (await self.db.execute(
            select(MemoryTag).where(MemoryTag.memory_id == memory_id).order_by(MemoryTag.created_at)
        )).scalars().all()
        people = (await self.db.execute(
            select(MemoryPerson).where(MemoryPerson.memory_id == memory_id).order_by(MemoryPerson.created_at)
        )).scalars().all()
        return ctx, list(tags), list(people)

    async def accept_suggestions(
        self,
        memory_id: str,
        place: bool = False,
        people: Sequence[str] = (),
        tags: Sequence[str] = (),
    ) -> int:
        """
        Confirm inferred suggestions in bulk. Only existing rows are touched;
        names or tags the memory does not have are ignored. Returns rows changed.
        """
        changed = 0
        if place:
            result = await self.db.execute(select(MemoryContext).where(MemoryContext.memory_id == memory_id))
            ctx = result.scalar_one_or_none()
            if ctx is not None and not ctx.confirmed:
                ctx.confirmed = True
                changed += 1

        names = {n.strip() for n in people if n and n.strip()}
        if names:
            result = await self.db.execute(
                select(MemoryPerson).where(MemoryPerson.memory_id == memory_id, MemoryPerson.person_name.in_(list(names)))
            )
            for row in result.scalars().all():
                if not row.confirmed:
                    row.confirmed = True
                    changed += 1

        wanted = {t.strip().lower() for t in tags if t and t.strip()}
        if wanted:
            result = await self.db.execute(
                select(MemoryTag).where(MemoryTag.memory_id == memory_id, func.lower(MemoryTag.tag).in_(list(wanted)))
            )
            for row in result.scalars().all():
                if row.origin != TagOrigin.USER.value:
                    row.origin = TagOrigin.USER.value
                    row.confidence = None
                    changed += 1

        logger.info(f"Accepted {changed} suggestions for memory {memory_id}")
        return changed

    # ============ Retrieval log ============

    async def log_retrieval(
        self,
        user_id: Optional[str],
        user_query: str,
        retrieved_ids: Sequence[str],
        metadata: Dict[str, Any],
    ) -> RetrievalLog:
        entry = RetrievalLog(
            user_id=user_id,
            user_query=user_query,
            retrieved_ids_json=json.dumps(list(retrieved_ids)),
            search_metadata_json=json.dumps(metadata, default=str),
        )
        self.db.add(entry)
        return entry
