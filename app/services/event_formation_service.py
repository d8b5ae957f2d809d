"""
Event Formation Orchestrator

Runs once per newly completed memory:
1. Build the owner's bounded candidate pool
2. Find temporally/spatially nearby memories
3. Attach to an event already holding one of them, or create a new event
4. Synthesize title/summary and store the event embedding

All writes of one attempt are committed together; any failure rolls back.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.models import Event, Memory, ProcessingStatus, RelationshipType
from app.services.clustering_service import (
    ClusteringService, MemorySnapshot, get_clustering_service,
)
from app.services.embedding_service import EmbeddingService, get_embedding_service
from app.services.graph_store import GraphStore, to_snapshot
from app.services.synthesis_service import SynthesisService, get_synthesis_service

logger = logging.getLogger(__name__)


@dataclass
class FormationResult:
    event: Event
    is_new_event: bool
    linked_memory_ids: List[str] = field(default_factory=list)
    updated: bool = False  # True when an existing event was re-synthesized


def event_embedding_text(title: str, summary: Optional[str]) -> str:
    return f"{title}\n\n{summary or ''}"


class EventFormationService:
    """Groups new memories into events"""

    def __init__(
        self,
        db: AsyncSession,
        clustering: Optional[ClusteringService] = None,
        synthesis: Optional[SynthesisService] = None,
        embeddings: Optional[EmbeddingService] = None,
    ):
        self.db = db
        self.store = GraphStore(db)
        self.clustering = clustering or get_clustering_service()
        self.synthesis = synthesis or get_synthesis_service()
        self.embeddings = embeddings or get_embedding_service()

    async def process_memory(self, memory_id: str) -> Optional[FormationResult]:
        """
        Form or extend an event for a completed memory.

        Returns None when the memory is missing, not completed, already linked,
        or the target event vanished mid-update. Embedding failures propagate
        after rollback so the caller can retry.
        """
        memory = await self.store.get_memory(memory_id)
        if memory is None:
            logger.warning(f"Event formation skipped: memory {memory_id} not found")
            return None
        if memory.processing_status != ProcessingStatus.COMPLETED.value:
            logger.warning(
                f"Event formation skipped: memory {memory_id} is {memory.processing_status}"
            )
            return None

        # Commit or roll back while still holding the lock so the next
        # formation for this owner sees the finished writes
        async with self.store.owner_lock(memory.user_id):
            try:
                result = await self._form(memory)
                if result is None:
                    await self.db.rollback()
                else:
                    await self.db.commit()
                return result
            except Exception:
                await self.db.rollback()
                logger.exception(f"Event formation failed for memory {memory_id}")
                raise

    async def _form(self, memory: Memory) -> Optional[FormationResult]:
        if await self.store.is_memory_linked(memory.id):
            logger.info(f"Memory {memory.id} already linked to an event, nothing to do")
            return None

        target = to_snapshot(memory)
        pool = await self.store.list_recent_with_context(
            memory.user_id, settings.cluster_candidate_pool_size
        )
        candidates = [to_snapshot(m) for m in pool]
        nearby = self.clustering.find_nearby(target, candidates)
        cluster = [target] + nearby
        analysis = self.clustering.analyze_cluster(cluster)

        existing = await self.store.find_events_for_memories([m.id for m in nearby], memory.user_id)
        if existing:
            _, event = existing[0]
            return await self._attach(memory, target, event, analysis.confidence)

        return await self._create(memory, cluster, analysis.confidence)

    async def _create(
        self,
        memory: Memory,
        cluster: Sequence[MemorySnapshot],
        cluster_confidence: float,
    ) -> FormationResult:
        synthesis = await self.synthesis.synthesize(cluster)
        times = [m.captured_at for m in cluster]
        location = self.clustering.extract_location(cluster)

        event = await self.store.create_event(
            user_id=memory.user_id,
            start_time=min(times),
            end_time=max(times),
            title=synthesis.title,
            summary=synthesis.summary,
            location=location,
            confidence=max(cluster_confidence, synthesis.confidence),
        )

        linked = []
        for snapshot in cluster:
            relationship = RelationshipType.PRIMARY if snapshot.id == memory.id else RelationshipType.SUPPORTING
            if await self.store.link_memory(snapshot.id, event.id, relationship):
                linked.append(snapshot.id)

        vector = await self.embeddings.embed(event_embedding_text(event.title, event.summary))
        await self.store.store_event_embedding(event.id, vector, self.embeddings.model_version)

        logger.info(
            f"Created event {event.id} '{event.title}' from {len(cluster)} memories "
            f"(confidence={event.confidence_score:.2f})"
        )
        return FormationResult(event=event, is_new_event=True, linked_memory_ids=linked)

    async def _attach(
        self,
        memory: Memory,
        target: MemorySnapshot,
        event: Event,
        cluster_confidence: float,
    ) -> Optional[FormationResult]:
        existing_count = await self.store.count_event_links(event.id)
        if not await self.store.link_memory(memory.id, event.id, RelationshipType.SUPPORTING):
            return FormationResult(event=event, is_new_event=False)

        logger.info(f"Attached memory {memory.id} to event {event.id}")
        result = FormationResult(event=event, is_new_event=False, linked_memory_ids=[memory.id])

        if not self.synthesis.should_update(existing_count, 1, event.updated_at):
            return result

        linked = await self.store.get_linked_memories(event.id, memory.user_id)
        if not linked:
            logger.warning(f"Event {event.id} has no readable memories, aborting update")
            return None

        members = [to_snapshot(m) for m, _ in linked]
        if target.id not in {m.id for m in members}:
            members.append(target)

        synthesis = await self.synthesis.synthesize(
            members,
            existing_title=event.title,
            existing_summary=event.summary,
        )

        event = await self.store.get_event(event.id, memory.user_id)
        if event is None:
            logger.warning(f"Event vanished while updating for memory {memory.id}")
            return None

        times = [m.captured_at for m in members]
        event.start_time = min(times)
        event.end_time = max(times)
        location = self.clustering.extract_location(members)
        if location.has_coordinates:
            event.location_name = location.name
            event.location_lat = location.lat
            event.location_lng = location.lng
        event.title = synthesis.title
        event.summary = synthesis.summary
        event.confidence_score = max(cluster_confidence, synthesis.confidence)
        event.updated_at = datetime.utcnow()

        vector = await self.embeddings.embed(event_embedding_text(event.title, event.summary))
        await self.store.store_event_embedding(event.id, vector, self.embeddings.model_version)

        logger.info(f"Re-synthesized event {event.id} '{event.title}' over {len(members)} memories")
        result.event = event
        result.updated = True
        return result


def get_event_formation_service(db: AsyncSession) -> EventFormationService:
    return EventFormationService(db)
