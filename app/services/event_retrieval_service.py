"""
Event Retrieval Ranker - event-first semantic search with temporal reasoning

Candidates come from the event vector index; the temporal intent of the query
narrows the time range, boosts relevance and decides the final ordering.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Event, Memory, RelationshipType
from app.services.clustering_service import haversine_meters
from app.services.embedding_service import EmbeddingService, get_embedding_service
from app.services.graph_store import GraphStore
from app.services.similarity_index import SimilarityIndex
from app.services.temporal_parser import (
    TemporalIntent, TemporalParser, TemporalType, temporal_parser,
)

logger = logging.getLogger(__name__)

DAY_SECONDS = 86400


@dataclass
class EventSearchFilters:
    start_after: Optional[datetime] = None
    start_before: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius_km: Optional[float] = None
    min_confidence: Optional[float] = None


@dataclass
class RankedEvent:
    event: Event
    relevance: Optional[float] = None
    primary_memory: Optional[Memory] = None
    supporting_memories: List[Memory] = field(default_factory=list)
    context_memories: List[Memory] = field(default_factory=list)


@dataclass
class EventSearchResult:
    events: List[RankedEvent]
    query: str
    intent: TemporalIntent
    processing_time_ms: int = 0


def merge_intent_range(filters: EventSearchFilters, intent: TemporalIntent) -> EventSearchFilters:
    """Intersect the caller's start-time range with the intent's own range"""
    start_after = filters.start_after
    if intent.start is not None:
        start_after = intent.start if start_after is None else max(start_after, intent.start)
    start_before = filters.start_before
    if intent.end is not None:
        start_before = intent.end if start_before is None else min(start_before, intent.end)
    return EventSearchFilters(
        start_after=start_after,
        start_before=start_before,
        latitude=filters.latitude,
        longitude=filters.longitude,
        radius_km=filters.radius_km,
        min_confidence=filters.min_confidence,
    )


def matches_filters(event: Event, filters: EventSearchFilters) -> bool:
    if filters.start_after is not None and event.start_time < filters.start_after:
        return False
    if filters.start_before is not None and event.start_time > filters.start_before:
        return False
    if filters.min_confidence is not None and event.confidence_score < filters.min_confidence:
        return False

    if filters.latitude is not None and filters.longitude is not None and filters.radius_km is not None:
        if event.location_lat is None or event.location_lng is None:
            return False
        distance = haversine_meters(filters.latitude, filters.longitude, event.location_lat, event.location_lng)
        if distance > filters.radius_km * 1000:
            return False

    return True


def apply_temporal_boost(
    event: Event,
    intent: TemporalIntent,
    relevance: float,
    now: Optional[datetime] = None,
) -> float:
    """Nudge relevance toward the kind of answer the query asks for. Result capped at 1."""
    now = now or datetime.utcnow()
    days_since = (now - event.start_time).total_seconds() / DAY_SECONDS

    if intent.type == TemporalType.FIRST:
        # Older events first
        relevance += min(0.2, days_since / 365 * 0.2)
    elif intent.type == TemporalType.LAST:
        relevance += max(0.0, 0.2 - days_since / 30 * 0.2)
    elif intent.type == TemporalType.AROUND and intent.reference_date is not None:
        days_diff = abs((event.start_time - intent.reference_date).total_seconds()) / DAY_SECONDS
        relevance += max(0.0, 0.3 - days_diff / 7 * 0.3)

    return min(1.0, relevance)


def assign_linked_memories(result: RankedEvent, linked: Sequence[Tuple[Memory, str]]) -> None:
    """Split linked memories by relationship onto the result"""
    for memory, relationship in linked:
        if relationship == RelationshipType.PRIMARY.value and result.primary_memory is None:
            result.primary_memory = memory
        elif relationship == RelationshipType.CONTEXT.value:
            result.context_memories.append(memory)
        else:
            result.supporting_memories.append(memory)


def sort_by_intent(results: List[RankedEvent], intent: TemporalIntent) -> List[RankedEvent]:
    if intent.type == TemporalType.FIRST:
        return sorted(results, key=lambda r: r.event.start_time)
    if intent.type in (TemporalType.LAST, TemporalType.RECENT):
        return sorted(results, key=lambda r: r.event.start_time, reverse=True)
    return sorted(results, key=lambda r: r.relevance, reverse=True)


class EventRetrievalService:
    """Searches a user's events by meaning and time"""

    CANDIDATE_MULTIPLIER = 3

    def __init__(
        self,
        db: AsyncSession,
        embeddings: Optional[EmbeddingService] = None,
        parser: Optional[TemporalParser] = None,
    ):
        self.db = db
        self.store = GraphStore(db)
        self.index = SimilarityIndex(db)
        self.embeddings = embeddings or get_embedding_service()
        self.parser = parser or temporal_parser

    async def search_events(
        self,
        query: str,
        user_id: str,
        limit: int = 10,
        filters: Optional[EventSearchFilters] = None,
        now: Optional[datetime] = None,
    ) -> EventSearchResult:
        started = time.monotonic()
        now = now or datetime.utcnow()

        intent = self.parser.parse(query, now=now)
        effective = merge_intent_range(filters or EventSearchFilters(), intent)
        logger.info(f"Event search: intent={intent.type.value} sort={intent.sort_order.value}")

        vector = await self.embeddings.embed(query)
        similar = await self.index.nearest_events(vector, limit * self.CANDIDATE_MULTIPLIER, user_id)
        events = await self.store.get_events([eid for eid, _ in similar], user_id)
        by_id = {e.id: e for e in events}

        candidates = []
        for event_id, distance in similar:
            event = by_id.get(event_id)
            if event is None or not matches_filters(event, effective):
                continue
            relevance = max(0.0, min(1.0, 1.0 - distance / 2))
            relevance = apply_temporal_boost(event, intent, relevance, now)
            candidates.append(RankedEvent(event=event, relevance=relevance))

        ranked = sort_by_intent(candidates, intent)[:limit]
        await self._attach_memories(ranked, user_id)

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"Event search returned {len(ranked)} events in {elapsed_ms}ms")
        await self._log(user_id, query, ranked, intent, effective, limit, elapsed_ms)
        return EventSearchResult(events=ranked, query=query, intent=intent, processing_time_ms=elapsed_ms)

    async def _attach_memories(self, ranked: List[RankedEvent], user_id: str) -> None:
        linked = await self.store.get_linked_memories_for_events([r.event.id for r in ranked], user_id)
        for result in ranked:
            assign_linked_memories(result, linked.get(result.event.id, []))

    async def _log(self, user_id, query, ranked, intent, filters, limit, elapsed_ms) -> None:
        try:
            await self.store.log_retrieval(
                user_id,
                query,
                [r.event.id for r in ranked],
                {
                    "kind": "event_search",
                    "k": limit,
                    "scores": [round(r.relevance, 4) for r in ranked],
                    "temporal_intent": intent.type.value,
                    "filters": filters.__dict__,
                    "latency_ms": elapsed_ms,
                },
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.warning(f"Failed to write retrieval log: {e}")


def get_event_retrieval_service(db: AsyncSession) -> EventRetrievalService:
    return EventRetrievalService(db)
