"""
Memory search: vector candidates re-ranked by the hybrid scorer
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Memory
from app.services.clustering_service import haversine_meters
from app.services.embedding_service import EmbeddingService, get_embedding_service
from app.services.graph_store import GraphStore, memory_location
from app.services.hybrid_scorer import hybrid_score
from app.services.similarity_index import SimilarityIndex

logger = logging.getLogger(__name__)


@dataclass
class SearchFilters:
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius_km: Optional[float] = None
    limit: int = 10

    @property
    def has_radius(self) -> bool:
        return self.latitude is not None and self.longitude is not None and self.radius_km is not None


@dataclass
class MemorySearchResult:
    memory: Memory
    score: float
    breakdown: Dict[str, float] = field(default_factory=dict)


class RetrievalService:
    """Hybrid memory retrieval for one owner"""

    CANDIDATE_MULTIPLIER = 8
    MAX_CANDIDATES = 100

    def __init__(self, db: AsyncSession, embeddings: Optional[EmbeddingService] = None):
        self.db = db
        self.store = GraphStore(db)
        self.index = SimilarityIndex(db)
        self.embeddings = embeddings or get_embedding_service()

    async def search_memories(
        self,
        query: str,
        user_id: str,
        filters: Optional[SearchFilters] = None,
        now: Optional[datetime] = None,
    ) -> List[MemorySearchResult]:
        filters = filters or SearchFilters()
        started = time.monotonic()
        candidate_limit = min(filters.limit * self.CANDIDATE_MULTIPLIER, self.MAX_CANDIDATES)

        vector = await self.embeddings.embed(query)
        similar = await self.index.nearest_memories(vector, candidate_limit, user_id)
        memories = await self.store.get_memories([mid for mid, _ in similar], user_id)
        by_id = {m.id: m for m in memories}

        scored: List[MemorySearchResult] = []
        for memory_id, distance in similar:
            memory = by_id.get(memory_id)
            if memory is None:
                continue
            if filters.start and memory.captured_at < filters.start:
                continue
            if filters.end and memory.captured_at > filters.end:
                continue

            location = memory_location(memory)
            if filters.has_radius:
                if not location.has_coordinates:
                    continue
                distance_m = haversine_meters(filters.latitude, filters.longitude, location.lat, location.lng)
                if distance_m > filters.radius_km * 1000:
                    continue

            result = hybrid_score(
                captured_at=memory.captured_at,
                embedding_similarity=max(0.0, 1.0 - distance),
                has_place=not location.is_empty,
                has_people=bool(memory.people),
                has_tags=bool(memory.tags),
                reference_time=now,
            )
            scored.append(MemorySearchResult(memory=memory, score=result.score, breakdown=result.breakdown))

        scored.sort(key=lambda r: r.score, reverse=True)
        results = scored[: filters.limit]

        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"Memory search returned {len(results)} results in {elapsed_ms}ms")
        await self._log(user_id, query, results, filters, elapsed_ms)
        return results

    async def _log(self, user_id, query, results, filters, elapsed_ms) -> None:
        try:
            await self.store.log_retrieval(
                user_id,
                query,
                [r.memory.id for r in results],
                {
                    "kind": "memory_search",
                    "k": filters.limit,
                    "scores": [round(r.score, 4) for r in results],
                    "filters": filters.__dict__,
                    "latency_ms": elapsed_ms,
                },
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.warning(f"Failed to write retrieval log: {e}")


def get_retrieval_service(db: AsyncSession) -> RetrievalService:
    return RetrievalService(db)
