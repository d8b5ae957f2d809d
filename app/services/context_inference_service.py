"""
Context Inference Engine

After a memory is embedded, look at the owner's most similar memories and
suggest a place, people and tags for it. Suggestions are stored as
unconfirmed / AI-origin rows and never overwrite anything the user confirmed.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.models import Memory
from app.services.clustering_service import Location, most_common_name
from app.services.graph_store import GraphStore, memory_location
from app.services.similarity_index import SimilarityIndex

logger = logging.getLogger(__name__)


@dataclass
class InferredContext:
    place: Optional[Location] = None
    people: List[Tuple[str, float]] = field(default_factory=list)
    tags: List[Tuple[str, float]] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.place is None and not self.people and not self.tags


class ContextInferenceService:
    """Infers place/people/tags for a memory from its nearest neighbours"""

    MIN_OCCURRENCES_FOR_PERSON = 2
    MIN_OCCURRENCES_FOR_TAG = 2
    MAX_INFERRED_PEOPLE = 5
    MAX_INFERRED_TAGS = 10

    def __init__(self, db: AsyncSession, neighbor_limit: Optional[int] = None):
        self.db = db
        self.store = GraphStore(db)
        self.index = SimilarityIndex(db)
        self.neighbor_limit = neighbor_limit or settings.context_neighbor_limit

    def occurrence_confidence(self, count: int) -> float:
        return min(0.99, 0.5 + count / (self.neighbor_limit + 1) * 0.5)

    async def infer_and_store_context(self, memory_id: str, user_id: str) -> Optional[InferredContext]:
        """Infer and persist suggestions. Returns what was inferred, or None when skipped."""
        vector = await self.store.get_memory_embedding(memory_id)
        if vector is None:
            logger.debug(f"No embedding for memory {memory_id}, skipping context inference")
            return None

        similar = await self.index.nearest_memories(vector, self.neighbor_limit + 1, user_id)
        neighbor_ids = [mid for mid, _ in similar if mid != memory_id][: self.neighbor_limit]
        if not neighbor_ids:
            logger.debug(f"No similar memories for context inference on {memory_id}")
            return None

        neighbors = await self.store.get_memories(neighbor_ids, user_id)
        inferred = self.infer(neighbors)
        if inferred.is_empty:
            return inferred

        if inferred.place is not None:
            await self.store.fill_context(memory_id, inferred.place)
        for name, confidence in inferred.people:
            await self.store.add_inferred_person(memory_id, name, confidence)
        for tag, confidence in inferred.tags:
            await self.store.add_inferred_tag(memory_id, tag, confidence)
        await self.db.commit()

        logger.info(
            f"Context inferred for {memory_id}: place={inferred.place.name if inferred.place else None}, "
            f"{len(inferred.people)} people, {len(inferred.tags)} tags"
        )
        return inferred

    def infer(self, neighbors: Iterable[Memory]) -> InferredContext:
        neighbors = list(neighbors)
        return InferredContext(
            place=self.infer_place([memory_location(m) for m in neighbors]),
            people=self._frequent(
                ([p.person_name.strip() for p in m.people if p.person_name and p.person_name.strip()] for m in neighbors),
                self.MIN_OCCURRENCES_FOR_PERSON,
                self.MAX_INFERRED_PEOPLE,
            ),
            tags=self._frequent(
                ([t.tag.strip().lower() for t in m.tags if t.tag and t.tag.strip()] for m in neighbors),
                self.MIN_OCCURRENCES_FOR_TAG,
                self.MAX_INFERRED_TAGS,
            ),
        )

    def infer_place(self, locations: Iterable[Location]) -> Optional[Location]:
        """Most common name plus centroid of located neighbours; None when nothing to go on"""
        places = [loc for loc in locations if not loc.is_empty]
        if not places:
            return None

        name = most_common_name(loc.name for loc in places)
        located = [loc for loc in places if loc.has_coordinates]
        if located:
            lat = sum(loc.lat for loc in located) / len(located)
            lng = sum(loc.lng for loc in located) / len(located)
            return Location(name=name, lat=lat, lng=lng)
        if name:
            return Location(name=name)
        return None

    def _frequent(
        self,
        per_memory: Iterable[List[str]],
        min_count: int,
        max_items: int,
    ) -> List[Tuple[str, float]]:
        counts: Dict[str, int] = Counter()
        for values in per_memory:
            counts.update(values)
        frequent = [(value, n) for value, n in counts.most_common() if n >= min_count][:max_items]
        return [(value, self.occurrence_confidence(n)) for value, n in frequent]


def get_context_inference_service(db: AsyncSession) -> ContextInferenceService:
    return ContextInferenceService(db)
