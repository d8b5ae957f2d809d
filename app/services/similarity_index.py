"""
Similarity Index - owner-scoped nearest-neighbour search over stored vectors

Uses pgvector's cosine distance operator on PostgreSQL and a numpy brute-force
scan of the JSON vectors elsewhere (SQLite). Both paths return cosine distance
in [0, 2], smallest first.
"""

import json
import logging
from typing import List, Sequence, Tuple

import numpy as np
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import is_postgres
from app.db.models import Memory, MemoryEmbedding, Event, EventEmbedding

logger = logging.getLogger(__name__)


def cosine_distances(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine distance from query to each row of matrix"""
    q = np.asarray(query, dtype=float)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    with np.errstate(divide="ignore", invalid="ignore"):
        similarities = np.where(norms > 0, matrix @ q / norms, 0.0)
    return 1.0 - np.clip(similarities, -1.0, 1.0)


class SimilarityIndex:
    """Nearest memories and events for a query vector, restricted to one owner"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def nearest_memories(
        self, vector: Sequence[float], k: int, user_id: str
    ) -> List[Tuple[str, float]]:
        return await self._nearest(MemoryEmbedding, MemoryEmbedding.memory_id, Memory, vector, k, user_id)

    async def nearest_events(
        self, vector: Sequence[float], k: int, user_id: str
    ) -> List[Tuple[str, float]]:
        return await self._nearest(EventEmbedding, EventEmbedding.event_id, Event, vector, k, user_id)

    async def _nearest(self, embedding_model, parent_fk, parent_model, vector, k, user_id):
        if k <= 0:
            return []

        if is_postgres(self.db):
            distance = embedding_model.embedding.cosine_distance(list(vector)).label("distance")
            result = await self.db.execute(
                select(parent_fk, distance)
                .join(parent_model, parent_model.id == parent_fk)
                .where(
                    parent_model.user_id == user_id,
                    embedding_model.embedding.isnot(None),
                )
                .order_by(distance)
                .limit(k)
            )
            return [(row[0], float(row[1])) for row in result.all()]

        # Python-side fallback for databases without pgvector
        result = await self.db.execute(
            select(parent_fk, embedding_model.embedding_json)
            .join(parent_model, parent_model.id == parent_fk)
            .where(
                parent_model.user_id == user_id,
                embedding_model.embedding_json.isnot(None),
            )
        )
        rows = result.all()
        if not rows:
            return []

        ids, vectors = [], []
        for item_id, raw in rows:
            parsed = json.loads(raw)
            if len(parsed) != len(vector):
                logger.warning(f"Skipping vector for {item_id}: dimension {len(parsed)} != {len(vector)}")
                continue
            ids.append(item_id)
            vectors.append(parsed)
        if not ids:
            return []

        distances = cosine_distances(vector, np.asarray(vectors, dtype=float))
        order = np.argsort(distances, kind="stable")[:k]
        return [(ids[i], float(distances[i])) for i in order]
