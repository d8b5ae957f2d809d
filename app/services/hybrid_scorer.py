"""
Hybrid Scorer - fixed-weight fusion of retrieval signals for a memory

score = 0.45 * embedding + 0.20 * temporal + 0.20 * place + 0.10 * people + 0.05 * tags

Every signal is in [0, 1], so the score is too.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

WEIGHT_EMBEDDING = 0.45
WEIGHT_TEMPORAL = 0.20
WEIGHT_PLACE = 0.20
WEIGHT_PEOPLE = 0.10
WEIGHT_TAGS = 0.05


@dataclass
class HybridScore:
    score: float
    breakdown: Dict[str, float] = field(default_factory=dict)


def temporal_signal(captured_at: datetime, reference_time: datetime) -> float:
    """1.0 within a day, 0.7 within a week, 0.3 within a month, else 0"""
    days = abs((reference_time - captured_at).total_seconds()) / 86400
    if days <= 1:
        return 1.0
    if days <= 7:
        return 0.7
    if days <= 30:
        return 0.3
    return 0.0


def hybrid_score(
    captured_at: datetime,
    embedding_similarity: float,
    has_place: bool = False,
    has_people: bool = False,
    has_tags: bool = False,
    reference_time: Optional[datetime] = None,
) -> HybridScore:
    reference_time = reference_time or datetime.utcnow()
    embedding = max(0.0, min(1.0, embedding_similarity))

    breakdown = {
        "embedding": WEIGHT_EMBEDDING * embedding,
        "temporal": WEIGHT_TEMPORAL * temporal_signal(captured_at, reference_time),
        "place": WEIGHT_PLACE * (1.0 if has_place else 0.0),
        "people": WEIGHT_PEOPLE * (1.0 if has_people else 0.0),
        "tags": WEIGHT_TAGS * (1.0 if has_tags else 0.0),
    }
    return HybridScore(score=sum(breakdown.values()), breakdown=breakdown)
