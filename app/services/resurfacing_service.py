"""
Resurfacing Selector - picks one past event per day worth showing again

Scoring favours anniversaries, events old enough to reflect on, confident and
richly described events, known places, emotionally loaded wording and longer
experiences. When the top candidates all happened within one day of each
other, one of them is picked at random so the same cluster of events does not
keep winning.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.db.models import Event
from app.services.graph_store import GraphStore

logger = logging.getLogger(__name__)

EMOTIONAL_KEYWORDS = (
    "happy", "amazing", "wonderful", "love", "beautiful", "excited",
    "grateful", "special", "milestone", "first", "last", "birthday",
    "celebration", "wedding", "graduation", "party", "anniversary",
    "trip", "vacation", "visit", "meeting",
)

DAILY_QUERY = "DAILY_RESURFACING"


@dataclass
class ResurfacingResult:
    event: Event
    reason: str
    score: int
    notification_text: str


@dataclass
class ScoredEvent:
    event: Event
    score: int
    reasons: List[str]

    @property
    def reason(self) -> str:
        return ", ".join(self.reasons) or "Worth revisiting"


def days_since(event: Event, now: datetime) -> int:
    return (now - event.start_time) // timedelta(days=1)


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}{'s' if n > 1 else ''}"


def score_event(event: Event, now: datetime) -> Tuple[int, List[str]]:
    """Integer score and the human-readable reasons behind it"""
    days = days_since(event, now)
    score = 0
    reasons: List[str] = []

    # Anniversaries
    if days >= 365 and days % 365 == 0:
        score += 120
        reasons.append(f"{days // 365} year anniversary")
    elif days >= 365 and min(days % 365, 365 - days % 365) <= 3:
        score += 100
        years = round(days / 365)
        reasons.append(f"Nearly {_plural(years, 'year')} ago")
    elif days >= 30 and days % 30 == 0:
        score += 50
        reasons.append(f"{days // 30} months ago")
    elif days >= 14 and days % 7 == 0:
        score += 25
        reasons.append(f"{days // 7} weeks ago")

    # Age
    if 14 <= days <= 180:
        score += 40
        reasons.append("Perfect age for reflection")
    elif 180 < days <= 365:
        score += 30
    elif days > 365:
        score += 20

    confidence = event.confidence_score or 0.0
    score += round(confidence * 30)
    if confidence >= 0.8:
        reasons.append("High-quality event")

    summary_length = len(event.summary or "")
    if summary_length > 150:
        score += 20
        reasons.append("Rich experience")
    elif summary_length > 50:
        score += 10

    if event.location_name:
        score += 15
        reasons.append(f"From {event.location_name}")

    text = f"{event.title} {event.summary or ''}".lower()
    emotional = sum(1 for keyword in EMOTIONAL_KEYWORDS if keyword in text)
    if emotional:
        score += emotional * 8
        reasons.append("Emotionally significant")

    if event.end_time and event.end_time - event.start_time >= timedelta(hours=2):
        score += 10
        reasons.append("Extended experience")

    return score, reasons


def time_phrase(event: Event, now: datetime) -> str:
    days = days_since(event, now)
    if days >= 365 and days % 365 == 0:
        return f"{_plural(days // 365, 'year')} ago today"
    if days >= 365:
        return f"{_plural(days // 365, 'year')} ago"
    if days >= 30:
        return f"{_plural(days // 30, 'month')} ago"
    if days >= 7:
        return f"{_plural(days // 7, 'week')} ago"
    return f"{_plural(days, 'day')} ago"


def notification_text(event: Event, now: datetime) -> str:
    text = f"{time_phrase(event, now)}: {event.title}"
    if event.summary:
        snippet = event.summary if len(event.summary) <= 80 else event.summary[:77] + "..."
        text += f"\n\n{snippet}"
    return text


class ResurfacingService:
    """Daily event selection for notifications"""

    DIVERSITY_POOL = 3
    DIVERSITY_SPAN = timedelta(hours=24)

    def __init__(self, db: AsyncSession, rng: Optional[random.Random] = None):
        self.db = db
        self.store = GraphStore(db)
        self.rng = rng or random.Random()

    def rank(self, events: List[Event], now: datetime) -> List[ScoredEvent]:
        scored = []
        for event in events:
            score, reasons = score_event(event, now)
            scored.append(ScoredEvent(event=event, score=score, reasons=reasons))
        scored.sort(key=lambda s: s.score, reverse=True)
        return scored

    def choose(self, ranked: List[ScoredEvent]) -> ScoredEvent:
        top = ranked[: self.DIVERSITY_POOL]
        if len(top) >= 2:
            starts = [s.event.start_time for s in top]
            if max(starts) - min(starts) < self.DIVERSITY_SPAN:
                return self.rng.choice(top)
        return ranked[0]

    async def select_resurfacing_event(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Optional[ResurfacingResult]:
        now = now or datetime.utcnow()
        cutoff = now - timedelta(days=settings.resurfacing_min_age_days)

        events = await self.store.list_recent_events(user_id, settings.resurfacing_pool_size)
        eligible = [e for e in events if e.start_time < cutoff]
        if not eligible:
            logger.info(f"No eligible events for resurfacing (user {user_id})")
            return None

        selected = self.choose(self.rank(eligible, now))
        result = ResurfacingResult(
            event=selected.event,
            reason=selected.reason,
            score=selected.score,
            notification_text=notification_text(selected.event, now),
        )
        logger.info(
            f"Event selected for resurfacing: {selected.event.id} '{selected.event.title}' "
            f"(score={selected.score}, reason={result.reason})"
        )
        return result

    async def get_daily_event(self, user_id: str, now: Optional[datetime] = None) -> Optional[ResurfacingResult]:
        """Select today's event and record the selection in the retrieval log"""
        result = await self.select_resurfacing_event(user_id, now=now)
        if result is None:
            return None

        try:
            await self.store.log_retrieval(
                user_id,
                DAILY_QUERY,
                [result.event.id],
                {
                    "kind": "event_resurfacing",
                    "event_id": result.event.id,
                    "score": result.score,
                    "reason": result.reason,
                    "notification_text": result.notification_text,
                },
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.warning(f"Failed to log daily resurfacing: {e}")
        return result


def get_resurfacing_service(db: AsyncSession) -> ResurfacingService:
    return ResurfacingService(db)
