"""
Answer Service - grounded answers to questions about the user's own past

Runs an event search for the question, hands the top events and their memories
to the text-generation service, and returns the reply with the ids of every
event and memory it was given. When no event matches, a fixed reply is returned
without calling the model.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.services.event_retrieval_service import (
    EventRetrievalService, RankedEvent, get_event_retrieval_service,
)
from app.services.graph_store import GraphStore
from app.services.llm_service import LLMService, get_llm_service

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are a personal memory assistant.

Answer the user's question ONLY from the events and memories supplied. Rules:
- Never add outside knowledge and never invent experiences that are not recorded.
- Refer to events by their titles.
- Keep dates, names and places exactly as given.
- Events are experiences; memories are the evidence behind them.
- If the events do not contain the answer, say "I don't have enough information to answer that."

Answer directly and conversationally in 2-4 sentences."""

NO_EVENTS_ANSWER = "I don't have any memories that could answer this question. Try recording more memories!"


class AnswerError(Exception):
    """Raised when the model could not produce an answer"""


@dataclass
class AnswerResult:
    answer: str
    confidence: str  # high, medium, low
    events: List[RankedEvent] = field(default_factory=list)
    event_ids: List[str] = field(default_factory=list)
    memory_ids: List[str] = field(default_factory=list)
    search_time_ms: int = 0
    answer_time_ms: int = 0


def answer_confidence(events: List[RankedEvent]) -> str:
    """Bucket the mean relevance of the events the answer was built from"""
    if not events:
        return "low"
    average = sum(r.relevance or 0.0 for r in events) / len(events)
    if average > 0.7:
        return "high"
    if average > 0.5:
        return "medium"
    return "low"


def cited_memory_ids(events: List[RankedEvent]) -> List[str]:
    seen = {}
    for ranked in events:
        memories = [ranked.primary_memory] + ranked.supporting_memories + ranked.context_memories
        for memory in memories:
            if memory is not None:
                seen.setdefault(memory.id, memory)
    return list(seen)


class AnswerService:
    """Question answering over the event graph"""

    EVENT_LIMIT = 5
    MEMORIES_PER_EVENT = 3

    def __init__(
        self,
        db: AsyncSession,
        retrieval: Optional[EventRetrievalService] = None,
        llm: Optional[LLMService] = None,
    ):
        self.db = db
        self.store = GraphStore(db)
        self.retrieval = retrieval or get_event_retrieval_service(db)
        self.llm = llm or get_llm_service()

    def build_prompt(self, question: str, events: List[RankedEvent]) -> str:
        blocks = []
        for index, ranked in enumerate(events, start=1):
            event = ranked.event
            memories = ([ranked.primary_memory] if ranked.primary_memory else []) + ranked.supporting_memories
            lines = [f"  - {m.transcript or ''}" for m in memories[:self.MEMORIES_PER_EVENT]]
            blocks.append(
                f"Event {index} (ID: {event.id}, Relevance: {ranked.relevance or 0.0:.2f}, "
                f"Date: {event.start_time.strftime('%Y-%m-%d')}):\n"
                f"Title: {event.title}\n"
                f"Summary: {event.summary or 'No summary'}\n"
                f"Location: {event.location_name or 'Unknown'}\n"
                f"Memories:\n" + ("\n".join(lines) or "  (none)")
            )
        return (
            f"Question: {question}\n\n"
            f"Events:\n" + "\n\n".join(blocks) +
            "\n\nProvide an answer based ONLY on these events and their memories."
        )

    async def answer(self, question: str, user_id: str, now: Optional[datetime] = None) -> AnswerResult:
        """
        Answer a question from the owner's events.

        Raises AnswerError when the model fails; the search itself is already
        logged by the event retrieval service.
        """
        started = time.monotonic()
        search = await self.retrieval.search_events(question, user_id, limit=self.EVENT_LIMIT, now=now)
        search_time_ms = int((time.monotonic() - started) * 1000)
        events = search.events

        if not events:
            logger.info("No events matched the question, returning the fallback answer")
            return AnswerResult(answer=NO_EVENTS_ANSWER, confidence="low", search_time_ms=search_time_ms)

        answer_started = time.monotonic()
        try:
            reply = await self.llm.generate(SYSTEM_PROMPT, self.build_prompt(question, events))
        except Exception as e:
            logger.error(f"Answer generation failed: {e}")
            raise AnswerError(str(e)) from e
        answer_time_ms = int((time.monotonic() - answer_started) * 1000)

        result = AnswerResult(
            answer=reply.strip(),
            confidence=answer_confidence(events),
            events=events,
            event_ids=[r.event.id for r in events],
            memory_ids=cited_memory_ids(events),
            search_time_ms=search_time_ms,
            answer_time_ms=answer_time_ms,
        )
        await self._log(user_id, question, result)
        logger.info(
            f"Answered from {len(result.event_ids)} events and {len(result.memory_ids)} memories "
            f"(confidence={result.confidence})"
        )
        return result

    async def _log(self, user_id: str, question: str, result: AnswerResult) -> None:
        try:
            await self.store.log_retrieval(
                user_id,
                question,
                result.memory_ids,
                {
                    "kind": "answer",
                    "event_ids": result.event_ids,
                    "confidence": result.confidence,
                    "search_time_ms": result.search_time_ms,
                    "answer_time_ms": result.answer_time_ms,
                },
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.warning(f"Failed to write retrieval log: {e}")


def get_answer_service(db: AsyncSession) -> AnswerService:
    return AnswerService(db)
