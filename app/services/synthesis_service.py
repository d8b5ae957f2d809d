"""
Synthesis Adapter - turns a cluster of memories into an event title and summary

Calls the text-generation service with a fixed prompt and parses a
TITLE / SUMMARY / CONFIDENCE reply. Any failure (after the LLM service's own
retries) produces a deterministic fallback so event formation never blocks
on the model.
"""

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from app.config import settings
from app.services.clustering_service import MemorySnapshot, most_common_name
from app.services.llm_service import LLMService, get_llm_service

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are an event synthesis assistant for a personal memory system.

Given memories (voice notes or photo captions) from the same timeframe, produce:
1. A short, human-readable event title (2-6 words)
2. A one-paragraph summary of what happened
3. A confidence score (0-1) for how coherent these memories are as a single event

Rules:
- Titles are concrete and natural, like "Coffee with Sam" or "Morning at the park". Never "Event 1" or "Memory Collection".
- Summaries are first-person past tense, as if recalling your own experience.
- High confidence (0.8-1.0): one clear event, close in time and place.
- Medium confidence (0.5-0.8): related moments that span several sub-moments.
- Low confidence (0-0.5): loosely related, possibly separate events.
- Never invent details that are not in the memories.
- If the memories are sparse, keep the summary brief and the confidence lower.
- If an existing title and summary are given, keep them unless the new memories materially change the event."""


class SynthesisParseError(ValueError):
    """The model reply did not contain a title and a summary"""


@dataclass
class EventSynthesis:
    title: str
    summary: str
    confidence: float


def format_time(dt: datetime) -> str:
    """'3:05 PM' style clock time"""
    hour = dt.hour % 12 or 12
    suffix = "AM" if dt.hour < 12 else "PM"
    return f"{hour}:{dt.minute:02d} {suffix}"


def format_day(dt: datetime) -> str:
    """'Mar 7' style day"""
    return f"{dt.strftime('%b')} {dt.day}"


class SynthesisService:
    """Generates event titles and summaries from memory clusters"""

    FALLBACK_CONFIDENCE = 0.3
    DEFAULT_CONFIDENCE = 0.5

    # should_update thresholds
    LARGE_EVENT_SIZE = 5
    SMALL_ADDITION = 2
    MIN_UPDATE_INTERVAL = timedelta(hours=1)
    MIN_CHANGE_RATIO = 0.2

    _TITLE_RE = re.compile(r"TITLE:\s*(.+?)(?:\n|$)", re.IGNORECASE)
    _SUMMARY_RE = re.compile(r"SUMMARY:\s*(.+?)(?:\nCONFIDENCE|$)", re.IGNORECASE | re.DOTALL)
    _CONFIDENCE_RE = re.compile(r"CONFIDENCE:\s*([\d.]+)", re.IGNORECASE)

    def __init__(self, llm: Optional[LLMService] = None):
        self._llm = llm

    @property
    def llm(self) -> LLMService:
        if self._llm is None:
            self._llm = get_llm_service()
        return self._llm

    async def synthesize(
        self,
        memories: Sequence[MemorySnapshot],
        existing_title: Optional[str] = None,
        existing_summary: Optional[str] = None,
    ) -> EventSynthesis:
        """
        Synthesize a title, summary and confidence for a cluster.

        Raises ValueError for an empty cluster. Every other failure falls back
        to a timestamp/place based title with confidence 0.3.
        """
        if not memories:
            raise ValueError("Cannot synthesize an event from zero memories")

        ordered = sorted(memories, key=lambda m: m.captured_at)
        start = time.monotonic()
        try:
            user_prompt = self.build_user_prompt(ordered, existing_title, existing_summary)
            content = await self.llm.generate(SYSTEM_PROMPT, user_prompt)
            synthesis = self.parse_response(content)
        except Exception as e:
            logger.warning(f"Event synthesis failed for {len(ordered)} memories, using fallback: {e}")
            return self.fallback(ordered)

        logger.info(
            f"Event synthesis completed: '{synthesis.title}' from {len(ordered)} memories "
            f"(confidence={synthesis.confidence:.2f}, {int((time.monotonic() - start) * 1000)}ms)"
        )
        return synthesis

    def build_user_prompt(
        self,
        memories: Sequence[MemorySnapshot],
        existing_title: Optional[str] = None,
        existing_summary: Optional[str] = None,
    ) -> str:
        header = "Memories:\n\n"
        footer = ""
        if existing_title or existing_summary:
            footer += "This event already exists with:\n"
            if existing_title:
                footer += f"Title: {existing_title}\n"
            if existing_summary:
                footer += f"Summary: {existing_summary}\n"
            footer += (
                "\nUpdate the title and summary only if the new memories significantly "
                "change the event. Otherwise keep them stable.\n\n"
            )
        footer += (
            "Generate:\n"
            "1. Title: (2-6 words, natural and specific)\n"
            "2. Summary: (one paragraph, first-person past tense)\n"
            "3. Confidence: (0.0-1.0)\n\n"
            "Format your response as:\n"
            "TITLE: [title here]\n"
            "SUMMARY: [summary here]\n"
            "CONFIDENCE: [score here]"
        )

        # Keep the prompt within budget by dropping the latest memories first
        budget = settings.synthesis_max_prompt_tokens - self.llm.count_tokens(header + footer)
        blocks: List[str] = []
        used = 0
        for i, memory in enumerate(memories):
            place = f" at {memory.location.name}" if memory.location.name else ""
            block = f"[Memory {i + 1}] {memory.captured_at.strftime('%Y-%m-%d')} {format_time(memory.captured_at)}{place}\n{memory.text or ''}"
            cost = self.llm.count_tokens(block) + 2
            if blocks and used + cost > budget:
                logger.info(f"Synthesis prompt truncated to {len(blocks)} of {len(memories)} memories")
                break
            blocks.append(block)
            used += cost

        return header + "\n\n".join(blocks) + "\n\n" + footer

    def parse_response(self, content: str) -> EventSynthesis:
        title_match = self._TITLE_RE.search(content or "")
        summary_match = self._SUMMARY_RE.search(content or "")
        confidence_match = self._CONFIDENCE_RE.search(content or "")

        title = title_match.group(1).strip() if title_match else ""
        summary = summary_match.group(1).strip() if summary_match else ""
        if not title or not summary:
            raise SynthesisParseError("Reply is missing TITLE or SUMMARY")

        confidence = self.DEFAULT_CONFIDENCE
        if confidence_match:
            try:
                confidence = float(confidence_match.group(1))
            except ValueError:
                confidence = self.DEFAULT_CONFIDENCE

        return EventSynthesis(
            title=title,
            summary=summary,
            confidence=max(0.0, min(1.0, confidence)),
        )

    def fallback(self, memories: Sequence[MemorySnapshot]) -> EventSynthesis:
        """Deterministic title from the earliest capture time and the most common place"""
        earliest = min(memories, key=lambda m: m.captured_at).captured_at
        place = most_common_name(m.location.name for m in memories)
        if place:
            title = f"{format_time(earliest)} at {place}"
        else:
            title = f"{format_day(earliest)} {format_time(earliest)}"

        count = len(memories)
        noun = "memory" if count == 1 else "memories"
        return EventSynthesis(
            title=title,
            summary=f"{count} {noun} from this time period.",
            confidence=self.FALLBACK_CONFIDENCE,
        )

    def should_update(
        self,
        existing_count: int,
        added_count: int,
        last_updated: datetime,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Whether an event should be re-synthesized after memories were attached.

        Large events absorb small additions silently, and an event is never
        re-synthesized more than once an hour.
        """
        now = now or datetime.utcnow()
        if existing_count >= self.LARGE_EVENT_SIZE and added_count <= self.SMALL_ADDITION:
            return False
        if now - last_updated < self.MIN_UPDATE_INTERVAL:
            return False
        if existing_count == 0:
            return True
        return added_count / existing_count > self.MIN_CHANGE_RATIO


_synthesis_service: Optional[SynthesisService] = None


def get_synthesis_service() -> SynthesisService:
    global _synthesis_service
    if _synthesis_service is None:
        _synthesis_service = SynthesisService()
    return _synthesis_service
