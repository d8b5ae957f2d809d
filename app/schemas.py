"""Pydantic schemas for API request/response validation"""

from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; convert offset-aware input to match"""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ============ Context, tags, people ============

class ContextConfirmRequest(BaseModel):
    """User-confirmed context for a memory"""
    user_note: Optional[str] = Field(None, max_length=5000)
    location_name: Optional[str] = Field(None, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class ContextResponse(BaseModel):
    memory_id: str
    user_note: Optional[str] = None
    location_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    confirmed: bool = False

    class Config:
        from_attributes = True


class TagConfirmRequest(BaseModel):
    tag: str = Field(min_length=1, max_length=100)


class TagResponse(BaseModel):
    tag: str
    confidence: Optional[float] = None
    origin: str

    class Config:
        from_attributes = True


class PersonConfirmRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class PersonResponse(BaseModel):
    person_name: str
    confidence: Optional[float] = None
    confirmed: bool

    class Config:
        from_attributes = True


class MemoryContextView(BaseModel):
    """Context of a memory with every tag and person, inferred ones included"""
    context: Optional[ContextResponse] = None
    tags: List[TagResponse] = []
    people: List[PersonResponse] = []


class AcceptSuggestionsRequest(BaseModel):
    place: bool = False
    people: List[str] = Field(default_factory=list, max_length=50)
    tags: List[str] = Field(default_factory=list, max_length=50)


class QueuedTaskResponse(BaseModel):
    id: str
    kind: str
    status: str


class MemoryReadyResponse(BaseModel):
    memory_id: str
    tasks: List[QueuedTaskResponse]


# ============ Memories ============

class MemoryResponse(BaseModel):
    id: str
    captured_at: datetime
    source: str
    media_type: str
    transcript: Optional[str] = None
    ai_summary: Optional[str] = None
    processing_status: str
    location_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class MemorySearchRequest(BaseModel):
    query: str = Field(min_length=1, max_length=1000)
    limit: int = Field(10, ge=1, le=50)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    radius_km: Optional[float] = Field(None, gt=0)

    @field_validator("start_date", "end_date", mode="after")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class MemoryWithScore(BaseModel):
    memory: MemoryResponse
    score: float
    breakdown: Dict[str, float] = {}


class MemorySearchResponse(BaseModel):
    query: str
    results: List[MemoryWithScore]
    total: int


# ============ Events ============

class EventResponse(BaseModel):
    id: str
    title: str
    summary: Optional[str] = None
    start_time: datetime
    end_time: datetime
    location_name: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    confidence_score: float
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EventWithMemoriesResponse(BaseModel):
    event: EventResponse
    relevance: Optional[float] = None
    primary_memory: Optional[MemoryResponse] = None
    supporting_memories: List[MemoryResponse] = []
    context_memories: List[MemoryResponse] = []


class EventListResponse(BaseModel):
    events: List[EventResponse]
    total: int


class EventSearchRequest(BaseModel):
    query: str = Field(min_length=1, max_length=1000)
    limit: int = Field(10, ge=1, le=50)
    start_after: Optional[datetime] = None
    start_before: Optional[datetime] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    radius_km: Optional[float] = Field(None, gt=0)
    min_confidence: Optional[float] = Field(None, ge=0, le=1)

    @field_validator("start_after", "start_before", mode="after")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(v)


class TemporalIntentResponse(BaseModel):
    type: str
    sort_order: str
    reference_date: Optional[datetime] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    phrase: Optional[str] = None


class EventSearchResponse(BaseModel):
    query: str
    intent: TemporalIntentResponse
    events: List[EventWithMemoriesResponse]
    total: int
    processing_time_ms: int


# ============ Answers ============

class AskRequest(BaseModel):
    question: str = Field(min_length=1, max_length=1000)

    @field_validator("question")
    @classmethod
    def question_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Question cannot be empty")
        return v


class AnswerResponse(BaseModel):
    answer: str
    confidence: str
    events: List[EventResponse] = []
    event_ids: List[str] = []
    memory_ids: List[str] = []
    search_time_ms: int = 0
    answer_time_ms: int = 0


# ============ Resurfacing ============

class ResurfacingResponse(BaseModel):
    event: Optional[EventResponse] = None
    reason: Optional[str] = None
    score: Optional[int] = None
    notification_text: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    app: str
    details: Dict[str, Any] = {}
