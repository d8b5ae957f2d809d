"""
Database models for the memory/event graph

- Memories: atomic captures (voice notes, photos) with extracted text
- Context, tags and people attached to a memory (user-supplied or inferred)
- Events: clusters of memories describing one real-world situation
- Embeddings stored apart from their parent rows, tagged with a model version
- Retrieval log and the background processing queue
"""

from datetime import datetime
from typing import Optional, List
from enum import Enum
import uuid

from sqlalchemy import (
    Column, String, Text, DateTime, Float, Integer, Boolean,
    ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, Mapped, mapped_column
from sqlalchemy.ext.declarative import declarative_base
from pgvector.sqlalchemy import Vector

from app.config import settings

Base = declarative_base()


class ProcessingStatus(str, Enum):
    """Upstream processing state of a memory"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class MemorySourceType(str, Enum):
    CAMERA = "camera"
    UPLOAD = "upload"
    VOICE = "voice"


class MediaType(str, Enum):
    PHOTO = "photo"
    AUDIO = "audio"


class TagOrigin(str, Enum):
    """Who produced a tag. User tags are never overwritten by inference."""
    AI = "ai"
    USER = "user"


class RelationshipType(str, Enum):
    """How a memory relates to the event it is linked to"""
    PRIMARY = "primary"           # The memory that triggered event creation
    SUPPORTING = "supporting"     # Other members of the cluster
    CONTEXT = "context"           # Loosely related background


class TaskKind(str, Enum):
    EVENT_FORMATION = "event_formation"
    CONTEXT_INFERENCE = "context_inference"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class User(Base):
    """Owner of memories and events. Credentials live in the upstream auth service."""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, index=True, nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    memories: Mapped[List["Memory"]] = relationship("Memory", back_populates="user")


class Memory(Base):
    """
    Atomic personal memory. Rows are written by the ingestion pipeline;
    the graph core only reads them.
    """
    __tablename__ = "memories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)

    captured_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    source: Mapped[str] = mapped_column(String(20), default="upload")  # camera, upload, voice
    media_type: Mapped[str] = mapped_column(String(20), default="photo")  # photo, audio
    storage_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Extracted text (transcription or caption)
    transcript: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    processing_status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="memories")
    context: Mapped[Optional["MemoryContext"]] = relationship(
        "MemoryContext", back_populates="memory", uselist=False, cascade="all, delete-orphan"
    )
    tags: Mapped[List["MemoryTag"]] = relationship(
        "MemoryTag", back_populates="memory", cascade="all, delete-orphan"
    )
    people: Mapped[List["MemoryPerson"]] = relationship(
        "MemoryPerson", back_populates="memory", cascade="all, delete-orphan"
    )
    event_links: Mapped[List["MemoryEventLink"]] = relationship(
        "MemoryEventLink", back_populates="memory", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_memories_user_captured", "user_id", "captured_at"),
    )


class MemoryContext(Base):
    """Where the memory happened and the user's own note. At most one per memory."""
    __tablename__ = "memory_context"

    memory_id: Mapped[str] = mapped_column(String(36), ForeignKey("memories.id", ondelete="CASCADE"), primary_key=True)
    user_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    confirmed: Mapped[bool] = mapped_column(Boolean, default=False)  # True once the user confirmed it
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    memory: Mapped["Memory"] = relationship("Memory", back_populates="context")


class MemoryTag(Base):
    __tablename__ = "memory_tags"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    memory_id: Mapped[str] = mapped_column(String(36), ForeignKey("memories.id", ondelete="CASCADE"), index=True)
    tag: Mapped[str] = mapped_column(String(100))
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # Only for AI tags
    origin: Mapped[str] = mapped_column(String(10), default="ai")  # ai, user
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    memory: Mapped["Memory"] = relationship("Memory", back_populates="tags")


class MemoryPerson(Base):
    __tablename__ = "memory_people"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    memory_id: Mapped[str] = mapped_column(String(36), ForeignKey("memories.id", ondelete="CASCADE"), index=True)
    person_name: Mapped[str] = mapped_column(String(255))
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    confirmed: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    memory: Mapped["Memory"] = relationship("Memory", back_populates="people")


class Event(Base):
    """
    A coherent real-world situation synthesized from one or more memories.
    Bounds, location and title are recomputed as memories attach.
    """
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)

    start_time: Mapped[datetime] = mapped_column(DateTime, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime)

    title: Mapped[str] = mapped_column(String(255))
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    location_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    location_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    location_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    confidence_score: Mapped[float] = mapped_column(Float, default=0.5)  # 0-1 scale

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    links: Mapped[List["MemoryEventLink"]] = relationship(
        "MemoryEventLink", back_populates="event", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_events_user_start", "user_id", "start_time"),
    )


class MemoryEventLink(Base):
    """Many-to-many link between memories and events"""
    __tablename__ = "memory_event_links"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    memory_id: Mapped[str] = mapped_column(String(36), ForeignKey("memories.id", ondelete="CASCADE"), index=True)
    event_id: Mapped[str] = mapped_column(String(36), ForeignKey("events.id", ondelete="CASCADE"), index=True)
    relationship_type: Mapped[str] = mapped_column(String(20), default="supporting")  # primary, supporting, context
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    memory: Mapped["Memory"] = relationship("Memory", back_populates="event_links")
    event: Mapped["Event"] = relationship("Event", back_populates="links")

    __table_args__ = (
        UniqueConstraint("memory_id", "event_id", name="uq_memory_event_link"),
    )


class MemoryEmbedding(Base):
    """Semantic vector for a memory (1:1)"""
    __tablename__ = "memory_embeddings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    memory_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("memories.id", ondelete="CASCADE"), unique=True, index=True
    )

    # Stored as JSON for SQLite; pgvector column is filled on PostgreSQL only
    embedding_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    embedding = Column(Vector(settings.embedding_dimension), nullable=True)

    model_version: Mapped[str] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class EventEmbedding(Base):
    """Semantic vector for an event (1:1), built from title and summary"""
    __tablename__ = "event_embeddings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), unique=True, index=True
    )

    embedding_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    embedding = Column(Vector(settings.embedding_dimension), nullable=True)

    model_version: Mapped[str] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class RetrievalLog(Base):
    """One row per search or resurfacing request, for later ranking analysis"""
    __tablename__ = "retrieval_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("users.id"), index=True, nullable=True)
    user_query: Mapped[str] = mapped_column(Text)
    retrieved_ids_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)  # JSON array, in rank order
    search_metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class ProcessingTask(Base):
    """
    Background work item for a memory. One row per (memory, kind);
    re-triggering a memory resets its rows to pending.
    """
    __tablename__ = "processing_tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    memory_id: Mapped[str] = mapped_column(String(36), ForeignKey("memories.id", ondelete="CASCADE"), index=True)
    kind: Mapped[str] = mapped_column(String(30))  # TaskKind
    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)  # TaskStatus

    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    available_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("memory_id", "kind", name="uq_processing_task_memory_kind"),
        Index("ix_processing_tasks_due", "status", "available_at"),
    )
