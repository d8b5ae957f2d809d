from app.db.models import (
    Base, User, Memory, MemoryContext, MemoryTag, MemoryPerson,
    Event, MemoryEventLink, MemoryEmbedding, EventEmbedding,
    RetrievalLog, ProcessingTask,
    ProcessingStatus, MemorySourceType, MediaType, TagOrigin,
    RelationshipType, TaskKind, TaskStatus,
)
from app.db.database import get_db, init_db, drop_db, async_session_maker, engine, is_postgres

__all__ = [
    "Base",
    "User",
    "Memory",
    "MemoryContext",
    "MemoryTag",
    "MemoryPerson",
    "Event",
    "MemoryEventLink",
    "MemoryEmbedding",
    "EventEmbedding",
    "RetrievalLog",
    "ProcessingTask",
    # Enums
    "ProcessingStatus",
    "MemorySourceType",
    "MediaType",
    "TagOrigin",
    "RelationshipType",
    "TaskKind",
    "TaskStatus",
    # Database
    "get_db",
    "init_db",
    "drop_db",
    "async_session_maker",
    "engine",
    "is_postgres",
]
