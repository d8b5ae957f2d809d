"""
Shared fixtures: a fresh SQLite schema per test, a session, data factories
and in-process fakes for the embedding and text-generation services.
"""

import os

# Must be set before app.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENABLE_SCHEDULER", "false")

import json
from datetime import datetime
from typing import List, Optional, Sequence, Tuple
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import init_db, drop_db, async_session_maker
from app.db.models import (
    User, Memory, MemoryContext, MemoryTag, MemoryPerson, MemoryEmbedding,
    Event, MemoryEventLink, EventEmbedding,
)
from tests.fakes import FakeEmbeddings, FakeLLM


@pytest_asyncio.fixture
async def setup_database():
    """Create a fresh database for each test"""
    await init_db()
    yield
    await drop_db()


@pytest_asyncio.fixture
async def db_session(setup_database):
    """Get a database session"""
    async with async_session_maker() as session:
        yield session


async def _create_user(db: AsyncSession, name: str) -> User:
    user = User(email=f"{name.lower()}-{uuid4().hex[:8]}@example.com", name=name)
    db.add(user)
    await db.commit()
    return user


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession):
    return await _create_user(db_session, "Test User")


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession):
    return await _create_user(db_session, "Other User")


@pytest.fixture
def make_memory(db_session: AsyncSession):
    """Factory for memories with optional context, tags, people and embedding"""

    async def _make(
        user: User,
        captured_at: datetime,
        transcript: str = "A moment worth remembering",
        location: Optional[Tuple[Optional[str], Optional[float], Optional[float]]] = None,
        tags: Sequence[str] = (),
        people: Sequence[str] = (),
        embedding: Optional[List[float]] = None,
        status: str = "completed",
        confirmed: bool = False,
    ) -> Memory:
        memory = Memory(
            user_id=user.id,
            captured_at=captured_at,
            source="voice",
            media_type="audio",
            transcript=transcript,
            processing_status=status,
        )
        db_session.add(memory)
        await db_session.flush()

        if location is not None:
            name, lat, lng = location
            db_session.add(MemoryContext(
                memory_id=memory.id,
                location_name=name,
                latitude=lat,
                longitude=lng,
                confirmed=confirmed,
            ))
        for tag in tags:
            db_session.add(MemoryTag(memory_id=memory.id, tag=tag, origin="user"))
        for person in people:
            db_session.add(MemoryPerson(memory_id=memory.id, person_name=person, confirmed=True))
        if embedding is not None:
            db_session.add(MemoryEmbedding(
                memory_id=memory.id,
                embedding_json=json.dumps(embedding),
                model_version="test-embedding",
            ))
        await db_session.commit()
        return memory

    return _make


@pytest.fixture
def make_event(db_session: AsyncSession):
    """Factory for events with an optional embedding and linked memories"""

    async def _make(
        user: User,
        start_time: datetime,
        end_time: Optional[datetime] = None,
        title: str = "Morning at the park",
        summary: Optional[str] = "I walked around the park.",
        location: Optional[Tuple[Optional[str], Optional[float], Optional[float]]] = None,
        confidence: float = 0.7,
        embedding: Optional[List[float]] = None,
        links: Sequence[Tuple[Memory, str]] = (),
        updated_at: Optional[datetime] = None,
    ) -> Event:
        name, lat, lng = location or (None, None, None)
        event = Event(
            user_id=user.id,
            start_time=start_time,
            end_time=end_time or start_time,
            title=title,
            summary=summary,
            location_name=name,
            location_lat=lat,
            location_lng=lng,
            confidence_score=confidence,
            updated_at=updated_at or datetime.utcnow(),
        )
        db_session.add(event)
        await db_session.flush()

        if embedding is not None:
            db_session.add(EventEmbedding(
                event_id=event.id,
                embedding_json=json.dumps(embedding),
                model_version="test-embedding",
            ))
        for memory, relationship in links:
            db_session.add(MemoryEventLink(memory_id=memory.id, event_id=event.id, relationship_type=relationship))
        await db_session.commit()
        return event

    return _make


@pytest.fixture
def fake_embeddings():
    return FakeEmbeddings()


@pytest.fixture
def fake_llm():
    return FakeLLM()
