"""
Tests for context inference from similar memories.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from app.db.models import Memory, MemoryContext, MemoryPerson, MemoryTag
from app.services.context_inference_service import ContextInferenceService

T0 = datetime(2026, 5, 2, 10, 0)


def transient_memory(tags=(), people=()):
    return Memory(
        user_id="u1",
        captured_at=T0,
        source="voice",
        media_type="audio",
        tags=[MemoryTag(tag=t, origin="user") for t in tags],
        people=[MemoryPerson(person_name=p, confirmed=True) for p in people],
    )


class TestInfer:

    def setup_method(self):
        self.service = ContextInferenceService(db=None, neighbor_limit=15)

    def test_occurrence_confidence(self):
        assert self.service.occurrence_confidence(2) == pytest.approx(0.5625)
        assert self.service.occurrence_confidence(100) == 0.99

    def test_every_occurrence_counts(self):
        neighbors = [transient_memory(tags=["hiking", "Hiking"]), transient_memory(tags=["beach"])]
        inferred = self.service.infer(neighbors)
        assert inferred.tags == [("hiking", pytest.approx(0.5625))]

    def test_thresholds_and_normalisation(self):
        neighbors = [
            transient_memory(tags=["Hiking", "dogs"], people=["Sam", "Alex"]),
            transient_memory(tags=["hiking "], people=["Sam"]),
            transient_memory(tags=["dogs"], people=[" "]),
        ]
        inferred = self.service.infer(neighbors)
        assert [t for t, _ in inferred.tags] == ["hiking", "dogs"]
        assert [p for p, _ in inferred.people] == ["Sam"]
        assert inferred.place is None

    def test_caps_on_people_and_tags(self):
        names = [f"person{i}" for i in range(8)]
        tags = [f"tag{i}" for i in range(12)]
        neighbors = [transient_memory(tags=tags, people=names) for _ in range(2)]
        inferred = self.service.infer(neighbors)
        assert len(inferred.people) == ContextInferenceService.MAX_INFERRED_PEOPLE
        assert len(inferred.tags) == ContextInferenceService.MAX_INFERRED_TAGS


class TestInferAndStore:

    async def seed(self, test_user, make_memory, target_location=None, confirmed=False, target_tags=()):
        target = await make_memory(
            test_user, T0, embedding=[1.0, 0.0, 0.0],
            location=target_location, confirmed=confirmed, tags=target_tags,
        )
        await make_memory(
            test_user, T0 - timedelta(days=3), embedding=[0.9, 0.1, 0.0],
            location=("Trailhead", 40.0, -73.0), tags=["hiking", "Outdoors"], people=["Sam"],
        )
        await make_memory(
            test_user, T0 - timedelta(days=10), embedding=[0.8, 0.2, 0.0],
            location=("Trailhead", 40.2, -73.2), tags=["hiking"], people=["Sam", "Alex"],
        )
        await make_memory(
            test_user, T0 - timedelta(days=20), embedding=[0.7, 0.3, 0.0],
            location=("Cafe", None, None),
        )
        return target.id

    @pytest.mark.asyncio
    async def test_fills_place_people_and_tags(self, db_session, test_user, make_memory):
        target_id = await self.seed(test_user, make_memory)

        inferred = await ContextInferenceService(db_session).infer_and_store_context(target_id, test_user.id)

        assert inferred.place.name == "Trailhead"
        assert inferred.place.lat == pytest.approx(40.1)
        assert inferred.place.lng == pytest.approx(-73.1)

        ctx = (await db_session.execute(
            select(MemoryContext).where(MemoryContext.memory_id == target_id)
        )).scalar_one()
        assert ctx.location_name == "Trailhead"
        assert not ctx.confirmed

        people = (await db_session.execute(
            select(MemoryPerson).where(MemoryPerson.memory_id == target_id)
        )).scalars().all()
        assert [(p.person_name, p.confirmed) for p in people] == [("Sam", False)]
        assert people[0].confidence == pytest.approx(0.5 + 2 / 16 * 0.5)

        tags = (await db_session.execute(
            select(MemoryTag).where(MemoryTag.memory_id == target_id)
        )).scalars().all()
        assert [(t.tag, t.origin) for t in tags] == [("hiking", "ai")]

    @pytest.mark.asyncio
    async def test_confirmed_context_never_overwritten(self, db_session, test_user, make_memory):
        target_id = await self.seed(test_user, make_memory, target_location=("Home", None, None), confirmed=True)

        await ContextInferenceService(db_session).infer_and_store_context(target_id, test_user.id)

        ctx = (await db_session.execute(
            select(MemoryContext).where(MemoryContext.memory_id == target_id)
        )).scalar_one()
        assert ctx.location_name == "Home"
        assert ctx.latitude is None

    @pytest.mark.asyncio
    async def test_unconfirmed_context_only_gains_empty_slots(self, db_session, test_user, make_memory):
        target_id = await self.seed(test_user, make_memory, target_location=("Home", None, None))

        await ContextInferenceService(db_session).infer_and_store_context(target_id, test_user.id)

        ctx = (await db_session.execute(
            select(MemoryContext).where(MemoryContext.memory_id == target_id)
        )).scalar_one()
        assert ctx.location_name == "Home"
        assert ctx.latitude == pytest.approx(40.1)

    @pytest.mark.asyncio
    async def test_user_tag_kept(self, db_session, test_user, make_memory):
        target_id = await self.seed(test_user, make_memory, target_tags=["Hiking"])

        await ContextInferenceService(db_session).infer_and_store_context(target_id, test_user.id)

        tags = (await db_session.execute(
            select(MemoryTag).where(MemoryTag.memory_id == target_id)
        )).scalars().all()
        assert [(t.tag, t.origin) for t in tags] == [("Hiking", "user")]

    @pytest.mark.asyncio
    async def test_rerun_adds_nothing(self, db_session, test_user, make_memory):
        target_id = await self.seed(test_user, make_memory)
        service = ContextInferenceService(db_session)

        await service.infer_and_store_context(target_id, test_user.id)
        await service.infer_and_store_context(target_id, test_user.id)

        tags = (await db_session.execute(select(MemoryTag).where(MemoryTag.memory_id == target_id))).scalars().all()
        people = (await db_session.execute(select(MemoryPerson).where(MemoryPerson.memory_id == target_id))).scalars().all()
        assert len(tags) == 1
        assert len(people) == 1

    @pytest.mark.asyncio
    async def test_other_owners_memories_ignored(self, db_session, test_user, other_user, make_memory):
        target = await make_memory(test_user, T0, embedding=[1.0, 0.0, 0.0])
        target_id = target.id
        for _ in range(3):
            await make_memory(other_user, T0, embedding=[1.0, 0.0, 0.0], tags=["secret"], people=["Eve"])

        inferred = await ContextInferenceService(db_session).infer_and_store_context(target_id, test_user.id)

        assert inferred is None

    @pytest.mark.asyncio
    async def test_memory_without_embedding_skipped(self, db_session, test_user, make_memory):
        target = await make_memory(test_user, T0)
        assert await ContextInferenceService(db_session).infer_and_store_context(target.id, test_user.id) is None
