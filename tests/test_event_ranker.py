"""
Tests for event retrieval ranking: filters, temporal boosts, intent ordering
and end-to-end search over SQLite.
"""

import json
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from app.db.models import Event, Memory, RetrievalLog
from app.services.event_retrieval_service import (
    EventRetrievalService, EventSearchFilters, RankedEvent,
    apply_temporal_boost, assign_linked_memories, matches_filters,
    merge_intent_range, sort_by_intent,
)
from app.services.temporal_parser import SortOrder, TemporalIntent, TemporalType
from tests.fakes import FakeEmbeddings

NOW = datetime(2026, 10, 18, 12, 0)


def event(days_ago=0, confidence=0.7, lat=None, lng=None, id=None):
    start = NOW - timedelta(days=days_ago)
    return Event(
        id=id or f"e{days_ago}",
        user_id="u1",
        start_time=start,
        end_time=start,
        title="Walk",
        confidence_score=confidence,
        location_lat=lat,
        location_lng=lng,
    )


class TestMergeIntentRange:

    def test_intersects_with_caller_range(self):
        filters = EventSearchFilters(start_after=datetime(2026, 9, 10), start_before=datetime(2026, 10, 1))
        intent = TemporalIntent(
            type=TemporalType.BETWEEN,
            start=datetime(2026, 9, 1),
            end=datetime(2026, 9, 30, 23, 59),
        )
        merged = merge_intent_range(filters, intent)
        assert merged.start_after == datetime(2026, 9, 10)
        assert merged.start_before == datetime(2026, 9, 30, 23, 59)

    def test_no_intent_range_keeps_filters(self):
        filters = EventSearchFilters(start_after=datetime(2026, 9, 10), min_confidence=0.5)
        merged = merge_intent_range(filters, TemporalIntent())
        assert merged.start_after == datetime(2026, 9, 10)
        assert merged.start_before is None
        assert merged.min_confidence == 0.5


class TestMatchesFilters:

    def test_time_bounds(self):
        filters = EventSearchFilters(start_after=NOW - timedelta(days=10), start_before=NOW - timedelta(days=2))
        assert matches_filters(event(5), filters)
        assert not matches_filters(event(11), filters)
        assert not matches_filters(event(1), filters)

    def test_min_confidence(self):
        filters = EventSearchFilters(min_confidence=0.6)
        assert matches_filters(event(confidence=0.6), filters)
        assert not matches_filters(event(confidence=0.59), filters)

    def test_radius_in_kilometers(self):
        filters = EventSearchFilters(latitude=0.0, longitude=0.0, radius_km=5)
        assert matches_filters(event(lat=0.03, lng=0.0), filters)       # ~3.3 km
        assert not matches_filters(event(lat=0.1, lng=0.0), filters)    # ~11 km
        assert not matches_filters(event(), filters)


class TestTemporalBoost:

    def test_first_prefers_older(self):
        intent = TemporalIntent(type=TemporalType.FIRST, sort_order=SortOrder.ASC)
        assert apply_temporal_boost(event(365), intent, 0.5, NOW) == pytest.approx(0.7)
        assert apply_temporal_boost(event(0), intent, 0.5, NOW) == pytest.approx(0.5)

    def test_last_prefers_recent(self):
        intent = TemporalIntent(type=TemporalType.LAST)
        assert apply_temporal_boost(event(0), intent, 0.5, NOW) == pytest.approx(0.7)
        assert apply_temporal_boost(event(15), intent, 0.5, NOW) == pytest.approx(0.6)
        assert apply_temporal_boost(event(60), intent, 0.5, NOW) == pytest.approx(0.5)

    def test_around_prefers_close_to_reference(self):
        intent = TemporalIntent(type=TemporalType.AROUND, reference_date=NOW - timedelta(days=7))
        assert apply_temporal_boost(event(7), intent, 0.5, NOW) == pytest.approx(0.8)
        assert apply_temporal_boost(event(0), intent, 0.5, NOW) == pytest.approx(0.5)

    def test_capped_at_one(self):
        intent = TemporalIntent(type=TemporalType.LAST)
        assert apply_temporal_boost(event(0), intent, 0.95, NOW) == 1.0

    def test_no_boost_without_intent(self):
        assert apply_temporal_boost(event(3), TemporalIntent(), 0.42, NOW) == pytest.approx(0.42)


class TestSortByIntent:

    def setup_method(self):
        self.results = [
            RankedEvent(event=event(10, id="old"), relevance=0.9),
            RankedEvent(event=event(1, id="new"), relevance=0.2),
            RankedEvent(event=event(5, id="mid"), relevance=0.5),
        ]

    def ids(self, results):
        return [r.event.id for r in results]

    def test_first_is_chronological(self):
        ordered = sort_by_intent(self.results, TemporalIntent(type=TemporalType.FIRST))
        assert self.ids(ordered) == ["old", "mid", "new"]

    def test_last_and_recent_newest_first(self):
        for kind in (TemporalType.LAST, TemporalType.RECENT):
            assert self.ids(sort_by_intent(self.results, TemporalIntent(type=kind))) == ["new", "mid", "old"]

    def test_others_by_relevance(self):
        ordered = sort_by_intent(self.results, TemporalIntent(type=TemporalType.AROUND))
        assert self.ids(ordered) == ["old", "mid", "new"]
        ordered = sort_by_intent(self.results, TemporalIntent())
        assert self.ids(ordered) == ["old", "mid", "new"]


class TestAssignLinkedMemories:

    def test_partition_by_relationship(self):
        primary, support, background = Memory(id="p"), Memory(id="s"), Memory(id="c")
        result = RankedEvent(event=event())
        assign_linked_memories(result, [(support, "supporting"), (primary, "primary"), (background, "context")])
        assert result.primary_memory is primary
        assert result.supporting_memories == [support]
        assert result.context_memories == [background]


class TestSearchEvents:

    @pytest.mark.asyncio
    async def test_ranks_owner_events_and_logs(self, db_session, test_user, other_user, make_event, make_memory):
        memory = await make_memory(test_user, NOW - timedelta(days=3), transcript="Hike up the hill")
        near = await make_event(
            test_user, NOW - timedelta(days=3), title="Hike", embedding=[1.0, 0.0, 0.0],
            links=[(memory, "primary")],
        )
        far = await make_event(test_user, NOW - timedelta(days=4), title="Shopping", embedding=[0.0, 1.0, 0.0])
        await make_event(other_user, NOW - timedelta(days=3), title="Not mine", embedding=[1.0, 0.0, 0.0])
        near_id, far_id, memory_id = near.id, far.id, memory.id

        service = EventRetrievalService(db_session, embeddings=FakeEmbeddings(default=[1.0, 0.0, 0.0]))
        result = await service.search_events("hiking trip", test_user.id, limit=5, now=NOW)

        assert [r.event.id for r in result.events] == [near_id, far_id]
        assert result.events[0].relevance == pytest.approx(1.0)
        assert result.events[1].relevance == pytest.approx(0.5)
        assert result.events[0].primary_memory.id == memory_id
        assert result.intent.type == TemporalType.NONE

        logs = (await db_session.execute(select(RetrievalLog))).scalars().all()
        assert len(logs) == 1
        assert json.loads(logs[0].retrieved_ids_json) == [near_id, far_id]
        assert json.loads(logs[0].search_metadata_json)["kind"] == "event_search"

    @pytest.mark.asyncio
    async def test_first_intent_orders_by_time(self, db_session, test_user, make_event):
        older = await make_event(test_user, NOW - timedelta(days=40), embedding=[0.0, 1.0, 0.0])
        newer = await make_event(test_user, NOW - timedelta(days=2), embedding=[1.0, 0.0, 0.0])
        older_id, newer_id = older.id, newer.id

        service = EventRetrievalService(db_session, embeddings=FakeEmbeddings(default=[1.0, 0.0, 0.0]))
        result = await service.search_events("the first time I went to the park", test_user.id, now=NOW)

        assert result.intent.type == TemporalType.FIRST
        assert [r.event.id for r in result.events] == [older_id, newer_id]

    @pytest.mark.asyncio
    async def test_intent_range_filters_candidates(self, db_session, test_user, make_event):
        await make_event(test_user, NOW - timedelta(days=20), embedding=[1.0, 0.0, 0.0])
        recent = await make_event(test_user, NOW - timedelta(days=2), embedding=[1.0, 0.0, 0.0])
        recent_id = recent.id

        service = EventRetrievalService(db_session, embeddings=FakeEmbeddings(default=[1.0, 0.0, 0.0]))
        result = await service.search_events("walks in the past 5 days", test_user.id, now=NOW)

        assert result.intent.type == TemporalType.BETWEEN
        assert [r.event.id for r in result.events] == [recent_id]
