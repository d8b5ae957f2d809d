"""
Tests for the HTTP surface of the memory event graph
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.schemas import EventSearchRequest, MemorySearchRequest
from app.services.answer_service import AnswerService
from app.services.event_retrieval_service import EventRetrievalService
from app.services.graph_store import GraphStore
from app.services.retrieval_service import RetrievalService
from tests.fakes import FakeEmbeddings, FakeLLM

PARK = ("Central Park", 40.7829, -73.9654)


@pytest_asyncio.fixture
async def client(setup_database):
    """Create an async test client"""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def headers(test_user):
    return {"X-User-Id": test_user.id}


@pytest.fixture
def fake_search(monkeypatch):
    """Route both search endpoints through a deterministic embedder"""
    embeddings = FakeEmbeddings(default=[1.0, 0.0, 0.0])
    monkeypatch.setattr(
        "app.api.search.get_retrieval_service",
        lambda db: RetrievalService(db, embeddings=embeddings),
    )
    monkeypatch.setattr(
        "app.api.events.get_event_retrieval_service",
        lambda db: EventRetrievalService(db, embeddings=embeddings),
    )
    return embeddings


# ============ Health & identity ============

@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_identity_rejected(client: AsyncClient):
    response = await client.get("/api/events")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unknown_user_rejected(client: AsyncClient):
    response = await client.get("/api/events", headers={"X-User-Id": str(uuid4())})
    assert response.status_code == 401


# ============ Memories ============

@pytest.mark.asyncio
async def test_get_memory(client, headers, test_user, make_memory):
    memory = await make_memory(test_user, datetime(2026, 3, 7, 15, 5), transcript="Coffee", location=PARK)
    response = await client.get(f"/api/memories/{memory.id}", headers=headers)
    assert response.status_code == 200
    data = response.json()
    assert data["transcript"] == "Coffee"
    assert data["location_name"] == "Central Park"
    assert data["latitude"] == pytest.approx(PARK[1])


@pytest.mark.asyncio
async def test_other_users_memory_not_found(client, headers, other_user, make_memory):
    memory = await make_memory(other_user, datetime(2026, 3, 7, 15, 5))
    response = await client.get(f"/api/memories/{memory.id}", headers=headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_memory_ready_queues_tasks(client, headers, test_user, make_memory):
    memory = await make_memory(test_user, datetime(2026, 3, 7, 15, 5))
    response = await client.post(f"/api/memories/{memory.id}/ready", headers=headers)
    assert response.status_code == 202
    data = response.json()
    assert data["memory_id"] == memory.id
    assert sorted(t["kind"] for t in data["tasks"]) == ["context_inference", "event_formation"]
    assert {t["status"] for t in data["tasks"]} == {"pending"}


@pytest.mark.asyncio
async def test_confirm_context(client, headers, test_user, make_memory):
    memory = await make_memory(test_user, datetime(2026, 3, 7, 15, 5))
    response = await client.put(
        f"/api/memories/{memory.id}/context",
        headers=headers,
        json={"user_note": "First picnic of spring", "location_name": "Central Park", "latitude": 40.78, "longitude": -73.96},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["confirmed"] is True
    assert data["location_name"] == "Central Park"
    assert data["user_note"] == "First picnic of spring"


@pytest.mark.asyncio
async def test_confirm_context_validates_coordinates(client, headers, test_user, make_memory):
    memory = await make_memory(test_user, datetime(2026, 3, 7, 15, 5))
    response = await client.put(
        f"/api/memories/{memory.id}/context", headers=headers, json={"latitude": 120, "longitude": 0}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_confirm_tag_and_person(client, headers, test_user, make_memory):
    memory = await make_memory(test_user, datetime(2026, 3, 7, 15, 5))

    response = await client.post(f"/api/memories/{memory.id}/tags", headers=headers, json={"tag": " Hiking "})
    assert response.status_code == 200
    assert response.json() == {"tag": "hiking", "confidence": None, "origin": "user"}

    response = await client.post(f"/api/memories/{memory.id}/people", headers=headers, json={"name": "Sam"})
    assert response.status_code == 200
    assert response.json() == {"person_name": "Sam", "confidence": None, "confirmed": True}


# ============ Memory context ============

async def add_suggestions(db, memory_id):
    store = GraphStore(db)
    await store.add_inferred_tag(memory_id, "hiking", 0.75)
    await store.add_inferred_tag(memory_id, "dogs", 0.6)
    await store.add_inferred_person(memory_id, "Sam", 0.8)
    await db.commit()


@pytest.mark.asyncio
async def test_get_context_shows_suggestions(client, headers, db_session, test_user, make_memory):
    memory = await make_memory(test_user, datetime(2026, 3, 7, 15, 5), location=PARK, tags=["picnic"])
    memory_id = memory.id
    await add_suggestions(db_session, memory_id)

    response = await client.get(f"/api/memories/{memory_id}/context", headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert data["context"]["location_name"] == "Central Park"
    assert data["context"]["confirmed"] is False
    tags = {t["tag"]: t for t in data["tags"]}
    assert tags["picnic"] == {"tag": "picnic", "confidence": None, "origin": "user"}
    assert tags["hiking"] == {"tag": "hiking", "confidence": 0.75, "origin": "ai"}
    assert data["people"] == [{"person_name": "Sam", "confidence": 0.8, "confirmed": False}]


@pytest.mark.asyncio
async def test_get_context_without_any(client, headers, test_user, make_memory):
    memory = await make_memory(test_user, datetime(2026, 3, 7, 15, 5))
    response = await client.get(f"/api/memories/{memory.id}/context", headers=headers)
    assert response.json() == {"context": None, "tags": [], "people": []}


@pytest.mark.asyncio
async def test_other_users_context_not_found(client, headers, other_user, make_memory):
    memory = await make_memory(other_user, datetime(2026, 3, 7, 15, 5), location=PARK)
    response = await client.get(f"/api/memories/{memory.id}/context", headers=headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_accept_suggestions(client, headers, db_session, test_user, make_memory):
    memory = await make_memory(test_user, datetime(2026, 3, 7, 15, 5), location=PARK)
    memory_id = memory.id
    await add_suggestions(db_session, memory_id)

    response = await client.post(
        f"/api/memories/{memory_id}/accept-suggestions",
        headers=headers,
        json={"place": True, "people": ["Sam", "Nobody"], "tags": [" HIKING "]},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["context"]["confirmed"] is True
    tags = {t["tag"]: t for t in data["tags"]}
    assert tags["hiking"] == {"tag": "hiking", "confidence": None, "origin": "user"}
    assert tags["dogs"]["origin"] == "ai"
    # Only existing suggestions are confirmed
    assert [(p["person_name"], p["confirmed"]) for p in data["people"]] == [("Sam", True)]


# ============ Search ============

@pytest.mark.asyncio
async def test_memory_search(client, headers, test_user, other_user, make_memory, fake_search):
    recent = datetime.utcnow() - timedelta(hours=1)
    mine = await make_memory(test_user, recent, location=PARK, embedding=[1.0, 0.0, 0.0])
    await make_memory(other_user, recent, embedding=[1.0, 0.0, 0.0])

    response = await client.post("/api/search", headers=headers, json={"query": "picnic in the park"})

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 1
    result = data["results"][0]
    assert result["memory"]["id"] == mine.id
    # embedding 0.45 + temporal 0.20 + place 0.20
    assert result["score"] == pytest.approx(0.85)
    assert fake_search.calls == ["picnic in the park"]


@pytest.mark.asyncio
async def test_memory_search_radius_filter(client, headers, test_user, make_memory, fake_search):
    recent = datetime.utcnow() - timedelta(hours=1)
    await make_memory(test_user, recent, location=PARK, embedding=[1.0, 0.0, 0.0])

    response = await client.post(
        "/api/search",
        headers=headers,
        json={"query": "park", "latitude": 48.8584, "longitude": 2.2945, "radius_km": 10},
    )
    assert response.json()["total"] == 0


@pytest.mark.asyncio
async def test_search_requires_query(client, headers):
    response = await client.post("/api/search", headers=headers, json={"query": ""})
    assert response.status_code == 422


# ============ Events ============

@pytest.mark.asyncio
async def test_list_and_get_events(client, headers, test_user, make_memory, make_event):
    start = datetime(2026, 3, 7, 15, 5)
    primary = await make_memory(test_user, start)
    support = await make_memory(test_user, start + timedelta(minutes=10))
    event = await make_event(test_user, start, title="Coffee with Sam", links=[(primary, "primary"), (support, "supporting")])
    await make_event(test_user, start - timedelta(days=3), title="Older")

    response = await client.get("/api/events", headers=headers)
    assert response.status_code == 200
    assert [e["title"] for e in response.json()["events"]] == ["Coffee with Sam", "Older"]

    response = await client.get(f"/api/events/{event.id}", headers=headers)
    assert response.status_code == 200
    data = response.json()
    assert data["event"]["title"] == "Coffee with Sam"
    assert data["primary_memory"]["id"] == primary.id
    assert [m["id"] for m in data["supporting_memories"]] == [support.id]
    assert data["context_memories"] == []


@pytest.mark.asyncio
async def test_other_users_event_not_found(client, headers, other_user, make_event):
    event = await make_event(other_user, datetime(2026, 3, 7, 15, 5))
    response = await client.get(f"/api/events/{event.id}", headers=headers)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_event_search(client, headers, test_user, make_event, fake_search):
    start = datetime.utcnow() - timedelta(days=2)
    await make_event(test_user, start, title="Picnic", embedding=[1.0, 0.0, 0.0])

    response = await client.post("/api/events/search", headers=headers, json={"query": "the last time I had a picnic"})

    assert response.status_code == 200
    data = response.json()
    assert data["intent"]["type"] == "last"
    assert data["intent"]["sort_order"] == "desc"
    assert [e["event"]["title"] for e in data["events"]] == ["Picnic"]


# ============ Resurfacing ============

@pytest.mark.asyncio
async def test_daily_resurfacing_empty(client, headers, test_user, make_event):
    await make_event(test_user, datetime.utcnow() - timedelta(days=1))
    response = await client.get("/api/resurfacing/daily", headers=headers)
    assert response.status_code == 200
    assert response.json()["event"] is None


@pytest.mark.asyncio
async def test_daily_resurfacing(client, headers, test_user, make_event):
    await make_event(test_user, datetime.utcnow() - timedelta(days=60), title="Beach trip")
    response = await client.get("/api/resurfacing/daily", headers=headers)
    data = response.json()
    assert data["event"]["title"] == "Beach trip"
    assert data["notification_text"].startswith("2 months ago: Beach trip")
    assert data["score"] > 0


# ============ Offset-aware date filters ============

def test_search_dates_normalised_to_naive_utc():
    request = EventSearchRequest(query="picnic", start_after="2026-03-07T17:05:00+02:00", start_before="2026-03-08T00:00:00Z")
    assert request.start_after == datetime(2026, 3, 7, 15, 5)
    assert request.start_before == datetime(2026, 3, 8)
    assert request.start_before.tzinfo is None

    request = MemorySearchRequest(query="park", start_date="2026-03-07T10:00:00-05:00")
    assert request.start_date == datetime(2026, 3, 7, 15, 0)
    assert request.end_date is None


@pytest.mark.asyncio
async def test_memory_search_with_utc_bounds(client, headers, test_user, make_memory, fake_search):
    recent = datetime.utcnow() - timedelta(hours=1)
    mine = await make_memory(test_user, recent, embedding=[1.0, 0.0, 0.0])

    response = await client.post(
        "/api/search",
        headers=headers,
        json={"query": "park", "start_date": "2020-01-01T00:00:00Z", "end_date": "2100-01-01T00:00:00+00:00"},
    )

    assert response.status_code == 200
    assert [r["memory"]["id"] for r in response.json()["results"]] == [mine.id]


@pytest.mark.asyncio
async def test_event_search_with_utc_bounds(client, headers, test_user, make_event, fake_search):
    await make_event(test_user, datetime.utcnow() - timedelta(days=2), title="Picnic", embedding=[1.0, 0.0, 0.0])

    response = await client.post(
        "/api/events/search",
        headers=headers,
        json={"query": "picnic", "start_after": "2020-01-01T00:00:00+00:00", "start_before": "2100-01-01T00:00:00Z"},
    )

    assert response.status_code == 200
    assert [e["event"]["title"] for e in response.json()["events"]] == ["Picnic"]


# ============ Answers ============

@pytest.fixture
def fake_answers(monkeypatch):
    llm = FakeLLM(reply="You had a picnic with Sam in Central Park. ")
    embeddings = FakeEmbeddings(default=[1.0, 0.0, 0.0])
    monkeypatch.setattr(
        "app.api.answer.get_answer_service",
        lambda db: AnswerService(db, retrieval=EventRetrievalService(db, embeddings=embeddings), llm=llm),
    )
    return llm


@pytest.mark.asyncio
async def test_ask(client, headers, test_user, make_memory, make_event, fake_answers):
    start = datetime.utcnow() - timedelta(days=2)
    memory = await make_memory(test_user, start, transcript="Picnic with Sam")
    event = await make_event(test_user, start, title="Picnic", embedding=[1.0, 0.0, 0.0], links=[(memory, "primary")])

    response = await client.post("/api/ask", headers=headers, json={"question": "Did I have a picnic with Sam?"})

    assert response.status_code == 200
    data = response.json()
    assert data["answer"] == "You had a picnic with Sam in Central Park."
    assert data["event_ids"] == [event.id]
    assert data["memory_ids"] == [memory.id]
    assert data["confidence"] == "high"
    assert "Picnic with Sam" in fake_answers.prompts[0]


@pytest.mark.asyncio
async def test_ask_without_events(client, headers, fake_answers):
    response = await client.post("/api/ask", headers=headers, json={"question": "Did I go skiing?"})
    assert response.status_code == 200
    assert response.json()["event_ids"] == []
    assert fake_answers.prompts == []


@pytest.mark.asyncio
async def test_ask_rejects_blank_question(client, headers):
    response = await client.post("/api/ask", headers=headers, json={"question": "   "})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_ask_model_failure(client, headers, test_user, make_event, monkeypatch):
    await make_event(test_user, datetime.utcnow() - timedelta(days=2), title="Picnic", embedding=[1.0, 0.0, 0.0])
    embeddings = FakeEmbeddings(default=[1.0, 0.0, 0.0])
    monkeypatch.setattr(
        "app.api.answer.get_answer_service",
        lambda db: AnswerService(
            db,
            retrieval=EventRetrievalService(db, embeddings=embeddings),
            llm=FakeLLM(error=RuntimeError("model unavailable")),
        ),
    )

    response = await client.post("/api/ask", headers=headers, json={"question": "Did I have a picnic?"})

    assert response.status_code == 503
