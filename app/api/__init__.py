from app.api.deps import get_current_user
from app.api.memories import router as memories_router
from app.api.search import router as search_router
from app.api.events import router as events_router
from app.api.resurfacing import router as resurfacing_router
from app.api.answer import router as answer_router

__all__ = [
    "memories_router",
    "search_router",
    "events_router",
    "resurfacing_router",
    "answer_router",
    "get_current_user",
]
