"""
Memory Event Graph - Main Application Entry Point
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.db import init_db
from app.api import (
    memories_router,
    search_router,
    events_router,
    resurfacing_router,
    answer_router,
)
from app.schemas import HealthResponse

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - runs on startup and shutdown"""
    # Startup
    print("🧠 Memory Event Graph starting up...")
    await init_db()
    print("✅ Database initialized")

    # Background queue for event formation and context inference
    if settings.enable_scheduler:
        try:
            from app.scripts.scheduled_tasks import start_scheduler
            start_scheduler()
            print("✅ Processing queue scheduler started")
        except Exception as e:
            print(f"⚠️ Could not start scheduler: {e}")

    yield

    # Shutdown
    if settings.enable_scheduler:
        from app.scripts.scheduled_tasks import stop_scheduler
        stop_scheduler()
    print("👋 Memory Event Graph shutting down...")


app = FastAPI(
    title=settings.app_name,
    description="Event formation, context inference, hybrid retrieval and resurfacing over personal memories",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(memories_router, prefix=settings.api_prefix)
app.include_router(search_router, prefix=settings.api_prefix)
app.include_router(events_router, prefix=settings.api_prefix)
app.include_router(resurfacing_router, prefix=settings.api_prefix)
app.include_router(answer_router, prefix=settings.api_prefix)


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(
        status="ok",
        app=settings.app_name,
        details={"scheduler": settings.enable_scheduler},
    )
