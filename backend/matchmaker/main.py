"""FastAPI application entry point."""
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from matchmaker.config import settings
from matchmaker.database import Base, engine

# Import routers
from matchmaker.routers import users, availability, events, matching

# Import all models so Base.metadata knows about them
from matchmaker.models.user import User                          # noqa: F401
from matchmaker.models.availability import Availability          # noqa: F401
from matchmaker.models.event import Event                        # noqa: F401
from matchmaker.models.participant import EventParticipant       # noqa: F401
from matchmaker.models.confirmation import EventConfirmation     # noqa: F401
from matchmaker.models.state_history import EventStateHistory    # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="Group Schedule Matcher",
    description="Collects participant availability and commits events to mutually free slots",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(users.router, prefix="/api/users", tags=["Users"])
app.include_router(availability.router, prefix="/api/availability", tags=["Availability"])
app.include_router(events.router, prefix="/api/events", tags=["Events"])
app.include_router(matching.router, prefix="/api/matching", tags=["Matching"])


@app.on_event("startup")
def on_startup():
    """Create database tables on startup (for SQLite dev mode)."""
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)


@app.get("/api/health")
def health_check():
    return {"status": "ok"}
