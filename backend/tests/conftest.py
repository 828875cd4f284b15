"""Pytest fixtures: a fresh SQLite database per test, plus data helpers."""
from datetime import date, datetime, timedelta, timezone
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from matchmaker.database import Base, get_db
from matchmaker.main import app
from matchmaker.matching.engine import MatchingEngine
from matchmaker.notifications import Notifier
from matchmaker.services import availability_service, event_service

# Import all models so they register with Base.metadata
from matchmaker.models.user import User                          # noqa: F401
from matchmaker.models.availability import Availability          # noqa: F401
from matchmaker.models.event import Event                        # noqa: F401
from matchmaker.models.participant import EventParticipant, ParticipantPriority  # noqa: F401
from matchmaker.models.confirmation import EventConfirmation     # noqa: F401
from matchmaker.models.state_history import EventStateHistory    # noqa: F401

SQLITE_URL = "sqlite:///./test.db"

# Engine tests run on a pinned clock, far enough ahead that real-time
# deadline checks in the store never interfere.
FIXED_NOW = datetime(2030, 1, 7, 9, 0, tzinfo=timezone.utc)
TODAY = FIXED_NOW.date()


@pytest.fixture(scope="function")
def db_engine():
    """Create a fresh SQLite engine for each test."""
    engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})

    # Enable WAL mode for better concurrency
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(db_engine):
    """Yield a database session, closed after the test."""
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_engine):
    """FastAPI TestClient with the database dependency overridden to use SQLite."""
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    def _override_get_db():
        session = TestingSession()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class RecordingNotifier(Notifier):
    """Notifier that keeps every notification for assertions."""

    def __init__(self):
        self.sent = []

    def matched(self, event_id, event_name, slots):
        self.sent.append(("matched", event_id, list(slots)))

    def confirmation_required(self, event_id, event_name, confirmation_deadline):
        self.sent.append(("confirmation_required", event_id, confirmation_deadline))

    def deadline_approaching(self, event_id, event_name, deadline):
        self.sent.append(("deadline_approaching", event_id, deadline))

    def kinds(self, event_id):
        return [kind for kind, eid, _ in self.sent if eid == event_id]


@pytest.fixture(scope="function")
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope="function")
def engine(db, notifier):
    """MatchingEngine pinned to FIXED_NOW in UTC."""
    return MatchingEngine(
        db,
        notifier=notifier,
        clock=lambda: FIXED_NOW,
        horizon_weeks=8,
        scheduling_timezone="UTC",
    )


# ---------------------------------------------------------------------------
# Helpers: direct store access for engine tests
# ---------------------------------------------------------------------------
def make_user(db, name: str) -> User:
    user = User(display_name=name)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_event(db, creator: User, name: str = "Test Event", **overrides) -> Event:
    """Helper: create an event through the store with a deadline a week after FIXED_NOW."""
    fields = {"deadline": FIXED_NOW + timedelta(days=7), "min_participants": 1, "required_slots": 1}
    fields.update(overrides)
    return event_service.create_event(db, creator_id=creator.user_id, name=name, **fields)


def join(db, event: Event, user: User, priority: str = "medium") -> Event:
    return event_service.add_participant(db, event.event_id, user.user_id, ParticipantPriority(priority))


def set_days(db, user: User, days: list[date], daytime: bool = True, evening: bool = True) -> None:
    availability_service.set_availability(db, user.user_id, days, daytime, evening)


def day(offset: int) -> date:
    """Calendar date ``offset`` days after TODAY."""
    return TODAY + timedelta(days=offset)


def reload(db, event: Event) -> Event:
    db.expire_all()
    return event_service.get_event(db, event.event_id)


# ---------------------------------------------------------------------------
# Helpers: API access
# ---------------------------------------------------------------------------
def create_test_user(client: TestClient, name: str = "Test User") -> dict:
    """Helper: POST /api/users and return response JSON."""
    resp = client.post("/api/users/", json={"display_name": name})
    assert resp.status_code == 201, resp.text
    return resp.json()


def api_day(offset: int) -> date:
    """Real-clock date ``offset`` days from today (UTC), for API tests."""
    return datetime.now(timezone.utc).date() + timedelta(days=offset)


def create_test_event(client: TestClient, creator_id: str, name: str = "Test Event", **overrides) -> dict:
    """Helper: POST /api/events and return response JSON."""
    payload = {
        "creator_id": creator_id,
        "name": name,
        "deadline": (datetime.now(timezone.utc) + timedelta(days=7)).isoformat(),
        "required_slots": 1,
    }
    payload.update(overrides)
    resp = client.post("/api/events/", json=payload)
    assert resp.status_code == 201, resp.text
    return resp.json()
