import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("CACHE_BACKEND", "memory")
os.environ.setdefault("LOG_TO_FILE", "false")

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.clock import FixedClock
from app.core.config import Settings
from app.database.cache_store import MemoryCacheStore
from app.database.sql import init_db
from app.models.users import User
from app.services import build_services

START = datetime(2024, 5, 1, 12, 0, 0)


class RecordingPublisher:
    """Broadcast publisher that keeps every event for assertions"""

    def __init__(self):
        self.events = []

    def publish(self, channel, event):
        self.events.append((channel, event))
        return True

    def names(self):
        return [event.event_name for _, event in self.events]

    def of_type(self, name):
        return [event for _, event in self.events if event.event_name == name]

    def clear(self):
        self.events.clear()


@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test"""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def store(clock):
    return MemoryCacheStore(clock)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def services(store, publisher, clock, settings):
    return build_services(store, publisher, clock=clock, settings=settings)


def make_user(db, username, role="user"):
    user = User(username=username, email=f"{username}@example.com", role=role)
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def alice(db):
    """Creates the test rooms, so moderates them"""
    return make_user(db, "alice")


@pytest.fixture
def bob(db):
    return make_user(db, "bob")


@pytest.fixture
def carol(db):
    return make_user(db, "carol")


@pytest.fixture
def dave(db):
    return make_user(db, "dave")


@pytest.fixture
def admin(db):
    return make_user(db, "root", role="admin")


@pytest.fixture
def room(db, services, alice):
    """Active room created by alice; alice is online in it"""
    result = services.rooms.create_room(db, alice.id, "general", "Talk about anything")
    assert result.ok
    return result.value["room"]


@pytest.fixture
def joined(db, services, room, bob):
    """bob has joined the room"""
    result = services.presence.join(db, room["id"], bob.id)
    assert result.ok
    return result.value


@pytest.fixture
def api_client(services, session_factory):
    from app.main import create_app

    app = create_app(services=services, session_factory=session_factory)
    return TestClient(app)


def headers(user_id):
    return {"X-User-Id": str(user_id)}
