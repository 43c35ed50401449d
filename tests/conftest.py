"""Pytest fixtures."""

import os

os.environ["DATABASE_URL"] = "sqlite:///./test.db"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from vigil.api import ws as ws_api
from vigil.core.policies import AbandonmentPolicy
from vigil.core.retry import RetryPolicy
from vigil.db.base import Base
from vigil.db.change_feed import change_feed
from vigil.db.procedures import procedures
from vigil.db.session import get_db
from vigil.db.store import StoreClient
from vigil.main import app
from vigil.models import Alert, MonitoringSession, ResponderProfile, Response, ResponseCancellation  # noqa: F401 - register for create_all
from vigil.services.commitment import CommitmentCoordinator
from vigil.services.lifecycle import LifecycleManager, LocationData, Origin
from vigil.sync.state import SyncWindows

TEST_DATABASE_URL = "sqlite:///./test.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
change_feed.attach(TestingSessionLocal)

# Compressed reconciliation window for async tests
FAST_WINDOWS = SyncWindows(
    stagger_delays=(0.02, 0.05),
    fallback_interval=0.03,
    subscribe_grace=0.05,
    post_write_delays=(0.02, 0.05),
)

LOCATION = LocationData(general="Downtown, near 5th Ave", precise="123 Main St, Apt 4B")


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def setup_db():
    """Fresh tables for every test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_feed_and_procedures():
    change_feed.set_available(True)
    procedures.enable_all()
    yield
    change_feed.set_available(True)
    procedures.enable_all()
    for name in change_feed.channel_names:
        change_feed._channels.pop(name, None)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db):
    return StoreClient(db, retry=RetryPolicy.none())


@pytest.fixture
def lifecycle(store):
    return LifecycleManager(store, start_retry_delay=0)


@pytest.fixture
def coordinator(store):
    return CommitmentCoordinator(store, policy=AbandonmentPolicy.REVERT_TO_ACTIVE)


@pytest.fixture
def make_profile(db):
    """Create a profile directly (no bcrypt round, tests don't log these in)."""
    counter = {"n": 0}

    def _make(is_responder: bool = True, is_admin: bool = False, **fields) -> ResponderProfile:
        counter["n"] += 1
        profile = ResponderProfile(
            email=f"responder{counter['n']}@test.com",
            hashed_password="not-a-real-hash",
            is_responder=is_responder,
            is_admin=is_admin,
            **fields,
        )
        db.add(profile)
        db.commit()
        db.refresh(profile)
        return profile

    return _make


@pytest.fixture
def make_alert(lifecycle):
    """Create a live alert from an anonymous origin."""

    def _make(origin: Origin | None = None) -> Alert:
        return lifecycle.create_alert(None, LOCATION, origin or Origin.for_identity(None))

    return _make


@pytest.fixture
def client(monkeypatch):
    """Test client with overridden DB."""
    monkeypatch.setattr(ws_api, "SessionLocal", TestingSessionLocal)
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
