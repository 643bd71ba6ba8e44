"""Shared fixtures: in-memory SQLite, a fresh realtime store, fake clock and profiles."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("PROFILE_SOURCE", "local")
os.environ.setdefault("LOG_LEVEL", "INFO")

from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from cirql.core.db import make_engine
from cirql.core.init_db import init_db
from cirql.realtime.database import RealtimeDatabase
from cirql.schemas.profile import UserProfile
from cirql.services.geolocation import ReportedPositionProvider
from cirql.services.membership_store import PlaceMembershipStore
from cirql.services.place_session import PlaceSessionController
from cirql.services.presence_store import PresenceStore

# Place origin used across scenarios
ORIGIN = (40.0, -73.0)


class FakeClock:
    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeProfiles:
    def __init__(self, *user_ids: str):
        self.profiles = {
            uid: UserProfile(user_id=uid, display_name=uid.title(), headline=f"{uid} here")
            for uid in user_ids
        }
        self.failing = set()

    def get_profile(self, user_id):
        if user_id in self.failing:
            raise RuntimeError("profile backend down")
        return self.profiles.get(user_id)


@pytest.fixture
def engine():
    engine = make_engine("sqlite://")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def membership(session_factory, clock):
    return PlaceMembershipStore(session_factory, clock=clock)


@pytest.fixture
def realtime():
    return RealtimeDatabase()


@pytest.fixture
def presence(realtime, clock):
    return PresenceStore(realtime, clock=clock)


@pytest.fixture
def geolocation():
    return ReportedPositionProvider()


@pytest.fixture
def profiles():
    return FakeProfiles("alice", "bob", "carol", "dave")


@pytest.fixture
def controller(membership, presence, geolocation, profiles):
    controller = PlaceSessionController(
        membership,
        presence,
        geolocation,
        profiles,
        radius_meters=100,
        check_interval_seconds=30,
    )
    yield controller
    controller.shutdown()


@pytest.fixture
def room1(membership):
    """Place ROOM1 with its origin at (40.0, -73.0)."""
    return membership.create_place("ROOM1", "Room ROOM1", *ORIGIN, created_by="alice")


@pytest.fixture
def connected(realtime):
    """Open realtime connections for the test users."""
    return {uid: realtime.connect(uid) for uid in ("alice", "bob", "carol", "dave")}
