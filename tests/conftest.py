"""Shared fixtures: an in-process Mongo (mongomock) store with a stepping clock."""

from datetime import datetime, timedelta, timezone

import mongomock
import pytest

from comments import CommentService
from database import Store
from reports import ReportService
from schemas import User
from tasks import TaskService
from teams import TeamService


class SteppingClock:
    """Returns a strictly increasing timestamp on every call."""

    def __init__(self, start=datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc), step=timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


@pytest.fixture
def due():
    return datetime(2024, 3, 1, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def store(clock):
    s = Store(mongomock.MongoClient()["task_tracker_test"], clock=clock)
    s.ensure_indexes()
    return s


@pytest.fixture
def make_user(store):
    def _make(username):
        return store.users.insert(
            User(
                username=username,
                email=f"{username}@example.com",
                password_hash="not-a-real-hash",
                created_at=store.clock(),
            )
        )
    return _make


@pytest.fixture
def users(make_user):
    """alice, bob, carol, dave and erin, keyed by username."""
    return {name: make_user(name) for name in ("alice", "bob", "carol", "dave", "erin")}


@pytest.fixture
def team_service(store):
    return TeamService(store)


@pytest.fixture
def task_service(store):
    return TaskService(store)


@pytest.fixture
def comment_service(store):
    return CommentService(store)


@pytest.fixture
def report_service(store):
    return ReportService(store)


@pytest.fixture
def eng(team_service, users):
    """Team "Eng": alice creator, bob accepted member, carol accepted admin, dave pending invite."""
    alice = users["alice"].id
    team = team_service.create_team(alice, "Eng")
    team_service.add_member(alice, team.id, users["bob"].id, "member")
    team_service.add_member(alice, team.id, users["carol"].id, "admin")
    return team_service.invite(alice, team.id, users["dave"].email)
