"""
Pytest configuration for the Cosmic DevSpace API tests.

Every test gets its own mongomock database patched into `database.db`, so the
services and routes run unchanged against an in-memory store.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main
from auth import create_access_token
from ratelimit import InMemoryCounterStore, SubmissionLimiter


class FakeClock:
    """Manually advanced clock for the rate limiter."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def mongo(monkeypatch):
    db = mongomock.MongoClient()["cosmic_test"]
    monkeypatch.setattr(database, "db", db)
    return db


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(monkeypatch, clock):
    fresh = SubmissionLimiter(InMemoryCounterStore(), limit=5, window_seconds=3600, clock=clock)
    monkeypatch.setattr(main, "submission_limiter", fresh)
    return fresh


@pytest.fixture
def client(mongo, limiter):
    return TestClient(main.app)


@pytest.fixture
def auth_headers():
    """Factory for bearer headers: auth_headers("u1", "admin")."""

    def make(user_id: str = "user-1", role: str = "user") -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}

    return make


@pytest.fixture
def guestbook_entry(mongo):
    """Insert an approved guestbook entry and return its id."""

    def make(**overrides) -> str:
        doc = {
            "name": "Ann",
            "message": "Lovely portfolio, great work on the galaxy theme.",
            "ip_address": "10.0.0.1",
            "status": "approved",
            "spam_score": 0,
            "is_spam": False,
            "likes": 0,
            "liked_by": [],
            "replies": [],
            "flags": [],
            "featured": False,
            "project_id": None,
        }
        doc.update(overrides)
        return database.create_document("guestbook", doc)

    return make
