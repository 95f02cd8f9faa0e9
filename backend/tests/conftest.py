"""Shared test fixtures for backend tests."""

import asyncio
import uuid
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel

from app.api.deps import get_engine
from app.core.database import create_db_engine
from app.models import Conversation, Profile
from app.services.chat.context import SessionContext

# In-memory SQLite with StaticPool so all connections (including threads) share one DB
test_engine = create_db_engine("sqlite://", poolclass=StaticPool)


@pytest.fixture(autouse=True)
def setup_test_db():
    """Create all tables before each test, drop after."""
    import app.models  # noqa: F401 - register models
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def engine():
    return test_engine


def _create_profile(username: str) -> Profile:
    with Session(test_engine) as session:
        profile = Profile(id=uuid.uuid4(), username=username, email=f"{username}@example.com")
        session.add(profile)
        session.commit()
        session.refresh(profile)
        return profile


@pytest.fixture
def alice():
    return _create_profile("alice")


@pytest.fixture
def bob():
    return _create_profile("bob")


@pytest.fixture
def carol():
    return _create_profile("carol")


@pytest.fixture
def context_for():
    """Build the session context a signed-in profile would get."""
    def _context(profile: Profile) -> SessionContext:
        return SessionContext(user_id=profile.id, username=profile.username)
    return _context


@pytest.fixture
def eventually():
    """Poll an async-world condition until it holds, letting background tasks run."""
    async def _eventually(predicate, timeout: float = 2.0):
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not reached before timeout")
            await asyncio.sleep(0.01)
    return _eventually


@pytest.fixture
def client():
    """FastAPI TestClient bound to the in-memory database."""
    with patch("app.core.database.engine", test_engine):
        from app.main import app

        app.dependency_overrides[get_engine] = lambda: test_engine

        with TestClient(app) as c:
            yield c

        app.dependency_overrides.clear()


@pytest.fixture
def make_conversation():
    def _make(first: Profile, second: Profile) -> uuid.UUID:
        with Session(test_engine) as session:
            conversation = Conversation(participant_1=first.id, participant_2=second.id)
            session.add(conversation)
            session.commit()
            return conversation.id
    return _make
