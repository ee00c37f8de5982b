"""Shared pytest fixtures for attempt engine tests."""

import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from attempt_engine.api.deps import get_clock
from attempt_engine.db.session import Base, get_db
from attempt_engine.main import app
from attempt_engine.services.oracle import get_oracle
from attempt_engine.services.question_source import get_question_source

from factories import FakeClock, FakeQuestionSource


# Use an in-memory SQLite database for testing with static pool
SQLALCHEMY_TEST_URL = "sqlite:///:memory:"
engine = create_engine(
    SQLALCHEMY_TEST_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # Use StaticPool to keep connection alive
    echo=False,
)
TestSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)


# ── Fixtures ───────────────────────────────────────────────────────────────────


@pytest.fixture(scope="function")
def db():
    """Fresh schema and DB session for each test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = TestSession()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def source():
    return FakeQuestionSource()


@pytest.fixture
def student_id():
    return uuid.uuid4()


@pytest.fixture(scope="function")
def client(db: Session, source: FakeQuestionSource, clock: FakeClock):
    """FastAPI test client with DB, upstreams and clock overridden."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_question_source] = lambda: source
    app.dependency_overrides[get_oracle] = lambda: None
    app.dependency_overrides[get_clock] = lambda: clock

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
