# tests/conftest.py
"""Shared fixtures: memory-only settings, in-memory SQLite log, and API clients."""

import sys
import os
import tempfile
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Settings are read at import time — pin them before anything imports app.*
os.environ["DATABASE_URL"] = ""
os.environ["MQTT_HOST"] = ""
os.environ["API_KEY"] = ""
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "people-counter-test-logs"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa — registers tables on Base
from app.database import Base, get_db
from app.main import app as fastapi_app
from app.services.fanout import FanOut, StreamBroker
from app.services.state_cache import StateCache


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def _fresh_state():
    fastapi_app.state.cache = StateCache()
    fastapi_app.state.fanout = FanOut(StreamBroker())


@pytest.fixture
def client(session_factory):
    """API client backed by an in-memory SQLite durable log."""
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    _fresh_state()
    fastapi_app.dependency_overrides[get_db] = override_get_db
    with TestClient(fastapi_app, raise_server_exceptions=False) as c:
        yield c
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def memory_client():
    """API client with persistence disabled (no DATABASE_URL)."""
    _fresh_state()
    fastapi_app.dependency_overrides.clear()
    with TestClient(fastapi_app, raise_server_exceptions=False) as c:
        yield c
