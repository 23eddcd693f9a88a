"""Pytest configuration for analytics integration tests

WHAT: Provides a file-backed SQLite database, seed helpers and a TestClient
      wired to it
WHY: The dashboard fan-out opens one session per worker thread, so tests need
     a database every thread can see (an in-memory SQLite database is private
     to its connection)
REFERENCES:
    - funnel_analytics/main.py: FastAPI application
    - funnel_analytics/database.py: get_db, get_session_factory
"""

import os
from datetime import datetime, timedelta
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# Ensure backend is in path
import sys
from pathlib import Path
BACKEND_ROOT = Path(__file__).resolve().parents[2]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Set test environment before funnel_analytics.database builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.pop("SENTRY_DSN", None)

from funnel_analytics.models import (  # noqa: E402
    Base,
    Funnel,
    FunnelEvent,
    FunnelSession,
    VisitorProfile,
)
from funnel_analytics.services.time_range import utcnow  # noqa: E402


ORG_ID = "org-1"
HEADERS = {"X-Organization-Id": ORG_ID}


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine(tmp_path):
    """File-backed SQLite engine shared by every thread of a test."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'analytics.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_db_engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture
def test_db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def client(session_factory) -> Generator[TestClient, None, None]:
    """TestClient whose request and worker sessions hit the test database."""
    from funnel_analytics.database import get_db, get_session_factory
    from funnel_analytics.main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ============================================================================
# Seed Helpers
# ============================================================================

@pytest.fixture
def headers() -> dict:
    return dict(HEADERS)


@pytest.fixture
def now() -> datetime:
    return utcnow()


@pytest.fixture
def funnel(test_db_session) -> Funnel:
    funnel = Funnel(id="funnel-1", organization_id=ORG_ID, name="Spring launch", domain="shop.example.com")
    test_db_session.add(funnel)
    test_db_session.commit()
    return funnel


@pytest.fixture
def add_profile(test_db_session, now):
    def _add(profile_id: str, total_sessions: int = 1, last_seen_days_ago: float = 0, **fields) -> VisitorProfile:
        profile = VisitorProfile(
            id=profile_id,
            first_seen=now - timedelta(days=90),
            last_seen=now - timedelta(days=last_seen_days_ago),
            total_sessions=total_sessions,
            total_events=fields.pop("total_events", total_sessions * 3),
            **fields,
        )
        test_db_session.add(profile)
        test_db_session.commit()
        return profile
    return _add


@pytest.fixture
def add_session(test_db_session, funnel, now):
    def _add(session_id: str, minutes_ago: float = 60, **fields) -> FunnelSession:
        started = now - timedelta(minutes=minutes_ago)
        session = FunnelSession(
            session_id=session_id,
            funnel_id=fields.pop("funnel_id", funnel.id),
            started_at=started,
            **fields,
        )
        test_db_session.add(session)
        test_db_session.commit()
        return session
    return _add


@pytest.fixture
def add_event(test_db_session, funnel, now):
    def _add(session_id: str, event_name: str = "page_view", minutes_ago: float = 30, **fields) -> FunnelEvent:
        event = FunnelEvent(
            funnel_id=fields.pop("funnel_id", funnel.id),
            session_id=session_id,
            event_name=event_name,
            timestamp=now - timedelta(minutes=minutes_ago),
            **fields,
        )
        test_db_session.add(event)
        test_db_session.commit()
        return event
    return _add
