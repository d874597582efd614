"""
Pytest configuration and fixtures

Tests run against an in-memory SQLite database (one shared connection);
the schema is created before and dropped after every test, so nothing leaks
between tests. Provider, object storage and queue are in-memory fakes
(fixtures/strava_fixtures.py).
"""
import os
import sys
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet

# Must be set before core.config / core.database are imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["API_KEY"] = "test-api-key"
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", Fernet.generate_key().decode())

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest  # noqa: E402

from core.database import Base, SessionLocal, engine  # noqa: E402
from models import Athlete, Provider, User  # noqa: E402
from services.container import Container  # noqa: E402
from services.providers import ProviderRegistry  # noqa: E402
from fixtures.strava_fixtures import (  # noqa: E402
    STRAVA_ATHLETE_ID,
    FakeStravaClient,
    InMemoryObjectStore,
    RecordingQueue,
    store_credential,
)


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def session_factory():
    return SessionLocal


@pytest.fixture
def db_session():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def strava():
    return FakeStravaClient()


@pytest.fixture
def registry(strava):
    return ProviderRegistry([strava])


@pytest.fixture
def object_store():
    return InMemoryObjectStore()


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def container(registry, object_store, queue):
    return Container(
        session_factory=SessionLocal,
        providers=registry,
        object_store=object_store,
        queue=queue,
    )


@pytest.fixture
def provider_id(db_session):
    provider = Provider(name="Strava", slug="strava", connection_type="oauth2")
    db_session.add(provider)
    db_session.commit()
    return provider.id


@pytest.fixture
def connected_user(db_session, provider_id):
    """A connected Strava user with an athlete and a token valid for hours."""
    user = User(provider_id=provider_id, user_external_id=STRAVA_ATHLETE_ID)
    db_session.add(user)
    db_session.flush()
    athlete = Athlete(user_id=user.id, display_name="Marianne Vos")
    db_session.add(athlete)
    db_session.commit()
    store_credential(db_session, provider_id, user.id, datetime.now(timezone.utc) + timedelta(hours=6))
    return user, athlete
