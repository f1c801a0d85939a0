import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CANDIDATE_CACHE_ENABLED"] = "false"
os.environ["CANDIDATE_PROVIDER"] = "sample"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cityboundary.api.deps import get_cache, get_provider
from cityboundary.core.exceptions import ProviderError
from cityboundary.db.redis_client import get_redis
from cityboundary.db.session import get_db
from cityboundary.main import app
from cityboundary.models import Base
from cityboundary.schemas.boundary import OSMBoundary
from cityboundary.services.boundary.candidate_cache import CandidateCache
from cityboundary.services.osm.candidate_provider import CandidateProvider, SampleCandidateProvider


def square(lng, lat, size=1.0):
    """Closed GeoJSON Polygon with its south-west corner at (lng, lat)."""
    return {
        "type": "Polygon",
        "coordinates": [[
            [lng, lat],
            [lng + size, lat],
            [lng + size, lat + size],
            [lng, lat + size],
            [lng, lat],
        ]],
    }


def make_candidate(osm_id="relation/1", name="Springfield", admin_level="8", geometry=None, **kwargs):
    osm_type = osm_id.split("/")[0]
    tags = kwargs.pop("tags", None)
    if tags is None:
        tags = {"name": name, "boundary": "administrative", "admin_level": admin_level}
    return OSMBoundary(
        osm_id=osm_id,
        osm_type=osm_type,
        name=name,
        admin_level=admin_level,
        geometry=geometry if geometry is not None else square(10, 20),
        tags=tags,
        **kwargs,
    )


class StubProvider(CandidateProvider):
    """Provider returning fixed candidates, or failing with a ProviderError."""

    def __init__(self, candidates=None, error=None):
        self.candidates = list(candidates or [])
        self.error = error
        self.calls = []

    def search(self, query, timeout=None):
        self.calls.append((query, timeout))
        if self.error is not None:
            raise ProviderError(self.error)
        return [candidate.model_copy() for candidate in self.candidates]


class FakeRedis:
    """In-memory stand-in for the few Redis commands the app uses."""

    def __init__(self, fail=False):
        self.store = {}
        self.fail = fail

    def _check(self):
        if self.fail:
            raise ConnectionError("redis is down")

    def ping(self):
        self._check()
        return True

    def get(self, key):
        self._check()
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value
        return True

    def delete(self, key):
        self._check()
        return 1 if self.store.pop(key, None) is not None else 0


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def candidate_cache(fake_redis):
    return CandidateCache(redis_client=fake_redis, ttl_seconds=60)


@pytest.fixture
def provider():
    return SampleCandidateProvider()


@pytest.fixture
def client(session_factory, provider, candidate_cache, fake_redis):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_cache] = lambda: candidate_cache
    app.dependency_overrides[get_redis] = lambda: fake_redis

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
