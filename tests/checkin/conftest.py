from typing import List

import pytest

from checkin.capture import CaptureSession
from checkin.pipeline import FaceMatcher
from checkin.store import SchoolGeofence

from fakes import SCHOOL, SOURCES, FakeBackend, FakePlatform, InMemoryStore


@pytest.fixture
def school_geofence() -> SchoolGeofence:
    return SchoolGeofence(name="Escola Central", center=SCHOOL, radius_meters=200.0)


@pytest.fixture
def memory_store(school_geofence) -> InMemoryStore:
    return InMemoryStore(school_geofence)


@pytest.fixture
def make_session():
    """Build a session from a fake platform and backend; closed at teardown."""

    created: List[CaptureSession] = []

    def _make(platform: FakePlatform, backend: FakeBackend, **kwargs) -> CaptureSession:
        kwargs.setdefault("model_sources", SOURCES)
        session = CaptureSession(platform, FaceMatcher(backend=backend), **kwargs)
        created.append(session)
        return session

    yield _make
    for session in created:
        session.close()
