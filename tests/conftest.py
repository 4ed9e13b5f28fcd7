from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from dosetrack.api.routes import get_tracker
from dosetrack.core.database import SubstanceRepository, close_connections
from dosetrack.core.models import LOCAL_TZ, SubstanceRecord
from dosetrack.core.tracker import DoseTracker
from dosetrack.main import create_app

# Monday noon, local tracking time. Naive timestamps in tests are local too.
NOW = datetime(2024, 6, 10, 12, 0, tzinfo=LOCAL_TZ)


def local(value: str) -> datetime:
    return datetime.fromisoformat(value).replace(tzinfo=LOCAL_TZ)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_substance():
    def _make(name="Testamine", category="Custom", doses=(), warnings="", **settings):
        return SubstanceRecord(
            name=name,
            category=category,
            warnings=warnings,
            settings=settings,
            doses=[d if isinstance(d, dict) else {"timestamp": d} for d in doses],
        )
    return _make


@pytest.fixture
def repository(tmp_path):
    repo = SubstanceRepository(tmp_path / "dosetrack.db")
    yield repo
    close_connections()


@pytest.fixture
def tracker(repository):
    return DoseTracker(repository, clock=lambda: NOW)


@pytest.fixture
def client(tracker):
    app = create_app()
    app.dependency_overrides[get_tracker] = lambda: tracker
    return TestClient(app)
