import asyncio
import sys
from pathlib import Path

# Ensure the repository root is on the Python path so "metrotex" can be
# imported regardless of where the tests are executed from.
ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from metrotex import models
from metrotex.config import ChatConfig, ChatProvider, HordeConfig, Settings, get_settings
from metrotex.database import get_db
from metrotex.image_jobs import Pending
from metrotex.main import app
from metrotex.routers.images import get_horde_client


class FakeHordeClient:
    """Scripted stand-in for StableHordeClient.

    ``submit_results`` is consumed in order (job id or exception). The last
    entry of ``statuses`` repeats forever; exceptions are raised.
    """

    def __init__(self):
        self.submit_results = []
        self.statuses = []
        self.submitted = []
        self.status_calls = []
        self.cancelled = []
        self.status_delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    async def submit(self, request, models):
        self.submitted.append((request, tuple(models)))
        result = self.submit_results.pop(0) if self.submit_results else "job-1"
        if isinstance(result, Exception):
            raise result
        return result

    async def status(self, job_id):
        self.status_calls.append(job_id)
        if self.status_delay:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            await asyncio.sleep(self.status_delay)
            self.in_flight -= 1
        if not self.statuses:
            return Pending()
        result = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def cancel(self, job_id):
        self.cancelled.append(job_id)

    async def aclose(self):
        pass


@pytest.fixture
def horde_config():
    return HordeConfig(
        model_groups=(("stable_diffusion",), ("Deliberate",)),
        poll_interval=0.0,
        max_attempts=5,
    )


@pytest.fixture
def settings(horde_config):
    return Settings(horde=horde_config, chat=ChatConfig(provider=ChatProvider.ECHO))


@pytest.fixture
def fake_horde():
    return FakeHordeClient()


@pytest.fixture
def db_session():
    # Create an in-memory SQLite database for testing
    engine = create_engine(
        "sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    models.Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield TestingSessionLocal
    engine.dispose()


@pytest.fixture
def client(settings, fake_horde, db_session):
    """FastAPI test client wired to the in-memory database and fake Horde."""

    def override_get_db():
        db = db_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_horde_client] = lambda: fake_horde
    yield TestClient(app)
    app.dependency_overrides.clear()
