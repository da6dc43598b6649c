"""Pytest configuration and fixtures."""
import json
import os
import uuid
from dataclasses import dataclass
from typing import Any, Optional

os.environ.setdefault("DATABASE_URL", "sqlite://")

import fakeredis
import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook
from sqlalchemy.orm import sessionmaker

from app.api.dependencies import get_job_queue, get_record_cache
from app.config import Settings
from app.database import Base, create_db_engine, get_db
from app.main import app
from app.services.record_cache import RecordCache
from app.services.row_validator import REQUIRED_HEADERS
from app.tasks.celery_app import DEFAULT_PRIORITY
from app.tasks.job_queue import QueuedJob


@dataclass
class SentJob:
    id: str
    topic: str
    payload: dict
    priority: Optional[int]


class InMemoryJobQueue:
    """
    In-process stand-in for JobQueue.

    Jobs sit in a list until ``drain`` delivers them. Delivery follows the
    real queue's rules: failures are retried up to ``retry_limit`` times,
    ``fatal_errors`` are not retried, and ``on_failure`` runs once when a
    job is given up on.
    """

    def __init__(self, retry_limit: int = 3):
        self.retry_limit = retry_limit
        self.pending: list[SentJob] = []
        self.sent: list[SentJob] = []
        self.handlers: dict[str, tuple] = {}
        self.results: list[tuple[SentJob, Any]] = []
        self.failed: list[tuple[SentJob, BaseException]] = []

    def send(self, topic: str, payload: dict, priority: Optional[int] = None) -> str:
        # Payloads cross a JSON boundary in the real queue
        job = SentJob(str(uuid.uuid4()), topic, json.loads(json.dumps(payload)), priority)
        self.pending.append(job)
        self.sent.append(job)
        return job.id

    def work(self, topic, handler, team_size=1, team_concurrency=1, on_failure=None, fatal_errors=()):
        self.handlers[topic] = (handler, on_failure, tuple(fatal_errors))

    def sent_to(self, topic: str) -> list[SentJob]:
        return [job for job in self.sent if job.topic == topic]

    def take(self, topic: str) -> list[SentJob]:
        """Remove and return the pending jobs of one topic without running them."""
        taken = [job for job in self.pending if job.topic == topic]
        self.pending = [job for job in self.pending if job.topic != topic]
        return taken

    def deliver(self, sent: SentJob) -> Any:
        handler, on_failure, fatal_errors = self.handlers[sent.topic]
        attempt = 1
        while True:
            job = QueuedJob(
                id=sent.id,
                topic=sent.topic,
                data=sent.payload,
                attempt=attempt,
                retry_limit=self.retry_limit,
            )
            try:
                result = handler(job)
            except fatal_errors as exc:
                return self._give_up(sent, job, exc, on_failure)
            except Exception as exc:
                if job.is_final_attempt:
                    return self._give_up(sent, job, exc, on_failure)
                attempt += 1
                continue
            self.results.append((sent, result))
            return result

    def _give_up(self, sent, job, exc, on_failure):
        self.failed.append((sent, exc))
        if on_failure is not None:
            on_failure(job, exc)
        return None

    def drain(self) -> None:
        """Deliver jobs, most urgent first, until nothing is pending."""
        while self.pending:
            sent = min(
                self.pending,
                key=lambda job: DEFAULT_PRIORITY if job.priority is None else job.priority,
            )
            self.pending.remove(sent)
            self.deliver(sent)


@pytest.fixture
def settings(tmp_path):
    """Settings for tests: in-memory database, temp upload dir, small batches."""
    return Settings(
        database_url="sqlite://",
        upload_dir=str(tmp_path / "uploads"),
        dataset_batch_size=3,
    )


@pytest.fixture
def test_db():
    """Create a test database for testing."""
    # In-memory SQLite shared by every session of the test
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        try:
            db = TestingSessionLocal()
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    yield TestingSessionLocal

    Base.metadata.drop_all(bind=engine)
    app.dependency_overrides.clear()


@pytest.fixture
def db_session(test_db):
    db = test_db()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(fake_redis_server):
    return fakeredis.FakeRedis(server=fake_redis_server, decode_responses=True)


@pytest.fixture
def record_cache(redis_client, settings):
    return RecordCache(redis_client, settings)


@pytest.fixture
def job_queue():
    return InMemoryJobQueue()


@pytest.fixture
def client(test_db, job_queue, record_cache, settings, monkeypatch):
    """TestClient with database, queue and cache overridden."""
    monkeypatch.setattr("app.api.upload.get_settings", lambda: settings)
    app.dependency_overrides[get_job_queue] = lambda: job_queue
    app.dependency_overrides[get_record_cache] = lambda: record_cache
    return TestClient(app)


@pytest.fixture
def make_workbook(tmp_path):
    """Write an .xlsx with the standard headers (or custom ones) and return its path."""

    def _make(rows, headers=None, name="employees.xlsx"):
        workbook = Workbook()
        sheet = workbook.active
        sheet.append(REQUIRED_HEADERS if headers is None else headers)
        for row in rows:
            sheet.append(list(row))
        path = tmp_path / name
        workbook.save(path)
        return str(path)

    return _make
