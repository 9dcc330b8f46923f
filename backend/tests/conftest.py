import time

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from docguard.config import Settings
from docguard.database import get_db, init_db
from docguard.dependencies import get_reliability_service
from docguard.errors import TierUnavailable
from docguard.main import app
from docguard.services.object_store import LocalObjectStore
from docguard.services.reliability_service import ReliabilityService
from docguard.services.storage import DiskStorage


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class FakeClock:
    def __init__(self, start: float = 1_767_225_600.0):  # 2026-01-01T00:00:00Z
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingObjectStore(LocalObjectStore):
    """Object store whose writes fail until ``failures_left`` reaches zero."""

    def __init__(self, root, bucket, failures: int = 10**6, delay: float = 0.0):
        super().__init__(root, bucket)
        self.failures_left = failures
        self.delay = delay
        self.put_calls = 0

    def put(self, data: bytes, key: str) -> str:
        self.put_calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.failures_left > 0:
            self.failures_left -= 1
            raise TierUnavailable("connection refused", tier=self.name, key=key)
        return super().put(data, key)


@pytest.fixture
def tmp_data(tmp_path):
    data_path = tmp_path / "DocGuard"
    data_path.mkdir()
    return data_path


@pytest.fixture
def test_settings(tmp_data):
    return Settings(
        data_path=tmp_data,
        object_store_backend="local",
        retry_base_delay_ms=1000,
        retry_max_attempts=3,
        max_upload_bytes=64 * 1024,
        tier_timeout_seconds=2.0,
    )


@pytest.fixture
def session_factory(test_settings):
    init_db(test_settings.db_path)
    engine = create_engine(
        f"sqlite:///{test_settings.db_path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    TestSession = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    yield TestSession
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def disk(test_settings):
    return DiskStorage(test_settings.uploads_path)


@pytest.fixture
def object_store(test_settings):
    return LocalObjectStore(test_settings.object_store_path, test_settings.object_store_bucket)


@pytest.fixture
def make_service(test_settings, session_factory, disk, clock):
    def _make(object_store=None):
        store = object_store or LocalObjectStore(
            test_settings.object_store_path, test_settings.object_store_bucket
        )
        return ReliabilityService(
            test_settings, session_factory, disk=disk, object_store=store, clock=clock
        )
    return _make


@pytest.fixture
def service(make_service, object_store):
    return make_service(object_store)


@pytest.fixture
def client(session_factory, service):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_reliability_service] = lambda: service
    c = TestClient(app)
    yield c
    app.dependency_overrides.clear()


@pytest.fixture
def failing_store(test_settings):
    def _make(failures: int = 10**6, delay: float = 0.0):
        return FailingObjectStore(
            test_settings.object_store_path, test_settings.object_store_bucket, failures, delay
        )
    return _make
