import io
import os
import tempfile

import pytest
from fastapi import UploadFile
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from starlette.datastructures import Headers

# Settings are read at import time, keep the package directory clean.
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="gait_recorder_test_"))
os.environ.setdefault("STORAGE_BACKEND", "sqlite")

from gait_recorder.api.dependencies import get_blob_store, get_record_store
from gait_recorder.db.base import Base, get_db
from gait_recorder.main import app
from gait_recorder.services.blob_store import BlobStore
from gait_recorder.services.record_store import JsonRecordStore, SqlRecordStore
from gait_recorder.services.session_service import SessionService

# shared in-memory database, one connection for every thread
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def make_upload(data: bytes, filename: str = "clip.webm", content_type: str = "video/webm") -> UploadFile:
    return UploadFile(
        file=io.BytesIO(data),
        filename=filename,
        headers=Headers({"content-type": content_type}),
    )


@pytest.fixture
def upload_factory():
    return make_upload


@pytest.fixture(scope="function")
def test_db():
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        # fresh schema per test
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def uploads_dir(tmp_path):
    path = tmp_path / "uploads"
    path.mkdir(exist_ok=True)
    return path


@pytest.fixture
def blob_store(uploads_dir):
    return BlobStore(uploads_dir, max_bytes=1024 * 1024)


@pytest.fixture
def json_store(tmp_path):
    return JsonRecordStore(tmp_path / "sessions.json", lock_retries=5, lock_retry_delay=0.01)


@pytest.fixture
def sql_store(test_db):
    return SqlRecordStore(test_db)


@pytest.fixture(params=["sqlite", "json"])
def record_store(request):
    """Run a test once against each backend."""
    if request.param == "sqlite":
        return request.getfixturevalue("sql_store")
    return request.getfixturevalue("json_store")


@pytest.fixture
def service(blob_store, record_store):
    return SessionService(blob_store, record_store)


@pytest.fixture(scope="function")
def client(blob_store, record_store, test_db):
    # point the app at this test's database, uploads dir and record store
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_record_store] = lambda: record_store

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
