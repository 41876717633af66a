import os
import tempfile
from datetime import timedelta

# Settings are read at import time; point them at a throwaway database first
_TEST_DIR = tempfile.mkdtemp(prefix="filestorage-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_DIR}/test.db")

import pytest
from fastapi.testclient import TestClient

import filestorage.models  # noqa: F401  (registers every table on Base.metadata)
from filestorage.database import Base, SessionLocal, engine, get_db
from filestorage.dependencies.storage import get_policy, get_registry
from filestorage.main import app
from filestorage.models.entity_file import EntityFile
from filestorage.models.file_record import FileRecord, SyncStatus
from filestorage.services.policy import StoragePolicy
from filestorage.services.registry import BackendRegistry
from filestorage.storage.local import LocalStorageBackend
from filestorage.utils.datetime import utcnow


@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Create every table once for the test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    """Each test gets a session; every row is removed afterwards."""
    session = SessionLocal()

    yield session

    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.close()


@pytest.fixture
def policy(tmp_path):
    """Policy rooted in tmp_path with large-file deferral effectively off."""
    return StoragePolicy(
        local_path=str(tmp_path / "local"),
        local_url="/files",
        lock_path=str(tmp_path / ".sync.lock"),
        large_file_threshold=10 * 1024 * 1024,
    )


@pytest.fixture
def local_backend(policy):
    return LocalStorageBackend(policy.local_path, policy.local_url)


@pytest.fixture
def remote_backend(tmp_path):
    """Local directory standing in for an object store registered as "s3"."""
    return LocalStorageBackend(str(tmp_path / "remote"), "https://cdn.example.com")


@pytest.fixture
def registry(policy, local_backend, remote_backend):
    registry = BackendRegistry(policy)
    registry.register("local", local_backend)
    registry.register("s3", remote_backend)
    return registry


@pytest.fixture
def make_file(db, local_backend):
    """
    Factory creating a FileRecord whose bytes live on the local backend.

    Pass ``write=False`` to create a record whose object is missing.
    """

    async def _make_file(
        name: str = "report.pdf",
        content: bytes = b"%PDF-1.4 test content",
        days_old: int = 0,
        mime_type: str = "application/pdf",
        sync_status: SyncStatus | None = SyncStatus.PENDING,
        backend_type: str = "local",
        entity_table: str | None = None,
        file_type_id: int | None = None,
        write: bool = True,
        backend_metadata: dict | None = None,
    ) -> FileRecord:
        if write:
            await local_backend.write(name, content, mime_type=mime_type)
        record = FileRecord(
            uri=name,
            mime_type=mime_type,
            file_type_id=file_type_id,
            upload_date=utcnow() - timedelta(days=days_old),
            size=len(content),
            backend_type=backend_type,
            backend_metadata=backend_metadata,
            sync_status=sync_status,
        )
        db.add(record)
        db.flush()
        if entity_table:
            db.add(EntityFile(entity_table=entity_table, entity_id=1, file_id=record.id))
        db.commit()
        return record

    return _make_file


@pytest.fixture
def client(db, policy, registry):
    """Test client with database, policy and registry dependency overrides."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_policy] = lambda: policy
    app.dependency_overrides[get_registry] = lambda: registry
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
