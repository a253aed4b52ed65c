"""Test configuration and fixtures."""

from pathlib import Path
from typing import Callable, List, Optional

import pytest
from sqlalchemy.orm import sessionmaker

from launcher_publisher.config import Settings
from launcher_publisher.db.base import Base, create_db_engine
from launcher_publisher.db.services import ProfileService
from launcher_publisher.errors import StorageError
from launcher_publisher.storage import MemoryObjectStore


class RecordingObjectStore(MemoryObjectStore):
    """In-memory store that records uploads and can inject behavior per call.

    ``on_upload`` runs after each successful upload with (call index, key).
    ``fail_when`` makes an upload raise StorageError when it returns True.
    """

    def __init__(
        self,
        on_upload: Optional[Callable[[int, str], None]] = None,
        fail_when: Optional[Callable[[str], bool]] = None,
    ):
        super().__init__()
        self.uploaded: List[str] = []
        self.on_upload = on_upload
        self.fail_when = fail_when

    def upload(self, key, data, content_type, metadata=None):
        if self.fail_when is not None and self.fail_when(key):
            raise StorageError(f"Injected failure for '{key}'")
        super().upload(key, data, content_type, metadata)
        self.uploaded.append(key)
        if self.on_upload is not None:
            self.on_upload(len(self.uploaded), key)


@pytest.fixture
def engine():
    """A fresh in-memory database per test."""
    from launcher_publisher.db import models  # noqa: F401

    engine = create_db_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def source_root(tmp_path) -> Path:
    root = tmp_path / "BuildSources"
    root.mkdir()
    return root


@pytest.fixture
def settings(source_root) -> Settings:
    return Settings(
        _env_file=None,
        source_root=str(source_root),
        storage_uri="memory://",
        upload_workers=1,
    )


@pytest.fixture
def make_store():
    """Factory for recording stores with custom hooks."""
    return RecordingObjectStore


@pytest.fixture
def store() -> RecordingObjectStore:
    return RecordingObjectStore()


@pytest.fixture
def profile(db_session):
    return ProfileService(db_session).create_profile(name="SpiceTech", slug="spicetech")


@pytest.fixture
def make_tree():
    """Return a helper that creates ``{relative path: text}`` under a root."""

    def _make(root: Path, files: dict) -> Path:
        for relative_path, content in files.items():
            path = root / relative_path
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        return root

    return _make
