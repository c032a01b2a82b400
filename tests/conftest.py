from __future__ import annotations

import os
from collections.abc import Generator

os.environ.setdefault("KABLAN_LOCAL_CACHE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("KABLAN_STORAGE_BACKEND", "local")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from kablan.db.base import Base
from kablan.db.dependencies import get_repository
from kablan.main import create_app
from kablan.models.cache import CacheEntry
from kablan.repositories.gateway import DocumentRepository
from kablan.repositories.local_cache import LocalCacheRepository

TEST_TABLES = [CacheEntry.__table__]


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine, tables=TEST_TABLES)
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine, tables=TEST_TABLES)


@pytest.fixture()
def store(db_session: Session) -> LocalCacheRepository:
    return LocalCacheRepository(db_session)


@pytest.fixture()
def client(store: LocalCacheRepository) -> Generator[TestClient, None, None]:
    app = create_app()

    def override_get_repository() -> Generator[DocumentRepository, None, None]:
        yield store

    app.dependency_overrides[get_repository] = override_get_repository
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
