from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from kablan.models.entities import Project, User, UserRole
from kablan.repositories.gateway import (
    CATEGORIES,
    PROJECTS,
    SETTINGS,
    SUPPLIERS,
    USERS,
    CollectionSpec,
    DocumentRepository,
    FallbackRepository,
    GatewayError,
    GatewayUnavailableError,
    RecordNotFoundError,
    local_cache_of,
)
from kablan.repositories.ledger_repository import LedgerRepository
from kablan.repositories.local_cache import LocalCacheRepository


class _OfflineGateway(DocumentRepository):
    def list_records(self, spec: CollectionSpec) -> list[dict[str, Any]]:
        raise GatewayUnavailableError("offline")

    def create_record(self, spec: CollectionSpec, record: dict[str, Any]) -> dict[str, Any]:
        raise GatewayUnavailableError("offline")

    def update_record(self, spec: CollectionSpec, record_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        raise GatewayUnavailableError("offline")

    def delete_record(self, spec: CollectionSpec, record_id: str) -> None:
        raise GatewayUnavailableError("offline")

    def get_document(self, spec: CollectionSpec) -> dict[str, Any]:
        raise GatewayUnavailableError("offline")

    def put_document(self, spec: CollectionSpec, changes: dict[str, Any]) -> dict[str, Any]:
        raise GatewayUnavailableError("offline")


class _StaticGateway(_OfflineGateway):
    def __init__(self, records: list[dict[str, Any]]) -> None:
        self.records = records

    def list_records(self, spec: CollectionSpec) -> list[dict[str, Any]]:
        return list(self.records)

    def create_record(self, spec: CollectionSpec, record: dict[str, Any]) -> dict[str, Any]:
        raise GatewayError("Invalid payload", status_code=400)


def test_empty_cache_is_seeded_with_default_catalog(store: LocalCacheRepository) -> None:
    categories = store.list_records(CATEGORIES)
    suppliers = store.list_records(SUPPLIERS)

    assert [category["name"] for category in categories] == ["חומרי בנייה", "קבלני משנה", "חשמל"]
    assert suppliers[0]["name"] == "ספק כללי"
    assert store.list_records(PROJECTS) == []
    assert store.get_document(SETTINGS) == {}


def test_seed_files_take_precedence(db_session: Session, tmp_path: Path) -> None:
    (tmp_path / "projects.json").write_text(
        json.dumps([{"id": "p1", "name": "Seeded", "contractAmount": "5000"}]),
        encoding="utf-8",
    )
    repository = LocalCacheRepository(db_session, seed_dir=tmp_path)

    projects = LedgerRepository(repository).list_projects()

    assert [project.name for project in projects] == ["Seeded"]
    assert projects[0].contract_amount == Decimal("5000")
    assert set(repository.sync_status()) == {"projects"}


def test_update_merges_and_keeps_id(store: LocalCacheRepository) -> None:
    store.create_record(PROJECTS, {"id": "p1", "name": "Villa", "contractAmount": "100"})

    merged = store.update_record(PROJECTS, "p1", {"name": "Villa B", "id": "hijack"})

    assert merged == {"id": "p1", "name": "Villa B", "contractAmount": "100"}
    assert store.list_records(PROJECTS) == [merged]


def test_missing_record_raises(store: LocalCacheRepository) -> None:
    with pytest.raises(RecordNotFoundError):
        store.delete_record(PROJECTS, "missing")


def test_clear_drops_every_collection(store: LocalCacheRepository) -> None:
    store.create_record(PROJECTS, {"id": "p1", "name": "Villa"})
    store.put_document(SETTINGS, {"vatRate": "18"})

    assert store.clear() == 2
    assert store.sync_status() == {}


def test_fallback_reads_cache_when_gateway_is_offline(store: LocalCacheRepository) -> None:
    store.create_record(PROJECTS, {"id": "p1", "name": "Cached"})
    repository = FallbackRepository(_OfflineGateway(), store)

    assert repository.list_records(PROJECTS) == [{"id": "p1", "name": "Cached"}]
    repository.create_record(PROJECTS, {"id": "p2", "name": "Offline write"})
    assert [record["id"] for record in store.list_records(PROJECTS)] == ["p1", "p2"]


def test_successful_gateway_read_refreshes_cache(store: LocalCacheRepository) -> None:
    store.create_record(PROJECTS, {"id": "stale", "name": "Stale"})
    repository = FallbackRepository(_StaticGateway([{"id": "p1", "name": "Fresh"}]), store)

    repository.list_records(PROJECTS)

    assert store.list_records(PROJECTS) == [{"id": "p1", "name": "Fresh"}]


def test_cache_refresh_failure_keeps_gateway_read(store: LocalCacheRepository, monkeypatch: pytest.MonkeyPatch) -> None:
    repository = FallbackRepository(_StaticGateway([{"id": "p1", "name": "Fresh"}]), store)

    def locked_commit() -> None:
        raise OperationalError("UPDATE cache_entries", {}, Exception("database is locked"))

    monkeypatch.setattr(store.db, "commit", locked_commit)

    assert repository.list_records(PROJECTS) == [{"id": "p1", "name": "Fresh"}]


def test_gateway_rejections_do_not_fall_back(store: LocalCacheRepository) -> None:
    repository = FallbackRepository(_StaticGateway([]), store)

    with pytest.raises(GatewayError):
        repository.create_record(PROJECTS, {"id": "p1"})

    assert store.list_records(PROJECTS) == []


def test_local_cache_of_resolves_fallback_cache(store: LocalCacheRepository) -> None:
    assert local_cache_of(store) is store
    assert local_cache_of(FallbackRepository(_OfflineGateway(), store)) is store
    assert local_cache_of(_OfflineGateway()) is None


def test_stale_snapshot_overwrites_concurrent_nested_change(store: LocalCacheRepository) -> None:
    """Two editors loading the same project: the later list write wins."""

    repo = LedgerRepository(store)
    repo.add_project(Project(id="p1", name="Villa"))
    first_view = repo.get_project("p1")
    second_view = repo.get_project("p1")

    repo.update_project("p1", {"incomes": [{"id": "i1", "date": "2024-01-01", "amount": "100"}]})
    repo.update_project("p1", {"name": second_view.name, "incomes": [income.to_document() for income in first_view.incomes]})

    assert repo.get_project("p1").incomes == []


def test_system_endpoints_report_and_reset_cache(client: TestClient, store: LocalCacheRepository) -> None:
    store.create_record(USERS, User(id="super-admin", username="root", role=UserRole.SUPER_ADMIN).to_document())

    status_response = client.get("/api/v1/system/sync-status", headers={"X-User-Id": "super-admin"})
    assert status_response.status_code == 200
    assert "users" in status_response.json()["collections"]

    reset = client.post("/api/v1/system/cache/reset", headers={"X-User-Id": "super-admin"})
    assert reset.status_code == 200
    assert reset.json()["cleared"] >= 1
