"""Local collection cache stored in one SQL table, keyed by collection name."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kablan.models.cache import CacheEntry
from kablan.models.entities import utcnow
from kablan.repositories.gateway import (
    CATEGORIES,
    SUPPLIERS,
    CacheBackedRepository,
    CollectionSpec,
    GatewayError,
    RecordNotFoundError,
)

logger = logging.getLogger(__name__)


def _default_records(spec: CollectionSpec) -> list[dict[str, Any]]:
    if spec.name == CATEGORIES.name:
        return [
            {"id": "1", "name": "חומרי בנייה", "subcategories": []},
            {"id": "2", "name": "קבלני משנה", "subcategories": []},
            {"id": "3", "name": "חשמל", "subcategories": []},
        ]
    if spec.name == SUPPLIERS.name:
        return [
            {
                "id": "1",
                "name": "ספק כללי",
                "description": "ספק ברירת מחדל",
                "createdAt": utcnow().isoformat(),
            }
        ]
    return []


class LocalCacheRepository(CacheBackedRepository):
    """Read-modify-write store over whole JSON collections.

    Each collection is one row; every write rewrites the full payload and
    stamps ``updated_at``, which doubles as the last-sync time.
    """

    def __init__(self, db: Session, seed_dir: str | Path | None = None) -> None:
        self.db = db
        self.seed_dir = Path(seed_dir) if seed_dir else None

    # ---------- Raw payload access ----------
    def _entry(self, spec: CollectionSpec) -> CacheEntry | None:
        return self.db.scalar(select(CacheEntry).where(CacheEntry.collection == spec.name))

    def _load_seed(self, spec: CollectionSpec) -> Any:
        if self.seed_dir is not None:
            path = self.seed_dir / spec.file_name
            if path.is_file():
                try:
                    return json.loads(path.read_text(encoding="utf-8"))
                except ValueError:
                    logger.warning("Ignoring malformed seed file %s", path)
        if spec.singleton:
            return {}
        return _default_records(spec)

    def _read(self, spec: CollectionSpec) -> Any:
        entry = self._entry(spec)
        if entry is not None:
            payload = json.loads(entry.payload)
            if payload:
                return payload
        seeded = self._load_seed(spec)
        if seeded:
            logger.info("Seeding local cache collection %s", spec.name)
            self._write(spec, seeded)
        return seeded

    def _write(self, spec: CollectionSpec, payload: Any) -> None:
        serialized = json.dumps(payload, ensure_ascii=False)
        now = utcnow()
        try:
            entry = self._entry(spec)
            if entry is None:
                self.db.add(CacheEntry(collection=spec.name, payload=serialized, updated_at=now))
            else:
                entry.payload = serialized
                entry.updated_at = now
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Local cache write failed for %s: %s", spec.name, exc)
            raise GatewayError(f"Local cache write failed for {spec.name}.") from exc

    def _index_of(self, records: list[dict[str, Any]], spec: CollectionSpec, record_id: str) -> int:
        for index, record in enumerate(records):
            if str(record.get(spec.id_field)) == record_id:
                return index
        raise RecordNotFoundError(spec.name, record_id)

    # ---------- DocumentRepository ----------
    def list_records(self, spec: CollectionSpec) -> list[dict[str, Any]]:
        payload = self._read(spec)
        return list(payload) if isinstance(payload, list) else []

    def create_record(self, spec: CollectionSpec, record: dict[str, Any]) -> dict[str, Any]:
        records = self.list_records(spec)
        records.append(record)
        self._write(spec, records)
        return record

    def update_record(self, spec: CollectionSpec, record_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        records = self.list_records(spec)
        index = self._index_of(records, spec, record_id)
        merged = {**records[index], **changes, spec.id_field: records[index][spec.id_field]}
        records[index] = merged
        self._write(spec, records)
        return merged

    def delete_record(self, spec: CollectionSpec, record_id: str) -> None:
        records = self.list_records(spec)
        index = self._index_of(records, spec, record_id)
        del records[index]
        self._write(spec, records)

    def get_document(self, spec: CollectionSpec) -> dict[str, Any]:
        payload = self._read(spec)
        return dict(payload) if isinstance(payload, dict) else {}

    def put_document(self, spec: CollectionSpec, changes: dict[str, Any]) -> dict[str, Any]:
        merged = {**self.get_document(spec), **changes}
        self._write(spec, merged)
        return merged

    # ---------- Cache maintenance ----------
    def replace_collection(self, spec: CollectionSpec, records: list[dict[str, Any]]) -> None:
        self._write(spec, records)

    def replace_document(self, spec: CollectionSpec, document: dict[str, Any]) -> None:
        self._write(spec, document)

    def sync_status(self) -> dict[str, datetime]:
        """Last write time per cached collection."""

        entries = self.db.scalars(select(CacheEntry).order_by(CacheEntry.collection.asc())).all()
        return {entry.collection: entry.updated_at for entry in entries}

    def clear(self) -> int:
        """Drop every cached collection; returns the number of rows removed."""

        entries = self.db.scalars(select(CacheEntry)).all()
        for entry in entries:
            self.db.delete(entry)
        self.db.commit()
        logger.info("Cleared %d local cache collections", len(entries))
        return len(entries)

    def close(self) -> None:
        self.db.close()
