"""Persistence gateway contract shared by the remote and local-cache stores."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """Gateway rejected a request or answered with something other than JSON."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class GatewayUnavailableError(GatewayError):
    """Gateway could not be reached; callers may fall back to the local cache."""


class RecordNotFoundError(GatewayError):
    """Referenced record id does not exist in the collection."""

    def __init__(self, collection: str, record_id: str) -> None:
        super().__init__(f"{collection} record {record_id} not found.", status_code=404)
        self.collection = collection
        self.record_id = record_id


@dataclass(frozen=True)
class CollectionSpec:
    """Naming of one gateway collection.

    ``entity`` is the PascalCase stem used in gateway actions
    (``getProjects`` / ``createProject``), ``file_name`` the static JSON
    seed file, ``id_field`` the key that identifies a record.
    """

    name: str
    entity: str
    plural: str
    file_name: str
    id_field: str = "id"
    singleton: bool = False
    create_verb: str = "create"


PROJECTS = CollectionSpec("projects", "Project", "Projects", "projects.json")
USERS = CollectionSpec("users", "User", "Users", "users.json")
CATEGORIES = CollectionSpec("categories", "Category", "Categories", "categories.json")
SUPPLIERS = CollectionSpec("suppliers", "Supplier", "Suppliers", "suppliers.json")
ORGANIZATIONS = CollectionSpec("organizations", "Organization", "Organizations", "organizations.json")
ACTIVITY_LOGS = CollectionSpec(
    "activity_logs",
    "ActivityLog",
    "ActivityLogs",
    "activity-logs.json",
    create_verb="add",
)
USER_PERMISSIONS = CollectionSpec(
    "user_permissions",
    "UserPermission",
    "UserPermissions",
    "user-permissions.json",
    id_field="userId",
)
SETTINGS = CollectionSpec("settings", "Settings", "Settings", "settings.json", singleton=True)


class DocumentRepository(ABC):
    """Get-all/create/update/delete over named JSON collections.

    There are no transactions and no concurrency tokens: an update reads the
    current collection, merges and writes it back, so two writers racing on
    the same collection can lose a write (last write wins).
    """

    @abstractmethod
    def list_records(self, spec: CollectionSpec) -> list[dict[str, Any]]: ...

    @abstractmethod
    def create_record(self, spec: CollectionSpec, record: dict[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    def update_record(self, spec: CollectionSpec, record_id: str, changes: dict[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    def delete_record(self, spec: CollectionSpec, record_id: str) -> None: ...

    @abstractmethod
    def get_document(self, spec: CollectionSpec) -> dict[str, Any]: ...

    @abstractmethod
    def put_document(self, spec: CollectionSpec, changes: dict[str, Any]) -> dict[str, Any]: ...

    def close(self) -> None:
        """Release transport or session resources."""


class CacheBackedRepository(DocumentRepository):
    """Repository that can also overwrite whole collections (cache refresh)."""

    @abstractmethod
    def replace_collection(self, spec: CollectionSpec, records: list[dict[str, Any]]) -> None: ...

    @abstractmethod
    def replace_document(self, spec: CollectionSpec, document: dict[str, Any]) -> None: ...

    @abstractmethod
    def sync_status(self) -> dict[str, datetime]: ...

    @abstractmethod
    def clear(self) -> int: ...


def local_cache_of(repository: DocumentRepository) -> CacheBackedRepository | None:
    """Return the cache behind ``repository`` (itself, or a fallback's cache)."""

    if isinstance(repository, CacheBackedRepository):
        return repository
    if isinstance(repository, FallbackRepository):
        return repository.fallback
    return None


class FallbackRepository(DocumentRepository):
    """Primary gateway with a local cache used when the gateway is unreachable.

    Successful primary reads refresh the cache so later offline reads see the
    last known server state; writes that fall back stay in the cache.
    """

    def __init__(self, primary: DocumentRepository, fallback: CacheBackedRepository) -> None:
        self.primary = primary
        self.fallback = fallback

    def list_records(self, spec: CollectionSpec) -> list[dict[str, Any]]:
        try:
            records = self.primary.list_records(spec)
        except GatewayUnavailableError as exc:
            logger.warning("Gateway unavailable, reading %s from local cache: %s", spec.name, exc)
            return self.fallback.list_records(spec)
        try:
            self.fallback.replace_collection(spec, records)
        except GatewayError as exc:
            logger.warning("Local cache refresh of %s failed: %s", spec.name, exc)
        return records

    def create_record(self, spec: CollectionSpec, record: dict[str, Any]) -> dict[str, Any]:
        try:
            return self.primary.create_record(spec, record)
        except GatewayUnavailableError as exc:
            logger.warning("Gateway unavailable, writing new %s record to local cache: %s", spec.name, exc)
            return self.fallback.create_record(spec, record)

    def update_record(self, spec: CollectionSpec, record_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        try:
            return self.primary.update_record(spec, record_id, changes)
        except GatewayUnavailableError as exc:
            logger.warning("Gateway unavailable, updating %s/%s in local cache: %s", spec.name, record_id, exc)
            return self.fallback.update_record(spec, record_id, changes)

    def delete_record(self, spec: CollectionSpec, record_id: str) -> None:
        try:
            self.primary.delete_record(spec, record_id)
        except GatewayUnavailableError as exc:
            logger.warning("Gateway unavailable, deleting %s/%s from local cache: %s", spec.name, record_id, exc)
            self.fallback.delete_record(spec, record_id)

    def get_document(self, spec: CollectionSpec) -> dict[str, Any]:
        try:
            document = self.primary.get_document(spec)
        except GatewayUnavailableError as exc:
            logger.warning("Gateway unavailable, reading %s from local cache: %s", spec.name, exc)
            return self.fallback.get_document(spec)
        try:
            self.fallback.replace_document(spec, document)
        except GatewayError as exc:
            logger.warning("Local cache refresh of %s failed: %s", spec.name, exc)
        return document

    def put_document(self, spec: CollectionSpec, changes: dict[str, Any]) -> dict[str, Any]:
        try:
            return self.primary.put_document(spec, changes)
        except GatewayUnavailableError as exc:
            logger.warning("Gateway unavailable, updating %s in local cache: %s", spec.name, exc)
            return self.fallback.put_document(spec, changes)

    def close(self) -> None:
        self.primary.close()
        self.fallback.close()