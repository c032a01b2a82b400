"""Typed access to the ledger collections."""

from __future__ import annotations

from typing import Any

from kablan.models.entities import (
    ActivityLog,
    Category,
    Organization,
    Project,
    Supplier,
    SystemSettings,
    User,
    UserPermissions,
)
from kablan.repositories.gateway import (
    ACTIVITY_LOGS,
    CATEGORIES,
    ORGANIZATIONS,
    PROJECTS,
    SETTINGS,
    SUPPLIERS,
    USER_PERMISSIONS,
    USERS,
    DocumentRepository,
)


class LedgerRepository:
    """Persistence operations used by ledger services."""

    def __init__(self, store: DocumentRepository) -> None:
        self.store = store

    # ---------- Projects ----------
    def list_projects(self) -> list[Project]:
        return [Project.model_validate(record) for record in self.store.list_records(PROJECTS)]

    def get_project(self, project_id: str) -> Project | None:
        return next((project for project in self.list_projects() if project.id == project_id), None)

    def add_project(self, project: Project) -> Project:
        return Project.model_validate(self.store.create_record(PROJECTS, project.to_document()))

    def update_project(self, project_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        return self.store.update_record(PROJECTS, project_id, changes)

    def delete_project(self, project_id: str) -> None:
        self.store.delete_record(PROJECTS, project_id)

    # ---------- Users ----------
    def list_users(self) -> list[User]:
        return [User.model_validate(record) for record in self.store.list_records(USERS)]

    def get_user(self, user_id: str) -> User | None:
        return next((user for user in self.list_users() if user.id == user_id), None)

    def add_user(self, user: User) -> User:
        return User.model_validate(self.store.create_record(USERS, user.to_document()))

    def update_user(self, user_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        return self.store.update_record(USERS, user_id, changes)

    def delete_user(self, user_id: str) -> None:
        self.store.delete_record(USERS, user_id)

    # ---------- Organizations ----------
    def list_organizations(self) -> list[Organization]:
        return [Organization.model_validate(record) for record in self.store.list_records(ORGANIZATIONS)]

    def get_organization(self, organization_id: str) -> Organization | None:
        return next((org for org in self.list_organizations() if org.id == organization_id), None)

    def add_organization(self, organization: Organization) -> Organization:
        return Organization.model_validate(self.store.create_record(ORGANIZATIONS, organization.to_document()))

    def update_organization(self, organization_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        return self.store.update_record(ORGANIZATIONS, organization_id, changes)

    def delete_organization(self, organization_id: str) -> None:
        self.store.delete_record(ORGANIZATIONS, organization_id)

    # ---------- Categories ----------
    def list_categories(self) -> list[Category]:
        return [Category.model_validate(record) for record in self.store.list_records(CATEGORIES)]

    def get_category(self, category_id: str) -> Category | None:
        return next((category for category in self.list_categories() if category.id == category_id), None)

    def add_category(self, category: Category) -> Category:
        return Category.model_validate(self.store.create_record(CATEGORIES, category.to_document()))

    def update_category(self, category_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        return self.store.update_record(CATEGORIES, category_id, changes)

    def delete_category(self, category_id: str) -> None:
        self.store.delete_record(CATEGORIES, category_id)

    # ---------- Global suppliers ----------
    def list_suppliers(self) -> list[Supplier]:
        return [Supplier.model_validate(record) for record in self.store.list_records(SUPPLIERS)]

    def get_supplier(self, supplier_id: str) -> Supplier | None:
        return next((supplier for supplier in self.list_suppliers() if supplier.id == supplier_id), None)

    def add_supplier(self, supplier: Supplier) -> Supplier:
        return Supplier.model_validate(self.store.create_record(SUPPLIERS, supplier.to_document()))

    def update_supplier(self, supplier_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        return self.store.update_record(SUPPLIERS, supplier_id, changes)

    def delete_supplier(self, supplier_id: str) -> None:
        self.store.delete_record(SUPPLIERS, supplier_id)

    # ---------- Activity log ----------
    def list_activity_logs(self) -> list[ActivityLog]:
        return [ActivityLog.model_validate(record) for record in self.store.list_records(ACTIVITY_LOGS)]

    def append_activity_log(self, entry: ActivityLog) -> None:
        self.store.create_record(ACTIVITY_LOGS, entry.to_document())

    # ---------- Permission overrides ----------
    def permission_overrides(self) -> dict[str, UserPermissions]:
        overrides: dict[str, UserPermissions] = {}
        for record in self.store.list_records(USER_PERMISSIONS):
            override = UserPermissions.model_validate(record)
            overrides[override.user_id] = override
        return overrides

    def upsert_permissions(self, override: UserPermissions) -> UserPermissions:
        document = override.to_document()
        if override.user_id in self.permission_overrides():
            self.store.update_record(USER_PERMISSIONS, override.user_id, document)
        else:
            self.store.create_record(USER_PERMISSIONS, document)
        return override

    def delete_permissions(self, user_id: str) -> None:
        self.store.delete_record(USER_PERMISSIONS, user_id)

    # ---------- System settings ----------
    def get_settings(self) -> SystemSettings:
        return SystemSettings.model_validate(self.store.get_document(SETTINGS))

    def update_settings(self, changes: dict[str, Any]) -> SystemSettings:
        return SystemSettings.model_validate(self.store.put_document(SETTINGS, changes))
