"""Users, organizations, categories, global suppliers and system settings."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from fastapi import HTTPException, status
from pydantic.alias_generators import to_camel

from kablan.models.entities import (
    Category,
    EntityType,
    Organization,
    OrganizationSettings,
    Subcategory,
    Supplier,
    SystemSettings,
    User,
    UserRole,
    utcnow,
)
from kablan.repositories.gateway import DocumentRepository
from kablan.repositories.ledger_repository import LedgerRepository
from kablan.services.activity_service import ActivityService
from kablan.services.errors import gateway_errors

if TYPE_CHECKING:
    from kablan.core.auth import RequestUserContext


@dataclass(slots=True)
class UserData:
    username: str | None = None
    full_name: str | None = None
    email: str | None = None
    role: UserRole | None = None
    organization_id: str | None = None
    is_active: bool | None = None


@dataclass(slots=True)
class OrganizationData:
    name: str | None = None
    contact_person: str | None = None
    email: str | None = None
    phone: str | None = None
    vat_number: str | None = None
    business_number: str | None = None
    logo: str | None = None
    vat_rate: Decimal | None = None
    tax_rate: Decimal | None = None
    currency: str | None = None
    company_name: str | None = None


@dataclass(slots=True)
class SupplierData:
    name: str | None = None
    description: str | None = None
    contact_person: str | None = None
    phone: str | None = None
    email: str | None = None
    vat_number: str | None = None
    business_number: str | None = None
    address: str | None = None


@dataclass(slots=True)
class SettingsData:
    vat_rate: Decimal | None = None
    tax_rate: Decimal | None = None
    company_name: str | None = None
    company_address: str | None = None
    company_phone: str | None = None
    company_email: str | None = None
    currency: str | None = None


ORGANIZATION_SETTING_FIELDS = ("vat_rate", "tax_rate", "currency", "company_name")


def _provided(data: Any) -> dict[str, Any]:
    return {key: value for key, value in asdict(data).items() if value is not None}


def _camel_changes(record: Any, fields: list[str]) -> dict[str, Any]:
    document = record.to_document()
    return {to_camel(name): document[to_camel(name)] for name in fields}


def _required_name(value: str | None, label: str) -> str:
    name = (value or "").strip()
    if not name:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=f"{label} name is required.")
    return name


def users_in_scope(context: RequestUserContext, users: list[User]) -> list[User]:
    """Users the caller may manage.

    Super admins and admins without an organization reach everyone; anyone
    else is bound to their organization, or to themselves without one.
    """

    if context.is_super_admin:
        return users
    if context.organization_id:
        return [user for user in users if user.organization_id == context.organization_id]
    if context.is_privileged:
        return users
    return [user for user in users if user.id == context.user_id]


class DirectoryService:
    """CRUD for the shared directory collections."""

    def __init__(self, store: DocumentRepository) -> None:
        self.repo = LedgerRepository(store)
        self.activity = ActivityService(store)

    # ---------- Users ----------
    @staticmethod
    def _ensure_role_assignable(context: RequestUserContext, role: UserRole) -> None:
        if role is UserRole.SUPER_ADMIN and not context.is_super_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only a super admin can assign the super admin role.",
            )

    def list_users(self, *, context: RequestUserContext) -> list[User]:
        with gateway_errors():
            users = self.repo.list_users()
        return sorted(users_in_scope(context, users), key=lambda user: user.username.lower())

    def _ensure_user(self, context: RequestUserContext, user_id: str) -> User:
        with gateway_errors():
            users = self.repo.list_users()
        user = next((item for item in users_in_scope(context, users) if item.id == user_id), None)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")
        return user

    def get_user(self, *, context: RequestUserContext, user_id: str) -> User:
        return self._ensure_user(context, user_id)

    def create_user(self, *, context: RequestUserContext, data: UserData) -> User:
        username = _required_name(data.username, "User").lower()
        role = data.role or UserRole.USER
        self._ensure_role_assignable(context, role)
        with gateway_errors():
            if any(user.username.lower() == username for user in self.repo.list_users()):
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already exists.")

        organization_id = data.organization_id
        if not context.is_super_admin and context.organization_id:
            organization_id = context.organization_id

        user = User(
            id=str(uuid4()),
            username=username,
            full_name=data.full_name,
            email=data.email,
            role=role,
            organization_id=organization_id,
            is_active=True if data.is_active is None else data.is_active,
            created_at=utcnow(),
        )
        with gateway_errors():
            created = self.repo.add_user(user)
        self.activity.log_activity(
            context,
            action="user created",
            entity_type=EntityType.USER,
            entity_id=created.id,
            details=f"User {created.username} created with role {created.role.value}",
        )
        return created

    def update_user(self, *, context: RequestUserContext, user_id: str, data: UserData) -> User:
        user = self._ensure_user(context, user_id)
        changes = _provided(data)
        if "username" in changes:
            changes["username"] = _required_name(changes["username"], "User").lower()
            with gateway_errors():
                taken = any(
                    other.username.lower() == changes["username"] and other.id != user.id
                    for other in self.repo.list_users()
                )
            if taken:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already exists.")
        if "role" in changes:
            self._ensure_role_assignable(context, changes["role"])
            if user.role is UserRole.SUPER_ADMIN and not context.is_super_admin:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="Only a super admin can change a super admin's role.",
                )
        if not context.is_super_admin and context.organization_id:
            changes.pop("organization_id", None)

        updated = user.model_copy(update=changes)
        with gateway_errors():
            self.repo.update_user(user.id, _camel_changes(updated, list(changes)))
        self.activity.log_activity(
            context,
            action="user updated",
            entity_type=EntityType.USER,
            entity_id=user.id,
            details=f"User {updated.username} updated",
        )
        return updated

    def delete_user(self, *, context: RequestUserContext, user_id: str) -> None:
        user = self._ensure_user(context, user_id)
        if user.id == context.user_id:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Users cannot delete themselves.")
        if user.role.is_privileged:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Admin users cannot be deleted.")
        with gateway_errors():
            self.repo.delete_user(user.id)
            if user.id in self.repo.permission_overrides():
                self.repo.delete_permissions(user.id)
        self.activity.log_activity(
            context,
            action="user deleted",
            entity_type=EntityType.USER,
            entity_id=user.id,
            details=f"User {user.username} deleted",
        )

    # ---------- Organizations ----------
    def list_organizations(self) -> list[Organization]:
        with gateway_errors():
            return sorted(self.repo.list_organizations(), key=lambda org: org.name.lower())

    def get_organization(self, organization_id: str) -> Organization:
        with gateway_errors():
            organization = self.repo.get_organization(organization_id)
        if organization is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found.")
        return organization

    @staticmethod
    def _split_organization_data(data: OrganizationData) -> tuple[dict[str, Any], dict[str, Any]]:
        provided = _provided(data)
        settings = {key: provided.pop(key) for key in ORGANIZATION_SETTING_FIELDS if key in provided}
        return provided, settings

    def create_organization(self, *, context: RequestUserContext, data: OrganizationData) -> Organization:
        fields, settings = self._split_organization_data(data)
        fields["name"] = _required_name(data.name, "Organization")
        organization = Organization(
            id=str(uuid4()),
            settings=OrganizationSettings(**settings),
            created_at=utcnow(),
            **fields,
        )
        with gateway_errors():
            created = self.repo.add_organization(organization)
        self.activity.log_activity(
            context,
            action="organization created",
            entity_type=EntityType.ORGANIZATION,
            entity_id=created.id,
            details=f"Organization {created.name} created",
        )
        return created

    def update_organization(
        self,
        *,
        context: RequestUserContext,
        organization_id: str,
        data: OrganizationData,
    ) -> Organization:
        organization = self.get_organization(organization_id)
        fields, settings = self._split_organization_data(data)
        if "name" in fields:
            fields["name"] = _required_name(fields["name"], "Organization")
        if settings:
            fields["settings"] = organization.settings.model_copy(update=settings)
        updated = organization.model_copy(update=fields)
        with gateway_errors():
            self.repo.update_organization(organization.id, _camel_changes(updated, list(fields)))
        self.activity.log_activity(
            context,
            action="organization updated",
            entity_type=EntityType.ORGANIZATION,
            entity_id=organization.id,
            details=f"Organization {updated.name} updated",
        )
        return updated

    def toggle_organization(self, *, context: RequestUserContext, organization_id: str) -> Organization:
        organization = self.get_organization(organization_id)
        updated = organization.model_copy(update={"is_active": not organization.is_active})
        with gateway_errors():
            self.repo.update_organization(organization.id, {"isActive": updated.is_active})
        self.activity.log_activity(
            context,
            action="organization activated" if updated.is_active else "organization deactivated",
            entity_type=EntityType.ORGANIZATION,
            entity_id=organization.id,
            details=f"Organization {organization.name} {'activated' if updated.is_active else 'deactivated'}",
        )
        return updated

    def delete_organization(self, *, context: RequestUserContext, organization_id: str) -> None:
        organization = self.get_organization(organization_id)
        with gateway_errors():
            self.repo.delete_organization(organization.id)
        self.activity.log_activity(
            context,
            action="organization deleted",
            entity_type=EntityType.ORGANIZATION,
            entity_id=organization.id,
            details=f"Organization {organization.name} deleted",
        )

    # ---------- Categories ----------
    def list_categories(self) -> list[Category]:
        with gateway_errors():
            return self.repo.list_categories()

    def _ensure_category(self, category_id: str) -> Category:
        with gateway_errors():
            category = self.repo.get_category(category_id)
        if category is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found.")
        return category

    def _ensure_unique_category(self, name: str, *, exclude_id: str | None = None) -> None:
        with gateway_errors():
            categories = self.repo.list_categories()
        if any(category.name == name and category.id != exclude_id for category in categories):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Category already exists.")

    def create_category(self, *, context: RequestUserContext, name: str) -> Category:
        name = _required_name(name, "Category")
        self._ensure_unique_category(name)
        with gateway_errors():
            created = self.repo.add_category(Category(id=str(uuid4()), name=name))
        self.activity.log_activity(
            context,
            action="category created",
            entity_type=EntityType.CATEGORY,
            entity_id=created.id,
            details=f"Category {created.name} created",
        )
        return created

    def rename_category(self, *, context: RequestUserContext, category_id: str, name: str) -> Category:
        category = self._ensure_category(category_id)
        name = _required_name(name, "Category")
        self._ensure_unique_category(name, exclude_id=category.id)
        with gateway_errors():
            self.repo.update_category(category.id, {"name": name})
        self.activity.log_activity(
            context,
            action="category updated",
            entity_type=EntityType.CATEGORY,
            entity_id=category.id,
            details=f"Category {category.name} renamed to {name}",
        )
        return category.model_copy(update={"name": name})

    def delete_category(self, *, context: RequestUserContext, category_id: str) -> None:
        category = self._ensure_category(category_id)
        with gateway_errors():
            self.repo.delete_category(category.id)
        self.activity.log_activity(
            context,
            action="category deleted",
            entity_type=EntityType.CATEGORY,
            entity_id=category.id,
            details=f"Category {category.name} deleted",
        )

    def add_subcategory(self, *, context: RequestUserContext, category_id: str, name: str) -> Category:
        category = self._ensure_category(category_id)
        name = _required_name(name, "Subcategory")
        if any(sub.name == name for sub in category.subcategories):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Subcategory already exists.")
        subcategories = [*category.subcategories, Subcategory(id=str(uuid4()), name=name, category_id=category.id)]
        updated = category.model_copy(update={"subcategories": subcategories})
        with gateway_errors():
            self.repo.update_category(category.id, _camel_changes(updated, ["subcategories"]))
        self.activity.log_activity(
            context,
            action="subcategory added",
            entity_type=EntityType.CATEGORY,
            entity_id=category.id,
            details=f"Subcategory {name} added to {category.name}",
        )
        return updated

    def delete_subcategory(self, *, context: RequestUserContext, category_id: str, subcategory_id: str) -> Category:
        category = self._ensure_category(category_id)
        remaining = [sub for sub in category.subcategories if sub.id != subcategory_id]
        if len(remaining) == len(category.subcategories):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subcategory not found.")
        updated = category.model_copy(update={"subcategories": remaining})
        with gateway_errors():
            self.repo.update_category(category.id, _camel_changes(updated, ["subcategories"]))
        self.activity.log_activity(
            context,
            action="subcategory deleted",
            entity_type=EntityType.CATEGORY,
            entity_id=category.id,
            details=f"Subcategory removed from {category.name}",
        )
        return updated

    # ---------- Global suppliers ----------
    def list_suppliers(self) -> list[Supplier]:
        with gateway_errors():
            return sorted(self.repo.list_suppliers(), key=lambda supplier: supplier.name)

    def _ensure_supplier(self, supplier_id: str) -> Supplier:
        with gateway_errors():
            supplier = self.repo.get_supplier(supplier_id)
        if supplier is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Supplier not found.")
        return supplier

    def create_supplier(self, *, context: RequestUserContext, data: SupplierData) -> Supplier:
        fields = _provided(data)
        fields["name"] = _required_name(data.name, "Supplier")
        supplier = Supplier(id=str(uuid4()), created_at=utcnow(), **fields)
        with gateway_errors():
            created = self.repo.add_supplier(supplier)
        self.activity.log_activity(
            context,
            action="supplier created",
            entity_type=EntityType.SUPPLIER,
            entity_id=created.id,
            details=f"Supplier {created.name} created",
        )
        return created

    def update_supplier(self, *, context: RequestUserContext, supplier_id: str, data: SupplierData) -> Supplier:
        supplier = self._ensure_supplier(supplier_id)
        fields = _provided(data)
        if "name" in fields:
            fields["name"] = _required_name(fields["name"], "Supplier")
        updated = supplier.model_copy(update=fields)
        with gateway_errors():
            self.repo.update_supplier(supplier.id, _camel_changes(updated, list(fields)))
        self.activity.log_activity(
            context,
            action="supplier updated",
            entity_type=EntityType.SUPPLIER,
            entity_id=supplier.id,
            details=f"Supplier {updated.name} updated",
        )
        return updated

    def delete_supplier(self, *, context: RequestUserContext, supplier_id: str) -> None:
        supplier = self._ensure_supplier(supplier_id)
        with gateway_errors():
            self.repo.delete_supplier(supplier.id)
        self.activity.log_activity(
            context,
            action="supplier deleted",
            entity_type=EntityType.SUPPLIER,
            entity_id=supplier.id,
            details=f"Supplier {supplier.name} deleted",
        )

    # ---------- System settings ----------
    def get_settings(self) -> SystemSettings:
        with gateway_errors():
            return self.repo.get_settings()

    def update_settings(self, *, context: RequestUserContext, data: SettingsData) -> SystemSettings:
        fields = _provided(data)
        fields["updated_at"] = utcnow()
        current = self.get_settings()
        updated = current.model_copy(update=fields)
        with gateway_errors():
            saved = self.repo.update_settings(_camel_changes(updated, list(fields)))
        self.activity.log_activity(
            context,
            action="settings updated",
            entity_type=EntityType.SETTINGS,
            entity_id="settings",
            details=f"Updated: {', '.join(sorted(key for key in fields if key != 'updated_at'))}",
        )
        return saved
