"""Permission catalog, role defaults and per-user override resolution."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import HTTPException, status

from kablan.core.config import get_settings
from kablan.models.entities import CustomLimits, EntityType, User, UserPermissions, UserRole
from kablan.repositories.gateway import DocumentRepository
from kablan.repositories.ledger_repository import LedgerRepository
from kablan.services.activity_service import ActivityService
from kablan.services.directory_service import users_in_scope
from kablan.services.errors import gateway_errors

if TYPE_CHECKING:
    from kablan.core.auth import RequestUserContext


@dataclass(frozen=True, slots=True)
class PermissionDefinition:
    id: str
    name: str
    description: str
    category: str


PERMISSION_CATALOG: tuple[PermissionDefinition, ...] = (
    PermissionDefinition("projects.view", "View projects", "View projects", "projects"),
    PermissionDefinition("projects.create", "Create projects", "Create new projects", "projects"),
    PermissionDefinition("projects.edit", "Edit projects", "Edit existing projects", "projects"),
    PermissionDefinition("projects.delete", "Delete projects", "Delete projects", "projects"),
    PermissionDefinition("projects.archive", "Archive projects", "Archive projects", "projects"),
    PermissionDefinition("projects.view_others", "View others' projects", "View projects owned by other users", "projects"),
    PermissionDefinition("users.view", "View users", "View the user list", "users"),
    PermissionDefinition("users.create", "Create users", "Create new users", "users"),
    PermissionDefinition("users.edit", "Edit users", "Edit user details", "users"),
    PermissionDefinition("users.delete", "Delete users", "Delete users", "users"),
    PermissionDefinition("users.impersonate", "Impersonate users", "Act as another user", "users"),
    PermissionDefinition("reports.view", "View reports", "View basic reports", "reports"),
    PermissionDefinition("reports.advanced", "Advanced reports", "View advanced reports and dashboards", "reports"),
    PermissionDefinition("reports.export", "Export reports", "Export reports to files", "reports"),
    PermissionDefinition("reports.financial", "Financial reports", "View financial reports", "reports"),
    PermissionDefinition("settings.view", "View settings", "View system settings", "settings"),
    PermissionDefinition("settings.edit", "Edit settings", "Edit system settings", "settings"),
    PermissionDefinition("settings.categories", "Manage categories", "Manage expense categories", "settings"),
    PermissionDefinition("settings.suppliers", "Manage suppliers", "Manage suppliers", "settings"),
    PermissionDefinition("system.logs", "System logs", "View the activity log", "system"),
    PermissionDefinition("system.backup", "System backup", "Back up system data", "system"),
    PermissionDefinition("system.restore", "System restore", "Restore system data", "system"),
    PermissionDefinition("system.admin", "System administration", "Full system administration", "system"),
)

PERMISSION_IDS: frozenset[str] = frozenset(definition.id for definition in PERMISSION_CATALOG)

USER_DEFAULT_PERMISSIONS: frozenset[str] = frozenset(
    {
        "projects.view",
        "projects.create",
        "projects.edit",
        "projects.archive",
        "reports.view",
        "settings.view",
    }
)


def default_permissions(role: UserRole) -> frozenset[str]:
    if role.is_privileged:
        return PERMISSION_IDS
    return USER_DEFAULT_PERMISSIONS


def default_limits(role: UserRole, *, max_projects_default_user: int = 10) -> CustomLimits:
    if role.is_privileged:
        return CustomLimits(
            max_projects=None,
            can_view_others_projects=True,
            can_edit_system_settings=True,
            can_export_data=True,
            can_manage_users=True,
        )
    return CustomLimits(max_projects=max_projects_default_user)


def resolve_permissions(role: UserRole, override: UserPermissions | None) -> frozenset[str]:
    """Override replaces the role default entirely; no merge."""

    if override is None:
        return default_permissions(role)
    return frozenset(override.permissions)


def resolve_limits(
    role: UserRole,
    override: UserPermissions | None,
    *,
    max_projects_default_user: int = 10,
) -> CustomLimits:
    if override is None or override.custom_limits is None:
        return default_limits(role, max_projects_default_user=max_projects_default_user)
    return override.custom_limits


class PermissionEvaluator:
    """Resolved permissions for a snapshot of users and overrides."""

    def __init__(
        self,
        roles: Mapping[str, UserRole],
        overrides: Mapping[str, UserPermissions],
        *,
        max_projects_default_user: int = 10,
    ) -> None:
        self.roles = dict(roles)
        self.overrides = dict(overrides)
        self.max_projects_default_user = max_projects_default_user

    @classmethod
    def from_records(
        cls,
        users: Iterable[User],
        overrides: Mapping[str, UserPermissions],
        *,
        max_projects_default_user: int = 10,
    ) -> PermissionEvaluator:
        return cls(
            {user.id: user.role for user in users},
            overrides,
            max_projects_default_user=max_projects_default_user,
        )

    def role_of(self, user_id: str) -> UserRole:
        return self.roles.get(user_id, UserRole.USER)

    def permissions_for(self, user_id: str) -> frozenset[str]:
        return resolve_permissions(self.role_of(user_id), self.overrides.get(user_id))

    def limits_for(self, user_id: str) -> CustomLimits:
        return resolve_limits(
            self.role_of(user_id),
            self.overrides.get(user_id),
            max_projects_default_user=self.max_projects_default_user,
        )

    def has_permission(self, user_id: str, permission_id: str) -> bool:
        return permission_id in self.permissions_for(user_id)


def validate_permission_ids(permission_ids: Iterable[str]) -> list[str]:
    """Return de-duplicated ids in input order; unknown ids are rejected."""

    ordered = list(dict.fromkeys(permission_ids))
    unknown = [permission_id for permission_id in ordered if permission_id not in PERMISSION_IDS]
    if unknown:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown permission ids: {', '.join(sorted(unknown))}.",
        )
    return ordered


def serialize_permission_view(
    user: User,
    override: UserPermissions | None,
    *,
    max_projects_default_user: int,
) -> dict:
    return {
        "user_id": user.id,
        "username": user.username,
        "role": user.role.value,
        "has_override": override is not None,
        "permissions": sorted(resolve_permissions(user.role, override)),
        "custom_limits": resolve_limits(
            user.role,
            override,
            max_projects_default_user=max_projects_default_user,
        ).to_response(),
    }


class PermissionService:
    """Read and edit per-user permission overrides."""

    def __init__(self, store: DocumentRepository) -> None:
        self.repo = LedgerRepository(store)
        self.activity = ActivityService(store)
        self.settings = get_settings()

    def evaluator(self) -> PermissionEvaluator:
        with gateway_errors():
            return PermissionEvaluator.from_records(
                self.repo.list_users(),
                self.repo.permission_overrides(),
                max_projects_default_user=self.settings.max_projects_default_user,
            )

    def catalog(self) -> list[dict]:
        return [
            {
                "id": definition.id,
                "name": definition.name,
                "description": definition.description,
                "category": definition.category,
            }
            for definition in PERMISSION_CATALOG
        ]

    def _require_user(self, context: RequestUserContext, user_id: str) -> User:
        with gateway_errors():
            users = self.repo.list_users()
        user = next((item for item in users_in_scope(context, users) if item.id == user_id), None)
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found.")
        return user

    @staticmethod
    def _ensure_editable(context: RequestUserContext, user: User) -> None:
        if user.role is UserRole.SUPER_ADMIN and not context.is_super_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only a super admin can change a super admin's permissions.",
            )

    def list_user_permissions(self, *, context: RequestUserContext) -> list[dict]:
        with gateway_errors():
            users = users_in_scope(context, self.repo.list_users())
            overrides = self.repo.permission_overrides()
        return [
            serialize_permission_view(
                user,
                overrides.get(user.id),
                max_projects_default_user=self.settings.max_projects_default_user,
            )
            for user in sorted(users, key=lambda item: item.username.lower())
        ]

    def get_user_permissions(self, *, context: RequestUserContext, user_id: str) -> dict:
        user = self._require_user(context, user_id)
        with gateway_errors():
            override = self.repo.permission_overrides().get(user_id)
        return serialize_permission_view(
            user,
            override,
            max_projects_default_user=self.settings.max_projects_default_user,
        )

    def save_permissions(
        self,
        *,
        context: RequestUserContext,
        user_id: str,
        permissions: list[str],
        custom_limits: CustomLimits | None,
    ) -> dict:
        user = self._require_user(context, user_id)
        self._ensure_editable(context, user)
        override = UserPermissions(
            user_id=user_id,
            permissions=validate_permission_ids(permissions),
            custom_limits=custom_limits,
        )
        with gateway_errors():
            self.repo.upsert_permissions(override)
        self.activity.log_activity(
            context,
            action="permissions updated",
            entity_type=EntityType.USER,
            entity_id=user_id,
            details=f"Permissions for {user.username}: {len(override.permissions)} granted",
        )
        return serialize_permission_view(
            user,
            override,
            max_projects_default_user=self.settings.max_projects_default_user,
        )

    def reset_permissions(self, *, context: RequestUserContext, user_id: str) -> dict:
        user = self._require_user(context, user_id)
        self._ensure_editable(context, user)
        with gateway_errors():
            if user_id in self.repo.permission_overrides():
                self.repo.delete_permissions(user_id)
        self.activity.log_activity(
            context,
            action="permissions reset",
            entity_type=EntityType.USER,
            entity_id=user_id,
            details=f"Permissions for {user.username} restored to role defaults",
        )
        return serialize_permission_view(
            user,
            None,
            max_projects_default_user=self.settings.max_projects_default_user,
        )
