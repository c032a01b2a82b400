"""Request identity, impersonation and permission guard utilities."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from fastapi import Depends, Header, HTTPException, status

from kablan.core.config import get_settings
from kablan.db.dependencies import get_repository
from kablan.models.entities import CustomLimits, User, UserRole, utcnow
from kablan.repositories.gateway import DocumentRepository, GatewayError
from kablan.repositories.ledger_repository import LedgerRepository
from kablan.services.errors import gateway_errors
from kablan.services.permission_service import PERMISSION_IDS, PermissionEvaluator, default_limits

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestUserContext:
    """Acting user resolved from headers and stored users/overrides."""

    user_id: str
    username: str
    full_name: str | None
    role: UserRole
    organization_id: str | None
    permissions: frozenset[str]
    limits: CustomLimits
    impersonator_id: str | None = None

    @property
    def is_privileged(self) -> bool:
        return self.role.is_privileged

    @property
    def is_super_admin(self) -> bool:
        return self.role is UserRole.SUPER_ADMIN

    def can(self, permission_id: str) -> bool:
        return permission_id in self.permissions


def _context_for(user: User, evaluator: PermissionEvaluator, *, impersonator_id: str | None = None) -> RequestUserContext:
    return RequestUserContext(
        user_id=user.id,
        username=user.username,
        full_name=user.full_name,
        role=user.role,
        organization_id=user.organization_id,
        permissions=evaluator.permissions_for(user.id),
        limits=evaluator.limits_for(user.id),
        impersonator_id=impersonator_id,
    )


def _development_context(user_id: str) -> RequestUserContext:
    return RequestUserContext(
        user_id=user_id,
        username=user_id,
        full_name="Development principal",
        role=UserRole.SUPER_ADMIN,
        organization_id=None,
        permissions=PERMISSION_IDS,
        limits=default_limits(UserRole.SUPER_ADMIN),
    )


def _refresh_last_login(repo: LedgerRepository, user: User, refresh_seconds: int) -> None:
    now = utcnow()
    if user.last_login is not None and now - user.last_login < timedelta(seconds=refresh_seconds):
        return
    try:
        repo.update_user(user.id, {"lastLogin": now.isoformat()})
    except GatewayError as exc:
        logger.warning("Could not refresh last login for user %s: %s", user.id, exc)


def get_current_user_context(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    x_impersonate_user_id: str | None = Header(default=None, alias="X-Impersonate-User-Id"),
    store: DocumentRepository = Depends(get_repository),
) -> RequestUserContext:
    """Resolve the acting user and its effective permissions.

    Header strategy:
    - ``X-User-Id`` is a trusted header set by the proxy / test clients.
    - ``X-Impersonate-User-Id`` switches the context to another user when
      the caller holds ``users.impersonate``.
    """

    settings = get_settings()
    repo = LedgerRepository(store)
    user_id = (x_user_id or "").strip()
    if not user_id:
        if not settings.auth_allow_dev_principal:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Missing identity header. Expected X-User-Id or enable development principal fallback.",
            )
        user_id = settings.auth_dev_user_id

    with gateway_errors():
        users = {user.id: user for user in repo.list_users()}
        overrides = repo.permission_overrides()
    evaluator = PermissionEvaluator.from_records(
        users.values(),
        overrides,
        max_projects_default_user=settings.max_projects_default_user,
    )

    user = users.get(user_id)
    if user is None and not x_user_id and settings.auth_allow_dev_principal:
        return _development_context(user_id)
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown or inactive user.")

    _refresh_last_login(repo, user, settings.last_login_refresh_seconds)
    context = _context_for(user, evaluator)

    target_id = (x_impersonate_user_id or "").strip()
    if not target_id or target_id == user.id:
        return context
    if not context.can("users.impersonate"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions to impersonate users.",
        )
    target = users.get(target_id)
    if target is None or not target.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Impersonated user not found.")
    logger.info("User %s is acting as user %s", user.id, target.id)
    return _context_for(target, evaluator, impersonator_id=user.id)


def require_permission(*permission_ids: str):
    """Dependency factory requiring every provided permission id."""

    required = set(permission_ids)

    def dependency(context: RequestUserContext = Depends(get_current_user_context)) -> RequestUserContext:
        if not required.issubset(context.permissions):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions for this operation.",
            )
        return context

    return dependency


def require_roles(*roles: UserRole):
    """Dependency factory requiring at least one provided role."""

    allowed = set(roles)

    def dependency(context: RequestUserContext = Depends(get_current_user_context)) -> RequestUserContext:
        if context.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role permissions for this operation.",
            )
        return context

    return dependency
