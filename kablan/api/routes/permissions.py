"""Permission catalog and per-user override endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from kablan.core.auth import RequestUserContext, require_permission
from kablan.db.dependencies import get_repository
from kablan.models.entities import CustomLimits
from kablan.repositories.gateway import DocumentRepository
from kablan.services.permission_service import PermissionService

router = APIRouter(prefix="/permissions", tags=["permissions"])


class CustomLimitsPayload(BaseModel):
    max_projects: int | None = Field(default=None, ge=0)
    can_view_others_projects: bool = False
    can_edit_system_settings: bool = False
    can_export_data: bool = False
    can_manage_users: bool = False


class PermissionsSavePayload(BaseModel):
    permissions: list[str] = Field(default_factory=list)
    custom_limits: CustomLimitsPayload | None = None


def _service(store: DocumentRepository) -> PermissionService:
    return PermissionService(store)


@router.get("/catalog")
def permission_catalog(
    _: RequestUserContext = Depends(require_permission("users.view")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, list[object]]:
    return {"items": _service(store).catalog()}


@router.get("/users")
def list_user_permissions(
    context: RequestUserContext = Depends(require_permission("users.view")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, list[object]]:
    return {"items": _service(store).list_user_permissions(context=context)}


@router.get("/users/{user_id}")
def get_user_permissions(
    user_id: str,
    context: RequestUserContext = Depends(require_permission("users.view")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    return _service(store).get_user_permissions(context=context, user_id=user_id)


@router.put("/users/{user_id}")
def save_user_permissions(
    user_id: str,
    payload: PermissionsSavePayload,
    context: RequestUserContext = Depends(require_permission("users.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    limits = CustomLimits(**payload.custom_limits.model_dump()) if payload.custom_limits is not None else None
    return _service(store).save_permissions(
        context=context,
        user_id=user_id,
        permissions=payload.permissions,
        custom_limits=limits,
    )


@router.delete("/users/{user_id}")
def reset_user_permissions(
    user_id: str,
    context: RequestUserContext = Depends(require_permission("users.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    return _service(store).reset_permissions(context=context, user_id=user_id)
