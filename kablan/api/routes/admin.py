"""Administration endpoints for users and organizations."""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from kablan.core.auth import RequestUserContext, require_permission, require_roles
from kablan.db.dependencies import get_repository
from kablan.models.entities import UserRole
from kablan.repositories.gateway import DocumentRepository
from kablan.services.directory_service import DirectoryService, OrganizationData, UserData

router = APIRouter(prefix="/admin", tags=["admin"])


class UserCreatePayload(BaseModel):
    username: str = Field(min_length=1, max_length=128)
    full_name: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=320)
    role: UserRole = UserRole.USER
    organization_id: str | None = None
    is_active: bool = True


class UserUpdatePayload(BaseModel):
    username: str | None = Field(default=None, min_length=1, max_length=128)
    full_name: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=320)
    role: UserRole | None = None
    organization_id: str | None = None
    is_active: bool | None = None


class OrganizationPayload(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    contact_person: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=64)
    vat_number: str | None = Field(default=None, max_length=64)
    business_number: str | None = Field(default=None, max_length=64)
    logo: str | None = Field(default=None, max_length=2048)
    vat_rate: Decimal | None = Field(default=None, ge=0, le=100)
    tax_rate: Decimal | None = Field(default=None, ge=0, le=100)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    company_name: str | None = Field(default=None, max_length=255)


def _service(store: DocumentRepository) -> DirectoryService:
    return DirectoryService(store)


# ---------- Users ----------
@router.get("/users")
def list_users(
    context: RequestUserContext = Depends(require_permission("users.view")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, list[object]]:
    return {"items": [user.to_response() for user in _service(store).list_users(context=context)]}


@router.post("/users", status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreatePayload,
    context: RequestUserContext = Depends(require_permission("users.create")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    user = _service(store).create_user(context=context, data=UserData(**payload.model_dump()))
    return user.to_response()


@router.get("/users/{user_id}")
def get_user(
    user_id: str,
    context: RequestUserContext = Depends(require_permission("users.view")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    return _service(store).get_user(context=context, user_id=user_id).to_response()


@router.patch("/users/{user_id}")
def update_user(
    user_id: str,
    payload: UserUpdatePayload,
    context: RequestUserContext = Depends(require_permission("users.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    user = _service(store).update_user(
        context=context,
        user_id=user_id,
        data=UserData(**payload.model_dump(exclude_unset=True)),
    )
    return user.to_response()


@router.delete("/users/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    user_id: str,
    context: RequestUserContext = Depends(require_permission("users.delete")),
    store: DocumentRepository = Depends(get_repository),
) -> Response:
    _service(store).delete_user(context=context, user_id=user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- Organizations ----------
@router.get("/organizations")
def list_organizations(
    _: RequestUserContext = Depends(require_roles(UserRole.SUPER_ADMIN)),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, list[object]]:
    return {"items": [org.to_response() for org in _service(store).list_organizations()]}


@router.post("/organizations", status_code=status.HTTP_201_CREATED)
def create_organization(
    payload: OrganizationPayload,
    context: RequestUserContext = Depends(require_roles(UserRole.SUPER_ADMIN)),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    organization = _service(store).create_organization(
        context=context,
        data=OrganizationData(**payload.model_dump(exclude_unset=True)),
    )
    return organization.to_response()


@router.get("/organizations/{organization_id}")
def get_organization(
    organization_id: str,
    _: RequestUserContext = Depends(require_roles(UserRole.SUPER_ADMIN)),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    return _service(store).get_organization(organization_id).to_response()


@router.patch("/organizations/{organization_id}")
def update_organization(
    organization_id: str,
    payload: OrganizationPayload,
    context: RequestUserContext = Depends(require_roles(UserRole.SUPER_ADMIN)),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    organization = _service(store).update_organization(
        context=context,
        organization_id=organization_id,
        data=OrganizationData(**payload.model_dump(exclude_unset=True)),
    )
    return organization.to_response()


@router.post("/organizations/{organization_id}/toggle-active")
def toggle_organization(
    organization_id: str,
    context: RequestUserContext = Depends(require_roles(UserRole.SUPER_ADMIN)),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    return _service(store).toggle_organization(context=context, organization_id=organization_id).to_response()


@router.delete("/organizations/{organization_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_organization(
    organization_id: str,
    context: RequestUserContext = Depends(require_roles(UserRole.SUPER_ADMIN)),
    store: DocumentRepository = Depends(get_repository),
) -> Response:
    _service(store).delete_organization(context=context, organization_id=organization_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
