"""Expense categories, global suppliers and system settings endpoints."""

from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from kablan.core.auth import RequestUserContext, require_permission
from kablan.db.dependencies import get_repository
from kablan.repositories.gateway import DocumentRepository
from kablan.services.directory_service import DirectoryService, SettingsData, SupplierData

router = APIRouter(tags=["catalog"])


class NamePayload(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class SupplierPayload(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    contact_person: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=64)
    email: str | None = Field(default=None, max_length=320)
    vat_number: str | None = Field(default=None, max_length=64)
    business_number: str | None = Field(default=None, max_length=64)
    address: str | None = Field(default=None, max_length=500)


class SettingsPayload(BaseModel):
    vat_rate: Decimal | None = Field(default=None, ge=0, le=100)
    tax_rate: Decimal | None = Field(default=None, ge=0, le=100)
    company_name: str | None = Field(default=None, max_length=255)
    company_address: str | None = Field(default=None, max_length=500)
    company_phone: str | None = Field(default=None, max_length=64)
    company_email: str | None = Field(default=None, max_length=320)
    currency: str | None = Field(default=None, min_length=3, max_length=3)


def _service(store: DocumentRepository) -> DirectoryService:
    return DirectoryService(store)


# ---------- Categories ----------
@router.get("/categories")
def list_categories(
    _: RequestUserContext = Depends(require_permission("projects.view")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, list[object]]:
    return {"items": [category.to_response() for category in _service(store).list_categories()]}


@router.post("/categories", status_code=status.HTTP_201_CREATED)
def create_category(
    payload: NamePayload,
    context: RequestUserContext = Depends(require_permission("settings.categories")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    return _service(store).create_category(context=context, name=payload.name).to_response()


@router.patch("/categories/{category_id}")
def rename_category(
    category_id: str,
    payload: NamePayload,
    context: RequestUserContext = Depends(require_permission("settings.categories")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    return _service(store).rename_category(context=context, category_id=category_id, name=payload.name).to_response()


@router.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(
    category_id: str,
    context: RequestUserContext = Depends(require_permission("settings.categories")),
    store: DocumentRepository = Depends(get_repository),
) -> Response:
    _service(store).delete_category(context=context, category_id=category_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/categories/{category_id}/subcategories", status_code=status.HTTP_201_CREATED)
def add_subcategory(
    category_id: str,
    payload: NamePayload,
    context: RequestUserContext = Depends(require_permission("settings.categories")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    return _service(store).add_subcategory(context=context, category_id=category_id, name=payload.name).to_response()


@router.delete("/categories/{category_id}/subcategories/{subcategory_id}")
def delete_subcategory(
    category_id: str,
    subcategory_id: str,
    context: RequestUserContext = Depends(require_permission("settings.categories")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    category = _service(store).delete_subcategory(
        context=context,
        category_id=category_id,
        subcategory_id=subcategory_id,
    )
    return category.to_response()


# ---------- Global suppliers ----------
@router.get("/suppliers")
def list_suppliers(
    _: RequestUserContext = Depends(require_permission("projects.view")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, list[object]]:
    return {"items": [supplier.to_response() for supplier in _service(store).list_suppliers()]}


@router.post("/suppliers", status_code=status.HTTP_201_CREATED)
def create_supplier(
    payload: SupplierPayload,
    context: RequestUserContext = Depends(require_permission("settings.suppliers")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    supplier = _service(store).create_supplier(
        context=context,
        data=SupplierData(**payload.model_dump(exclude_unset=True)),
    )
    return supplier.to_response()


@router.patch("/suppliers/{supplier_id}")
def update_supplier(
    supplier_id: str,
    payload: SupplierPayload,
    context: RequestUserContext = Depends(require_permission("settings.suppliers")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    supplier = _service(store).update_supplier(
        context=context,
        supplier_id=supplier_id,
        data=SupplierData(**payload.model_dump(exclude_unset=True)),
    )
    return supplier.to_response()


@router.delete("/suppliers/{supplier_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_supplier(
    supplier_id: str,
    context: RequestUserContext = Depends(require_permission("settings.suppliers")),
    store: DocumentRepository = Depends(get_repository),
) -> Response:
    _service(store).delete_supplier(context=context, supplier_id=supplier_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- System settings ----------
@router.get("/settings")
def get_settings(
    _: RequestUserContext = Depends(require_permission("settings.view")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    return _service(store).get_settings().to_response()


@router.patch("/settings")
def update_settings(
    payload: SettingsPayload,
    context: RequestUserContext = Depends(require_permission("settings.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    settings = _service(store).update_settings(
        context=context,
        data=SettingsData(**payload.model_dump(exclude_unset=True)),
    )
    return settings.to_response()
