"""Project lifecycle and nested ledger record endpoints."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from kablan.core.auth import RequestUserContext, require_permission, require_roles
from kablan.db.dependencies import get_repository
from kablan.models.entities import ExpenseType, MilestoneStatus, PaymentMethod, UserRole
from kablan.repositories.gateway import DocumentRepository
from kablan.services.project_service import (
    ExpenseData,
    IncomeData,
    MilestoneData,
    ProjectCreateData,
    ProjectService,
    ProjectSupplierData,
    ProjectUpdateData,
)

router = APIRouter(prefix="/projects", tags=["projects"])


class ProjectCreatePayload(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=2000)
    contract_amount: Decimal = Field(ge=0, decimal_places=2)


class ProjectUpdatePayload(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    contract_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)


class IncomeCreatePayload(BaseModel):
    date: dt.date
    description: str = Field(default="", max_length=2000)
    amount: Decimal = Field(gt=0, decimal_places=2)
    paid_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    payment_method: PaymentMethod = PaymentMethod.TRANSFER
    actual_payment_date: dt.date | None = None
    notes: str | None = Field(default=None, max_length=2000)


class IncomeUpdatePayload(BaseModel):
    date: dt.date | None = None
    description: str | None = Field(default=None, max_length=2000)
    amount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    paid_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    payment_method: PaymentMethod | None = None
    actual_payment_date: dt.date | None = None
    notes: str | None = Field(default=None, max_length=2000)


class ExpenseCreatePayload(BaseModel):
    category: str = Field(min_length=1, max_length=255)
    subcategory: str | None = Field(default=None, max_length=255)
    date: dt.date
    supplier: str = Field(default="", max_length=255)
    supplier_id: str | None = None
    description: str = Field(default="", max_length=2000)
    amount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    has_vat: bool = False
    amount_with_vat: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    has_invoice: bool = False
    invoice_number: str | None = Field(default=None, max_length=64)
    expense_type: ExpenseType = ExpenseType.REGULAR
    notes: str | None = Field(default=None, max_length=2000)


class ExpenseUpdatePayload(BaseModel):
    category: str | None = Field(default=None, min_length=1, max_length=255)
    subcategory: str | None = Field(default=None, max_length=255)
    date: dt.date | None = None
    supplier: str | None = Field(default=None, max_length=255)
    supplier_id: str | None = None
    description: str | None = Field(default=None, max_length=2000)
    amount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    has_vat: bool | None = None
    amount_with_vat: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    has_invoice: bool | None = None
    invoice_number: str | None = Field(default=None, max_length=64)
    expense_type: ExpenseType | None = None
    notes: str | None = Field(default=None, max_length=2000)


class MilestoneCreatePayload(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    amount: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    target_date: dt.date | None = None
    status: MilestoneStatus = MilestoneStatus.PENDING


class MilestoneUpdatePayload(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    target_date: dt.date | None = None
    status: MilestoneStatus | None = None


class ProjectSupplierPayload(BaseModel):
    supplier_id: str | None = None
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    contact_person: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=64)
    email: str | None = Field(default=None, max_length=255)
    vat_number: str | None = Field(default=None, max_length=64)
    business_number: str | None = Field(default=None, max_length=64)
    address: str | None = Field(default=None, max_length=500)
    notes: str | None = Field(default=None, max_length=2000)
    agreement_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    paid_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)


def _service(store: DocumentRepository) -> ProjectService:
    return ProjectService(store)


# ---------- Projects ----------
@router.get("")
def list_projects(
    include_archived: bool = Query(default=False),
    search: str | None = Query(default=None),
    sort_by: str = Query(default="name"),
    descending: bool = Query(default=False),
    context: RequestUserContext = Depends(require_permission("projects.view")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, list[object]]:
    service = _service(store)
    rows = service.list_projects(
        context=context,
        include_archived=include_archived,
        search=search,
        sort_by=sort_by,
        descending=descending,
    )
    return {"items": [service.serialize_metrics(row) for row in rows]}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_project(
    payload: ProjectCreatePayload,
    context: RequestUserContext = Depends(require_permission("projects.create")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    project = service.create_project(
        context=context,
        data=ProjectCreateData(
            name=payload.name,
            description=payload.description,
            contract_amount=payload.contract_amount,
        ),
    )
    return service.serialize_project(project)


@router.delete("", status_code=status.HTTP_200_OK)
def delete_all_projects(
    context: RequestUserContext = Depends(require_roles(UserRole.ADMIN, UserRole.SUPER_ADMIN)),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, int]:
    service = _service(store)
    return {"deleted": service.delete_all_projects(context=context)}


@router.get("/{project_id}")
def get_project(
    project_id: str,
    context: RequestUserContext = Depends(require_permission("projects.view")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    project = service.get_project(context=context, project_id=project_id)
    return service.serialize_project(project)


@router.patch("/{project_id}")
def update_project(
    project_id: str,
    payload: ProjectUpdatePayload,
    context: RequestUserContext = Depends(require_permission("projects.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    project = service.update_project(
        context=context,
        project_id=project_id,
        data=ProjectUpdateData(
            name=payload.name,
            description=payload.description,
            contract_amount=payload.contract_amount,
        ),
    )
    return service.serialize_project(project)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(
    project_id: str,
    context: RequestUserContext = Depends(require_permission("projects.delete")),
    store: DocumentRepository = Depends(get_repository),
) -> Response:
    service = _service(store)
    service.delete_project(context=context, project_id=project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{project_id}/archive")
def archive_project(
    project_id: str,
    context: RequestUserContext = Depends(require_permission("projects.archive")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    project = service.set_archived(context=context, project_id=project_id, archived=True)
    return service.serialize_project(project)


@router.post("/{project_id}/unarchive")
def unarchive_project(
    project_id: str,
    context: RequestUserContext = Depends(require_permission("projects.archive")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    project = service.set_archived(context=context, project_id=project_id, archived=False)
    return service.serialize_project(project)


# ---------- Incomes ----------
@router.post("/{project_id}/incomes", status_code=status.HTTP_201_CREATED)
def add_income(
    project_id: str,
    payload: IncomeCreatePayload,
    context: RequestUserContext = Depends(require_permission("projects.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    income = service.add_income(context=context, project_id=project_id, data=IncomeData(**payload.model_dump()))
    return income.to_response()


@router.patch("/{project_id}/incomes/{income_id}")
def update_income(
    project_id: str,
    income_id: str,
    payload: IncomeUpdatePayload,
    context: RequestUserContext = Depends(require_permission("projects.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    income = service.update_income(
        context=context,
        project_id=project_id,
        income_id=income_id,
        data=IncomeData(**payload.model_dump(exclude_unset=True)),
    )
    return income.to_response()


@router.delete("/{project_id}/incomes/{income_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_income(
    project_id: str,
    income_id: str,
    context: RequestUserContext = Depends(require_permission("projects.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> Response:
    service = _service(store)
    service.delete_income(context=context, project_id=project_id, income_id=income_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- Expenses ----------
@router.post("/{project_id}/expenses", status_code=status.HTTP_201_CREATED)
def add_expense(
    project_id: str,
    payload: ExpenseCreatePayload,
    context: RequestUserContext = Depends(require_permission("projects.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    expense = service.add_expense(context=context, project_id=project_id, data=ExpenseData(**payload.model_dump()))
    return expense.to_response()


@router.patch("/{project_id}/expenses/{expense_id}")
def update_expense(
    project_id: str,
    expense_id: str,
    payload: ExpenseUpdatePayload,
    context: RequestUserContext = Depends(require_permission("projects.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    expense = service.update_expense(
        context=context,
        project_id=project_id,
        expense_id=expense_id,
        data=ExpenseData(**payload.model_dump(exclude_unset=True)),
    )
    return expense.to_response()


@router.delete("/{project_id}/expenses/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_expense(
    project_id: str,
    expense_id: str,
    context: RequestUserContext = Depends(require_permission("projects.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> Response:
    service = _service(store)
    service.delete_expense(context=context, project_id=project_id, expense_id=expense_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- Milestones ----------
@router.post("/{project_id}/milestones", status_code=status.HTTP_201_CREATED)
def add_milestone(
    project_id: str,
    payload: MilestoneCreatePayload,
    context: RequestUserContext = Depends(require_permission("projects.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    milestone = service.add_milestone(
        context=context,
        project_id=project_id,
        data=MilestoneData(**payload.model_dump()),
    )
    return milestone.to_response()


@router.patch("/{project_id}/milestones/{milestone_id}")
def update_milestone(
    project_id: str,
    milestone_id: str,
    payload: MilestoneUpdatePayload,
    context: RequestUserContext = Depends(require_permission("projects.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    milestone = service.update_milestone(
        context=context,
        project_id=project_id,
        milestone_id=milestone_id,
        data=MilestoneData(**payload.model_dump(exclude_unset=True)),
    )
    return milestone.to_response()


@router.delete("/{project_id}/milestones/{milestone_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_milestone(
    project_id: str,
    milestone_id: str,
    context: RequestUserContext = Depends(require_permission("projects.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> Response:
    service = _service(store)
    service.delete_milestone(context=context, project_id=project_id, milestone_id=milestone_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------- Project suppliers ----------
@router.post("/{project_id}/suppliers", status_code=status.HTTP_201_CREATED)
def add_project_supplier(
    project_id: str,
    payload: ProjectSupplierPayload,
    context: RequestUserContext = Depends(require_permission("projects.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    supplier = service.add_project_supplier(
        context=context,
        project_id=project_id,
        data=ProjectSupplierData(**payload.model_dump(exclude_unset=True)),
    )
    return supplier.to_response()


@router.patch("/{project_id}/suppliers/{supplier_id}")
def update_project_supplier(
    project_id: str,
    supplier_id: str,
    payload: ProjectSupplierPayload,
    context: RequestUserContext = Depends(require_permission("projects.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    supplier = service.update_project_supplier(
        context=context,
        project_id=project_id,
        supplier_id=supplier_id,
        data=ProjectSupplierData(**payload.model_dump(exclude_unset=True)),
    )
    return supplier.to_response()


@router.delete("/{project_id}/suppliers/{supplier_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project_supplier(
    project_id: str,
    supplier_id: str,
    context: RequestUserContext = Depends(require_permission("projects.edit")),
    store: DocumentRepository = Depends(get_repository),
) -> Response:
    service = _service(store)
    service.delete_project_supplier(context=context, project_id=project_id, supplier_id=supplier_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
