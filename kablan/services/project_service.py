"""Application service for projects and their nested ledger records."""

from __future__ import annotations

from dataclasses import asdict, dataclass
import datetime as dt
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from fastapi import HTTPException, status
from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from kablan.core.config import get_settings
from kablan.models.entities import (
    ZERO,
    EntityType,
    Expense,
    ExpenseType,
    Income,
    Milestone,
    MilestoneStatus,
    PaymentMethod,
    Project,
    ProjectSupplier,
    Supplier,
    utcnow,
)
from kablan.repositories.gateway import DocumentRepository
from kablan.repositories.ledger_repository import LedgerRepository
from kablan.services.activity_service import ActivityService
from kablan.services.calculations import (
    amount_with_vat,
    amount_without_vat,
    milestone_percentage,
    rebalance_milestones,
)
from kablan.services.errors import gateway_errors
from kablan.services.reporting_service import (
    ProjectMetrics,
    can_view_project,
    project_metrics,
    sort_project_metrics,
    to_jsonable,
    visible_projects,
)

if TYPE_CHECKING:
    from kablan.core.auth import RequestUserContext


@dataclass(slots=True)
class ProjectCreateData:
    name: str
    description: str
    contract_amount: Decimal


@dataclass(slots=True)
class ProjectUpdateData:
    name: str | None = None
    description: str | None = None
    contract_amount: Decimal | None = None


@dataclass(slots=True)
class IncomeData:
    date: dt.date | None = None
    description: str | None = None
    amount: Decimal | None = None
    paid_amount: Decimal | None = None
    payment_method: PaymentMethod | None = None
    actual_payment_date: dt.date | None = None
    notes: str | None = None


@dataclass(slots=True)
class ExpenseData:
    category: str | None = None
    subcategory: str | None = None
    date: dt.date | None = None
    supplier: str | None = None
    supplier_id: str | None = None
    description: str | None = None
    amount: Decimal | None = None
    has_vat: bool | None = None
    amount_with_vat: Decimal | None = None
    has_invoice: bool | None = None
    invoice_number: str | None = None
    expense_type: ExpenseType | None = None
    notes: str | None = None


@dataclass(slots=True)
class MilestoneData:
    name: str | None = None
    description: str | None = None
    amount: Decimal | None = None
    target_date: dt.date | None = None
    status: MilestoneStatus | None = None


@dataclass(slots=True)
class ProjectSupplierData:
    supplier_id: str | None = None
    name: str | None = None
    description: str | None = None
    contact_person: str | None = None
    phone: str | None = None
    email: str | None = None
    vat_number: str | None = None
    business_number: str | None = None
    address: str | None = None
    notes: str | None = None
    agreement_amount: Decimal | None = None
    paid_amount: Decimal | None = None


def _provided(data: Any) -> dict[str, Any]:
    return {key: value for key, value in asdict(data).items() if value is not None}


def _find(items: list[Any], item_id: str, label: str) -> int:
    for index, item in enumerate(items):
        if item.id == item_id:
            return index
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{label} not found.")


class ProjectService:
    """Project lifecycle plus incomes, expenses, milestones and project suppliers.

    Nested records live inside the project document, so every nested change
    rewrites the affected list on the project.
    """

    def __init__(self, store: DocumentRepository) -> None:
        self.repo = LedgerRepository(store)
        self.activity = ActivityService(store)
        self.settings = get_settings()

    # ---------- Access ----------
    def _ensure_project_access(self, *, context: RequestUserContext, project_id: str) -> Project:
        with gateway_errors():
            project = self.repo.get_project(project_id)
        if project is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found.")
        if not can_view_project(project, context):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions for this project.",
            )
        return project

    # ---------- Serialization ----------
    @staticmethod
    def serialize_project(project: Project) -> dict[str, object]:
        payload = project.to_response()
        payload["metrics"] = to_jsonable(project_metrics(project))
        return payload

    @staticmethod
    def serialize_metrics(metrics: ProjectMetrics) -> dict[str, object]:
        return to_jsonable(metrics)

    # ---------- Project CRUD ----------
    def list_projects(
        self,
        *,
        context: RequestUserContext,
        include_archived: bool = False,
        search: str | None = None,
        sort_by: str = "name",
        descending: bool = False,
    ) -> list[ProjectMetrics]:
        with gateway_errors():
            projects = visible_projects(self.repo.list_projects(), context)
        if not include_archived:
            projects = [project for project in projects if not project.is_archived]
        return sort_project_metrics(
            (project_metrics(project) for project in projects),
            sort_by=sort_by,
            descending=descending,
            search=search,
        )

    def get_project(self, *, context: RequestUserContext, project_id: str) -> Project:
        return self._ensure_project_access(context=context, project_id=project_id)

    def create_project(self, *, context: RequestUserContext, data: ProjectCreateData) -> Project:
        name = data.name.strip()
        if not name:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Project name is required.")

        max_projects = context.limits.max_projects
        if max_projects is not None:
            with gateway_errors():
                owned = sum(1 for project in self.repo.list_projects() if project.owner_id == context.user_id)
            if owned >= max_projects:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Project limit reached ({max_projects}).",
                )

        now = utcnow()
        project = Project(
            id=str(uuid4()),
            name=name,
            description=data.description.strip(),
            owner_id=context.user_id,
            created_by=context.impersonator_id or context.user_id,
            organization_id=context.organization_id,
            contract_amount=data.contract_amount,
            created_at=now,
            updated_at=now,
        )
        with gateway_errors():
            created = self.repo.add_project(project)
        self.activity.log_activity(
            context,
            action="project created",
            entity_type=EntityType.PROJECT,
            entity_id=created.id,
            details=f"Project {created.name} created with contract {created.contract_amount}",
        )
        return created

    def update_project(self, *, context: RequestUserContext, project_id: str, data: ProjectUpdateData) -> Project:
        project = self._ensure_project_access(context=context, project_id=project_id)

        updates: dict[str, Any] = {"updated_at": utcnow()}
        if data.name is not None:
            if not data.name.strip():
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Project name is required.")
            updates["name"] = data.name.strip()
        if data.description is not None:
            updates["description"] = data.description.strip()
        if data.contract_amount is not None and data.contract_amount != project.contract_amount:
            updates["contract_amount"] = data.contract_amount
            updates["milestones"] = rebalance_milestones(project.milestones, data.contract_amount)

        updated = project.model_copy(update=updates)
        self._write(updated, *updates.keys())
        self.activity.log_activity(
            context,
            action="project updated",
            entity_type=EntityType.PROJECT,
            entity_id=project.id,
            details=f"Project {updated.name} updated",
        )
        return updated

    def set_archived(self, *, context: RequestUserContext, project_id: str, archived: bool) -> Project:
        project = self._ensure_project_access(context=context, project_id=project_id)
        updated = project.model_copy(update={"is_archived": archived, "updated_at": utcnow()})
        self._write(updated, "is_archived", "updated_at")
        self.activity.log_activity(
            context,
            action="project archived" if archived else "project restored",
            entity_type=EntityType.PROJECT,
            entity_id=project.id,
            details=f"Project {project.name} {'archived' if archived else 'restored from archive'}",
        )
        return updated

    def delete_project(self, *, context: RequestUserContext, project_id: str) -> None:
        project = self._ensure_project_access(context=context, project_id=project_id)
        with gateway_errors():
            self.repo.delete_project(project.id)
        self.activity.log_activity(
            context,
            action="project deleted",
            entity_type=EntityType.PROJECT,
            entity_id=project.id,
            details=f"Project {project.name} deleted",
        )

    def delete_all_projects(self, *, context: RequestUserContext) -> int:
        with gateway_errors():
            projects = visible_projects(self.repo.list_projects(), context)
            for project in projects:
                self.repo.delete_project(project.id)
        self.activity.log_activity(
            context,
            action="projects deleted",
            entity_type=EntityType.PROJECT,
            entity_id="*",
            details=f"{len(projects)} projects deleted",
        )
        return len(projects)

    def _write(self, project: Project, *fields: str) -> None:
        document = project.to_document()
        changes = {to_camel(name): document[to_camel(name)] for name in fields}
        with gateway_errors():
            self.repo.update_project(project.id, changes)

    def _build(self, model: type, values: dict[str, Any]) -> Any:
        try:
            return model.model_validate(values)
        except ValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=[{"loc": error["loc"], "msg": error["msg"]} for error in exc.errors()],
            ) from exc

    def _save_nested(self, project: Project, field_name: str, items: list[Any]) -> Project:
        updated = project.model_copy(update={field_name: items, "updated_at": utcnow()})
        self._write(updated, field_name, "updated_at")
        return updated

    # ---------- Incomes ----------
    def add_income(self, *, context: RequestUserContext, project_id: str, data: IncomeData) -> Income:
        project = self._ensure_project_access(context=context, project_id=project_id)
        if data.amount is None or data.amount <= ZERO:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Income amount must be positive.")
        if data.date is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Income date is required.")
        income = self._build(Income, {"id": str(uuid4()), **_provided(data)})
        self._save_nested(project, "incomes", [*project.incomes, income])
        self.activity.log_activity(
            context,
            action="income added",
            entity_type=EntityType.INCOME,
            entity_id=income.id,
            details=f"Income of {income.amount} added to project {project.name}",
        )
        return income

    def update_income(self, *, context: RequestUserContext, project_id: str, income_id: str, data: IncomeData) -> Income:
        project = self._ensure_project_access(context=context, project_id=project_id)
        incomes = list(project.incomes)
        index = _find(incomes, income_id, "Income")
        if data.amount is not None and data.amount <= ZERO:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Income amount must be positive.")
        income = self._build(Income, {**incomes[index].model_dump(), **_provided(data)})
        incomes[index] = income
        self._save_nested(project, "incomes", incomes)
        self.activity.log_activity(
            context,
            action="income updated",
            entity_type=EntityType.INCOME,
            entity_id=income.id,
            details=f"Income in project {project.name} updated",
        )
        return income

    def delete_income(self, *, context: RequestUserContext, project_id: str, income_id: str) -> None:
        project = self._ensure_project_access(context=context, project_id=project_id)
        incomes = list(project.incomes)
        removed = incomes.pop(_find(incomes, income_id, "Income"))
        self._save_nested(project, "incomes", incomes)
        self.activity.log_activity(
            context,
            action="income deleted",
            entity_type=EntityType.INCOME,
            entity_id=removed.id,
            details=f"Income of {removed.amount} deleted from project {project.name}",
        )

    # ---------- Expenses ----------
    def _supplier(self, supplier_id: str) -> Supplier:
        with gateway_errors():
            supplier = self.repo.get_supplier(supplier_id)
        if supplier is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Supplier not found.")
        return supplier

    def _price_expense(self, values: dict[str, Any]) -> dict[str, Any]:
        """Fill ``amount`` / ``amount_with_vat`` from whichever one was given."""

        rate = self.settings.vat_rate
        amount = values.get("amount")
        gross = values.get("amount_with_vat")
        if amount is None and gross is not None:
            amount = amount_without_vat(gross, rate)
            values["has_vat"] = True
        if amount is None or amount <= ZERO:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Expense amount must be positive.")
        values["amount"] = amount
        values["amount_with_vat"] = amount_with_vat(amount, rate) if values.get("has_vat") else None
        return values

    def add_expense(self, *, context: RequestUserContext, project_id: str, data: ExpenseData) -> Expense:
        project = self._ensure_project_access(context=context, project_id=project_id)
        if not data.category:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Expense category is required.")
        if data.date is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Expense date is required.")
        values = self._price_expense(_provided(data))
        if data.supplier_id and not data.supplier:
            values["supplier"] = self._supplier(data.supplier_id).name
        expense = self._build(Expense, {"id": str(uuid4()), **values})
        self._save_nested(project, "expenses", [*project.expenses, expense])
        self.activity.log_activity(
            context,
            action="expense added",
            entity_type=EntityType.EXPENSE,
            entity_id=expense.id,
            details=f"Expense of {expense.amount} ({expense.category}) added to project {project.name}",
        )
        return expense

    def update_expense(
        self,
        *,
        context: RequestUserContext,
        project_id: str,
        expense_id: str,
        data: ExpenseData,
    ) -> Expense:
        project = self._ensure_project_access(context=context, project_id=project_id)
        expenses = list(project.expenses)
        index = _find(expenses, expense_id, "Expense")
        changes = _provided(data)
        values = {**expenses[index].model_dump(), **changes}
        if "amount_with_vat" in changes and "amount" not in changes:
            values["amount"] = None
        expense = self._build(Expense, self._price_expense(values))
        expenses[index] = expense
        self._save_nested(project, "expenses", expenses)
        self.activity.log_activity(
            context,
            action="expense updated",
            entity_type=EntityType.EXPENSE,
            entity_id=expense.id,
            details=f"Expense in project {project.name} updated",
        )
        return expense

    def delete_expense(self, *, context: RequestUserContext, project_id: str, expense_id: str) -> None:
        project = self._ensure_project_access(context=context, project_id=project_id)
        expenses = list(project.expenses)
        removed = expenses.pop(_find(expenses, expense_id, "Expense"))
        self._save_nested(project, "expenses", expenses)
        self.activity.log_activity(
            context,
            action="expense deleted",
            entity_type=EntityType.EXPENSE,
            entity_id=removed.id,
            details=f"Expense of {removed.amount} deleted from project {project.name}",
        )

    # ---------- Milestones ----------
    def add_milestone(self, *, context: RequestUserContext, project_id: str, data: MilestoneData) -> Milestone:
        project = self._ensure_project_access(context=context, project_id=project_id)
        if not data.name or not data.name.strip():
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Milestone name is required.")
        values = _provided(data)
        amount = values.get("amount", ZERO)
        values["percentage"] = milestone_percentage(amount, project.contract_amount)
        milestone = self._build(Milestone, {"id": str(uuid4()), **values})
        self._save_nested(project, "milestones", [*project.milestones, milestone])
        self.activity.log_activity(
            context,
            action="milestone added",
            entity_type=EntityType.MILESTONE,
            entity_id=milestone.id,
            details=f"Milestone {milestone.name} added to project {project.name}",
        )
        return milestone

    def update_milestone(
        self,
        *,
        context: RequestUserContext,
        project_id: str,
        milestone_id: str,
        data: MilestoneData,
    ) -> Milestone:
        project = self._ensure_project_access(context=context, project_id=project_id)
        milestones = list(project.milestones)
        index = _find(milestones, milestone_id, "Milestone")
        values = {**milestones[index].model_dump(), **_provided(data)}
        values["percentage"] = milestone_percentage(values["amount"], project.contract_amount)
        milestone = self._build(Milestone, values)
        milestones[index] = milestone
        self._save_nested(project, "milestones", milestones)
        self.activity.log_activity(
            context,
            action="milestone updated",
            entity_type=EntityType.MILESTONE,
            entity_id=milestone.id,
            details=f"Milestone {milestone.name} in project {project.name} updated",
        )
        return milestone

    def delete_milestone(self, *, context: RequestUserContext, project_id: str, milestone_id: str) -> None:
        project = self._ensure_project_access(context=context, project_id=project_id)
        milestones = list(project.milestones)
        removed = milestones.pop(_find(milestones, milestone_id, "Milestone"))
        self._save_nested(project, "milestones", milestones)
        self.activity.log_activity(
            context,
            action="milestone deleted",
            entity_type=EntityType.MILESTONE,
            entity_id=removed.id,
            details=f"Milestone {removed.name} deleted from project {project.name}",
        )

    # ---------- Project suppliers ----------
    def add_project_supplier(
        self,
        *,
        context: RequestUserContext,
        project_id: str,
        data: ProjectSupplierData,
    ) -> ProjectSupplier:
        project = self._ensure_project_access(context=context, project_id=project_id)
        values = _provided(data)
        if data.supplier_id:
            linked = self._supplier(data.supplier_id)
            for key in ("name", "description", "contact_person", "phone", "email", "vat_number", "business_number", "address"):
                if values.get(key) is None and getattr(linked, key) is not None:
                    values[key] = getattr(linked, key)
        if not values.get("name"):
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Supplier name is required.")
        supplier = self._build(ProjectSupplier, {"id": str(uuid4()), **values})
        self._save_nested(project, "suppliers", [*project.suppliers, supplier])
        self.activity.log_activity(
            context,
            action="project supplier added",
            entity_type=EntityType.SUPPLIER,
            entity_id=supplier.id,
            details=f"Supplier {supplier.name} added to project {project.name}",
        )
        return supplier

    def update_project_supplier(
        self,
        *,
        context: RequestUserContext,
        project_id: str,
        supplier_id: str,
        data: ProjectSupplierData,
    ) -> ProjectSupplier:
        project = self._ensure_project_access(context=context, project_id=project_id)
        suppliers = list(project.suppliers)
        index = _find(suppliers, supplier_id, "Project supplier")
        supplier = self._build(ProjectSupplier, {**suppliers[index].model_dump(), **_provided(data)})
        suppliers[index] = supplier
        self._save_nested(project, "suppliers", suppliers)
        self.activity.log_activity(
            context,
            action="project supplier updated",
            entity_type=EntityType.SUPPLIER,
            entity_id=supplier.id,
            details=f"Supplier {supplier.name} in project {project.name} updated",
        )
        return supplier

    def delete_project_supplier(self, *, context: RequestUserContext, project_id: str, supplier_id: str) -> None:
        project = self._ensure_project_access(context=context, project_id=project_id)
        suppliers = list(project.suppliers)
        removed = suppliers.pop(_find(suppliers, supplier_id, "Project supplier"))
        self._save_nested(project, "suppliers", suppliers)
        self.activity.log_activity(
            context,
            action="project supplier deleted",
            entity_type=EntityType.SUPPLIER,
            entity_id=removed.id,
            details=f"Supplier {removed.name} removed from project {project.name}",
        )
