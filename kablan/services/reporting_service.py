"""Financial reports, dashboards, project metrics and exports."""

from __future__ import annotations

import csv
import dataclasses
import io
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from io import BytesIO
from typing import TYPE_CHECKING, Any, Literal

from fastapi import HTTPException, status
from openpyxl import Workbook

from kablan.core.config import get_settings
from kablan.models.entities import (
    ZERO,
    ActivityLog,
    MilestoneStatus,
    Organization,
    Project,
    User,
    UserRole,
    utcnow,
)
from kablan.repositories.gateway import DocumentRepository
from kablan.repositories.ledger_repository import LedgerRepository
from kablan.services.calculations import percent_of
from kablan.services.directory_service import users_in_scope
from kablan.services.errors import gateway_errors

if TYPE_CHECKING:
    from kablan.core.auth import RequestUserContext

DashboardWindow = Literal["7d", "30d", "90d", "1y"]
ExpenseFormat = Literal["single-sheet", "multi-sheet", "none"]
BudgetHealth = Literal["healthy", "caution", "overrun"]

WINDOW_DELTAS: dict[str, timedelta] = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}

PROJECT_SORT_KEYS = ("name", "contract_amount", "remaining_budget", "profit_margin")

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
HEALTHY_BUDGET_SHARE = Decimal("0.2")


# ---------- Filter and result types ----------
@dataclass(frozen=True, slots=True)
class DateRange:
    """Inclusive on both ends; record dates are calendar days, so a record
    dated on ``end`` is inside the range whatever its time of day."""

    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end

    @classmethod
    def year_to_date(cls, today: date) -> DateRange:
        return cls(start=date(today.year, 1, 1), end=today)


@dataclass(slots=True)
class ReportFilter:
    date_range: DateRange
    project_ids: frozenset[str] = frozenset()
    user_ids: frozenset[str] = frozenset()
    include_archived: bool = False


@dataclass(slots=True)
class ProjectFigures:
    project_id: str
    name: str
    owner_id: str | None
    contract_amount: Decimal
    revenue: Decimal
    expenses: Decimal
    profit: Decimal
    profit_margin: Decimal


@dataclass(slots=True)
class MonthFigures:
    month: str
    revenue: Decimal = ZERO
    expenses: Decimal = ZERO
    profit: Decimal = ZERO


@dataclass(slots=True)
class CategoryFigures:
    category: str
    amount: Decimal
    percentage: Decimal


@dataclass(slots=True)
class FinancialReport:
    date_range: DateRange
    total_revenue: Decimal = ZERO
    total_expenses: Decimal = ZERO
    total_profit: Decimal = ZERO
    total_profit_margin: Decimal = ZERO
    total_projects: int = 0
    monthly: list[MonthFigures] = field(default_factory=list)
    categories: list[CategoryFigures] = field(default_factory=list)
    projects: list[ProjectFigures] = field(default_factory=list)


@dataclass(slots=True)
class ProjectMetrics:
    project_id: str
    name: str
    owner_id: str | None
    is_archived: bool
    contract_amount: Decimal
    total_incomes: Decimal
    total_paid_incomes: Decimal
    total_expenses: Decimal
    profit: Decimal
    remaining_budget: Decimal
    budget_used_percent: Decimal
    profit_margin: Decimal
    budget_health: BudgetHealth
    expenses_by_category: dict[str, Decimal]
    milestone_total: Decimal
    milestones_balanced: bool


@dataclass(slots=True)
class ExportFilePayload:
    media_type: str
    filename: str
    content: bytes


@dataclass(slots=True)
class ProjectExportOptions:
    include_summary: bool = True
    include_incomes: bool = True
    expense_format: ExpenseFormat = "single-sheet"


def to_jsonable(value: Any) -> Any:
    """Decimals as strings, dates as ISO text, dataclasses as dicts."""

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = dataclasses.asdict(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value


# ---------- Visibility ----------
def can_view_project(project: Project, caller: RequestUserContext) -> bool:
    if not caller.is_privileged:
        return project.owner_id == caller.user_id
    if caller.role is UserRole.ADMIN and caller.organization_id:
        return project.organization_id == caller.organization_id
    return True


def visible_projects(projects: Iterable[Project], caller: RequestUserContext) -> list[Project]:
    return [project for project in projects if can_view_project(project, caller)]


def select_projects(
    projects: Iterable[Project],
    report_filter: ReportFilter,
    caller: RequestUserContext,
) -> list[Project]:
    """Visibility first, then archive flag, project ids and owner ids."""

    selected = visible_projects(projects, caller)
    if not report_filter.include_archived:
        selected = [project for project in selected if not project.is_archived]
    if report_filter.project_ids:
        selected = [project for project in selected if project.id in report_filter.project_ids]
    if report_filter.user_ids and caller.is_privileged:
        selected = [project for project in selected if project.owner_id in report_filter.user_ids]
    return selected


# ---------- Financial report ----------
def build_financial_report(
    projects: Iterable[Project],
    report_filter: ReportFilter,
    caller: RequestUserContext,
) -> FinancialReport:
    """Aggregate incomes and expenses inside the filter; inputs are not mutated."""

    date_range = report_filter.date_range
    report = FinancialReport(date_range=date_range)
    months: dict[str, MonthFigures] = {}
    categories: dict[str, Decimal] = defaultdict(lambda: ZERO)

    for project in select_projects(projects, report_filter, caller):
        incomes = [income for income in project.incomes if date_range.contains(income.date)]
        expenses = [expense for expense in project.expenses if date_range.contains(expense.date)]

        revenue = sum((income.amount for income in incomes), ZERO)
        spent = sum((expense.amount for expense in expenses), ZERO)
        profit = revenue - spent
        report.projects.append(
            ProjectFigures(
                project_id=project.id,
                name=project.name,
                owner_id=project.owner_id,
                contract_amount=project.contract_amount,
                revenue=revenue,
                expenses=spent,
                profit=profit,
                profit_margin=percent_of(profit, revenue),
            )
        )
        report.total_revenue += revenue
        report.total_expenses += spent

        for income in incomes:
            bucket = months.setdefault(income.date.strftime("%Y-%m"), MonthFigures(income.date.strftime("%Y-%m")))
            bucket.revenue += income.amount
        for expense in expenses:
            bucket = months.setdefault(expense.date.strftime("%Y-%m"), MonthFigures(expense.date.strftime("%Y-%m")))
            bucket.expenses += expense.amount
            categories[expense.category] += expense.amount

    report.total_profit = report.total_revenue - report.total_expenses
    report.total_profit_margin = percent_of(report.total_profit, report.total_revenue)
    report.total_projects = len(report.projects)

    for bucket in months.values():
        bucket.profit = bucket.revenue - bucket.expenses
    report.monthly = [months[key] for key in sorted(months)]
    report.categories = sorted(
        (
            CategoryFigures(category=name, amount=amount, percentage=percent_of(amount, report.total_expenses))
            for name, amount in categories.items()
        ),
        key=lambda item: item.amount,
        reverse=True,
    )
    report.projects.sort(key=lambda item: item.profit, reverse=True)
    return report


# ---------- Project metrics ----------
def budget_health(contract_amount: Decimal, remaining_budget: Decimal) -> BudgetHealth:
    if remaining_budget >= contract_amount * HEALTHY_BUDGET_SHARE:
        return "healthy"
    if remaining_budget >= ZERO:
        return "caution"
    return "overrun"


def project_metrics(project: Project) -> ProjectMetrics:
    total_incomes = sum((income.amount for income in project.incomes), ZERO)
    total_paid = sum((income.paid_amount or ZERO for income in project.incomes), ZERO)
    total_expenses = sum((expense.amount for expense in project.expenses), ZERO)
    profit = total_incomes - total_expenses
    remaining_budget = project.contract_amount - total_expenses

    by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for expense in project.expenses:
        by_category[expense.category] += expense.amount

    milestone_total = sum((milestone.amount for milestone in project.milestones), ZERO)
    return ProjectMetrics(
        project_id=project.id,
        name=project.name,
        owner_id=project.owner_id,
        is_archived=project.is_archived,
        contract_amount=project.contract_amount,
        total_incomes=total_incomes,
        total_paid_incomes=total_paid,
        total_expenses=total_expenses,
        profit=profit,
        remaining_budget=remaining_budget,
        budget_used_percent=percent_of(total_expenses, project.contract_amount),
        profit_margin=percent_of(profit, total_incomes),
        budget_health=budget_health(project.contract_amount, remaining_budget),
        expenses_by_category=dict(by_category),
        milestone_total=milestone_total,
        milestones_balanced=not project.milestones or milestone_total == project.contract_amount,
    )


def sort_project_metrics(
    metrics: Iterable[ProjectMetrics],
    *,
    sort_by: str = "name",
    descending: bool = False,
    search: str | None = None,
) -> list[ProjectMetrics]:
    if sort_by not in PROJECT_SORT_KEYS:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"sort_by must be one of: {', '.join(PROJECT_SORT_KEYS)}.",
        )
    rows = list(metrics)
    if search:
        needle = search.strip().lower()
        rows = [row for row in rows if needle in row.name.lower()]
    if sort_by == "name":
        return sorted(rows, key=lambda row: row.name.lower(), reverse=descending)
    return sorted(rows, key=lambda row: getattr(row, sort_by), reverse=descending)


# ---------- Dashboards ----------
def top_users(projects: Iterable[Project], users: Iterable[User], *, limit: int = 5) -> list[dict[str, Any]]:
    """Users ranked by profit across the projects they own."""

    owned: dict[str, list[Project]] = defaultdict(list)
    for project in projects:
        if project.owner_id:
            owned[project.owner_id].append(project)

    ranking = []
    for user in users:
        user_projects = owned.get(user.id, [])
        incomes = sum((income.amount for project in user_projects for income in project.incomes), ZERO)
        expenses = sum((expense.amount for project in user_projects for expense in project.expenses), ZERO)
        ranking.append(
            {
                "user_id": user.id,
                "username": user.username,
                "full_name": user.full_name,
                "projects": len(user_projects),
                "incomes": incomes,
                "expenses": expenses,
                "profit": incomes - expenses,
            }
        )
    ranking.sort(key=lambda row: row["profit"], reverse=True)
    return ranking[:limit]


def build_dashboard_stats(
    projects: Iterable[Project],
    users: Iterable[User],
    activity_logs: Iterable[ActivityLog],
    *,
    window: DashboardWindow,
    now: datetime,
    online_window: timedelta = timedelta(minutes=5),
) -> dict[str, Any]:
    if window not in WINDOW_DELTAS:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"window must be one of: {', '.join(WINDOW_DELTAS)}.",
        )
    cutoff = now - WINDOW_DELTAS[window]
    projects = list(projects)
    users = list(users)
    logs = list(activity_logs)

    contracts = sum((project.contract_amount for project in projects), ZERO)
    incomes = sum((income.amount for project in projects for income in project.incomes), ZERO)
    expenses = sum((expense.amount for project in projects for expense in project.expenses), ZERO)
    profit = incomes - expenses
    milestones = [milestone for project in projects for milestone in project.milestones]
    completed = sum(1 for milestone in milestones if milestone.status is MilestoneStatus.COMPLETED)

    return {
        "window": window,
        "generated_at": now,
        "projects": {
            "total": len(projects),
            "active": sum(1 for project in projects if not project.is_archived),
            "archived": sum(1 for project in projects if project.is_archived),
            "recent": sum(1 for project in projects if project.created_at and project.created_at > cutoff),
        },
        "users": {
            "total": len(users),
            "active": sum(1 for user in users if user.is_active),
            "recent": sum(1 for user in users if user.created_at and user.created_at > cutoff),
            "online": sum(1 for user in users if user.last_login and now - user.last_login <= online_window),
        },
        "activity": {
            "total": len(logs),
            "recent": sum(1 for entry in logs if entry.timestamp > cutoff),
            "today": sum(1 for entry in logs if entry.timestamp.date() == now.date()),
        },
        "finances": {
            "contracts": contracts,
            "incomes": incomes,
            "expenses": expenses,
            "profit": profit,
            # Contract denominator; the report's profit margin uses revenue.
            "profitability_rate": percent_of(profit, contracts),
        },
        "milestones": {
            "total": len(milestones),
            "completed": completed,
            "completion_rate": percent_of(Decimal(completed), Decimal(len(milestones))),
        },
        "top_users": top_users(projects, users),
        "recent_activity": [
            entry.to_response()
            for entry in sorted(logs, key=lambda entry: entry.timestamp, reverse=True)[:10]
        ],
    }


def organization_overview(
    organizations: Iterable[Organization],
    users: Iterable[User],
    projects: Iterable[Project],
) -> dict[str, Any]:
    users = list(users)
    projects = list(projects)
    organizations = list(organizations)
    rows = []
    for organization in organizations:
        org_projects = [project for project in projects if project.organization_id == organization.id]
        rows.append(
            {
                "organization_id": organization.id,
                "name": organization.name,
                "is_active": organization.is_active,
                "users": sum(1 for user in users if user.organization_id == organization.id),
                "projects": len(org_projects),
                "total_contract_value": sum((project.contract_amount for project in org_projects), ZERO),
            }
        )
    rows.sort(key=lambda row: row["total_contract_value"], reverse=True)
    return {
        "total_organizations": len(organizations),
        "active_organizations": sum(1 for organization in organizations if organization.is_active),
        "organizations": rows,
    }


# ---------- Exports ----------
def _report_rows(report: FinancialReport) -> list[dict[str, str]]:
    return [
        {
            "project_id": row.project_id,
            "project_name": row.name,
            "owner_id": row.owner_id or "",
            "contract_amount": str(row.contract_amount),
            "revenue": str(row.revenue),
            "expenses": str(row.expenses),
            "profit": str(row.profit),
            "profit_margin": str(row.profit_margin),
        }
        for row in report.projects
    ]


REPORT_COLUMNS = (
    "project_id",
    "project_name",
    "owner_id",
    "contract_amount",
    "revenue",
    "expenses",
    "profit",
    "profit_margin",
)


def export_financial_report(report: FinancialReport, format_name: str) -> ExportFilePayload:
    normalized_format = format_name.strip().lower()
    if normalized_format not in {"csv", "xlsx"}:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="format must be one of: csv, xlsx.",
        )
    rows = _report_rows(report)
    base_filename = f"financial-report-{report.date_range.start.isoformat()}-{report.date_range.end.isoformat()}"

    if normalized_format == "csv":
        sio = io.StringIO()
        writer = csv.DictWriter(sio, fieldnames=list(REPORT_COLUMNS))
        writer.writeheader()
        writer.writerows(rows)
        return ExportFilePayload(
            media_type="text/csv; charset=utf-8",
            filename=f"{base_filename}.csv",
            content=sio.getvalue().encode("utf-8"),
        )

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "projects"
    sheet.append(list(REPORT_COLUMNS))
    for row in rows:
        sheet.append([row[column] for column in REPORT_COLUMNS])

    totals = workbook.create_sheet("totals")
    totals.append(["total_revenue", "total_expenses", "total_profit", "total_profit_margin", "total_projects"])
    totals.append(
        [
            str(report.total_revenue),
            str(report.total_expenses),
            str(report.total_profit),
            str(report.total_profit_margin),
            report.total_projects,
        ]
    )

    monthly = workbook.create_sheet("monthly")
    monthly.append(["month", "revenue", "expenses", "profit"])
    for bucket in report.monthly:
        monthly.append([bucket.month, str(bucket.revenue), str(bucket.expenses), str(bucket.profit)])

    categories = workbook.create_sheet("categories")
    categories.append(["category", "amount", "percentage"])
    for item in report.categories:
        categories.append([item.category, str(item.amount), str(item.percentage)])

    output = BytesIO()
    workbook.save(output)
    return ExportFilePayload(media_type=XLSX_MEDIA_TYPE, filename=f"{base_filename}.xlsx", content=output.getvalue())


def safe_sheet_title(title: str, taken: set[str]) -> str:
    """Excel sheet titles: max 31 chars, no ``[]:*?/\\``, unique per workbook."""

    cleaned = "".join(char for char in title if char not in '[]:*?/\\').strip() or "sheet"
    if len(cleaned) > 31:
        cleaned = cleaned[:28] + "..."
    candidate = cleaned
    suffix = 2
    while candidate in taken:
        marker = f" ({suffix})"
        candidate = cleaned[: 31 - len(marker)] + marker
        suffix += 1
    taken.add(candidate)
    return candidate


EXPENSE_COLUMNS = ("date", "category", "supplier", "description", "amount", "amount_with_vat", "invoice_number")


def _expense_row(expense: Any) -> list[Any]:
    return [
        expense.date.isoformat(),
        expense.category,
        expense.supplier,
        expense.description,
        str(expense.amount),
        str(expense.amount_with_vat) if expense.amount_with_vat is not None else "",
        expense.invoice_number or "",
    ]


def build_project_workbook(project: Project, options: ProjectExportOptions) -> ExportFilePayload:
    workbook = Workbook()
    workbook.remove(workbook.active)
    taken: set[str] = set()

    if options.include_summary:
        metrics = project_metrics(project)
        sheet = workbook.create_sheet(safe_sheet_title("Summary", taken))
        sheet.append(["field", "value"])
        for label, value in (
            ("project", project.name),
            ("description", project.description),
            ("contract_amount", metrics.contract_amount),
            ("total_incomes", metrics.total_incomes),
            ("total_expenses", metrics.total_expenses),
            ("profit", metrics.profit),
            ("remaining_budget", metrics.remaining_budget),
            ("budget_used_percent", metrics.budget_used_percent),
            ("profit_margin", metrics.profit_margin),
            ("budget_health", metrics.budget_health),
        ):
            sheet.append([label, str(value)])
        sheet.append([])
        sheet.append(["category", "amount"])
        for category, amount in sorted(metrics.expenses_by_category.items(), key=lambda item: item[1], reverse=True):
            sheet.append([category, str(amount)])

    if options.include_incomes:
        sheet = workbook.create_sheet(safe_sheet_title("Incomes", taken))
        sheet.append(["date", "description", "amount", "paid_amount", "remaining_amount", "payment_status", "payment_method"])
        for income in sorted(project.incomes, key=lambda item: item.date):
            sheet.append(
                [
                    income.date.isoformat(),
                    income.description,
                    str(income.amount),
                    str(income.paid_amount),
                    str(income.remaining_amount),
                    income.payment_status.value,
                    income.payment_method.value,
                ]
            )
        sheet.append(["", "total", str(sum((income.amount for income in project.incomes), ZERO))])

    expenses = sorted(project.expenses, key=lambda item: item.date)
    if options.expense_format == "single-sheet":
        sheet = workbook.create_sheet(safe_sheet_title("Expenses", taken))
        sheet.append(list(EXPENSE_COLUMNS))
        for expense in expenses:
            sheet.append(_expense_row(expense))
        sheet.append(["", "", "", "total", str(sum((expense.amount for expense in expenses), ZERO))])
    elif options.expense_format == "multi-sheet":
        grouped: dict[str, list[Any]] = defaultdict(list)
        for expense in expenses:
            grouped[expense.category].append(expense)
        for category, rows in grouped.items():
            sheet = workbook.create_sheet(safe_sheet_title(category, taken))
            sheet.append(list(EXPENSE_COLUMNS))
            for expense in rows:
                sheet.append(_expense_row(expense))
            sheet.append(["", "", "", "total", str(sum((expense.amount for expense in rows), ZERO))])

    if not workbook.worksheets:
        workbook.create_sheet(safe_sheet_title("Project", taken)).append(["project", project.name])

    output = BytesIO()
    workbook.save(output)
    return ExportFilePayload(
        media_type=XLSX_MEDIA_TYPE,
        filename=f"project-{project.id}.xlsx",
        content=output.getvalue(),
    )


class ReportingService:
    """Loads snapshots from the stores and runs the aggregation functions."""

    def __init__(self, store: DocumentRepository) -> None:
        self.repo = LedgerRepository(store)
        self.settings = get_settings()

    def _projects(self) -> list[Project]:
        with gateway_errors():
            return self.repo.list_projects()

    def financial_report(self, *, context: RequestUserContext, report_filter: ReportFilter) -> FinancialReport:
        if report_filter.date_range.start > report_filter.date_range.end:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="start_date must be on or before end_date.",
            )
        return build_financial_report(self._projects(), report_filter, context)

    def dashboard(self, *, context: RequestUserContext, window: DashboardWindow) -> dict[str, Any]:
        with gateway_errors():
            projects = visible_projects(self.repo.list_projects(), context)
            users = self.repo.list_users()
            logs = self.repo.list_activity_logs()
        if context.is_privileged:
            scoped_users = users_in_scope(context, users)
        else:
            scoped_users = [user for user in users if user.id == context.user_id]
        if len(scoped_users) < len(users):
            member_ids = {user.id for user in scoped_users}
            logs = [entry for entry in logs if entry.user_id in member_ids]
        users = scoped_users
        return build_dashboard_stats(
            projects,
            users,
            logs,
            window=window,
            now=utcnow(),
            online_window=timedelta(minutes=self.settings.online_window_minutes),
        )

    def organization_overview(self) -> dict[str, Any]:
        with gateway_errors():
            return organization_overview(
                self.repo.list_organizations(),
                self.repo.list_users(),
                self.repo.list_projects(),
            )

    def export_report(
        self,
        *,
        context: RequestUserContext,
        report_filter: ReportFilter,
        format_name: str,
    ) -> ExportFilePayload:
        report = self.financial_report(context=context, report_filter=report_filter)
        return export_financial_report(report, format_name)

    def export_project(
        self,
        *,
        context: RequestUserContext,
        project_id: str,
        options: ProjectExportOptions,
    ) -> ExportFilePayload:
        with gateway_errors():
            project = self.repo.get_project(project_id)
        if project is None or not can_view_project(project, context):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found.")
        return build_project_workbook(project, options)