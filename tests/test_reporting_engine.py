from __future__ import annotations

import csv
import io
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi import HTTPException
from openpyxl import load_workbook

from kablan.core.auth import RequestUserContext
from kablan.models.entities import (
    ActivityLog,
    EntityType,
    Expense,
    Income,
    Milestone,
    MilestoneStatus,
    Organization,
    Project,
    User,
    UserRole,
)
from kablan.services.permission_service import default_limits, default_permissions
from kablan.services.reporting_service import (
    DateRange,
    ProjectExportOptions,
    ReportFilter,
    budget_health,
    build_dashboard_stats,
    build_financial_report,
    build_project_workbook,
    export_financial_report,
    organization_overview,
    project_metrics,
    safe_sheet_title,
    sort_project_metrics,
    top_users,
)

YEAR_2024 = DateRange(start=date(2024, 1, 1), end=date(2024, 12, 31))
NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def _context(user_id: str, role: UserRole = UserRole.USER, organization_id: str | None = None) -> RequestUserContext:
    return RequestUserContext(
        user_id=user_id,
        username=user_id,
        full_name=None,
        role=role,
        organization_id=organization_id,
        permissions=default_permissions(role),
        limits=default_limits(role),
    )


def _income(amount: str, day: date, income_id: str = "i") -> Income:
    return Income(id=f"{income_id}-{day.isoformat()}", date=day, amount=Decimal(amount))


def _expense(amount: str, day: date, category: str = "חומרי בנייה") -> Expense:
    return Expense(id=f"e-{category}-{day.isoformat()}", category=category, date=day, amount=Decimal(amount))


def _project(
    project_id: str,
    owner_id: str,
    *,
    contract: str = "100000",
    organization_id: str | None = None,
    incomes: list[Income] | None = None,
    expenses: list[Expense] | None = None,
    is_archived: bool = False,
) -> Project:
    return Project(
        id=project_id,
        name=f"Project {project_id}",
        owner_id=owner_id,
        organization_id=organization_id,
        contract_amount=Decimal(contract),
        incomes=incomes or [],
        expenses=expenses or [],
        is_archived=is_archived,
    )


def test_financial_report_totals_for_single_project() -> None:
    project = _project(
        "p1",
        "u1",
        incomes=[_income("50000", date(2024, 3, 15))],
        expenses=[_expense("20000", date(2024, 3, 20))],
    )

    report = build_financial_report([project], ReportFilter(date_range=YEAR_2024), _context("u1"))

    assert report.total_revenue == Decimal("50000")
    assert report.total_expenses == Decimal("20000")
    assert report.total_profit == Decimal("30000")
    assert report.total_profit_margin == Decimal("60.00")
    assert report.total_projects == 1
    assert report.projects[0].profit == Decimal("30000")
    assert report.categories[0].category == "חומרי בנייה"
    assert report.categories[0].percentage == Decimal("100.00")


def test_financial_report_includes_records_dated_on_end_day() -> None:
    legacy = Income.model_validate({"id": "late", "date": "2024-03-31T23:59:00", "amount": "700"})
    project = _project("p1", "u1", incomes=[legacy, _income("100", date(2024, 4, 1))])
    march = DateRange(start=date(2024, 3, 1), end=date(2024, 3, 31))

    report = build_financial_report([project], ReportFilter(date_range=march), _context("u1"))

    assert report.total_revenue == Decimal("700")


def test_financial_report_on_empty_selection_is_all_zero() -> None:
    report = build_financial_report([], ReportFilter(date_range=YEAR_2024), _context("u1"))

    assert report.total_revenue == Decimal("0")
    assert report.total_profit == Decimal("0")
    assert report.total_profit_margin == Decimal("0")
    assert report.total_projects == 0
    assert report.monthly == []
    assert report.categories == []


def test_regular_user_never_sees_other_owners_even_when_filtering_by_them() -> None:
    own = _project("p1", "u1", incomes=[_income("1000", date(2024, 2, 1))])
    other = _project("p2", "u2", incomes=[_income("9000", date(2024, 2, 1))])
    report_filter = ReportFilter(date_range=YEAR_2024, user_ids=frozenset({"u2"}))

    report = build_financial_report([own, other], report_filter, _context("u1"))

    assert [row.project_id for row in report.projects] == ["p1"]
    assert report.total_revenue == Decimal("1000")


def test_privileged_caller_can_filter_by_owner() -> None:
    own = _project("p1", "u1", incomes=[_income("1000", date(2024, 2, 1))])
    other = _project("p2", "u2", incomes=[_income("9000", date(2024, 2, 1))])
    report_filter = ReportFilter(date_range=YEAR_2024, user_ids=frozenset({"u2"}))

    report = build_financial_report([own, other], report_filter, _context("root", UserRole.SUPER_ADMIN))

    assert [row.project_id for row in report.projects] == ["p2"]


def test_organization_admin_is_scoped_to_its_organization() -> None:
    inside = _project("p1", "u1", organization_id="org-a")
    outside = _project("p2", "u2", organization_id="org-b")
    admin = _context("admin-a", UserRole.ADMIN, organization_id="org-a")

    report = build_financial_report([inside, outside], ReportFilter(date_range=YEAR_2024), admin)

    assert [row.project_id for row in report.projects] == ["p1"]


def test_archived_projects_are_excluded_unless_requested() -> None:
    archived = _project("p1", "u1", is_archived=True)
    caller = _context("u1")

    assert build_financial_report([archived], ReportFilter(date_range=YEAR_2024), caller).total_projects == 0
    included = build_financial_report(
        [archived],
        ReportFilter(date_range=YEAR_2024, include_archived=True),
        caller,
    )
    assert included.total_projects == 1


def test_monthly_series_is_ascending_and_categories_descending() -> None:
    project = _project(
        "p1",
        "u1",
        incomes=[_income("300", date(2024, 5, 2)), _income("100", date(2024, 1, 9))],
        expenses=[
            _expense("50", date(2024, 5, 3), "חשמל"),
            _expense("150", date(2024, 1, 10), "קבלני משנה"),
        ],
    )

    report = build_financial_report([project], ReportFilter(date_range=YEAR_2024), _context("u1"))

    assert [bucket.month for bucket in report.monthly] == ["2024-01", "2024-05"]
    assert report.monthly[0].profit == Decimal("-50")
    assert [item.category for item in report.categories] == ["קבלני משנה", "חשמל"]
    assert [item.percentage for item in report.categories] == [Decimal("75.00"), Decimal("25.00")]


def test_report_does_not_mutate_projects() -> None:
    project = _project("p1", "u1", incomes=[_income("100", date(2024, 1, 9))])
    before = project.model_dump()

    build_financial_report([project], ReportFilter(date_range=YEAR_2024), _context("u1"))

    assert project.model_dump() == before


def test_budget_health_thresholds() -> None:
    contract = Decimal("100000")
    assert budget_health(contract, Decimal("20000")) == "healthy"
    assert budget_health(contract, Decimal("19999")) == "caution"
    assert budget_health(contract, Decimal("0")) == "caution"
    assert budget_health(contract, Decimal("-1")) == "overrun"


def test_project_metrics_summarize_ledger() -> None:
    project = _project(
        "p1",
        "u1",
        contract="100000",
        incomes=[Income(id="i1", date=date(2024, 1, 1), amount=Decimal("40000"), paid_amount=Decimal("10000"))],
        expenses=[_expense("30000", date(2024, 1, 2)), _expense("55000", date(2024, 1, 3), "חשמל")],
    )
    project.milestones.append(Milestone(id="m1", name="All", amount=Decimal("100000")))

    metrics = project_metrics(project)

    assert metrics.total_incomes == Decimal("40000")
    assert metrics.total_paid_incomes == Decimal("10000")
    assert metrics.total_expenses == Decimal("85000")
    assert metrics.remaining_budget == Decimal("15000")
    assert metrics.budget_used_percent == Decimal("85.00")
    assert metrics.budget_health == "caution"
    assert metrics.expenses_by_category["חשמל"] == Decimal("55000")
    assert metrics.milestones_balanced is True


def test_sort_project_metrics_rejects_unknown_key() -> None:
    metrics = [project_metrics(_project("p1", "u1"))]

    with pytest.raises(HTTPException) as exc_info:
        sort_project_metrics(metrics, sort_by="owner")

    assert exc_info.value.status_code == 422


def test_sort_project_metrics_by_remaining_budget() -> None:
    lean = _project("p1", "u1", contract="1000")
    rich = _project("p2", "u1", contract="9000")

    rows = sort_project_metrics([project_metrics(lean), project_metrics(rich)], sort_by="remaining_budget", descending=True)

    assert [row.project_id for row in rows] == ["p2", "p1"]


def test_dashboard_stats_counts_and_rates() -> None:
    projects = [
        _project(
            "p1",
            "u1",
            contract="100000",
            incomes=[_income("50000", date(2024, 6, 1))],
            expenses=[_expense("30000", date(2024, 6, 2))],
        ),
        _project("p2", "u2", contract="100000", is_archived=True),
    ]
    projects[0].created_at = NOW - timedelta(days=3)
    projects[0].milestones.extend(
        [
            Milestone(id="m1", name="A", status=MilestoneStatus.COMPLETED),
            Milestone(id="m2", name="B"),
        ]
    )
    users = [
        User(id="u1", username="u1", last_login=NOW - timedelta(minutes=2)),
        User(id="u2", username="u2", last_login=NOW - timedelta(hours=2), is_active=False),
    ]
    logs = [
        ActivityLog(
            id="l1",
            user_id="u1",
            action="project created",
            entity_type=EntityType.PROJECT,
            entity_id="p1",
            timestamp=NOW - timedelta(hours=1),
        ),
        ActivityLog(
            id="l2",
            user_id="u1",
            action="income added",
            entity_type=EntityType.INCOME,
            entity_id="i1",
            timestamp=NOW - timedelta(days=40),
        ),
    ]

    stats = build_dashboard_stats(projects, users, logs, window="30d", now=NOW)

    assert stats["projects"] == {"total": 2, "active": 1, "archived": 1, "recent": 1}
    assert stats["users"]["active"] == 1
    assert stats["users"]["online"] == 1
    assert stats["activity"] == {"total": 2, "recent": 1, "today": 1}
    assert stats["finances"]["profit"] == Decimal("20000")
    assert stats["finances"]["profitability_rate"] == Decimal("10.00")
    assert stats["milestones"]["completion_rate"] == Decimal("50.00")
    assert [entry["id"] for entry in stats["recent_activity"]] == ["l1", "l2"]


def test_dashboard_rejects_unknown_window() -> None:
    with pytest.raises(HTTPException) as exc_info:
        build_dashboard_stats([], [], [], window="2w", now=NOW)  # type: ignore[arg-type]

    assert exc_info.value.status_code == 422


def test_top_users_ranked_by_profit_and_limited() -> None:
    users = [User(id=f"u{index}", username=f"u{index}") for index in range(7)]
    projects = [
        _project(f"p{index}", f"u{index}", incomes=[_income(str(index * 100), date(2024, 1, 1))])
        for index in range(7)
    ]

    ranking = top_users(projects, users)

    assert len(ranking) == 5
    assert [row["user_id"] for row in ranking] == ["u6", "u5", "u4", "u3", "u2"]
    assert ranking[0]["profit"] == Decimal("600")


def test_organization_overview_sorted_by_contract_value() -> None:
    organizations = [
        Organization(id="org-a", name="A"),
        Organization(id="org-b", name="B", is_active=False),
    ]
    users = [User(id="u1", username="u1", organization_id="org-b")]
    projects = [
        _project("p1", "u1", contract="1000", organization_id="org-a"),
        _project("p2", "u1", contract="5000", organization_id="org-b"),
    ]

    overview = organization_overview(organizations, users, projects)

    assert overview["total_organizations"] == 2
    assert overview["active_organizations"] == 1
    assert [row["organization_id"] for row in overview["organizations"]] == ["org-b", "org-a"]
    assert overview["organizations"][0]["users"] == 1


def test_financial_report_csv_export() -> None:
    project = _project("p1", "u1", incomes=[_income("50000", date(2024, 3, 15))])
    report = build_financial_report([project], ReportFilter(date_range=YEAR_2024), _context("u1"))

    exported = export_financial_report(report, "CSV")

    assert exported.filename == "financial-report-2024-01-01-2024-12-31.csv"
    rows = list(csv.DictReader(io.StringIO(exported.content.decode("utf-8"))))
    assert rows[0]["project_id"] == "p1"
    assert Decimal(rows[0]["revenue"]) == Decimal("50000")


def test_financial_report_xlsx_export_has_all_sheets() -> None:
    report = build_financial_report([], ReportFilter(date_range=YEAR_2024), _context("u1"))

    exported = export_financial_report(report, "xlsx")

    workbook = load_workbook(io.BytesIO(exported.content))
    assert workbook.sheetnames == ["projects", "totals", "monthly", "categories"]


def test_financial_report_export_rejects_unknown_format() -> None:
    report = build_financial_report([], ReportFilter(date_range=YEAR_2024), _context("u1"))

    with pytest.raises(HTTPException) as exc_info:
        export_financial_report(report, "pdf")

    assert exc_info.value.status_code == 422


def test_safe_sheet_title_strips_truncates_and_dedupes() -> None:
    taken: set[str] = set()

    assert safe_sheet_title("a/b:c", taken) == "abc"
    long_title = safe_sheet_title("x" * 40, taken)
    assert len(long_title) == 31
    assert safe_sheet_title("abc", taken) == "abc (2)"


def test_project_workbook_splits_expenses_by_category() -> None:
    project = _project(
        "p1",
        "u1",
        expenses=[_expense("10", date(2024, 1, 1), "חשמל"), _expense("20", date(2024, 1, 2), "קבלני משנה")],
    )

    exported = build_project_workbook(
        project,
        ProjectExportOptions(include_summary=False, include_incomes=False, expense_format="multi-sheet"),
    )

    workbook = load_workbook(io.BytesIO(exported.content))
    assert workbook.sheetnames == ["חשמל", "קבלני משנה"]
    assert exported.filename == "project-p1.xlsx"
