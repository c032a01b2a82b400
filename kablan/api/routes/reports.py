"""Financial report endpoints."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query

from kablan.core.auth import RequestUserContext, require_permission
from kablan.db.dependencies import get_repository
from kablan.models.entities import utcnow
from kablan.repositories.gateway import DocumentRepository
from kablan.services.reporting_service import DateRange, ReportFilter, ReportingService, to_jsonable

router = APIRouter(prefix="/reports", tags=["reports"])


def _service(store: DocumentRepository) -> ReportingService:
    return ReportingService(store)


def build_report_filter(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    project_id: list[str] | None = Query(default=None),
    user_id: list[str] | None = Query(default=None),
    include_archived: bool = Query(default=False),
) -> ReportFilter:
    """Query parameters to a filter; the range defaults to year-to-date."""

    default_range = DateRange.year_to_date(utcnow().date())
    return ReportFilter(
        date_range=DateRange(
            start=start_date or default_range.start,
            end=end_date or default_range.end,
        ),
        project_ids=frozenset(project_id or ()),
        user_ids=frozenset(user_id or ()),
        include_archived=include_archived,
    )


@router.get("/financial")
def financial_report(
    report_filter: ReportFilter = Depends(build_report_filter),
    context: RequestUserContext = Depends(require_permission("reports.view")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    report = service.financial_report(context=context, report_filter=report_filter)
    return to_jsonable(report)
