"""Export endpoints for reports and project workbooks."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from kablan.api.routes.reports import build_report_filter
from kablan.core.auth import RequestUserContext, require_permission
from kablan.db.dependencies import get_repository
from kablan.repositories.gateway import DocumentRepository
from kablan.services.reporting_service import (
    ExpenseFormat,
    ExportFilePayload,
    ProjectExportOptions,
    ReportFilter,
    ReportingService,
)

router = APIRouter(prefix="/exports", tags=["exports"])


def _service(store: DocumentRepository) -> ReportingService:
    return ReportingService(store)


def _attachment(exported: ExportFilePayload) -> Response:
    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.filename}"'},
    )


@router.get("/financial-report")
def export_financial_report(
    format: str = Query(default="xlsx"),
    report_filter: ReportFilter = Depends(build_report_filter),
    context: RequestUserContext = Depends(require_permission("reports.view", "reports.export")),
    store: DocumentRepository = Depends(get_repository),
) -> Response:
    service = _service(store)
    exported = service.export_report(context=context, report_filter=report_filter, format_name=format)
    return _attachment(exported)


@router.get("/projects/{project_id}")
def export_project(
    project_id: str,
    include_summary: bool = Query(default=True),
    include_incomes: bool = Query(default=True),
    expense_format: ExpenseFormat = Query(default="single-sheet"),
    context: RequestUserContext = Depends(require_permission("reports.export")),
    store: DocumentRepository = Depends(get_repository),
) -> Response:
    service = _service(store)
    exported = service.export_project(
        context=context,
        project_id=project_id,
        options=ProjectExportOptions(
            include_summary=include_summary,
            include_incomes=include_incomes,
            expense_format=expense_format,
        ),
    )
    return _attachment(exported)
