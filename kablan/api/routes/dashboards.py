"""Dashboard endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from kablan.core.auth import RequestUserContext, require_permission, require_roles
from kablan.db.dependencies import get_repository
from kablan.models.entities import UserRole
from kablan.repositories.gateway import DocumentRepository
from kablan.services.reporting_service import DashboardWindow, ReportingService, to_jsonable

router = APIRouter(prefix="/dashboards", tags=["dashboards"])


def _service(store: DocumentRepository) -> ReportingService:
    return ReportingService(store)


@router.get("/admin")
def admin_dashboard(
    window: DashboardWindow = Query(default="30d"),
    context: RequestUserContext = Depends(require_permission("reports.advanced")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    return to_jsonable(service.dashboard(context=context, window=window))


@router.get("/organizations")
def organizations_dashboard(
    _: RequestUserContext = Depends(require_roles(UserRole.SUPER_ADMIN)),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    service = _service(store)
    return to_jsonable(service.organization_overview())
