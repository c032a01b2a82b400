"""Top-level API router."""

from fastapi import APIRouter

from kablan.api.routes.activity import router as activity_router
from kablan.api.routes.admin import router as admin_router
from kablan.api.routes.catalog import router as catalog_router
from kablan.api.routes.dashboards import router as dashboards_router
from kablan.api.routes.exports import router as exports_router
from kablan.api.routes.health import router as health_router
from kablan.api.routes.me import router as me_router
from kablan.api.routes.permissions import router as permissions_router
from kablan.api.routes.projects import router as projects_router
from kablan.api.routes.reports import router as reports_router
from kablan.api.routes.system import router as system_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(me_router)
api_router.include_router(admin_router)
api_router.include_router(permissions_router)
api_router.include_router(projects_router)
api_router.include_router(catalog_router)
api_router.include_router(reports_router)
api_router.include_router(exports_router)
api_router.include_router(dashboards_router)
api_router.include_router(activity_router)
api_router.include_router(system_router)
