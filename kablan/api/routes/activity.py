"""Activity log endpoints (read only)."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from kablan.core.auth import RequestUserContext, require_permission
from kablan.db.dependencies import get_repository
from kablan.models.entities import EntityType
from kablan.repositories.gateway import DocumentRepository
from kablan.services.activity_service import ActivityFilter, ActivityService, ActivityWindow

router = APIRouter(prefix="/activity", tags=["activity"])


def _service(store: DocumentRepository) -> ActivityService:
    return ActivityService(store)


@router.get("")
def list_activity(
    window: ActivityWindow = Query(default="7d"),
    search: str | None = Query(default=None),
    user_id: str | None = Query(default=None),
    project_id: str | None = Query(default=None),
    entity_type: EntityType | None = Query(default=None),
    action: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=1000),
    _: RequestUserContext = Depends(require_permission("system.logs")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    return _service(store).list_activity(
        ActivityFilter(
            window=window,
            search=search,
            user_id=user_id,
            project_id=project_id,
            entity_type=entity_type,
            action=action,
        ),
        limit=limit,
    )
