"""Local cache status and maintenance endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from kablan.core.auth import RequestUserContext, require_permission
from kablan.core.config import get_settings
from kablan.db.dependencies import get_repository
from kablan.repositories.gateway import DocumentRepository, local_cache_of

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/sync-status")
def sync_status(
    _: RequestUserContext = Depends(require_permission("system.admin")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, object]:
    cache = local_cache_of(store)
    collections = cache.sync_status() if cache is not None else {}
    return {
        "storage_backend": get_settings().storage_backend,
        "collections": {name: synced_at.isoformat() for name, synced_at in collections.items()},
    }


@router.post("/cache/reset")
def reset_cache(
    _: RequestUserContext = Depends(require_permission("system.admin")),
    store: DocumentRepository = Depends(get_repository),
) -> dict[str, int]:
    cache = local_cache_of(store)
    if cache is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No local cache is configured.")
    return {"cleared": cache.clear()}
