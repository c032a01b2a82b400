"""Storage dependencies for FastAPI endpoints."""

from collections.abc import Generator

from kablan.core.config import get_settings
from kablan.db.session import SessionLocal
from kablan.repositories.gateway import DocumentRepository, FallbackRepository
from kablan.repositories.local_cache import LocalCacheRepository
from kablan.repositories.remote import RemoteGatewayRepository


def build_repository() -> DocumentRepository:
    """Build the repository selected by ``storage_backend``."""

    settings = get_settings()
    cache = LocalCacheRepository(SessionLocal(), seed_dir=settings.seed_data_dir)
    if settings.storage_backend == "local":
        return cache
    remote = RemoteGatewayRepository.from_url(
        settings.gateway_base_url,
        timeout=settings.gateway_timeout_seconds,
    )
    return FallbackRepository(remote, cache)


def get_repository() -> Generator[DocumentRepository, None, None]:
    """Yield a per-request repository and release it afterwards."""

    repository = build_repository()
    try:
        yield repository
    finally:
        repository.close()
