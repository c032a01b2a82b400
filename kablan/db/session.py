"""Engine and session factory for the local cache database."""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from kablan.core.config import get_settings

_settings = get_settings()

engine = create_engine(
    _settings.local_cache_url,
    connect_args={"check_same_thread": False} if _settings.local_cache_url.startswith("sqlite") else {},
    future=True,
)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def init_cache_schema() -> None:
    """Create the cache table when it does not exist yet."""

    from kablan.db.base import Base
    import kablan.models.cache  # noqa: F401

    Base.metadata.create_all(bind=engine)
