"""Logging setup shared by the API process."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class HealthCheckFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        return record.getMessage().find("/health") == -1


def configure_logging(level: str = "INFO") -> None:
    """Install one stream handler on the package logger.

    Safe to call repeatedly (tests build many app instances).
    """

    package_logger = logging.getLogger("kablan")
    package_logger.setLevel(level.upper())
    if not any(getattr(handler, "_kablan_handler", False) for handler in package_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._kablan_handler = True  # type: ignore[attr-defined]
        package_logger.addHandler(handler)

    access_logger = logging.getLogger("uvicorn.access")
    if not any(isinstance(existing, HealthCheckFilter) for existing in access_logger.filters):
        access_logger.addFilter(HealthCheckFilter())
