"""Translation of gateway failures into HTTP errors."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException, status

from kablan.repositories.gateway import GatewayError, RecordNotFoundError

logger = logging.getLogger(__name__)


@contextmanager
def gateway_errors() -> Iterator[None]:
    """Raise gateway failures as 404/502 ``HTTPException``s."""

    try:
        yield
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.message) from exc
    except GatewayError as exc:
        logger.error("Gateway request failed (status=%s): %s", exc.status_code, exc.message)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Storage gateway error: {exc.message}",
        ) from exc
