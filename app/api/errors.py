from __future__ import annotations

import logging

from fastapi import HTTPException, status

from app.services.errors import (
    ConcurrencyConflictError,
    InvalidInputError,
    NotFoundError,
    ProgressError,
)

logger = logging.getLogger(__name__)


def http_error(exc: ProgressError) -> HTTPException:
    """Map an engine error onto the HTTP status the API promises."""
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, InvalidInputError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, ConcurrencyConflictError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    logger.warning("Request rejected %d: %s", code, exc)
    return HTTPException(status_code=code, detail=str(exc))
