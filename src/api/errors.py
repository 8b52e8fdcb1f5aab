from fastapi import HTTPException
from pydantic import ValidationError as ModelValidationError

from calendar_sync.errors import (
    CalendarApiError,
    ConflictStateError,
    NotConnectedError,
    NotFoundError,
    SyncError,
    ValidationError,
)

STATUS_BY_ERROR = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (NotConnectedError, 409),
    (ConflictStateError, 409),
    (CalendarApiError, 502),
)


def http_error(exc: Exception) -> HTTPException:
    """Translate a service-layer error into the HTTPException the client sees."""
    if isinstance(exc, ModelValidationError):
        errors = exc.errors()
        detail = errors[0]["msg"] if errors else str(exc)
        return HTTPException(status_code=400, detail=detail)
    if isinstance(exc, SyncError):
        for error_type, status in STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                return HTTPException(status_code=status, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
