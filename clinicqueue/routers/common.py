# clinicqueue/routers/common.py
from fastapi import HTTPException, status

from .. import crud
from ..clock import Clock, utcnow
from ..errors import (
    AppointmentNotFoundError, DoctorNotFoundError, InvalidStateError, OwnershipError,
    QueueConflictError, QueueError,
)


def get_clock() -> Clock:
    """Request-time clock; overridden in tests."""
    return utcnow


def http_error(exc: Exception) -> HTTPException:
    """Translate queue engine failures into HTTP errors."""
    if isinstance(exc, (AppointmentNotFoundError, DoctorNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"🔍 **Not Found:** {exc}")
    if isinstance(exc, OwnershipError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"🚫 **Not Allowed:** {exc}")
    if isinstance(exc, QueueConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"🈵 **Conflict:** {exc}")
    if isinstance(exc, InvalidStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"⚠️ **Invalid State:** {exc}")
    if isinstance(exc, QueueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, crud.CRUDError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal Server Error: An unexpected error occurred while updating the queue.",
    )
