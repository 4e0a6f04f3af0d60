from fastapi import HTTPException, status

from storesync.core.exceptions import ConflictError, NotFoundError, PreconditionError, SyncError

_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PreconditionError, status.HTTP_400_BAD_REQUEST),
    (ConflictError, status.HTTP_409_CONFLICT),
)


def to_http_exception(exc: SyncError) -> HTTPException:
    """Translate a caller-facing sync error into the matching HTTP error."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
