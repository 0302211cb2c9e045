"""Translate domain errors into HTTP errors."""

from __future__ import annotations

from fastapi import HTTPException, status

from ..errors import (
    AccessDenied,
    BillingError,
    ConfigError,
    InvalidInput,
    InvalidTierList,
    InvalidTransition,
    PendingLegNotFound,
    UploadNotFound,
)

_STATUS_BY_ERROR: tuple[tuple[type[BillingError], int], ...] = (
    (InvalidInput, status.HTTP_400_BAD_REQUEST),
    (InvalidTierList, status.HTTP_400_BAD_REQUEST),
    (AccessDenied, status.HTTP_403_FORBIDDEN),
    (UploadNotFound, status.HTTP_404_NOT_FOUND),
    (PendingLegNotFound, status.HTTP_404_NOT_FOUND),
    (InvalidTransition, status.HTTP_409_CONFLICT),
    (ConfigError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_exception(exc: BillingError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
