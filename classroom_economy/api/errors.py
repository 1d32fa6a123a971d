"""Mapping from engine exceptions to HTTP errors"""

from fastapi import HTTPException, status

from ..errors import (
    AlreadySettledError,
    ConcurrentModificationError,
    EconomyError,
    EconomyValidationError,
    GameDisabledError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    NoSalaryError,
    NotFoundError,
)

_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (EconomyValidationError, status.HTTP_400_BAD_REQUEST),
    (InsufficientFundsError, status.HTTP_400_BAD_REQUEST),
    (NoSalaryError, status.HTTP_400_BAD_REQUEST),
    (AlreadySettledError, status.HTTP_409_CONFLICT),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (GameDisabledError, status.HTTP_403_FORBIDDEN),
    (ConcurrentModificationError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def http_error(exc: EconomyError) -> HTTPException:
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
