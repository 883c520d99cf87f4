"""Structured HTTP errors for service exceptions.

Every error body carries a machine-readable code and a retryable flag so
clients can tell "retry later" (executor or storage unavailable) apart from
"will never succeed" (validation, missing model, insufficient credits).
"""

from fastapi import HTTPException, status

from photoai.services.exceptions import (
    ExecutorError,
    InsufficientCreditsError,
    NotFoundError,
    PermanentExecutorError,
    ServiceError,
    StorageError,
    TransientExecutorError,
    ValidationError,
)

_STATUS_CODES: list[tuple[type[ServiceError], int]] = [
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientCreditsError, status.HTTP_402_PAYMENT_REQUIRED),
    (TransientExecutorError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StorageError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PermanentExecutorError, status.HTTP_502_BAD_GATEWAY),
    (ExecutorError, status.HTTP_502_BAD_GATEWAY),
]


def api_error(
    status_code: int,
    code: str,
    message: str,
    retryable: bool = False,
    detail: dict | None = None,
) -> HTTPException:
    payload = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "detail": detail or {},
    }
    return HTTPException(status_code=status_code, detail=payload)


def service_error_to_http(exc: ServiceError) -> HTTPException:
    """Translate a service exception into an HTTPException with a structured body."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in _STATUS_CODES:
        if isinstance(exc, error_type):
            status_code = code
            break

    detail: dict = {}
    if isinstance(exc, InsufficientCreditsError):
        detail = {"required": exc.required, "available": exc.available}

    return api_error(
        status_code=status_code,
        code=exc.code,
        message=str(exc),
        retryable=exc.retryable,
        detail=detail,
    )
