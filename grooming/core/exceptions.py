from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from grooming.core.request_context import request_id_ctx_var
from grooming.domain.errors import (
    ConcurrentModification,
    GroomingError,
    IllegalNotificationTransition,
    IllegalTransition,
    NotificationNotFound,
    SchedulingConflict,
    SchedulingNotFound,
    ValidationError,
)

_DOMAIN_STATUS_CODES: tuple[tuple[type[GroomingError], int], ...] = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (SchedulingConflict, status.HTTP_409_CONFLICT),
    (ConcurrentModification, status.HTTP_409_CONFLICT),
    (IllegalTransition, status.HTTP_409_CONFLICT),
    (IllegalNotificationTransition, status.HTTP_409_CONFLICT),
    (SchedulingNotFound, status.HTTP_404_NOT_FOUND),
    (NotificationNotFound, status.HTTP_404_NOT_FOUND),
)


def _error_payload(code: str, message: str, detail):
    return {
        "error": {
            "code": code,
            "message": message,
            "detail": detail,
        },
        "detail": detail,
        "request_id": request_id_ctx_var.get(),
    }


def domain_status_code(exc: GroomingError) -> int:
    for error_type, status_code in _DOMAIN_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_payload(
            code=f"http_{exc.status_code}",
            message=str(exc.detail),
            detail=exc.detail,
        ),
        headers=exc.headers,
    )


async def validation_exception_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_payload(
            code="validation_error",
            message="Request validation failed",
            detail=exc.errors(),
        ),
    )


async def domain_exception_handler(_: Request, exc: GroomingError) -> JSONResponse:
    detail = str(exc)
    if isinstance(exc, SchedulingConflict):
        detail = {"message": str(exc), "conflicting_ids": exc.conflicting_ids}
    return JSONResponse(
        status_code=domain_status_code(exc),
        content=_error_payload(code=exc.code, message=str(exc), detail=detail),
    )
