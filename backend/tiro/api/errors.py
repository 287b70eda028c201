"""Mapping of domain exceptions to HTTP responses."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tiro.exceptions import (
    ConcurrentUpdateError,
    DuplicateReviewError,
    EmailNotConfiguredError,
    NotFoundError,
    PaymentGatewayError,
    PermissionDeniedError,
    PreconditionFailedError,
    TiroError,
    TransitionNotAllowedError,
)

logger = logging.getLogger(__name__)

STATUS_CODES: dict[type[TiroError], int] = {
    NotFoundError: 404,
    PermissionDeniedError: 403,
    TransitionNotAllowedError: 409,
    PreconditionFailedError: 422,
    ConcurrentUpdateError: 409,
    DuplicateReviewError: 409,
    PaymentGatewayError: 502,
    EmailNotConfiguredError: 503,
}


def status_code_for(exc: TiroError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 400


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(TiroError)
    async def tiro_error_handler(request: Request, exc: TiroError):
        code = status_code_for(exc)
        if code >= 500:
            logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
        else:
            logger.info(f"{type(exc).__name__} on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=code,
            content={"detail": str(exc), "error": type(exc).__name__},
        )
