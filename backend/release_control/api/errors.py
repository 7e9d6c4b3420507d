from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from release_control.domain.errors import (
    CollaboratorError,
    InvalidTagError,
    ReleaseError,
    ReleaseNotFoundError,
    ReleaseStateError,
)
from release_control.services.observability import current_trace_id, emit_structured_log


def status_code_for(exc: ReleaseError) -> int:
    if isinstance(exc, InvalidTagError):
        return 422
    if isinstance(exc, ReleaseNotFoundError):
        return 404
    if isinstance(exc, ReleaseStateError):
        return 409
    return 500


async def release_error_handler(request: Request, exc: ReleaseError) -> JSONResponse:
    status_code = status_code_for(exc)
    if isinstance(exc, CollaboratorError):
        emit_structured_log(
            component="api",
            event="release_collaborator_failed",
            level=logging.ERROR,
            tag=exc.tag,
            error_type=type(exc).__name__,
            error=str(exc),
            cause=str(exc.__cause__) if exc.__cause__ is not None else None,
            path=request.url.path,
        )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__, "trace_id": current_trace_id()},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ReleaseError, release_error_handler)
