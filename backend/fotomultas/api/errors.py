"""
Error normalization for the HTTP surface.

Every FineError becomes ``{"error", "message", "reason"?}`` with the class's
status code. Request validation failures from FastAPI become 400s in the
same shape, and anything else becomes a 500 ``InternalError``. A
``trace`` is attached outside production.
"""

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from fotomultas.core.config import settings
from fotomultas.core.errors import FineError

logger = logging.getLogger(__name__)


def _body(request: Request, exc: Exception, error: str, message: str, reason: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": error, "message": message}
    if reason:
        body["reason"] = reason
    cfg = getattr(request.app.state, "settings", settings)
    if not cfg.is_production:
        body["trace"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    return body


async def fine_error_handler(request: Request, exc: FineError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log(f"[API] {request.method} {request.url.path} → {exc.status_code} {type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_body(request, exc, type(exc).__name__, exc.message, exc.reason),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"[API] {request.method} {request.url.path} → 500 {type(exc).__name__}: {exc}",
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content=_body(request, exc, "InternalError", "Internal server error"),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    )
    return JSONResponse(
        status_code=400,
        content=_body(request, exc, "ValidationError", f"Invalid request: {details}"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FineError, fine_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
