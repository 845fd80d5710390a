from __future__ import annotations

import logging
import traceback
from typing import Any, Callable, Dict, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from metastudio.core.errors import (
    BlockingRuleViolation,
    ConflictError,
    InternalError,
    MetadataError,
    NotFoundError,
    OperationCancelledError,
    ValidationError,
    VersionMismatchError,
)

log = logging.getLogger("metastudio.errors")

STATUS_BY_ERROR = {
    ValidationError: 400,
    NotFoundError: 404,
    OperationCancelledError: 408,
    ConflictError: 409,
    BlockingRuleViolation: 422,
    VersionMismatchError: 426,
    InternalError: 500,
}


def status_for(exc: MetadataError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return 500


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id")


def error_body(code: str, message: str, details: Optional[Dict[str, Any]], request_id: Optional[str]) -> Dict[str, Any]:
    return {"error": {"code": code, "message": message, "details": details or {}}, "request_id": request_id}


async def metadata_error_handler(request: Request, exc: MetadataError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        # Internal detail stays in the server log.
        return JSONResponse(
            status_code=status,
            content=error_body(InternalError.code, "Internal Server Error", {}, _request_id(request)),
        )
    return JSONResponse(
        status_code=status,
        content=error_body(exc.code, exc.message, exc.details, _request_id(request)),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]
    field = errors[0]["field"] if errors else None
    message = f"Invalid request: {errors[0]['message']}" if errors else "Invalid request"
    return JSONResponse(
        status_code=400,
        content=error_body(ValidationError.code, message, {"field": field, "errors": errors}, _request_id(request)),
    )


class SafeErrorMiddleware(BaseHTTPMiddleware):
    """
    - Never return stack traces to clients
    - Preserve request_id if present
    - Log traceback server-side
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            rid = _request_id(request)
            log.error(
                "Unhandled error: %s rid=%s path=%s\n%s",
                str(e),
                rid,
                request.url.path,
                traceback.format_exc(),
            )
            return JSONResponse(
                status_code=500,
                content=error_body(InternalError.code, "Internal Server Error", {}, rid),
            )
