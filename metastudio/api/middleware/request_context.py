from __future__ import annotations

import logging
import time
import uuid
from typing import Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from metastudio.core.observability.metrics import (
    HTTP_REQUEST_DURATION_SECONDS,
    HTTP_REQUESTS_TOTAL,
    normalize_path,
)

from .error_shaping import error_body

log = logging.getLogger("metastudio.request")


def _json_log(event: str, **fields):
    # Structured log in a single line.
    msg = {"event": event, **fields}
    log.info("%s", msg)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Request ID + structured access log.

    Adds:
      request.state.request_id
      response header: X-Request-Id
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        rid = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = rid

        start = time.time()
        resp = await call_next(request)
        dur_ms = int((time.time() - start) * 1000)

        resp.headers["X-Request-Id"] = rid

        # Prometheus metrics (low-cardinality path)
        p = normalize_path(request.url.path)
        m = request.method.upper()
        s = str(getattr(resp, "status_code", 0))
        HTTP_REQUESTS_TOTAL.labels(method=m, path=p, status=s).inc()
        HTTP_REQUEST_DURATION_SECONDS.labels(method=m, path=p).observe(dur_ms / 1000.0)

        if request.url.path.startswith("/api/"):
            tenant: Optional[str] = getattr(request.state, "tenant", None)
            _json_log(
                "request",
                request_id=rid,
                method=request.method,
                path=request.url.path,
                status_code=resp.status_code,
                duration_ms=dur_ms,
                tenant=tenant,
            )
        return resp


class TenantIsolationMiddleware(BaseHTTPMiddleware):
    """
    Tenant isolation for /api/v1/tenants/{tenant}/...

    The path tenant and X-Tenant must agree when both are present (403
    otherwise). In strict mode X-Tenant is mandatory on tenant paths.
    Env:
      METASTUDIO_TENANT_STRICT=true/false
      METASTUDIO_DEFAULT_TENANT=default
    """

    def __init__(self, app, strict: bool = False, default_tenant: str = "default"):
        super().__init__(app)
        self.strict = strict
        self.default_tenant = default_tenant

    def _extract_path_tenant(self, path: str) -> Optional[str]:
        # /api/v1/tenants/<tenant>/...
        parts = path.split("/")
        try:
            i = parts.index("tenants")
            return parts[i + 1] if len(parts) > i + 1 else None
        except ValueError:
            return None

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if not path.startswith("/api/v1/tenants/"):
            request.state.tenant = self.default_tenant
            return await call_next(request)

        header_tenant = request.headers.get("x-tenant")
        path_tenant = self._extract_path_tenant(path)
        rid = getattr(request.state, "request_id", None)

        if self.strict and not header_tenant:
            return JSONResponse(
                status_code=400,
                content=error_body("MISSING_TENANT", "Missing X-Tenant header", {"field": "X-Tenant"}, rid),
            )

        if path_tenant and header_tenant and path_tenant != header_tenant:
            log.warning("tenant mismatch path=%s header=%s rid=%s", path_tenant, header_tenant, rid)
            return JSONResponse(
                status_code=403,
                content=error_body(
                    "TENANT_MISMATCH",
                    "Tenant mismatch",
                    {"path_tenant": path_tenant, "header_tenant": header_tenant},
                    rid,
                ),
            )

        request.state.tenant = path_tenant or header_tenant or self.default_tenant
        return await call_next(request)
