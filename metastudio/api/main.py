from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError

from metastudio import __version__
from metastudio.api.endpoints import aliases, concepts, governance, health, lineage, naming
from metastudio.api.middleware.error_shaping import (
    SafeErrorMiddleware,
    metadata_error_handler,
    request_validation_handler,
)
from metastudio.api.middleware.request_context import RequestContextMiddleware, TenantIsolationMiddleware
from metastudio.core.config import Settings
from metastudio.core.errors import MetadataError
from metastudio.core.service import MetadataService

log = logging.getLogger("metastudio.api")


def create_app(service: Optional[MetadataService] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or (service.settings if service is not None else Settings.from_env())
    service = service or MetadataService(settings)

    app = FastAPI(
        title="Metadata Studio API",
        version=__version__,
    )
    app.state.service = service

    # ------------------------------------------------------------
    # Middleware stack (ORDER MATTERS)
    # Starlette reverses add_middleware order: the LAST call is the OUTERMOST wrapper.
    # Runtime order (outermost -> innermost):
    #   SafeErrorMiddleware -> RequestContext -> TenantIsolation -> handler
    # ------------------------------------------------------------
    app.add_middleware(
        TenantIsolationMiddleware,
        strict=settings.tenant_strict,
        default_tenant=settings.default_tenant,
    )
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(SafeErrorMiddleware)

    app.add_exception_handler(MetadataError, metadata_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    for module in (concepts, aliases, naming, lineage, governance):
        app.include_router(module.router, prefix="/api/v1")
    app.include_router(health.router)

    log.info(
        "app created env=%s engine=%s gate=%s",
        settings.env,
        service.ctx.engine_version,
        service.ctx.state.value,
    )
    return app
