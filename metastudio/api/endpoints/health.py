from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import JSONResponse

from metastudio.api.deps import get_service
from metastudio.core.compat import GateState
from metastudio.core.observability.metrics import inc_named, snapshot_named
from metastudio.core.service import MetadataService

router = APIRouter()


@router.get("/api/v1/health/live")
def liveness():
    inc_named("health_live")
    return {"status": "alive"}


@router.get("/api/v1/health/ready")
def readiness(svc: MetadataService = Depends(get_service)):
    """
    Ready only when the SDK gate let this process through; a BLOCKED
    engine stays alive but refuses traffic.
    """
    inc_named("health_ready")
    if svc.ctx.state != GateState.COMPATIBLE:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "problems": [f"sdk_gate:{svc.ctx.state.value}"]},
        )
    return {"status": "ready"}


@router.get("/api/v1/sdk")
def sdk_info(svc: MetadataService = Depends(get_service)):
    return svc.sdk_info()


@router.get("/api/v1/metrics/snapshot")
def metrics_snapshot():
    """In-process named counters (op|status, health checks) as plain JSON."""
    return snapshot_named()


@router.get("/metrics", include_in_schema=False)
def prometheus_scrape() -> Response:
    # operation, HTTP and lineage collectors all live on the default registry
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
