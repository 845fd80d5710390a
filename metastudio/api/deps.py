from __future__ import annotations

from typing import Optional

from fastapi import Query, Request

from metastudio.core.cancellation import CancellationToken
from metastudio.core.service import MetadataService


def get_service(request: Request) -> MetadataService:
    return request.app.state.service


def query_deadline(timeout_ms: Optional[int] = Query(default=None, ge=1)) -> Optional[CancellationToken]:
    if timeout_ms is None:
        return None
    return CancellationToken(timeout_seconds=timeout_ms / 1000.0)
