from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from metastudio.api.deps import get_service
from metastudio.core.service import MetadataService

router = APIRouter(prefix="/tenants/{tenant}/naming", tags=["naming"])


@router.get("/convert")
def convert(
    tenant: str,
    identifier: str,
    from_casing: str = Query(alias="from"),
    to_casing: str = Query(alias="to"),
    svc: MetadataService = Depends(get_service),
) -> Dict[str, Any]:
    return {
        "identifier": identifier,
        "from": from_casing,
        "to": to_casing,
        "result": svc.resolve_name(identifier, from_casing, to_casing),
    }


@router.get("/resolve")
def resolve_for_context(
    tenant: str,
    canonical_key: str,
    context: str,
    svc: MetadataService = Depends(get_service),
) -> Dict[str, Any]:
    return {
        "canonical_key": canonical_key,
        "context": context,
        "result": svc.name_for_context(canonical_key, context),
    }
