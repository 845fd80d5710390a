from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from metastudio.api.deps import get_service, query_deadline
from metastudio.core.cancellation import CancellationToken
from metastudio.core.service import MetadataService

router = APIRouter(prefix="/tenants/{tenant}", tags=["aliases"])


@router.post("/aliases", status_code=201)
def create_alias(tenant: str, payload: Dict[str, Any], svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    return svc.create_alias(tenant, payload).model_dump(mode="json")


@router.get("/aliases/resolve")
def resolve_alias(
    tenant: str,
    text: str,
    domain: Optional[str] = None,
    svc: MetadataService = Depends(get_service),
    token: Optional[CancellationToken] = Depends(query_deadline),
) -> Dict[str, Any]:
    matches = svc.resolve_alias(tenant, text, domain, token)
    return {"text": text, "domain": domain, "count": len(matches), "matches": [m.to_dict() for m in matches]}


@router.delete("/aliases/{alias_id}")
def delete_alias(tenant: str, alias_id: str, svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    svc.delete_alias(tenant, alias_id)
    return {"deleted": True, "id": alias_id}


@router.get("/glossary/search")
def search_glossary(
    tenant: str,
    q: str,
    svc: MetadataService = Depends(get_service),
    token: Optional[CancellationToken] = Depends(query_deadline),
) -> Dict[str, Any]:
    found = svc.search_glossary(tenant, q, token)
    return {
        "query": q,
        "concepts": [c.model_dump(mode="json") for c in found["concepts"]],
        "aliases": [a.model_dump(mode="json") for a in found["aliases"]],
    }
