from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query

from metastudio.api.deps import get_service, query_deadline
from metastudio.core.cancellation import CancellationToken
from metastudio.core.service import MetadataService

router = APIRouter(prefix="/tenants/{tenant}", tags=["concepts"])


@router.get("/concepts")
def list_concepts(
    tenant: str,
    domain: Optional[str] = None,
    tier: Optional[int] = Query(default=None, ge=1, le=4),
    pack: Optional[str] = None,
    search: Optional[str] = None,
    include_inactive: bool = False,
    svc: MetadataService = Depends(get_service),
    token: Optional[CancellationToken] = Depends(query_deadline),
) -> Dict[str, Any]:
    rows = svc.list_concepts(
        tenant,
        domain=domain,
        tier=tier,
        pack=pack,
        search=search,
        include_inactive=include_inactive,
        token=token,
    )
    return {"tenant": tenant, "count": len(rows), "concepts": [c.model_dump(mode="json") for c in rows]}


@router.post("/concepts", status_code=201)
def create_concept(tenant: str, payload: Dict[str, Any], svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    return svc.create_concept(tenant, payload).model_dump(mode="json")


@router.get("/lookup")
def lookup_concept(tenant: str, term: str, svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    found = svc.lookup_concept(tenant, term)
    return {"term": term, "found": found is not None, "result": found.to_dict() if found else None}


@router.get("/concepts/{key}")
def get_concept(tenant: str, key: str, svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    return svc.get_concept(tenant, key).model_dump(mode="json")


@router.patch("/concepts/{concept_id}")
def update_concept(
    tenant: str, concept_id: str, payload: Dict[str, Any], svc: MetadataService = Depends(get_service)
) -> Dict[str, Any]:
    return svc.update_concept(tenant, concept_id, payload).model_dump(mode="json")


@router.post("/concepts/{concept_id}/deactivate")
def deactivate_concept(tenant: str, concept_id: str, svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    return svc.deactivate_concept(tenant, concept_id).model_dump(mode="json")


@router.delete("/concepts/{concept_id}")
def delete_concept(tenant: str, concept_id: str, svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    deleted = svc.delete_concept(tenant, concept_id)
    return {"deleted": True, "id": deleted.id, "canonical_key": deleted.canonical_key}


@router.get("/concepts/{key}/aliases")
def list_aliases(tenant: str, key: str, svc: MetadataService = Depends(get_service)) -> List[Dict[str, Any]]:
    return [a.model_dump(mode="json") for a in svc.list_aliases(tenant, key)]
