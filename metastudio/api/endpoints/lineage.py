from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from metastudio.api.deps import get_service, query_deadline
from metastudio.core.cancellation import CancellationToken
from metastudio.core.lineage.models import DEFAULT_DEPTH
from metastudio.core.service import MetadataService

router = APIRouter(prefix="/tenants/{tenant}/lineage", tags=["lineage"])


@router.post("/entities", status_code=201)
def register_entity(tenant: str, payload: Dict[str, Any], svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    return svc.register_entity(tenant, payload).model_dump(mode="json")


@router.get("/entities")
def list_entities(tenant: str, svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    entities = svc.list_entities(tenant)
    return {"count": len(entities), "entities": [e.model_dump(mode="json") for e in entities]}


@router.get("/entities/{entity_id}")
def get_entity(tenant: str, entity_id: str, svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    return svc.get_entity(tenant, entity_id).model_dump(mode="json")


@router.delete("/entities/{entity_id}")
def retire_entity(tenant: str, entity_id: str, svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    removed = svc.retire_entity(tenant, entity_id)
    return {"retired": True, "entity_id": entity_id, "edges_removed": removed}


@router.post("/edges", status_code=201)
def add_edge(tenant: str, payload: Dict[str, Any], svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    edge = svc.add_edge(
        tenant,
        payload.get("source_id"),
        payload.get("target_id"),
        payload.get("edge_type", "DIRECT"),
        payload.get("transformation_logic"),
        payload.get("confidence", 100),
    )
    return edge.to_dict()


@router.get("/coverage")
def coverage(tenant: str, svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    return {"tenant": tenant, "coverage": svc.lineage_coverage(tenant)}


@router.get("/{entity_id}/upstream")
def upstream(
    tenant: str,
    entity_id: str,
    depth: int = DEFAULT_DEPTH,
    svc: MetadataService = Depends(get_service),
    token: Optional[CancellationToken] = Depends(query_deadline),
) -> Dict[str, Any]:
    return svc.get_upstream(tenant, entity_id, depth, token).to_dict()


@router.get("/{entity_id}/downstream")
def downstream(
    tenant: str,
    entity_id: str,
    depth: int = DEFAULT_DEPTH,
    svc: MetadataService = Depends(get_service),
    token: Optional[CancellationToken] = Depends(query_deadline),
) -> Dict[str, Any]:
    return svc.get_downstream(tenant, entity_id, depth, token).to_dict()


@router.get("/{entity_id}/full")
def full_lineage(
    tenant: str,
    entity_id: str,
    depth: int = DEFAULT_DEPTH,
    svc: MetadataService = Depends(get_service),
    token: Optional[CancellationToken] = Depends(query_deadline),
) -> Dict[str, Any]:
    return svc.get_full_lineage(tenant, entity_id, depth, token).to_dict()


@router.get("/{entity_id}/impact")
def impact(
    tenant: str,
    entity_id: str,
    svc: MetadataService = Depends(get_service),
    token: Optional[CancellationToken] = Depends(query_deadline),
) -> Dict[str, Any]:
    return svc.analyze_impact(tenant, entity_id, token).to_dict()
