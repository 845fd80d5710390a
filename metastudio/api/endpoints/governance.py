from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from metastudio.api.deps import get_service, query_deadline
from metastudio.core.cancellation import CancellationToken
from metastudio.core.rules.engine import is_blocking
from metastudio.core.service import MetadataService

router = APIRouter(prefix="/tenants/{tenant}", tags=["governance"])


@router.get("/packs")
def list_packs(tenant: str, category: Optional[str] = None, svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    packs = svc.list_packs(tenant, category)
    return {"count": len(packs), "packs": [p.model_dump(mode="json") for p in packs]}


@router.post("/packs", status_code=201)
def register_pack(tenant: str, payload: Dict[str, Any], svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    return svc.register_pack(tenant, payload).model_dump(mode="json")


@router.get("/packs/{pack_id}")
def get_pack(tenant: str, pack_id: str, svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    return svc.get_pack(tenant, pack_id).model_dump(mode="json")


@router.get("/conformance/{entity_id}/{pack_id}")
def check_conformance(
    tenant: str,
    entity_id: str,
    pack_id: str,
    use_cache: bool = False,
    svc: MetadataService = Depends(get_service),
    token: Optional[CancellationToken] = Depends(query_deadline),
) -> Dict[str, Any]:
    return svc.check_conformance(tenant, entity_id, pack_id, use_cache=use_cache, token=token).to_dict()


@router.get("/rules")
def list_rules(tenant: str, scope: Optional[str] = None, svc: MetadataService = Depends(get_service)) -> Dict[str, Any]:
    rules = svc.list_rules(tenant, scope)
    return {"count": len(rules), "rules": [r.model_dump(mode="json") for r in rules]}


@router.get("/rules/evaluate")
def evaluate_rules(
    tenant: str,
    scope: Optional[str] = None,
    target_id: Optional[str] = None,
    svc: MetadataService = Depends(get_service),
    token: Optional[CancellationToken] = Depends(query_deadline),
) -> Dict[str, Any]:
    violations = svc.evaluate_rules(tenant, scope, target_id, token)
    return {
        "scope": scope,
        "target_id": target_id,
        "blocking": is_blocking(violations),
        "violations": [v.to_dict() for v in violations],
    }
