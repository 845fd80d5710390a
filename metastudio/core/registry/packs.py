from __future__ import annotations

import logging
from typing import Any, List, Optional

from metastudio.core.compat import CompatibilityContext
from metastudio.core.errors import ConflictError, NotFoundError

from .models import StandardPack, parse_model
from .store import MetadataStore, check_then_insert

log = logging.getLogger("metastudio.registry")


class StandardPackRegistry:
    """Standard packs of a tenant.

    Packs are validated on registration (data types and validation rules are a
    closed vocabulary), so the conformance checker never meets an unknown rule.
    """

    def __init__(self, *, ctx: CompatibilityContext, store: MetadataStore):
        self._ctx = ctx
        self._store = store

    def register_pack(self, tenant_id: str, data: Any) -> StandardPack:
        self._ctx.ensure_compatible()
        pack = parse_model(StandardPack, data)

        def attempt() -> StandardPack:
            with self._store.transaction(tenant_id) as p:
                if p.packs.find_unique(pack.pack_id) is not None:
                    raise _duplicate(tenant_id, pack.pack_id)
                p.packs.insert(pack.pack_id, pack)
            return pack

        registered = check_then_insert(attempt, on_conflict=lambda e: _duplicate(tenant_id, pack.pack_id))
        log.info(
            "pack.registered tenant=%s pack=%s tier=%s fields=%s",
            tenant_id,
            registered.pack_id,
            registered.tier.value,
            len(registered.fields),
        )
        return registered

    def find_pack(self, tenant_id: str, pack_id: Optional[str]) -> Optional[StandardPack]:
        if not pack_id:
            return None
        return self._store.partition(tenant_id).packs.find_unique(pack_id)

    def get_pack(self, tenant_id: str, pack_id: str) -> StandardPack:
        self._ctx.ensure_compatible()
        pack = self.find_pack(tenant_id, pack_id)
        if pack is None:
            raise NotFoundError(
                f"Standard pack '{pack_id}' not found in tenant '{tenant_id}'",
                details={"tenant_id": tenant_id, "pack_id": pack_id},
            )
        return pack

    def list_packs(self, tenant_id: str, *, category: Optional[str] = None) -> List[StandardPack]:
        self._ctx.ensure_compatible()
        packs = list(self._store.partition(tenant_id).packs)
        if category:
            packs = [p for p in packs if p.category.lower() == category.lower()]
        return sorted(packs, key=lambda p: p.pack_id)


def _duplicate(tenant_id: str, pack_id: str) -> ConflictError:
    return ConflictError(
        f"Standard pack '{pack_id}' already exists in tenant '{tenant_id}'",
        details={"field": "pack_id", "pack_id": pack_id, "tenant_id": tenant_id},
    )
