from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional

from metastudio.core.cancellation import CancellationToken
from metastudio.core.compat import CompatibilityContext
from metastudio.core.errors import ConflictError, NotFoundError, ValidationError

from .events import MetadataChanged, NotificationBus
from .models import UPDATABLE_CONCEPT_FIELDS, Concept, ConceptCreate, Domain, parse_model, utc_now
from .store import MetadataStore, TenantPartition, check_then_insert

log = logging.getLogger("metastudio.registry")


# A guard sees the candidate concept and the partition it would be written to,
# and raises (BlockingRuleViolation) to abort the write before it commits.
WriteGuard = Callable[[TenantPartition, Concept], None]


@dataclass(frozen=True)
class ConceptFilter:
    domain: Optional[Domain] = None
    tier: Optional[int] = None
    pack: Optional[str] = None
    search: Optional[str] = None
    include_inactive: bool = False

    def matches(self, c: Concept) -> bool:
        if not self.include_inactive and not c.is_active:
            return False
        if self.domain is not None and c.domain != self.domain:
            return False
        if self.tier is not None and c.governance_tier != self.tier:
            return False
        if self.pack is not None and c.standard_pack_id_primary != self.pack:
            return False
        if self.search:
            term = self.search.strip().lower()
            if term and not (
                term in c.label.lower()
                or term in (c.description or "").lower()
                or term in c.canonical_key.lower()
            ):
                return False
        return True


def concept_sort_key(c: Concept):
    return (c.domain.value, c.governance_tier, c.canonical_key)


def find_concept(p: TenantPartition, key_or_id: str) -> Optional[Concept]:
    c = p.concepts.get(key_or_id)
    if c is not None:
        return c
    return p.concepts.find_unique((key_or_id or "").strip().lower())


class ConceptRegistry:
    """Canonical concepts of every tenant: the identity source of truth."""

    def __init__(
        self,
        *,
        ctx: CompatibilityContext,
        store: MetadataStore,
        bus: NotificationBus,
        guards: Optional[List[WriteGuard]] = None,
    ):
        self._ctx = ctx
        self._store = store
        self._bus = bus
        self._guards: List[WriteGuard] = list(guards or [])

    def add_guard(self, guard: WriteGuard) -> None:
        self._guards.append(guard)

    def _run_guards(self, p: TenantPartition, candidate: Concept) -> None:
        for guard in self._guards:
            guard(p, candidate)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_concept(self, tenant_id: str, key_or_id: str) -> Concept:
        self._ctx.ensure_compatible()
        c = find_concept(self._store.partition(tenant_id), key_or_id)
        if c is None:
            raise NotFoundError(
                f"Concept '{key_or_id}' not found in tenant '{tenant_id}'",
                details={"tenant_id": tenant_id, "concept": key_or_id},
            )
        return c

    def list_concepts(
        self,
        tenant_id: str,
        *,
        domain: Optional[str] = None,
        tier: Optional[int] = None,
        pack: Optional[str] = None,
        search: Optional[str] = None,
        include_inactive: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> List[Concept]:
        self._ctx.ensure_compatible()
        if token is not None:
            token.raise_if_cancelled("concepts.list")
        flt = ConceptFilter(
            domain=parse_domain(domain),
            tier=tier,
            pack=pack,
            search=search,
            include_inactive=include_inactive,
        )
        rows = [c for c in self._store.partition(tenant_id).concepts if flt.matches(c)]
        return sorted(rows, key=concept_sort_key)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_concept(self, tenant_id: str, data: Any) -> Concept:
        self._ctx.ensure_compatible()
        payload = parse_model(ConceptCreate, data)
        candidate = Concept(tenant_id=tenant_id, **payload.model_dump())

        def attempt() -> Concept:
            with self._store.transaction(tenant_id) as p:
                if p.concepts.find_unique(candidate.canonical_key) is not None:
                    raise _duplicate(tenant_id, candidate.canonical_key)
                self._run_guards(p, candidate)
                p.concepts.insert(candidate.id, candidate)
            return candidate

        created = check_then_insert(
            attempt,
            on_conflict=lambda e: _duplicate(tenant_id, candidate.canonical_key),
        )
        log.info("concept.created tenant=%s key=%s id=%s", tenant_id, created.canonical_key, created.id)
        self._bus.publish(
            MetadataChanged.mk(
                tenant_id,
                created.id,
                created.canonical_key,
                "CREATED",
                changed_fields=list(payload.model_dump(exclude_defaults=True).keys()),
                tier=created.governance_tier,
                standard_pack_id=created.standard_pack_id_primary,
            )
        )
        return created

    def update_concept(self, tenant_id: str, concept_id: str, partial: Mapping[str, Any]) -> Concept:
        self._ctx.ensure_compatible()
        unknown = sorted(set(partial) - set(UPDATABLE_CONCEPT_FIELDS))
        if unknown:
            raise ValidationError(
                f"Fields cannot be updated: {', '.join(unknown)}",
                details={"field": unknown[0], "fields": unknown},
            )

        def attempt() -> tuple:
            with self._store.transaction(tenant_id) as p:
                current = self._require(p, concept_id)
                merged = {**current.model_dump(), **dict(partial), "updated_at": utc_now()}
                updated = parse_model(Concept, merged)
                changed = sorted(k for k in partial if getattr(current, k) != getattr(updated, k))
                if not changed:
                    return current, changed
                if updated.canonical_key != current.canonical_key:
                    if p.concepts.find_unique(updated.canonical_key) is not None:
                        raise _duplicate(tenant_id, updated.canonical_key)
                self._run_guards(p, updated)
                p.concepts.replace(current.id, updated)
                return updated, changed

        updated, changed = check_then_insert(
            attempt,
            on_conflict=lambda e: _duplicate(tenant_id, str(partial.get("canonical_key"))),
        )
        if changed:
            log.info("concept.updated tenant=%s id=%s fields=%s", tenant_id, updated.id, ",".join(changed))
            self._bus.publish(
                MetadataChanged.mk(
                    tenant_id,
                    updated.id,
                    updated.canonical_key,
                    "UPDATED",
                    changed_fields=changed,
                    tier=updated.governance_tier,
                    standard_pack_id=updated.standard_pack_id_primary,
                )
            )
        return updated

    def deactivate(self, tenant_id: str, concept_id: str) -> Concept:
        """Soft delete: the row, its aliases and its lineage stay for history."""
        self._ctx.ensure_compatible()
        with self._store.transaction(tenant_id) as p:
            current = self._require(p, concept_id)
            if not current.is_active:
                return current
            updated = current.model_copy(update={"is_active": False, "updated_at": utc_now()})
            p.concepts.replace(current.id, updated)

        log.info("concept.deactivated tenant=%s id=%s", tenant_id, updated.id)
        self._bus.publish(
            MetadataChanged.mk(
                tenant_id,
                updated.id,
                updated.canonical_key,
                "DEACTIVATED",
                changed_fields=["is_active"],
                tier=updated.governance_tier,
                standard_pack_id=updated.standard_pack_id_primary,
            )
        )
        return updated

    def delete_concept(self, tenant_id: str, concept_id: str) -> Concept:
        """Hard delete, rejected while any alias or lineage edge still references the concept."""
        self._ctx.ensure_compatible()
        with self._store.transaction(tenant_id) as p:
            current = self._require(p, concept_id)
            alias_ids = [a.id for a in p.aliases if a.concept_id == current.id]
            refs = {current.id, current.canonical_key}
            edge_ids = [e.id for e in p.edges if e.source_id in refs or e.target_id in refs]
            if alias_ids or edge_ids:
                raise ConflictError(
                    f"Concept '{current.canonical_key}' is still referenced; deactivate it instead",
                    details={"concept_id": current.id, "alias_ids": alias_ids, "edge_ids": edge_ids},
                )
            p.concepts.delete(current.id)

        log.info("concept.deleted tenant=%s id=%s", tenant_id, current.id)
        self._bus.publish(
            MetadataChanged.mk(tenant_id, current.id, current.canonical_key, "DELETED", tier=current.governance_tier)
        )
        return current

    def _require(self, p: TenantPartition, key_or_id: str) -> Concept:
        c = find_concept(p, key_or_id)
        if c is None:
            raise NotFoundError(
                f"Concept '{key_or_id}' not found in tenant '{p.tenant_id}'",
                details={"tenant_id": p.tenant_id, "concept": key_or_id},
            )
        return c


def _duplicate(tenant_id: str, canonical_key: str) -> ConflictError:
    return ConflictError(
        f"Concept '{canonical_key}' already exists in tenant '{tenant_id}'",
        details={"field": "canonical_key", "canonical_key": canonical_key, "tenant_id": tenant_id},
    )


def parse_domain(raw: Optional[str]) -> Optional[Domain]:
    if raw is None or raw == "":
        return None
    try:
        return Domain(str(raw).upper())
    except ValueError:
        raise ValidationError(
            f"Unknown domain '{raw}'",
            details={"field": "domain", "allowed": [d.value for d in Domain]},
        ) from None


__all__ = [
    "ConceptFilter",
    "ConceptRegistry",
    "WriteGuard",
    "concept_sort_key",
    "find_concept",
    "parse_domain",
]
