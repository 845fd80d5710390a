from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from metastudio.core.cancellation import CancellationToken
from metastudio.core.compat import CompatibilityContext
from metastudio.core.errors import ConflictError, NotFoundError
from metastudio.core.registry.concepts import ConceptRegistry, find_concept
from metastudio.core.registry.events import MetadataChanged, NotificationBus
from metastudio.core.registry.models import Alias, AliasCreate, Concept, StandardPack, parse_model
from metastudio.core.registry.store import MetadataStore, TenantPartition, check_then_insert

from .similarity import normalize_text

log = logging.getLogger("metastudio.aliases")


@dataclass(frozen=True)
class ConceptLookup:
    concept: Concept
    pack: Optional[StandardPack]
    aliases: List[Alias] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "concept": self.concept.model_dump(mode="json"),
            "pack": self.pack.model_dump(mode="json") if self.pack else None,
            "aliases": [a.model_dump(mode="json") for a in self.aliases],
        }


def alias_display_order(a: Alias):
    return (not a.is_preferred_for_display, a.source_system is not None, a.alias_value.lower())


class AliasRegistry:
    """Alias CRUD plus the glossary lookups built on top of it."""

    def __init__(
        self,
        *,
        ctx: CompatibilityContext,
        store: MetadataStore,
        bus: NotificationBus,
        concepts: ConceptRegistry,
    ):
        self._ctx = ctx
        self._store = store
        self._bus = bus
        self._concepts = concepts

    def create_alias(self, tenant_id: str, data: Any) -> Alias:
        self._ctx.ensure_compatible()
        payload = parse_model(AliasCreate, data)

        def attempt() -> tuple:
            with self._store.transaction(tenant_id) as p:
                concept = find_concept(p, payload.concept_id)
                if concept is None:
                    raise NotFoundError(
                        f"Concept '{payload.concept_id}' not found in tenant '{tenant_id}'",
                        details={"field": "concept_id", "concept_id": payload.concept_id},
                    )
                alias = Alias(**{**payload.model_dump(), "concept_id": concept.id})
                self._check_unique(p, alias)
                p.aliases.insert(alias.id, alias)
            return concept, alias

        concept, alias = check_then_insert(
            attempt,
            on_conflict=lambda e: ConflictError(
                f"Alias '{payload.alias_value}' already exists for concept '{payload.concept_id}'",
                details={"field": "alias_value", "alias_value": payload.alias_value},
            ),
        )
        log.info("alias.created tenant=%s concept=%s alias=%r", tenant_id, concept.canonical_key, alias.alias_value)
        self._publish(tenant_id, concept)
        return alias

    def _check_unique(self, p: TenantPartition, alias: Alias) -> None:
        for other in p.aliases:
            if other.concept_id != alias.concept_id:
                continue
            if other.alias_value.lower() == alias.alias_value.lower() and other.source_system == alias.source_system:
                raise ConflictError(
                    f"Alias '{alias.alias_value}' already exists for this concept and source system",
                    details={"field": "alias_value", "alias_id": other.id},
                )
            if alias.is_preferred_for_display and other.is_preferred_for_display and other.locale == alias.locale:
                raise ConflictError(
                    f"Concept already has a preferred alias for locale '{alias.locale}'",
                    details={"field": "is_preferred_for_display", "alias_id": other.id, "locale": alias.locale},
                )

    def delete_alias(self, tenant_id: str, alias_id: str) -> Alias:
        self._ctx.ensure_compatible()
        with self._store.transaction(tenant_id) as p:
            alias = p.aliases.delete(alias_id)
            if alias is None:
                raise NotFoundError(
                    f"Alias '{alias_id}' not found in tenant '{tenant_id}'",
                    details={"alias_id": alias_id},
                )
            concept = p.concepts.get(alias.concept_id)

        log.info("alias.deleted tenant=%s alias=%s", tenant_id, alias_id)
        if concept is not None:
            self._publish(tenant_id, concept)
        return alias

    def list_aliases(self, tenant_id: str, concept_id: str) -> List[Alias]:
        concept = self._concepts.get_concept(tenant_id, concept_id)
        rows = [a for a in self._store.partition(tenant_id).aliases if a.concept_id == concept.id]
        return sorted(rows, key=alias_display_order)

    def lookup_concept(self, tenant_id: str, term: str) -> Optional[ConceptLookup]:
        """Canonical key first, then a case-insensitive alias match; inactive concepts are skipped."""
        self._ctx.ensure_compatible()
        p = self._store.partition(tenant_id)
        needle = normalize_text(term)
        if not needle:
            return None

        concept = p.concepts.find_unique(needle)
        if concept is None or not concept.is_active:
            concept = None
            for a in sorted(p.aliases, key=alias_display_order):
                if normalize_text(a.alias_value) != needle:
                    continue
                c = p.concepts.get(a.concept_id)
                if c is not None and c.is_active:
                    concept = c
                    break
        if concept is None:
            return None

        pack = p.packs.find_unique(concept.standard_pack_id_primary) if concept.standard_pack_id_primary else None
        aliases = sorted((a for a in p.aliases if a.concept_id == concept.id), key=alias_display_order)
        return ConceptLookup(concept=concept, pack=pack, aliases=aliases)

    def search_glossary(
        self, tenant_id: str, query: str, token: Optional[CancellationToken] = None
    ) -> Dict[str, List[Any]]:
        concepts = self._concepts.list_concepts(tenant_id, search=query, token=token)
        term = normalize_text(query)
        p = self._store.partition(tenant_id)
        aliases: List[Alias] = []
        if term:
            if token is not None:
                token.raise_if_cancelled("glossary.search")
            for a in p.aliases:
                c = p.concepts.get(a.concept_id)
                if c is None or not c.is_active:
                    continue
                if term in a.alias_value.lower():
                    aliases.append(a)
        aliases.sort(key=lambda a: (a.alias_value.lower(), a.concept_id))
        return {"concepts": concepts, "aliases": aliases}

    def _publish(self, tenant_id: str, concept: Concept) -> None:
        self._bus.publish(
            MetadataChanged.mk(
                tenant_id,
                concept.id,
                concept.canonical_key,
                "UPDATED",
                changed_fields=["aliases"],
                tier=concept.governance_tier,
                standard_pack_id=concept.standard_pack_id_primary,
            )
        )
