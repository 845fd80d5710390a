from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, TypeVar

from metastudio.core.aliases.resolver import AliasResolver, RankedMatch
from metastudio.core.aliases.service import AliasRegistry, ConceptLookup
from metastudio.core.aliases.similarity import SimilarityStrategy
from metastudio.core.bootstrap import bootstrap_tenant, builtin_packs, builtin_rules
from metastudio.core.cancellation import CancellationToken
from metastudio.core.compat import CompatibilityContext
from metastudio.core.config import Settings
from metastudio.core.conformance.cache import ConformanceCache
from metastudio.core.conformance.checker import ConformanceChecker, ConformanceResult
from metastudio.core.errors import InternalError, MetadataError, ValidationError
from metastudio.core.lineage.graph import LineageGraphEngine
from metastudio.core.lineage.impact import analyze_impact
from metastudio.core.lineage.models import DEFAULT_DEPTH, ImpactReport, LineageEdge, LineageEntity, LineageGraph
from metastudio.core.naming import casing as naming
from metastudio.core.naming.resolver import resolve_name as name_for_context
from metastudio.core.observability.audit import AuditSubscriber
from metastudio.core.observability.metrics import ALIAS_RESOLUTIONS_TOTAL, LINEAGE_TRAVERSAL_NODES, record_operation
from metastudio.core.registry.concepts import ConceptRegistry
from metastudio.core.registry.events import NotificationBus
from metastudio.core.registry.models import Alias, Concept, StandardPack
from metastudio.core.registry.packs import StandardPackRegistry
from metastudio.core.registry.store import MetadataStore
from metastudio.core.rules.engine import RuleEngine
from metastudio.core.rules.models import Rule, Violation

log = logging.getLogger("metastudio.service")

T = TypeVar("T")


class MetadataService:
    """Single entry point over every component.

    Each call passes the compatibility gate first, runs against exactly one
    tenant partition and surfaces only taxonomy errors: anything unexpected is
    logged with its traceback and re-raised as ``InternalError``.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        ctx: Optional[CompatibilityContext] = None,
        store: Optional[MetadataStore] = None,
        similarity: Optional[SimilarityStrategy] = None,
        auto_bootstrap: bool = True,
    ):
        self.settings = settings or Settings.from_env()
        self.ctx = ctx or CompatibilityContext.establish(
            self.settings.client_sdk_version, self.settings.engine_version
        )
        self.store = store or MetadataStore()
        self.bus = NotificationBus()

        self.rules = RuleEngine(ctx=self.ctx, store=self.store)
        self.concepts = ConceptRegistry(ctx=self.ctx, store=self.store, bus=self.bus, guards=[self.rules.check_write])
        self.packs = StandardPackRegistry(ctx=self.ctx, store=self.store)
        self.aliases = AliasRegistry(ctx=self.ctx, store=self.store, bus=self.bus, concepts=self.concepts)
        self.resolver = AliasResolver(
            ctx=self.ctx,
            store=self.store,
            strategy=similarity,
            threshold=self.settings.fuzzy_threshold,
        )
        self.conformance = ConformanceChecker(ctx=self.ctx, store=self.store, cache=ConformanceCache())
        self.lineage = LineageGraphEngine(ctx=self.ctx, store=self.store, max_nodes=self.settings.lineage_max_nodes)

        self.bus.subscribe(self.rules.on_metadata_changed)
        self.bus.subscribe(self.conformance.cache.on_metadata_changed)
        if self.settings.audit_path is not None:
            self.bus.subscribe(AuditSubscriber(self.settings.audit_path))

        self.auto_bootstrap = auto_bootstrap
        self._bootstrapped: Set[str] = set()
        self._bootstrap_lock = threading.Lock()
        self._seed_packs: Optional[List[StandardPack]] = None
        self._seed_rules: Optional[List[Rule]] = None

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _ensure_tenant(self, tenant_id: str) -> None:
        if not isinstance(tenant_id, str) or not tenant_id.strip():
            raise ValidationError("tenant_id is required", details={"field": "tenant_id"})
        if not self.auto_bootstrap or tenant_id in self._bootstrapped:
            return
        with self._bootstrap_lock:
            if tenant_id in self._bootstrapped:
                return
            if self._seed_packs is None:
                self._seed_packs = builtin_packs(self.settings.bootstrap_dir)
                self._seed_rules = builtin_rules(self.settings.bootstrap_dir)
            bootstrap_tenant(
                tenant_id,
                packs=self.packs,
                rules=self.rules,
                seed_packs=self._seed_packs,
                seed_rules=self._seed_rules,
            )
            self._bootstrapped.add(tenant_id)

    def _call(self, operation: str, tenant_id: Optional[str], fn: Callable[[], T]) -> T:
        try:
            self.ctx.ensure_compatible()
            if tenant_id is not None:
                self._ensure_tenant(tenant_id)
            result = fn()
        except MetadataError as e:
            record_operation(operation, e.code)
            raise
        except Exception as e:
            record_operation(operation, InternalError.code)
            log.exception("internal error in %s tenant=%s", operation, tenant_id)
            raise InternalError(details={"operation": operation}) from e
        record_operation(operation, "ok")
        return result

    def bootstrap(self, tenant_id: str) -> None:
        self._call("bootstrap", tenant_id, lambda: None)

    def sdk_info(self) -> Dict[str, Any]:
        return self.ctx.sdk_info()

    # ------------------------------------------------------------------
    # Concepts
    # ------------------------------------------------------------------

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
        return self._call(
            "list_concepts",
            tenant_id,
            lambda: self.concepts.list_concepts(
                tenant_id,
                domain=domain,
                tier=tier,
                pack=pack,
                search=search,
                include_inactive=include_inactive,
                token=token,
            ),
        )

    def get_concept(self, tenant_id: str, key_or_id: str) -> Concept:
        return self._call("get_concept", tenant_id, lambda: self.concepts.get_concept(tenant_id, key_or_id))

    def create_concept(self, tenant_id: str, data: Any) -> Concept:
        return self._call("create_concept", tenant_id, lambda: self.concepts.create_concept(tenant_id, data))

    def update_concept(self, tenant_id: str, concept_id: str, partial: Mapping[str, Any]) -> Concept:
        return self._call(
            "update_concept", tenant_id, lambda: self.concepts.update_concept(tenant_id, concept_id, partial)
        )

    def deactivate_concept(self, tenant_id: str, concept_id: str) -> Concept:
        return self._call("deactivate_concept", tenant_id, lambda: self.concepts.deactivate(tenant_id, concept_id))

    def delete_concept(self, tenant_id: str, concept_id: str) -> Concept:
        return self._call("delete_concept", tenant_id, lambda: self.concepts.delete_concept(tenant_id, concept_id))

    # ------------------------------------------------------------------
    # Aliases and glossary
    # ------------------------------------------------------------------

    def create_alias(self, tenant_id: str, data: Any) -> Alias:
        return self._call("create_alias", tenant_id, lambda: self.aliases.create_alias(tenant_id, data))

    def delete_alias(self, tenant_id: str, alias_id: str) -> Alias:
        return self._call("delete_alias", tenant_id, lambda: self.aliases.delete_alias(tenant_id, alias_id))

    def list_aliases(self, tenant_id: str, concept_id: str) -> List[Alias]:
        return self._call("list_aliases", tenant_id, lambda: self.aliases.list_aliases(tenant_id, concept_id))

    def resolve_alias(
        self,
        tenant_id: str,
        raw_text: str,
        domain_hint: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[RankedMatch]:
        matches = self._call(
            "resolve_alias", tenant_id, lambda: self.resolver.resolve(tenant_id, raw_text, domain_hint, token)
        )
        if not matches:
            outcome = "none"
        elif matches[0].is_exact:
            outcome = "exact"
        else:
            outcome = "fuzzy"
        ALIAS_RESOLUTIONS_TOTAL.labels(outcome=outcome).inc()
        return matches

    def lookup_concept(self, tenant_id: str, term: str) -> Optional[ConceptLookup]:
        return self._call("lookup_concept", tenant_id, lambda: self.aliases.lookup_concept(tenant_id, term))

    def search_glossary(
        self, tenant_id: str, query: str, token: Optional[CancellationToken] = None
    ) -> Dict[str, List[Any]]:
        return self._call(
            "search_glossary", tenant_id, lambda: self.aliases.search_glossary(tenant_id, query, token)
        )

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def resolve_name(self, identifier: str, from_casing: str, to_casing: str) -> str:
        return self._call("resolve_name", None, lambda: naming.convert(identifier, from_casing, to_casing))

    def name_for_context(self, canonical_key: str, context: str) -> str:
        return self._call("name_for_context", None, lambda: name_for_context(canonical_key, context))

    # ------------------------------------------------------------------
    # Packs, conformance, rules
    # ------------------------------------------------------------------

    def register_pack(self, tenant_id: str, data: Any) -> StandardPack:
        return self._call("register_pack", tenant_id, lambda: self.packs.register_pack(tenant_id, data))

    def get_pack(self, tenant_id: str, pack_id: str) -> StandardPack:
        return self._call("get_pack", tenant_id, lambda: self.packs.get_pack(tenant_id, pack_id))

    def list_packs(self, tenant_id: str, category: Optional[str] = None) -> List[StandardPack]:
        return self._call("list_packs", tenant_id, lambda: self.packs.list_packs(tenant_id, category=category))

    def check_conformance(
        self,
        tenant_id: str,
        entity_id: str,
        pack_id: str,
        *,
        use_cache: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> ConformanceResult:
        return self._call(
            "check_conformance",
            tenant_id,
            lambda: self.conformance.check_conformance(
                tenant_id, entity_id, pack_id, use_cache=use_cache, token=token
            ),
        )

    def evaluate_rules(
        self,
        tenant_id: str,
        scope: Optional[str] = None,
        target_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[Violation]:
        return self._call(
            "evaluate_rules", tenant_id, lambda: self.rules.evaluate(tenant_id, scope, target_id, token)
        )

    def list_rules(self, tenant_id: str, scope: Optional[str] = None) -> List[Rule]:
        return self._call("list_rules", tenant_id, lambda: self.rules.list_rules(tenant_id, scope))

    def load_rules(self, tenant_id: str, rules: List[Any]) -> List[Rule]:
        return self._call("load_rules", tenant_id, lambda: self.rules.load_rules(tenant_id, rules))

    # ------------------------------------------------------------------
    # Lineage
    # ------------------------------------------------------------------

    def register_entity(self, tenant_id: str, data: Any) -> LineageEntity:
        return self._call("register_entity", tenant_id, lambda: self.lineage.register_entity(tenant_id, data))

    def get_entity(self, tenant_id: str, entity_id: str) -> LineageEntity:
        return self._call("get_entity", tenant_id, lambda: self.lineage.get_entity(tenant_id, entity_id))

    def list_entities(self, tenant_id: str) -> List[LineageEntity]:
        return self._call("list_entities", tenant_id, lambda: self.lineage.list_entities(tenant_id))

    def retire_entity(self, tenant_id: str, entity_id: str) -> int:
        return self._call("retire_entity", tenant_id, lambda: self.lineage.retire_entity(tenant_id, entity_id))

    def add_edge(
        self,
        tenant_id: str,
        source_id: str,
        target_id: str,
        edge_type: Any = "DIRECT",
        transformation_logic: Optional[str] = None,
        confidence: int = 100,
    ) -> LineageEdge:
        return self._call(
            "add_edge",
            tenant_id,
            lambda: self.lineage.add_edge(tenant_id, source_id, target_id, edge_type, transformation_logic, confidence),
        )

    def get_upstream(
        self, tenant_id: str, entity_id: str, depth: int = DEFAULT_DEPTH, token: Optional[CancellationToken] = None
    ) -> LineageGraph:
        graph = self._call(
            "get_upstream", tenant_id, lambda: self.lineage.get_upstream(tenant_id, entity_id, depth, token)
        )
        LINEAGE_TRAVERSAL_NODES.labels(direction="upstream").observe(len(graph.nodes))
        return graph

    def get_downstream(
        self, tenant_id: str, entity_id: str, depth: int = DEFAULT_DEPTH, token: Optional[CancellationToken] = None
    ) -> LineageGraph:
        graph = self._call(
            "get_downstream", tenant_id, lambda: self.lineage.get_downstream(tenant_id, entity_id, depth, token)
        )
        LINEAGE_TRAVERSAL_NODES.labels(direction="downstream").observe(len(graph.nodes))
        return graph

    def get_full_lineage(
        self, tenant_id: str, entity_id: str, depth: int = DEFAULT_DEPTH, token: Optional[CancellationToken] = None
    ) -> LineageGraph:
        graph = self._call(
            "get_full_lineage", tenant_id, lambda: self.lineage.get_full_lineage(tenant_id, entity_id, depth, token)
        )
        LINEAGE_TRAVERSAL_NODES.labels(direction="both").observe(len(graph.nodes))
        return graph

    def lineage_coverage(self, tenant_id: str) -> int:
        return self._call("lineage_coverage", tenant_id, lambda: self.lineage.coverage(tenant_id))

    def analyze_impact(
        self, tenant_id: str, entity_id: str, token: Optional[CancellationToken] = None
    ) -> ImpactReport:
        return self._call(
            "analyze_impact", tenant_id, lambda: analyze_impact(self.lineage, tenant_id, entity_id, token=token)
        )
