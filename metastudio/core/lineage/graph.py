from __future__ import annotations

import heapq
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from metastudio.core.cancellation import CancellationToken
from metastudio.core.compat import CompatibilityContext
from metastudio.core.errors import ConflictError, NotFoundError, ValidationError
from metastudio.core.registry.events import now_utc_iso
from metastudio.core.registry.models import parse_model
from metastudio.core.registry.store import MetadataStore, TenantPartition, check_then_insert

from .models import (
    DEFAULT_DEPTH,
    MAX_DEPTH,
    MIN_DEPTH,
    Direction,
    EdgeCreate,
    EdgeType,
    LineageEdge,
    LineageEntity,
    LineageGraph,
    LineageNode,
)

log = logging.getLogger("metastudio.lineage")


def clamp_depth(depth: Any) -> int:
    if isinstance(depth, bool) or not isinstance(depth, int):
        raise ValidationError(
            f"depth must be an integer, got {depth!r}",
            details={"field": "depth", "value": repr(depth)},
        )
    return max(MIN_DEPTH, min(MAX_DEPTH, depth))


def has_cycle(node_ids: Iterable[str], edges: Iterable[LineageEdge]) -> bool:
    """Kahn's algorithm: a directed cycle exists iff some node never reaches in-degree zero."""
    nodes = set(node_ids)
    out: Dict[str, List[str]] = defaultdict(list)
    in_degree: Dict[str, int] = {n: 0 for n in nodes}
    for e in edges:
        if e.source_id in nodes and e.target_id in nodes:
            out[e.source_id].append(e.target_id)
            in_degree[e.target_id] += 1

    queue = deque(n for n, d in in_degree.items() if d == 0)
    seen = 0
    while queue:
        current = queue.popleft()
        seen += 1
        for neighbor in out[current]:
            in_degree[neighbor] -= 1
            if in_degree[neighbor] == 0:
                queue.append(neighbor)
    return seen != len(nodes)


@dataclass
class _Walk:
    levels: Dict[str, int] = field(default_factory=dict)
    edges: Dict[str, LineageEdge] = field(default_factory=dict)
    truncated: bool = False


def _best_confidence(root: str, walk: _Walk, direction: str) -> Dict[str, float]:
    """Max product of edge confidences from ``root`` over the traversed edges.

    Every factor is at most 1, so a Dijkstra-style search on the largest
    product settles each node once.
    """
    adj: Dict[str, List[LineageEdge]] = defaultdict(list)
    for e in walk.edges.values():
        adj[e.target_id if direction == "upstream" else e.source_id].append(e)

    best: Dict[str, float] = {root: 1.0}
    heap = [(-1.0, root)]
    done: Set[str] = set()
    while heap:
        neg, node = heapq.heappop(heap)
        if node in done:
            continue
        done.add(node)
        for e in adj[node]:
            nxt = e.source_id if direction == "upstream" else e.target_id
            conf = -neg * (e.confidence / 100.0)
            if conf > best.get(nxt, -1.0):
                best[nxt] = conf
                heapq.heappush(heap, (-conf, nxt))
    return best


class LineageGraphEngine:
    """Tenant-scoped lineage: registered entities plus typed, directed edges.

    Traversals are breadth-first with an explicit visited set, bounded by a
    clamped depth and a node cap, and check their cancellation token between
    levels.
    """

    def __init__(self, *, ctx: CompatibilityContext, store: MetadataStore, max_nodes: int = 10_000):
        self._ctx = ctx
        self._store = store
        self.max_nodes = max(1, int(max_nodes))

    # ------------------------------------------------------------------
    # Entities and edges
    # ------------------------------------------------------------------

    def register_entity(self, tenant_id: str, data: Any) -> LineageEntity:
        self._ctx.ensure_compatible()
        entity = parse_model(LineageEntity, data)

        def attempt() -> LineageEntity:
            with self._store.transaction(tenant_id) as p:
                if entity.entity_id in p.entities:
                    raise _duplicate_entity(tenant_id, entity.entity_id)
                p.entities.insert(entity.entity_id, entity)
            return entity

        registered = check_then_insert(attempt, on_conflict=lambda e: _duplicate_entity(tenant_id, entity.entity_id))
        log.info("lineage.entity_registered tenant=%s entity=%s type=%s", tenant_id, registered.entity_id, registered.entity_type)
        return registered

    def get_entity(self, tenant_id: str, entity_id: str) -> LineageEntity:
        self._ctx.ensure_compatible()
        return self._require_entity(self._store.partition(tenant_id), entity_id)

    def list_entities(self, tenant_id: str) -> List[LineageEntity]:
        self._ctx.ensure_compatible()
        return sorted(self._store.partition(tenant_id).entities, key=lambda e: e.entity_id)

    def retire_entity(self, tenant_id: str, entity_id: str) -> int:
        """Remove an entity and every edge touching it; returns the number of edges removed."""
        self._ctx.ensure_compatible()
        with self._store.transaction(tenant_id) as p:
            self._require_entity(p, entity_id)
            doomed = [e.id for e in p.edges if entity_id in (e.source_id, e.target_id)]
            for edge_id in doomed:
                p.edges.delete(edge_id)
            p.entities.delete(entity_id)
        log.info("lineage.entity_retired tenant=%s entity=%s edges_removed=%s", tenant_id, entity_id, len(doomed))
        return len(doomed)

    def add_edge(
        self,
        tenant_id: str,
        source_id: str,
        target_id: str,
        edge_type: Any = EdgeType.DIRECT,
        transformation_logic: Optional[str] = None,
        confidence: int = 100,
    ) -> LineageEdge:
        self._ctx.ensure_compatible()
        payload = parse_model(
            EdgeCreate,
            {
                "source_id": source_id,
                "target_id": target_id,
                "edge_type": edge_type,
                "transformation_logic": transformation_logic,
                "confidence": confidence,
            },
        )
        if payload.source_id == payload.target_id:
            raise ValidationError(
                "An entity cannot be its own lineage source",
                details={"field": "target_id", "entity_id": payload.source_id},
            )
        edge = LineageEdge(**payload.model_dump())

        def attempt() -> LineageEdge:
            with self._store.transaction(tenant_id) as p:
                for field_name, eid in (("source_id", edge.source_id), ("target_id", edge.target_id)):
                    if eid not in p.entities:
                        raise ValidationError(
                            f"Lineage entity '{eid}' is not registered in tenant '{tenant_id}'",
                            details={"field": field_name, "entity_id": eid},
                        )
                if p.edges.find_unique((edge.source_id, edge.target_id, edge.edge_type)) is not None:
                    raise _duplicate_edge(tenant_id, edge)
                p.edges.insert(edge.id, edge)
            return edge

        created = check_then_insert(attempt, on_conflict=lambda e: _duplicate_edge(tenant_id, edge))
        log.info(
            "lineage.edge_added tenant=%s %s -> %s type=%s confidence=%s",
            tenant_id,
            created.source_id,
            created.target_id,
            created.edge_type.value,
            created.confidence,
        )
        return created

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def get_upstream(
        self,
        tenant_id: str,
        entity_id: str,
        depth: int = DEFAULT_DEPTH,
        token: Optional[CancellationToken] = None,
    ) -> LineageGraph:
        return self._graph(tenant_id, entity_id, "upstream", depth, token)

    def get_downstream(
        self,
        tenant_id: str,
        entity_id: str,
        depth: int = DEFAULT_DEPTH,
        token: Optional[CancellationToken] = None,
    ) -> LineageGraph:
        return self._graph(tenant_id, entity_id, "downstream", depth, token)

    def get_full_lineage(
        self,
        tenant_id: str,
        entity_id: str,
        depth: int = DEFAULT_DEPTH,
        token: Optional[CancellationToken] = None,
    ) -> LineageGraph:
        return self._graph(tenant_id, entity_id, "both", depth, token)

    def _graph(
        self,
        tenant_id: str,
        entity_id: str,
        direction: Direction,
        depth: Any,
        token: Optional[CancellationToken],
    ) -> LineageGraph:
        self._ctx.ensure_compatible()
        clamped = clamp_depth(depth)
        p = self._store.partition(tenant_id)
        self._require_entity(p, entity_id)

        directions = ["upstream", "downstream"] if direction == "both" else [direction]
        levels: Dict[str, int] = {}
        confidence: Dict[str, float] = {}
        edges: Dict[str, LineageEdge] = {}
        truncated = False
        cycle = False
        for d in directions:
            walk = self._walk(p, entity_id, d, clamped, token)
            best = _best_confidence(entity_id, walk, d)
            truncated = truncated or walk.truncated
            cycle = cycle or has_cycle([entity_id, *walk.levels], walk.edges.values())
            edges.update(walk.edges)
            for node, level in walk.levels.items():
                levels[node] = min(level, levels.get(node, level))
                confidence[node] = max(best.get(node, 0.0), confidence.get(node, 0.0))

        nodes = []
        for node_id, level in sorted(levels.items(), key=lambda kv: (kv[1], kv[0])):
            ent = p.entities.get(node_id)
            nodes.append(
                LineageNode(
                    id=node_id,
                    entity_id=node_id,
                    entity_name=ent.entity_name if ent else node_id,
                    entity_type=ent.entity_type if ent else "UNKNOWN",
                    fully_qualified_name=ent.fully_qualified_name if ent else None,
                    level=level,
                    path_confidence=round(confidence.get(node_id, 0.0) * 100),
                )
            )

        graph = LineageGraph(
            root_entity_id=entity_id,
            direction=direction,
            depth=clamped,
            requested_depth=depth,
            nodes=nodes,
            edges=sorted(edges.values(), key=lambda e: (e.source_id, e.target_id, e.edge_type.value)),
            cycle_detected=cycle,
            truncated=truncated,
            generated_at=now_utc_iso(),
        )
        log.info(
            "lineage.%s tenant=%s root=%s depth=%s nodes=%s edges=%s cycle=%s truncated=%s",
            direction,
            tenant_id,
            entity_id,
            clamped,
            len(graph.nodes),
            len(graph.edges),
            graph.cycle_detected,
            graph.truncated,
        )
        return graph

    def _walk(
        self,
        p: TenantPartition,
        root: str,
        direction: str,
        depth: int,
        token: Optional[CancellationToken],
    ) -> _Walk:
        adj: Dict[str, List[LineageEdge]] = defaultdict(list)
        for e in p.edges:
            adj[e.target_id if direction == "upstream" else e.source_id].append(e)

        walk = _Walk()
        visited: Set[str] = {root}
        frontier = [root]
        for level in range(1, depth + 1):
            if token is not None:
                token.raise_if_cancelled(f"lineage.{direction}")
            if not frontier:
                break
            nxt: List[str] = []
            for node in frontier:
                for e in sorted(adj[node], key=lambda x: x.id):
                    other = e.source_id if direction == "upstream" else e.target_id
                    if other in visited:
                        walk.edges[e.id] = e
                        continue
                    if len(walk.levels) >= self.max_nodes:
                        walk.truncated = True
                        continue
                    visited.add(other)
                    walk.levels[other] = level
                    walk.edges[e.id] = e
                    nxt.append(other)
            frontier = nxt
        return walk

    # ------------------------------------------------------------------
    # Coverage
    # ------------------------------------------------------------------

    def coverage(self, tenant_id: str) -> int:
        """Integer percent of registered entities that take part in at least one edge."""
        self._ctx.ensure_compatible()
        p = self._store.partition(tenant_id)
        total = len(p.entities)
        if total == 0:
            return 0
        linked: Set[str] = set()
        for e in p.edges:
            linked.add(e.source_id)
            linked.add(e.target_id)
        covered = sum(1 for ent in p.entities if ent.entity_id in linked)
        return round(100 * covered / total)

    def _require_entity(self, p: TenantPartition, entity_id: str) -> LineageEntity:
        ent = p.entities.get(entity_id)
        if ent is None:
            raise NotFoundError(
                f"Lineage entity '{entity_id}' not found in tenant '{p.tenant_id}'",
                details={"tenant_id": p.tenant_id, "entity_id": entity_id},
            )
        return ent


def _duplicate_entity(tenant_id: str, entity_id: str) -> ConflictError:
    return ConflictError(
        f"Lineage entity '{entity_id}' already registered in tenant '{tenant_id}'",
        details={"field": "entity_id", "entity_id": entity_id},
    )


def _duplicate_edge(tenant_id: str, edge: LineageEdge) -> ConflictError:
    return ConflictError(
        f"Lineage edge {edge.source_id} -> {edge.target_id} ({edge.edge_type.value}) already exists",
        details={
            "source_id": edge.source_id,
            "target_id": edge.target_id,
            "edge_type": edge.edge_type.value,
            "tenant_id": tenant_id,
        },
    )
