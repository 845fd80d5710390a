from __future__ import annotations

import logging
from typing import Optional

from metastudio.core.cancellation import CancellationToken

from .graph import LineageGraphEngine
from .models import MAX_DEPTH, ImpactedEntity, ImpactReport

log = logging.getLogger("metastudio.lineage")


def impact_level(level: int) -> str:
    if level <= 2:
        return "high"
    if level <= 5:
        return "medium"
    return "low"


def analyze_impact(
    engine: LineageGraphEngine,
    tenant_id: str,
    entity_id: str,
    token: Optional[CancellationToken] = None,
) -> ImpactReport:
    """Everything downstream of ``entity_id`` (up to the maximum depth), graded by hop distance."""
    graph = engine.get_downstream(tenant_id, entity_id, depth=MAX_DEPTH, token=token)
    impacted = [
        ImpactedEntity(entity_id=n.entity_id, entity_name=n.entity_name, level=n.level, impact=impact_level(n.level))
        for n in graph.nodes
    ]
    report = ImpactReport(
        root_entity_id=entity_id,
        impacted=impacted,
        cycle_detected=graph.cycle_detected,
        truncated=graph.truncated,
    )
    log.info("lineage.impact tenant=%s root=%s counts=%s", tenant_id, entity_id, report.counts())
    return report
