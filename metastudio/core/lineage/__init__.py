from .graph import LineageGraphEngine, clamp_depth, has_cycle
from .impact import analyze_impact, impact_level
from .models import (
    DEFAULT_DEPTH,
    MAX_DEPTH,
    MIN_DEPTH,
    EdgeType,
    ImpactReport,
    LineageEdge,
    LineageEntity,
    LineageGraph,
    LineageNode,
)

__all__ = [
    "DEFAULT_DEPTH",
    "EdgeType",
    "ImpactReport",
    "LineageEdge",
    "LineageEntity",
    "LineageGraph",
    "LineageGraphEngine",
    "LineageNode",
    "MAX_DEPTH",
    "MIN_DEPTH",
    "analyze_impact",
    "clamp_depth",
    "has_cycle",
    "impact_level",
]
