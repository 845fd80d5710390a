from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from metastudio.core.registry.models import new_id, utc_now

MIN_DEPTH = 1
MAX_DEPTH = 10
DEFAULT_DEPTH = 5

Direction = Literal["upstream", "downstream", "both"]


class EdgeType(str, Enum):
    DIRECT = "DIRECT"
    INDIRECT = "INDIRECT"
    DERIVED = "DERIVED"
    AGGREGATION = "AGGREGATION"
    JOIN = "JOIN"


class LineageEntity(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    entity_id: str = Field(min_length=1)
    entity_name: str = ""
    entity_type: str = "FIELD"
    fully_qualified_name: Optional[str] = None
    registered_at: datetime = Field(default_factory=utc_now)

    @field_validator("entity_id")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("entity_id must not be blank")
        return v


class EdgeCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    source_id: str = Field(min_length=1)
    target_id: str = Field(min_length=1)
    edge_type: EdgeType = EdgeType.DIRECT
    transformation_logic: Optional[str] = None
    confidence: int = Field(default=100, ge=0, le=100)


class LineageEdge(EdgeCreate):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_id": self.source_id,
            "target_id": self.target_id,
            "edge_type": self.edge_type.value,
            "transformation_logic": self.transformation_logic,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class LineageNode:
    id: str
    entity_id: str
    entity_name: str
    entity_type: str
    fully_qualified_name: Optional[str]
    level: int
    path_confidence: int = 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "entity_type": self.entity_type,
            "fully_qualified_name": self.fully_qualified_name,
            "level": self.level,
            "path_confidence": self.path_confidence,
        }


@dataclass(frozen=True)
class LineageGraph:
    root_entity_id: str
    direction: Direction
    depth: int
    requested_depth: int
    nodes: List[LineageNode] = field(default_factory=list)
    edges: List[LineageEdge] = field(default_factory=list)
    cycle_detected: bool = False
    truncated: bool = False
    generated_at: str = ""

    def node_ids(self) -> List[str]:
        return [n.entity_id for n in self.nodes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root_entity_id": self.root_entity_id,
            "direction": self.direction,
            "depth": self.depth,
            "requested_depth": self.requested_depth,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "cycle_detected": self.cycle_detected,
            "truncated": self.truncated,
            "generated_at": self.generated_at,
        }


@dataclass(frozen=True)
class ImpactedEntity:
    entity_id: str
    entity_name: str
    level: int
    impact: Literal["high", "medium", "low"]

    def to_dict(self) -> Dict[str, Any]:
        return {"entity_id": self.entity_id, "entity_name": self.entity_name, "level": self.level, "impact": self.impact}


@dataclass(frozen=True)
class ImpactReport:
    root_entity_id: str
    impacted: List[ImpactedEntity] = field(default_factory=list)
    cycle_detected: bool = False
    truncated: bool = False

    def counts(self) -> Dict[str, int]:
        out = {"high": 0, "medium": 0, "low": 0}
        for i in self.impacted:
            out[i.impact] += 1
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root_entity_id": self.root_entity_id,
            "total": len(self.impacted),
            "counts": self.counts(),
            "impacted": [i.to_dict() for i in self.impacted],
            "cycle_detected": self.cycle_detected,
            "truncated": self.truncated,
        }
