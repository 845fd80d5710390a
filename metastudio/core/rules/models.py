from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from metastudio.core.registry.models import AuthorityLevel, Domain


class Severity(str, Enum):
    BLOCKING = "BLOCKING"
    WARNING = "WARNING"
    INFO = "INFO"


SEVERITY_ORDER: Dict[Severity, int] = {Severity.BLOCKING: 0, Severity.WARNING: 1, Severity.INFO: 2}


class RuleScope(str, Enum):
    SYSTEM = "SYSTEM"
    PACK = "PACK"
    TENANT = "TENANT"


# ============================================================================
# Expressions (closed tagged union, discriminated on ``kind``)
# ============================================================================

class _Expression(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class TierMembership(_Expression):
    """Concepts (optionally of one domain) must sit in one of ``allowed_tiers``."""

    kind: Literal["tier_membership"] = "tier_membership"
    domain: Optional[Domain] = None
    allowed_tiers: List[int] = Field(min_length=1)

    @field_validator("allowed_tiers")
    @classmethod
    def _tiers_in_range(cls, v: List[int]) -> List[int]:
        bad = [t for t in v if not 1 <= t <= 4]
        if bad:
            raise ValueError(f"governance tiers must be 1..4, got {bad}")
        return sorted(set(v))


class RequiredReference(_Expression):
    """Concepts at ``max_tier`` or more critical must set ``field``.

    The value is resolved as a pack id when ``field`` is the primary pack or an
    authority is required; for any other field presence is enough.
    """

    kind: Literal["required_reference"] = "required_reference"
    domain: Optional[Domain] = None
    max_tier: int = Field(ge=1, le=4)
    field: str = "standard_pack_id_primary"
    required_authority: Optional[AuthorityLevel] = None


class Uniqueness(_Expression):
    kind: Literal["uniqueness"] = "uniqueness"
    field: str


class ForeignKeyExists(_Expression):
    kind: Literal["foreign_key_exists"] = "foreign_key_exists"
    field: str
    references: Literal["standard_packs", "concepts"]


RuleExpression = Annotated[
    Union[TierMembership, RequiredReference, Uniqueness, ForeignKeyExists],
    Field(discriminator="kind"),
]


class Rule(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    rule_code: str = Field(min_length=1)
    scope: RuleScope = RuleScope.TENANT
    target_id: Optional[str] = None
    severity: Severity = Severity.WARNING
    description: str = ""
    expression: RuleExpression
    is_enforced_in_code: bool = True

    @field_validator("rule_code")
    @classmethod
    def _upper_code(cls, v: str) -> str:
        return v.strip().upper()


@dataclass(frozen=True)
class Violation:
    rule_code: str
    severity: Severity
    message: str
    target_id: Optional[str] = None
    evaluated: bool = True
    details: Dict[str, Any] = field(default_factory=dict)

    def sort_key(self):
        return (SEVERITY_ORDER[self.severity], self.rule_code, self.target_id or "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_code": self.rule_code,
            "severity": self.severity.value,
            "message": self.message,
            "target_id": self.target_id,
            "evaluated": self.evaluated,
            "details": dict(self.details),
        }
