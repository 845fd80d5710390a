from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from metastudio.core.conformance.validators import DATA_TYPES, QUALITY_DIMENSIONS, parse_validation_rule
from metastudio.core.errors import ValidationError

SNAKE_CASE_RE = re.compile(r"^[a-z][a-z0-9]*(_[a-z0-9]+)*$")

M = TypeVar("M", bound=BaseModel)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def parse_model(model_cls: Type[M], data: Any) -> M:
    """Validate ``data`` into ``model_cls``, translating pydantic errors into the engine taxonomy."""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
            for err in e.errors()
        ]
        field = errors[0]["field"] if errors else None
        raise ValidationError(
            f"Invalid {model_cls.__name__}: {errors[0]['message'] if errors else 'malformed input'}",
            details={"field": field, "errors": errors},
        ) from None


class Domain(str, Enum):
    FINANCE = "FINANCE"
    HR = "HR"
    OPERATIONS = "OPERATIONS"
    SALES = "SALES"
    MARKETING = "MARKETING"
    GENERAL = "GENERAL"


class AliasType(str, Enum):
    ABBREVIATION = "ABBREVIATION"
    SYNONYM = "SYNONYM"
    LOCALIZED = "LOCALIZED"
    SYSTEM_FIELD = "SYSTEM_FIELD"
    DISPLAY = "DISPLAY"


class AuthorityLevel(str, Enum):
    LAW = "LAW"
    PACK = "PACK"
    INFO = "INFO"


# ============================================================================
# Concepts
# ============================================================================

class ConceptCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    canonical_key: str
    label: str = Field(min_length=1)
    description: str = ""
    domain: Domain = Domain.GENERAL
    concept_type: str = "FIELD"
    governance_tier: int = Field(default=3, ge=1, le=4)
    standard_pack_id_primary: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("canonical_key")
    @classmethod
    def _snake_case_key(cls, v: str) -> str:
        v = (v or "").strip()
        if not SNAKE_CASE_RE.match(v):
            raise ValueError(f"canonical_key '{v}' is not valid snake_case")
        return v

    @field_validator("domain", mode="before")
    @classmethod
    def _upper_domain(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v


# Fields an update may touch; everything else on a concept is engine-owned.
UPDATABLE_CONCEPT_FIELDS = (
    "canonical_key",
    "label",
    "description",
    "domain",
    "concept_type",
    "governance_tier",
    "standard_pack_id_primary",
    "attributes",
)


class Concept(ConceptCreate):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=new_id)
    tenant_id: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def field_value(self, name: str) -> Any:
        """Value of a named field: attributes first, then the concept's own columns."""
        if name in self.attributes:
            return self.attributes[name]
        if name in type(self).model_fields and name != "attributes":
            return getattr(self, name)
        return None


# ============================================================================
# Aliases
# ============================================================================

class AliasCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    concept_id: str
    alias_value: str = Field(min_length=1)
    alias_type: AliasType = AliasType.SYNONYM
    source_system: Optional[str] = None
    is_preferred_for_display: bool = False
    locale: str = "en"
    notes: Optional[str] = None

    @field_validator("alias_value")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("alias_value must not be blank")
        return v


class Alias(AliasCreate):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utc_now)


# ============================================================================
# Standard packs
# ============================================================================

class PackField(BaseModel):
    field_name: str
    data_type: str = "any"
    required: bool = False
    validation_rules: List[str] = Field(default_factory=list)

    @field_validator("data_type")
    @classmethod
    def _known_type(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in DATA_TYPES:
            raise ValueError(f"unknown data_type '{v}' (expected one of {sorted(DATA_TYPES)})")
        return v

    @field_validator("validation_rules")
    @classmethod
    def _known_rules(cls, v: List[str]) -> List[str]:
        # Reject unknown rules at load time, not at check time.
        for raw in v:
            try:
                parse_validation_rule(raw)
            except ValidationError as e:
                raise ValueError(e.message) from None
        return v


class QualityRule(BaseModel):
    """Minimum percentage a concept must reach on one quality dimension."""

    dimension: str
    threshold: float = Field(ge=0, le=100)

    @field_validator("dimension")
    @classmethod
    def _known_dimension(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in QUALITY_DIMENSIONS:
            raise ValueError(f"unknown quality dimension '{v}' (expected one of {list(QUALITY_DIMENSIONS)})")
        return v


class StandardPack(BaseModel):
    model_config = ConfigDict(frozen=True)

    pack_id: str = Field(min_length=1)
    name: str
    version: str = "1.0.0"
    category: str = "general"
    tier: AuthorityLevel = AuthorityLevel.PACK
    description: Optional[str] = None
    fields: List[PackField] = Field(default_factory=list)
    quality_rules: List[QualityRule] = Field(default_factory=list)

    @property
    def authority_level(self) -> AuthorityLevel:
        return self.tier

    @property
    def required_fields(self) -> List[PackField]:
        return [f for f in self.fields if f.required]
