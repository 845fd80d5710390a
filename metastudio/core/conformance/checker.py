from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from metastudio.core.cancellation import CancellationToken
from metastudio.core.compat import CompatibilityContext
from metastudio.core.errors import NotFoundError
from metastudio.core.registry.concepts import find_concept
from metastudio.core.registry.events import now_utc_iso
from metastudio.core.registry.models import Concept, PackField, QualityRule
from metastudio.core.registry.store import MetadataStore

from .cache import ConformanceCache
from .validators import check_data_type, parse_validation_rule

log = logging.getLogger("metastudio.conformance")


@dataclass(frozen=True)
class InvalidField:
    field_name: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"field_name": self.field_name, "reason": self.reason}


@dataclass(frozen=True)
class QualityCheck:
    dimension: str
    score: float
    threshold: float
    passed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dimension": self.dimension,
            "score": self.score,
            "threshold": self.threshold,
            "passed": self.passed,
        }


@dataclass(frozen=True)
class ConformanceResult:
    tenant_id: str
    entity_id: str
    pack_id: str
    score: int
    conformant_fields: List[str] = field(default_factory=list)
    missing_fields: List[str] = field(default_factory=list)
    invalid_fields: List[InvalidField] = field(default_factory=list)
    quality: List[QualityCheck] = field(default_factory=list)
    checked_at: str = ""
    from_cache: bool = False

    @property
    def quality_passed(self) -> bool:
        return all(q.passed for q in self.quality)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_id": self.entity_id,
            "pack_id": self.pack_id,
            "score": self.score,
            "conformant_fields": list(self.conformant_fields),
            "missing_fields": list(self.missing_fields),
            "invalid_fields": [f.to_dict() for f in self.invalid_fields],
            "quality": [q.to_dict() for q in self.quality],
            "quality_passed": self.quality_passed,
            "checked_at": self.checked_at,
            "from_cache": self.from_cache,
        }


def _is_absent(value: Any) -> bool:
    return value is None


def _field_problem(pf: PackField, value: Any) -> Optional[str]:
    problem = check_data_type(pf.data_type, value)
    if problem:
        return problem
    for raw in pf.validation_rules:
        problem = parse_validation_rule(raw)(value)
        if problem:
            return f"{raw}: {problem}"
    return None


def score_fields(concept: Concept, fields: List[PackField]) -> Dict[str, Any]:
    conformant: List[str] = []
    missing: List[str] = []
    invalid: List[InvalidField] = []
    required_total = 0
    required_ok = 0

    for pf in fields:
        if pf.required:
            required_total += 1
        value = concept.field_value(pf.field_name)
        if _is_absent(value):
            if pf.required:
                missing.append(pf.field_name)
            continue
        problem = _field_problem(pf, value)
        if problem:
            invalid.append(InvalidField(pf.field_name, problem))
            continue
        conformant.append(pf.field_name)
        if pf.required:
            required_ok += 1

    # A pack without required fields imposes nothing, so everything conforms.
    score = 100 if required_total == 0 else round(100 * required_ok / required_total)
    return {
        "score": max(0, min(100, score)),
        "conformant_fields": conformant,
        "missing_fields": missing,
        "invalid_fields": invalid,
    }


def _percent(part: int, whole: int) -> float:
    return 100.0 if whole == 0 else round(100 * part / whole, 2)


def _text_key(value: Any) -> str:
    return str(value).strip().lower()


def _shared(concept: Concept, name: str, population: List[Concept]) -> bool:
    mine = _text_key(concept.field_value(name))
    for other in population:
        if other.id == concept.id:
            continue
        theirs = other.field_value(name)
        if not _is_absent(theirs) and _text_key(theirs) == mine:
            return True
    return False


def quality_dimensions(concept: Concept, fields: List[PackField], population: List[Concept]) -> Dict[str, float]:
    """Percent scores over all pack fields, required or not.

    completeness: fields present. validity: present fields that pass their
    checks. uniqueness: present values no other active concept holds.
    """
    present = [pf for pf in fields if not _is_absent(concept.field_value(pf.field_name))]
    valid = [pf for pf in present if _field_problem(pf, concept.field_value(pf.field_name)) is None]
    distinct = [pf for pf in present if not _shared(concept, pf.field_name, population)]
    return {
        "completeness": _percent(len(present), len(fields)),
        "uniqueness": _percent(len(distinct), len(present)),
        "validity": _percent(len(valid), len(present)),
    }


def check_quality(rules: List[QualityRule], dimensions: Dict[str, float]) -> List[QualityCheck]:
    out = []
    for r in rules:
        score = dimensions[r.dimension]
        out.append(QualityCheck(dimension=r.dimension, score=score, threshold=r.threshold, passed=score >= r.threshold))
    return out


class ConformanceChecker:
    def __init__(
        self,
        *,
        ctx: CompatibilityContext,
        store: MetadataStore,
        cache: Optional[ConformanceCache] = None,
    ):
        self._ctx = ctx
        self._store = store
        self.cache = cache or ConformanceCache()

    def check_conformance(
        self,
        tenant_id: str,
        entity_id: str,
        pack_id: str,
        *,
        use_cache: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> ConformanceResult:
        self._ctx.ensure_compatible()
        if token is not None:
            token.raise_if_cancelled("conformance.check")
        p = self._store.partition(tenant_id)
        concept = find_concept(p, entity_id)
        if concept is None:
            raise NotFoundError(
                f"Concept '{entity_id}' not found in tenant '{tenant_id}'",
                details={"tenant_id": tenant_id, "entity_id": entity_id},
            )
        pack = p.packs.find_unique(pack_id)
        if pack is None:
            raise NotFoundError(
                f"Standard pack '{pack_id}' not found in tenant '{tenant_id}'",
                details={"tenant_id": tenant_id, "pack_id": pack_id},
            )

        key = (tenant_id, concept.id, pack.pack_id)
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return replace(cached, from_cache=True)

        quality: List[QualityCheck] = []
        if pack.quality_rules:
            population = [c for c in p.concepts if c.is_active]
            quality = check_quality(pack.quality_rules, quality_dimensions(concept, pack.fields, population))

        result = ConformanceResult(
            tenant_id=tenant_id,
            entity_id=concept.id,
            pack_id=pack.pack_id,
            quality=quality,
            checked_at=now_utc_iso(),
            **score_fields(concept, pack.fields),
        )
        log.info(
            "conformance.checked tenant=%s concept=%s pack=%s score=%s missing=%s invalid=%s quality_passed=%s",
            tenant_id,
            concept.canonical_key,
            pack.pack_id,
            result.score,
            len(result.missing_fields),
            len(result.invalid_fields),
            result.quality_passed,
        )
        if use_cache:
            self.cache.set(key, result)
        return result
