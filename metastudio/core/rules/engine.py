from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional

from metastudio.core.cancellation import CancellationToken
from metastudio.core.compat import CompatibilityContext
from metastudio.core.errors import BlockingRuleViolation, ConflictError, NotFoundError, ValidationError
from metastudio.core.registry.concepts import find_concept
from metastudio.core.registry.events import MetadataChanged
from metastudio.core.registry.models import Concept, StandardPack, parse_model
from metastudio.core.registry.store import MetadataStore, TenantPartition, check_then_insert

from .models import (
    ForeignKeyExists,
    RequiredReference,
    Rule,
    RuleScope,
    Severity,
    TierMembership,
    Uniqueness,
    Violation,
)

log = logging.getLogger("metastudio.rules")


@dataclass(frozen=True)
class EvalContext:
    """Read-only view a rule is evaluated against."""

    targets: List[Concept]
    population: List[Concept]
    packs: Dict[str, StandardPack]
    partition: TenantPartition


RuleFn = Callable[[Rule, EvalContext], List[Violation]]


def _violation(rule: Rule, concept: Concept, message: str, **details: Any) -> Violation:
    return Violation(
        rule_code=rule.rule_code,
        severity=rule.severity,
        message=message,
        target_id=concept.id,
        details={"canonical_key": concept.canonical_key, **details},
    )


def _domain_applies(domain, concept: Concept) -> bool:
    return domain is None or concept.domain == domain


def _text(value: Any) -> str:
    return str(value).strip().lower() if value is not None else ""


def eval_tier_membership(rule: Rule, ctx: EvalContext) -> List[Violation]:
    expr: TierMembership = rule.expression  # type: ignore[assignment]
    out: List[Violation] = []
    for c in ctx.targets:
        if _domain_applies(expr.domain, c) and c.governance_tier not in expr.allowed_tiers:
            out.append(
                _violation(
                    rule,
                    c,
                    f"'{c.canonical_key}' is tier {c.governance_tier}; allowed tiers are {expr.allowed_tiers}",
                    tier=c.governance_tier,
                    allowed_tiers=list(expr.allowed_tiers),
                )
            )
    return out


def eval_required_reference(rule: Rule, ctx: EvalContext) -> List[Violation]:
    expr: RequiredReference = rule.expression  # type: ignore[assignment]
    out: List[Violation] = []
    for c in ctx.targets:
        if not _domain_applies(expr.domain, c) or c.governance_tier > expr.max_tier:
            continue
        ref = c.field_value(expr.field)
        if not ref:
            out.append(
                _violation(
                    rule,
                    c,
                    f"'{c.canonical_key}' (tier {c.governance_tier}) must set {expr.field}",
                    field=expr.field,
                )
            )
            continue
        if expr.required_authority is None and expr.field != "standard_pack_id_primary":
            continue
        pack = ctx.packs.get(str(ref))
        if pack is None:
            out.append(
                _violation(rule, c, f"'{c.canonical_key}' references unknown pack '{ref}'", field=expr.field, pack_id=ref)
            )
            continue
        if expr.required_authority is not None and pack.authority_level != expr.required_authority:
            out.append(
                _violation(
                    rule,
                    c,
                    f"'{c.canonical_key}' (tier {c.governance_tier}) must reference a "
                    f"{expr.required_authority.value} pack; '{pack.pack_id}' is {pack.authority_level.value}",
                    field=expr.field,
                    pack_id=pack.pack_id,
                    authority_level=pack.authority_level.value,
                )
            )
    return out


def eval_uniqueness(rule: Rule, ctx: EvalContext) -> List[Violation]:
    expr: Uniqueness = rule.expression  # type: ignore[assignment]
    holders: Dict[str, List[str]] = defaultdict(list)
    for c in ctx.population:
        v = _text(c.field_value(expr.field))
        if v:
            holders[v].append(c.id)

    out: List[Violation] = []
    for c in ctx.targets:
        v = _text(c.field_value(expr.field))
        others = [cid for cid in holders.get(v, []) if cid != c.id]
        if v and others:
            out.append(
                _violation(
                    rule,
                    c,
                    f"'{c.canonical_key}' shares {expr.field}={c.field_value(expr.field)!r} with another concept",
                    field=expr.field,
                    conflicting_ids=sorted(others),
                )
            )
    return out


def eval_foreign_key_exists(rule: Rule, ctx: EvalContext) -> List[Violation]:
    expr: ForeignKeyExists = rule.expression  # type: ignore[assignment]
    out: List[Violation] = []
    for c in ctx.targets:
        ref = c.field_value(expr.field)
        if ref is None or ref == "":
            continue
        if expr.references == "standard_packs":
            found = str(ref) in ctx.packs
        else:
            found = find_concept(ctx.partition, str(ref)) is not None
        if not found:
            out.append(
                _violation(
                    rule,
                    c,
                    f"'{c.canonical_key}'.{expr.field} references missing {expr.references} row '{ref}'",
                    field=expr.field,
                    references=expr.references,
                    value=ref,
                )
            )
    return out


RULE_HANDLERS: Dict[str, RuleFn] = {
    "tier_membership": eval_tier_membership,
    "required_reference": eval_required_reference,
    "uniqueness": eval_uniqueness,
    "foreign_key_exists": eval_foreign_key_exists,
}


def documentation_entry(rule: Rule) -> Violation:
    return Violation(
        rule_code=rule.rule_code,
        severity=Severity.INFO,
        message=f"Not enforced in code: {rule.description or rule.expression.kind}",
        target_id=rule.target_id,
        evaluated=False,
        details={"declared_severity": rule.severity.value, "kind": rule.expression.kind},
    )


def order_violations(violations: Iterable[Violation]) -> List[Violation]:
    return sorted(violations, key=lambda v: v.sort_key())


def is_blocking(violations: List[Violation]) -> bool:
    return any(v.severity == Severity.BLOCKING and v.evaluated for v in violations)


class RuleEngine:
    """Evaluates governance rules over the concepts of a tenant.

    BLOCKING rules double as a write guard for the concept registry
    (``check_write``); WARNING and INFO results are only ever reported.
    """

    def __init__(self, *, ctx: CompatibilityContext, store: MetadataStore):
        self._ctx = ctx
        self._store = store

    # ------------------------------------------------------------------
    # Rule set
    # ------------------------------------------------------------------

    def load_rules(self, tenant_id: str, rules: Iterable[Any]) -> List[Rule]:
        self._ctx.ensure_compatible()
        parsed = [parse_model(Rule, r) for r in rules]

        def attempt() -> List[Rule]:
            with self._store.transaction(tenant_id) as p:
                for r in parsed:
                    if p.rules.find_unique(r.rule_code) is not None:
                        raise _duplicate(tenant_id, r.rule_code)
                    p.rules.insert(r.rule_code, r)
            return parsed

        loaded = check_then_insert(attempt, on_conflict=lambda e: _duplicate(tenant_id, str(e.key)))
        log.info("rules.loaded tenant=%s count=%s", tenant_id, len(loaded))
        return loaded

    def list_rules(self, tenant_id: str, scope: Optional[str] = None) -> List[Rule]:
        self._ctx.ensure_compatible()
        wanted = _parse_scope(scope)
        rules = [r for r in self._store.partition(tenant_id).rules if wanted is None or r.scope == wanted]
        return sorted(rules, key=lambda r: r.rule_code)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self,
        tenant_id: str,
        scope: Optional[str] = None,
        target_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[Violation]:
        self._ctx.ensure_compatible()
        wanted = _parse_scope(scope)
        p = self._store.partition(tenant_id)
        population = [c for c in p.concepts if c.is_active]
        packs = {pk.pack_id: pk for pk in p.packs}

        target = _resolve_target(p, wanted, target_id) if target_id else None

        out: List[Violation] = []
        for rule in p.rules:
            if token is not None:
                token.raise_if_cancelled("rules.evaluate")
            if wanted is not None and rule.scope != wanted:
                continue
            if not rule.is_enforced_in_code:
                out.append(documentation_entry(rule))
                continue
            targets = _targets_for(rule, target, population)
            ctx = EvalContext(targets=targets, population=population, packs=packs, partition=p)
            out.extend(RULE_HANDLERS[rule.expression.kind](rule, ctx))

        ordered = order_violations(out)
        log.info(
            "rules.evaluated tenant=%s scope=%s target=%s violations=%s",
            tenant_id,
            wanted.value if wanted else "*",
            target_id,
            len(ordered),
        )
        return ordered

    def violations_for(self, p: TenantPartition, candidate: Concept, severities: Iterable[Severity]) -> List[Violation]:
        """Evaluate enforced rules of the given severities against one concept as it would be stored."""
        wanted = set(severities)
        population = [c for c in p.concepts if c.is_active and c.id != candidate.id]
        if candidate.is_active:
            population.append(candidate)
        packs = {pk.pack_id: pk for pk in p.packs}
        ctx = EvalContext(targets=[candidate], population=population, packs=packs, partition=p)

        out: List[Violation] = []
        for rule in p.rules:
            if rule.severity not in wanted or not rule.is_enforced_in_code:
                continue
            if not _applies_to_concept(rule, candidate):
                continue
            out.extend(RULE_HANDLERS[rule.expression.kind](rule, ctx))
        return order_violations(out)

    def check_write(self, p: TenantPartition, candidate: Concept) -> None:
        """Registry write guard: raise before commit when a BLOCKING rule fails."""
        if not candidate.is_active:
            return
        blocking = self.violations_for(p, candidate, [Severity.BLOCKING])
        if is_blocking(blocking):
            log.warning(
                "rules.blocked tenant=%s concept=%s rules=%s",
                p.tenant_id,
                candidate.canonical_key,
                ",".join(v.rule_code for v in blocking),
            )
            raise BlockingRuleViolation(blocking)

    def on_metadata_changed(self, event: MetadataChanged) -> None:
        """Re-evaluate non-blocking rules for a changed concept and log what fails."""
        if event.change_type not in ("CREATED", "UPDATED"):
            return
        p = self._store.partition(event.tenant_id)
        concept = p.concepts.get(event.entity_id)
        if concept is None or not concept.is_active:
            return
        for v in self.violations_for(p, concept, [Severity.WARNING, Severity.INFO]):
            log.warning(
                "rules.violation tenant=%s concept=%s rule=%s severity=%s msg=%s",
                event.tenant_id,
                concept.canonical_key,
                v.rule_code,
                v.severity.value,
                v.message,
            )


def _parse_scope(scope: Optional[str]) -> Optional[RuleScope]:
    if scope is None or scope == "":
        return None
    if isinstance(scope, RuleScope):
        return scope
    try:
        return RuleScope(str(scope).upper())
    except ValueError:
        raise ValidationError(
            f"Unknown rule scope '{scope}'",
            details={"field": "scope", "allowed": [s.value for s in RuleScope]},
        ) from None


@dataclass(frozen=True)
class _Target:
    concept: Optional[Concept]
    pack_id: Optional[str]


def _resolve_target(p: TenantPartition, scope: Optional[RuleScope], target_id: str) -> _Target:
    concept = find_concept(p, target_id) if scope != RuleScope.PACK else None
    pack = p.packs.find_unique(target_id) if scope in (None, RuleScope.PACK) else None
    if concept is None and pack is None:
        raise NotFoundError(
            f"Rule target '{target_id}' not found in tenant '{p.tenant_id}'",
            details={"tenant_id": p.tenant_id, "target_id": target_id},
        )
    return _Target(concept=concept, pack_id=pack.pack_id if pack else None)


def _applies_to_concept(rule: Rule, concept: Concept) -> bool:
    if rule.target_id is None:
        return True
    if rule.scope == RuleScope.PACK:
        return concept.standard_pack_id_primary == rule.target_id
    return rule.target_id in (concept.id, concept.canonical_key)


def _targets_for(rule: Rule, target: Optional[_Target], population: List[Concept]) -> List[Concept]:
    targets = [c for c in population if _applies_to_concept(rule, c)]
    if target is None:
        return targets
    if rule.scope == RuleScope.PACK:
        if target.pack_id is None:
            return []
        return [c for c in targets if c.standard_pack_id_primary == target.pack_id]
    if target.concept is None:
        return []
    return [c for c in targets if c.id == target.concept.id]


def _duplicate(tenant_id: str, rule_code: str) -> ConflictError:
    return ConflictError(
        f"Rule '{rule_code}' already exists in tenant '{tenant_id}'",
        details={"field": "rule_code", "rule_code": rule_code},
    )
