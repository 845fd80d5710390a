from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from metastudio.core.cancellation import CancellationToken
from metastudio.core.compat import CompatibilityContext
from metastudio.core.registry.concepts import parse_domain
from metastudio.core.registry.models import Alias, Concept, Domain
from metastudio.core.registry.store import MetadataStore

from .similarity import SequenceRatioSimilarity, SimilarityStrategy, key_as_text, normalize_text

log = logging.getLogger("metastudio.aliases")

EXACT_CONFIDENCE = 100
FUZZY_CEILING = 90
# Fuzzy candidates scored between cancellation checks.
CANCEL_CHECK_EVERY = 256


@dataclass(frozen=True)
class RankedMatch:
    concept: Concept
    matched_alias: Optional[Alias]
    matched_via: str  # "alias" | "canonical_key"
    confidence: int

    @property
    def is_exact(self) -> bool:
        return self.confidence == EXACT_CONFIDENCE

    def _preferred(self) -> bool:
        return bool(self.matched_alias and self.matched_alias.is_preferred_for_display)

    def _has_source_system(self) -> bool:
        return bool(self.matched_alias and self.matched_alias.source_system)

    def sort_key(self) -> Tuple[int, bool, bool, str]:
        return (-self.confidence, not self._preferred(), self._has_source_system(), self.concept.canonical_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "concept": self.concept.model_dump(mode="json"),
            "matched_alias": self.matched_alias.model_dump(mode="json") if self.matched_alias else None,
            "matched_via": self.matched_via,
            "confidence": self.confidence,
        }


# (concept, alias or None, normalised candidate text)
_Candidate = Tuple[Concept, Optional[Alias], str]


class AliasResolver:
    """Maps free text onto canonical concepts of one tenant.

    Exact matches (alias values and canonical keys) always win and score 100;
    the fuzzy strategy only runs when there is no exact match at all.
    """

    def __init__(
        self,
        *,
        ctx: CompatibilityContext,
        store: MetadataStore,
        strategy: Optional[SimilarityStrategy] = None,
        threshold: float = 0.75,
    ):
        if not 0 < threshold <= 1:
            raise ValueError(f"fuzzy threshold must be in (0, 1], got {threshold}")
        self._ctx = ctx
        self._store = store
        self.strategy: SimilarityStrategy = strategy or SequenceRatioSimilarity()
        self.threshold = threshold

    def _candidates(self, tenant_id: str, domain: Optional[Domain]) -> List[_Candidate]:
        p = self._store.partition(tenant_id)
        active: Dict[str, Concept] = {}
        for c in p.concepts:
            if not c.is_active:
                continue
            if domain is not None and c.domain != domain:
                continue
            active[c.id] = c

        out: List[_Candidate] = [(c, None, key_as_text(c.canonical_key)) for c in active.values()]
        for a in p.aliases:
            c = active.get(a.concept_id)
            if c is not None:
                out.append((c, a, normalize_text(a.alias_value)))
        return out

    def resolve(
        self,
        tenant_id: str,
        raw_text: str,
        domain_hint: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> List[RankedMatch]:
        self._ctx.ensure_compatible()
        if token is not None:
            token.raise_if_cancelled("alias.resolve")
        text = normalize_text(raw_text)
        if not text:
            return []

        candidates = self._candidates(tenant_id, parse_domain(domain_hint))

        exact = [
            _match(c, a, EXACT_CONFIDENCE)
            for c, a, value in candidates
            if value == text or (a is None and value == key_as_text(text))
        ]
        if exact:
            matches = _best_per_concept(exact)
        else:
            fuzzy = []
            for i, (c, a, value) in enumerate(candidates):
                if token is not None and i % CANCEL_CHECK_EVERY == 0:
                    token.raise_if_cancelled("alias.resolve")
                sim = self.strategy.similarity(text, value)
                if sim >= self.threshold:
                    fuzzy.append(_match(c, a, min(FUZZY_CEILING, round(sim * FUZZY_CEILING))))
            matches = _best_per_concept(fuzzy)

        log.debug(
            "alias.resolve tenant=%s text=%r domain=%s matches=%s",
            tenant_id,
            text,
            domain_hint,
            len(matches),
        )
        return matches


def _match(concept: Concept, alias: Optional[Alias], confidence: int) -> RankedMatch:
    return RankedMatch(
        concept=concept,
        matched_alias=alias,
        matched_via="alias" if alias is not None else "canonical_key",
        confidence=confidence,
    )


def _best_per_concept(matches: Iterable[RankedMatch]) -> List[RankedMatch]:
    best: Dict[str, RankedMatch] = {}
    for m in matches:
        cur = best.get(m.concept.id)
        if cur is None or m.sort_key() < cur.sort_key():
            best[m.concept.id] = m
    return sorted(best.values(), key=lambda m: m.sort_key())
