from __future__ import annotations

import difflib
import re
from typing import Protocol, Set

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def normalize_text(raw: str) -> str:
    """Trim, lowercase and collapse internal whitespace."""
    return " ".join((raw or "").strip().lower().split())


def key_as_text(canonical_key: str) -> str:
    """Read a canonical key as words: ``revenue_gross`` -> ``revenue gross``."""
    return normalize_text(canonical_key.replace("_", " ").replace("-", " "))


class SimilarityStrategy(Protocol):
    name: str

    def similarity(self, a: str, b: str) -> float:
        """Return a score in [0, 1] for two normalised strings."""
        ...


class SequenceRatioSimilarity:
    name = "sequence_ratio"

    def similarity(self, a: str, b: str) -> float:
        if not a or not b:
            return 0.0
        return difflib.SequenceMatcher(None, a, b).ratio()


class TokenOverlapSimilarity:
    """Jaccard overlap of alphanumeric tokens; insensitive to word order."""

    name = "token_overlap"

    @staticmethod
    def _tokens(s: str) -> Set[str]:
        return set(_TOKEN_RE.findall(s.lower()))

    def similarity(self, a: str, b: str) -> float:
        ta, tb = self._tokens(a), self._tokens(b)
        if not ta or not tb:
            return 0.0
        return len(ta & tb) / len(ta | tb)


STRATEGIES = {
    SequenceRatioSimilarity.name: SequenceRatioSimilarity,
    TokenOverlapSimilarity.name: TokenOverlapSimilarity,
}


def get_strategy(name: str) -> SimilarityStrategy:
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ValueError(f"Unknown similarity strategy '{name}' (expected one of {sorted(STRATEGIES)})") from None
