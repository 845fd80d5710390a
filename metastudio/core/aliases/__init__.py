from .resolver import AliasResolver, RankedMatch
from .service import AliasRegistry, ConceptLookup
from .similarity import (
    SequenceRatioSimilarity,
    SimilarityStrategy,
    TokenOverlapSimilarity,
    get_strategy,
    normalize_text,
)

__all__ = [
    "AliasRegistry",
    "AliasResolver",
    "ConceptLookup",
    "RankedMatch",
    "SequenceRatioSimilarity",
    "SimilarityStrategy",
    "TokenOverlapSimilarity",
    "get_strategy",
    "normalize_text",
]
