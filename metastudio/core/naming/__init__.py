from .casing import Casing, convert, is_valid, normalize, parse_casing, tokenize
from .resolver import DEFAULT_STYLE_BY_CONTEXT, resolve_name, style_for_context

__all__ = [
    "Casing",
    "DEFAULT_STYLE_BY_CONTEXT",
    "convert",
    "is_valid",
    "normalize",
    "parse_casing",
    "resolve_name",
    "style_for_context",
    "tokenize",
]
