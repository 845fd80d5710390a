from __future__ import annotations

from typing import Dict

from metastudio.core.errors import ValidationError

from .casing import Casing, convert

# Default casing per naming context.
DEFAULT_STYLE_BY_CONTEXT: Dict[str, Casing] = {
    "db": Casing.SNAKE,
    "python": Casing.SNAKE,
    "bi": Casing.SNAKE,
    "typescript": Casing.CAMEL,
    "graphql": Casing.PASCAL,
    "api_path": Casing.KEBAB,
    "const": Casing.CONSTANT,
}


def style_for_context(context: str) -> Casing:
    style = DEFAULT_STYLE_BY_CONTEXT.get((context or "").strip().lower())
    if style is None:
        raise ValidationError(
            f"Unknown naming context '{context}'",
            details={"field": "context", "value": context, "allowed": sorted(DEFAULT_STYLE_BY_CONTEXT)},
        )
    return style


def resolve_name(canonical_key: str, context: str) -> str:
    """Spell a snake_case canonical key the way ``context`` expects (``revenue_gross`` -> ``revenueGross`` for typescript)."""
    return convert(canonical_key, Casing.SNAKE, style_for_context(context))
