from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from metastudio.core.errors import ValidationError

DATA_TYPES = frozenset({"string", "integer", "number", "boolean", "date", "any"})
QUALITY_DIMENSIONS = ("completeness", "uniqueness", "validity")


def _is_date(value: Any) -> bool:
    if isinstance(value, (date, datetime)):
        return True
    if isinstance(value, str):
        try:
            date.fromisoformat(value[:10])
            return len(value) >= 10
        except ValueError:
            return False
    return False


_TYPE_CHECKS: Dict[str, Callable[[Any], bool]] = {
    "string": lambda v: isinstance(v, str),
    # bool is an int subclass; a flag is never a valid integer or number
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "date": _is_date,
    "any": lambda v: True,
}


def check_data_type(data_type: str, value: Any) -> Optional[str]:
    check = _TYPE_CHECKS.get(data_type)
    if check is None:
        return f"unknown data_type '{data_type}'"
    if not check(value):
        return f"expected {data_type}, got {type(value).__name__}"
    return None


@dataclass(frozen=True)
class ValidationRule:
    name: str
    arg: Optional[str]
    check: Callable[[Any], Optional[str]]

    def __call__(self, value: Any) -> Optional[str]:
        return self.check(value)


def _number_arg(name: str, arg: Optional[str]) -> float:
    try:
        return float(arg or "")
    except ValueError:
        raise ValidationError(
            f"validation rule '{name}' needs a numeric argument",
            details={"rule": name, "arg": arg},
        ) from None


def _int_arg(name: str, arg: Optional[str]) -> int:
    n = _number_arg(name, arg)
    if n != int(n) or n < 0:
        raise ValidationError(
            f"validation rule '{name}' needs a non-negative integer argument",
            details={"rule": name, "arg": arg},
        )
    return int(n)


def _not_empty(_arg: Optional[str]) -> Callable[[Any], Optional[str]]:
    def check(v: Any) -> Optional[str]:
        if v is None:
            return "must not be empty"
        if isinstance(v, str) and not v.strip():
            return "must not be empty"
        if isinstance(v, (list, dict)) and not v:
            return "must not be empty"
        return None
    return check


def _min_length(arg: Optional[str]) -> Callable[[Any], Optional[str]]:
    n = _int_arg("min_length", arg)

    def check(v: Any) -> Optional[str]:
        if hasattr(v, "__len__") and len(v) < n:
            return f"length {len(v)} is below min_length {n}"
        return None
    return check


def _max_length(arg: Optional[str]) -> Callable[[Any], Optional[str]]:
    n = _int_arg("max_length", arg)

    def check(v: Any) -> Optional[str]:
        if hasattr(v, "__len__") and len(v) > n:
            return f"length {len(v)} exceeds max_length {n}"
        return None
    return check


def _pattern(arg: Optional[str]) -> Callable[[Any], Optional[str]]:
    try:
        rx = re.compile(arg or "")
    except re.error as e:
        raise ValidationError(
            f"validation rule 'pattern' has an invalid regex: {e}",
            details={"rule": "pattern", "arg": arg},
        ) from None

    def check(v: Any) -> Optional[str]:
        if not rx.fullmatch(str(v)):
            return f"value does not match pattern {arg}"
        return None
    return check


def _min(arg: Optional[str]) -> Callable[[Any], Optional[str]]:
    n = _number_arg("min", arg)

    def check(v: Any) -> Optional[str]:
        if isinstance(v, (int, float)) and not isinstance(v, bool) and v < n:
            return f"value {v} is below min {arg}"
        return None
    return check


def _max(arg: Optional[str]) -> Callable[[Any], Optional[str]]:
    n = _number_arg("max", arg)

    def check(v: Any) -> Optional[str]:
        if isinstance(v, (int, float)) and not isinstance(v, bool) and v > n:
            return f"value {v} exceeds max {arg}"
        return None
    return check


def _one_of(arg: Optional[str]) -> Callable[[Any], Optional[str]]:
    allowed = [a for a in (arg or "").split("|") if a]
    if not allowed:
        raise ValidationError("validation rule 'one_of' needs at least one option", details={"rule": "one_of"})

    def check(v: Any) -> Optional[str]:
        if str(v) not in allowed:
            return f"value '{v}' is not one of {allowed}"
        return None
    return check


_RULE_FACTORIES: Dict[str, Callable[[Optional[str]], Callable[[Any], Optional[str]]]] = {
    "not_empty": _not_empty,
    "min_length": _min_length,
    "max_length": _max_length,
    "pattern": _pattern,
    "min": _min,
    "max": _max,
    "one_of": _one_of,
}


def parse_validation_rule(raw: str) -> ValidationRule:
    """Parse ``name`` or ``name:arg`` into a callable rule; unknown names are rejected."""
    name, sep, arg = (raw or "").partition(":")
    name = name.strip().lower()
    factory = _RULE_FACTORIES.get(name)
    if factory is None:
        raise ValidationError(
            f"unknown validation rule '{name}'",
            details={"rule": raw, "known": sorted(_RULE_FACTORIES)},
        )
    return ValidationRule(name=name, arg=arg if sep else None, check=factory(arg if sep else None))
