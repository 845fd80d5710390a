from .engine import RULE_HANDLERS, RuleEngine, is_blocking, order_violations
from .loader import load_packs, load_rules
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

__all__ = [
    "ForeignKeyExists",
    "RULE_HANDLERS",
    "RequiredReference",
    "Rule",
    "RuleEngine",
    "RuleScope",
    "Severity",
    "TierMembership",
    "Uniqueness",
    "Violation",
    "is_blocking",
    "load_packs",
    "load_rules",
    "order_violations",
]
