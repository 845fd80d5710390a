from .gate import CompatibilityContext, is_version_compatible
from .models import GateState, SemVer, parse_version

__all__ = [
    "CompatibilityContext",
    "GateState",
    "SemVer",
    "is_version_compatible",
    "parse_version",
]
