from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


class GateState(str, Enum):
    UNCHECKED = "UNCHECKED"
    COMPATIBLE = "COMPATIBLE"
    BLOCKED = "BLOCKED"


@dataclass(frozen=True)
class SemVer:
    major: int
    minor: int
    patch: int

    @property
    def full(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    @property
    def compatible_range(self) -> str:
        return f"^{self.major}.0.0"


def parse_version(raw: str) -> Optional[SemVer]:
    parts: Tuple[str, ...] = tuple((raw or "").strip().lstrip("v").split("."))
    if len(parts) != 3:
        return None
    try:
        major, minor, patch = (int(p) for p in parts)
    except ValueError:
        return None
    if min(major, minor, patch) < 0:
        return None
    return SemVer(major, minor, patch)
