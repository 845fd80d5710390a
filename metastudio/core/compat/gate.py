from __future__ import annotations

import logging
from typing import Any, Dict, Set, Tuple

from metastudio.core.errors import VersionMismatchError

from .models import GateState, parse_version

log = logging.getLogger("metastudio.compat")


_ALLOWED: Set[Tuple[GateState, GateState]] = {
    (GateState.UNCHECKED, GateState.COMPATIBLE),
    (GateState.UNCHECKED, GateState.BLOCKED),
}


def can_transition(src: GateState, dst: GateState) -> bool:
    return (src, dst) in _ALLOWED


def is_version_compatible(client_version: str, engine_version: str) -> bool:
    client = parse_version(client_version)
    engine = parse_version(engine_version)
    if client is None or engine is None:
        return False
    return client.major == engine.major


class CompatibilityContext:
    """Process-wide compatibility decision, injected into every component.

    Built once at startup with ``establish``; the state never changes
    afterwards, so ``ensure_compatible`` reads it without locking. A BLOCKED
    context fails closed: every guarded call raises ``VersionMismatchError``
    before touching registry state.
    """

    def __init__(self, engine_version: str):
        self.engine_version = engine_version
        self.client_version: str = ""
        self._state = GateState.UNCHECKED

    @property
    def state(self) -> GateState:
        return self._state

    @classmethod
    def establish(cls, client_version: str, engine_version: str) -> "CompatibilityContext":
        ctx = cls(engine_version)
        ctx._check(client_version)
        return ctx

    def _check(self, client_version: str) -> None:
        dst = GateState.COMPATIBLE if is_version_compatible(client_version, self.engine_version) else GateState.BLOCKED
        if not can_transition(self._state, dst):
            raise ValueError(f"Illegal gate transition: {self._state.value} -> {dst.value}")
        self.client_version = client_version
        self._state = dst
        if dst == GateState.BLOCKED:
            log.error("sdk gate BLOCKED client=%s engine=%s", client_version, self.engine_version)
        else:
            log.info("sdk gate COMPATIBLE client=%s engine=%s", client_version, self.engine_version)

    def ensure_compatible(self) -> None:
        # UNCHECKED fails closed as well: no call proceeds before the startup check.
        if self._state != GateState.COMPATIBLE:
            raise VersionMismatchError(self.client_version or "unknown", self.engine_version)

    def sdk_info(self) -> Dict[str, Any]:
        engine = parse_version(self.engine_version)
        return {
            "name": "metastudio",
            "engine_version": self.engine_version,
            "client_version": self.client_version or None,
            "compatible_with": engine.compatible_range if engine else None,
            "state": self._state.value,
        }
