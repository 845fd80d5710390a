from __future__ import annotations

from typing import Any, Dict, List, Optional


class MetadataError(Exception):
    """Base of the engine's error taxonomy.

    Every member carries a stable ``code``, a human message and structured
    ``details`` (offending field / id) so callers can render a useful message
    without ever seeing an internal exception.
    """

    code = "METADATA_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(MetadataError):
    code = "VALIDATION_ERROR"


class NotFoundError(MetadataError):
    code = "NOT_FOUND"


class ConflictError(MetadataError):
    code = "CONFLICT"


class VersionMismatchError(MetadataError):
    code = "VERSION_MISMATCH"

    def __init__(self, client_version: str, engine_version: str):
        super().__init__(
            f"SDK version mismatch: client v{client_version} is not compatible with engine v{engine_version}",
            details={"client_version": client_version, "engine_version": engine_version},
        )
        self.client_version = client_version
        self.engine_version = engine_version


class BlockingRuleViolation(MetadataError):
    code = "BLOCKING_RULE_VIOLATION"

    def __init__(self, violations: List[Any]):
        codes = [v.rule_code for v in violations]
        super().__init__(
            f"Write blocked by governance rules: {', '.join(codes)}",
            details={"violations": [v.to_dict() for v in violations]},
        )
        self.violations = list(violations)


class OperationCancelledError(MetadataError):
    code = "CANCELLED"


class InternalError(MetadataError):
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal error", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
