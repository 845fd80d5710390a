from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from metastudio import __version__


def _env(name: str, default: str = "") -> str:
    return (os.getenv(f"METASTUDIO_{name}") or default).strip()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = _env(name, "1" if default else "0").lower()
    return raw in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    env: str = "dev"
    engine_version: str = __version__
    # Version the caller declares at process start; defaults to the engine's own.
    client_sdk_version: str = __version__
    fuzzy_threshold: float = 0.75
    lineage_max_nodes: int = 10_000
    default_tenant: str = "default"
    tenant_strict: bool = False
    audit_path: Optional[Path] = None
    bootstrap_dir: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "Settings":
        engine_version = _env("ENGINE_VERSION", __version__)
        audit_raw = _env("AUDIT_PATH")
        bootstrap_raw = _env("BOOTSTRAP_DIR")
        return cls(
            env=_env("ENV", "dev").lower(),
            engine_version=engine_version,
            client_sdk_version=_env("CLIENT_SDK_VERSION", engine_version),
            fuzzy_threshold=float(_env("FUZZY_THRESHOLD", "0.75")),
            lineage_max_nodes=max(1, int(_env("LINEAGE_MAX_NODES", "10000"))),
            default_tenant=_env("DEFAULT_TENANT", "default"),
            tenant_strict=_env_bool("TENANT_STRICT", default=False),
            audit_path=Path(audit_raw) if audit_raw else None,
            bootstrap_dir=Path(bootstrap_raw) if bootstrap_raw else None,
        )
