"""
Built-in standard packs and SYSTEM rules.

Shipped as YAML under ``metastudio/bootstrap/``. A deployment can point
``METASTUDIO_BOOTSTRAP_DIR`` at its own directory; a file present there
replaces the built-in file of the same name.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional

from metastudio.core.registry.models import StandardPack
from metastudio.core.registry.packs import StandardPackRegistry
from metastudio.core.rules.engine import RuleEngine
from metastudio.core.rules.loader import load_packs, load_rules
from metastudio.core.rules.models import Rule

_log = logging.getLogger("metastudio.bootstrap")

BUILTIN_DIR = Path(__file__).resolve().parent.parent / "bootstrap"
PACKS_FILE = "standard_packs.yaml"
RULES_FILE = "system_rules.yaml"


def _resolve(name: str, override_dir: Optional[Path]) -> Path:
    if override_dir is not None:
        candidate = Path(override_dir) / name
        if candidate.exists():
            return candidate
    return BUILTIN_DIR / name


def builtin_packs(override_dir: Optional[Path] = None) -> List[StandardPack]:
    return load_packs(_resolve(PACKS_FILE, override_dir))


def builtin_rules(override_dir: Optional[Path] = None) -> List[Rule]:
    return load_rules(_resolve(RULES_FILE, override_dir))


def bootstrap_tenant(
    tenant_id: str,
    *,
    packs: StandardPackRegistry,
    rules: RuleEngine,
    override_dir: Optional[Path] = None,
    seed_packs: Optional[List[StandardPack]] = None,
    seed_rules: Optional[List[Rule]] = None,
) -> Dict[str, int]:
    """Seed a tenant with the built-in packs and rules; already-present entries are kept.

    ``seed_packs`` / ``seed_rules`` skip re-reading the YAML when the caller has parsed it once.
    """
    if seed_packs is None:
        seed_packs = builtin_packs(override_dir)
    if seed_rules is None:
        seed_rules = builtin_rules(override_dir)

    existing_packs = {p.pack_id for p in packs.list_packs(tenant_id)}
    pack_count = 0
    for pack in seed_packs:
        if pack.pack_id in existing_packs:
            continue
        packs.register_pack(tenant_id, pack)
        pack_count += 1

    existing_rules = {r.rule_code for r in rules.list_rules(tenant_id)}
    new_rules = [r for r in seed_rules if r.rule_code not in existing_rules]
    if new_rules:
        rules.load_rules(tenant_id, new_rules)

    _log.info("bootstrap tenant=%s packs=%s rules=%s", tenant_id, pack_count, len(new_rules))
    return {"packs": pack_count, "rules": len(new_rules)}
