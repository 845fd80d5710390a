from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

from metastudio.core.errors import ValidationError
from metastudio.core.registry.models import StandardPack, parse_model

from .models import Rule

_log = logging.getLogger("metastudio.rules")

Source = Union[str, Path, Dict[str, Any], List[Any]]


def _read_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ValidationError(f"File not found: {path}", details={"path": str(path)}) from None
    except yaml.YAMLError as exc:
        raise ValidationError(f"Malformed YAML in {path}: {exc}", details={"path": str(path)}) from None


def _entries(source: Source, key: str) -> List[Any]:
    raw = _read_yaml(Path(source)) if isinstance(source, (str, Path)) else source
    if raw is None:
        return []
    if isinstance(raw, dict):
        raw = raw.get(key) or []
    if not isinstance(raw, list):
        raise ValidationError(f"Expected a list of {key}", details={"field": key})
    return raw


def load_rules(source: Source) -> List[Rule]:
    """Parse rules from a YAML file (``rules:`` list) or already-loaded data.

    An unknown expression kind, severity or scope fails the whole load.
    """
    rules = [parse_model(Rule, r) for r in _entries(source, "rules")]
    _log.debug("rules.parsed count=%s", len(rules))
    return rules


def load_packs(source: Source) -> List[StandardPack]:
    """Parse standard packs from a YAML file (``packs:`` list) or already-loaded data."""
    packs = [parse_model(StandardPack, p) for p in _entries(source, "packs")]
    _log.debug("packs.parsed count=%s", len(packs))
    return packs
