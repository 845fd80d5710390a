import pytest

from metastudio.core.bootstrap import builtin_packs, builtin_rules
from metastudio.core.config import Settings
from metastudio.core.errors import ValidationError
from metastudio.core.observability.audit import read_audit_records
from metastudio.core.rules import load_packs
from metastudio.core.service import MetadataService


def test_changes_are_audited(tmp_path):
    audit = tmp_path / "audit" / "metadata.jsonl"
    svc = MetadataService(Settings(audit_path=audit))

    c = svc.create_concept("acme", {"canonical_key": "revenue", "label": "Revenue"})
    svc.create_alias("acme", {"concept_id": c.id, "alias_value": "Sales"})
    svc.deactivate_concept("acme", c.id)

    records = read_audit_records(audit)
    assert [r["change_type"] for r in records] == ["CREATED", "UPDATED", "DEACTIVATED"]
    assert all(r["type"] == "metadata.changed" and r["tenant_id"] == "acme" for r in records)
    assert records[1]["changed_fields"] == ["aliases"]
    assert isinstance(records[0]["ts_ms"], int)


def test_read_audit_records_missing_file(tmp_path):
    assert read_audit_records(tmp_path / "none.jsonl") == []


def test_builtin_bootstrap_content():
    packs = {p.pack_id: p for p in builtin_packs()}
    assert set(packs) == {"IFRS_CORE", "FIN_KPI", "HR_CORE", "GLOSSARY_INFO"}
    assert packs["IFRS_CORE"].authority_level.value == "LAW"
    assert packs["GLOSSARY_INFO"].required_fields == []

    rules = {r.rule_code: r for r in builtin_rules()}
    assert rules["FIN_TIER_REQUIRES_LAW_PACK"].severity.value == "BLOCKING"
    assert rules["TIER1_STEWARD_ASSIGNED"].is_enforced_in_code is False


def test_tenant_is_bootstrapped_once(svc):
    svc.bootstrap("acme")
    svc.bootstrap("acme")
    assert len(svc.list_packs("acme")) == 4
    assert len(svc.list_rules("acme")) == 5


def test_bootstrap_dir_overrides_builtin_file(tmp_path):
    (tmp_path / "standard_packs.yaml").write_text(
        "packs:\n"
        "  - pack_id: LOCAL\n"
        "    name: Local pack\n"
        "    tier: INFO\n",
        encoding="utf-8",
    )
    svc = MetadataService(Settings(bootstrap_dir=tmp_path))

    assert [p.pack_id for p in svc.list_packs("acme")] == ["LOCAL"]
    # rules file not overridden: built-ins still load
    assert "LABEL_UNIQUE" in [r.rule_code for r in svc.list_rules("acme")]


def test_auto_bootstrap_can_be_disabled():
    svc = MetadataService(Settings(), auto_bootstrap=False)
    assert svc.list_packs("acme") == []
    assert svc.list_rules("acme") == []


def test_blank_tenant_rejected(svc):
    with pytest.raises(ValidationError) as ei:
        svc.list_concepts("  ")
    assert ei.value.details["field"] == "tenant_id"


def test_pack_file_with_unknown_rule_fails_to_load():
    with pytest.raises(ValidationError):
        load_packs({"packs": [{"pack_id": "X", "name": "X", "fields": [{"field_name": "a", "validation_rules": ["luhn"]}]}]})
