import logging

import pytest

from metastudio.core.cancellation import CancellationToken
from metastudio.core.errors import ConflictError, NotFoundError, OperationCancelledError, ValidationError
from metastudio.core.rules import load_rules
from metastudio.core.rules.engine import is_blocking
from metastudio.core.rules.models import SEVERITY_ORDER


@pytest.fixture()
def governed(svc, tenant):
    """Concepts that trip each built-in non-blocking rule once."""
    svc.create_concept(tenant, {"canonical_key": "revenue", "label": "Revenue", "domain": "FINANCE"})
    svc.create_concept(tenant, {"canonical_key": "turnover", "label": "revenue ", "domain": "SALES"})
    svc.create_concept(tenant, {"canonical_key": "ceo_pay", "label": "CEO pay", "domain": "HR", "governance_tier": 1})
    svc.create_concept(
        tenant, {"canonical_key": "ebit", "label": "EBIT", "domain": "FINANCE", "standard_pack_id_primary": "NOPE"}
    )
    return svc


def test_builtin_rules_are_seeded(svc, tenant):
    codes = [r.rule_code for r in svc.list_rules(tenant)]
    assert "FIN_TIER_REQUIRES_LAW_PACK" in codes
    assert codes == sorted(codes)
    assert {r.scope.value for r in svc.list_rules(tenant, scope="system")} == {"SYSTEM"}


def test_violations_are_ordered(governed, tenant):
    out = governed.evaluate_rules(tenant)

    keys = [(SEVERITY_ORDER[v.severity], v.rule_code) for v in out]
    assert keys == sorted(keys)
    assert [v.rule_code for v in out] == [
        "LABEL_UNIQUE",
        "LABEL_UNIQUE",
        "PRIMARY_PACK_EXISTS",
        "HR_NOT_TIER_ONE",
        "TIER1_STEWARD_ASSIGNED",
    ]
    assert is_blocking(out) is False


def test_unenforced_rule_is_reported_not_evaluated(governed, tenant):
    doc = [v for v in governed.evaluate_rules(tenant) if v.rule_code == "TIER1_STEWARD_ASSIGNED"]
    assert len(doc) == 1
    assert doc[0].evaluated is False
    assert doc[0].severity.value == "INFO"
    assert doc[0].details["declared_severity"] == "WARNING"


def test_blocking_rule_loaded_later_sorts_first(governed, tenant):
    governed.load_rules(
        tenant,
        [
            {
                "rule_code": "tier_one_reserved",
                "severity": "BLOCKING",
                "expression": {"kind": "tier_membership", "allowed_tiers": [2, 3, 4]},
            }
        ],
    )
    out = governed.evaluate_rules(tenant)

    assert out[0].rule_code == "TIER_ONE_RESERVED"
    assert out[0].details["canonical_key"] == "ceo_pay"
    assert [v.severity.value for v in out].count("BLOCKING") == 1
    assert is_blocking(out)


def test_scope_and_target_filters(governed, tenant):
    tenant_scope = {v.rule_code for v in governed.evaluate_rules(tenant, scope="TENANT")}
    assert tenant_scope == {"LABEL_UNIQUE", "HR_NOT_TIER_ONE"}

    one = governed.evaluate_rules(tenant, scope="TENANT", target_id="ceo_pay")
    assert [(v.rule_code, v.details["canonical_key"]) for v in one] == [("HR_NOT_TIER_ONE", "ceo_pay")]

    with pytest.raises(NotFoundError):
        governed.evaluate_rules(tenant, target_id="nope")
    with pytest.raises(ValidationError):
        governed.evaluate_rules(tenant, scope="GALAXY")


def test_pack_scoped_rule(svc, tenant):
    svc.load_rules(
        tenant,
        [
            {
                "rule_code": "KPI_TIER_3_PLUS",
                "scope": "PACK",
                "target_id": "FIN_KPI",
                "expression": {"kind": "tier_membership", "allowed_tiers": [3, 4]},
            }
        ],
    )
    svc.create_concept(
        tenant,
        {"canonical_key": "win_rate", "label": "Win rate", "domain": "SALES", "governance_tier": 2,
         "standard_pack_id_primary": "FIN_KPI"},
    )
    svc.create_concept(tenant, {"canonical_key": "pipeline", "label": "Pipeline", "domain": "SALES", "governance_tier": 2})

    out = svc.evaluate_rules(tenant, scope="PACK", target_id="FIN_KPI")
    assert [(v.rule_code, v.details["canonical_key"]) for v in out] == [("KPI_TIER_3_PLUS", "win_rate")]


def test_required_reference_on_plain_field_needs_presence_only(svc, tenant):
    svc.load_rules(
        tenant,
        [
            {
                "rule_code": "STEWARD_NAMED",
                "expression": {"kind": "required_reference", "max_tier": 1, "field": "steward"},
            }
        ],
    )
    svc.create_concept(
        tenant,
        {
            "canonical_key": "headcount",
            "label": "Headcount",
            "domain": "SALES",
            "governance_tier": 1,
            "attributes": {"steward": "alice"},
        },
    )
    svc.create_concept(tenant, {"canonical_key": "churn", "label": "Churn", "domain": "SALES", "governance_tier": 1})

    out = [v for v in svc.evaluate_rules(tenant) if v.rule_code == "STEWARD_NAMED"]
    assert [v.details["canonical_key"] for v in out] == ["churn"]
    assert "must set steward" in out[0].message


def test_duplicate_rule_code_conflicts(svc, tenant):
    rule = {"rule_code": "LABEL_UNIQUE", "expression": {"kind": "uniqueness", "field": "label"}}
    with pytest.raises(ConflictError):
        svc.load_rules(tenant, [rule])


def test_unknown_expression_kind_rejected():
    with pytest.raises(ValidationError) as ei:
        load_rules([{"rule_code": "X", "expression": {"kind": "regex_match", "field": "label"}}])
    assert ei.value.details["field"].startswith("expression")


def test_rule_yaml_file(tmp_path):
    p = tmp_path / "rules.yaml"
    p.write_text(
        "rules:\n"
        "  - rule_code: owner_set\n"
        "    severity: INFO\n"
        "    expression: {kind: foreign_key_exists, field: owner, references: concepts}\n",
        encoding="utf-8",
    )
    rules = load_rules(p)
    assert [r.rule_code for r in rules] == ["OWNER_SET"]
    assert rules[0].expression.references == "concepts"

    p.write_text("rules: [unclosed", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_rules(p)


def test_non_blocking_violations_are_logged(svc, tenant, caplog):
    svc.create_concept(tenant, {"canonical_key": "revenue", "label": "Revenue"})
    with caplog.at_level(logging.WARNING, logger="metastudio.rules"):
        svc.create_concept(tenant, {"canonical_key": "turnover", "label": "Revenue"})

    assert any("LABEL_UNIQUE" in r.getMessage() for r in caplog.records)


def test_evaluation_honours_cancellation(governed, tenant):
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelledError) as ei:
        governed.evaluate_rules(tenant, token=token)
    assert ei.value.details["operation"] == "rules.evaluate"
