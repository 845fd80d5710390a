from concurrent.futures import ThreadPoolExecutor

import pytest

from metastudio.core.errors import BlockingRuleViolation, ConflictError, NotFoundError, ValidationError


def _concept(key, *, label=None, domain="GENERAL", tier=3, **extra):
    return {"canonical_key": key, "label": label or key.replace("_", " ").title(), "domain": domain, "governance_tier": tier, **extra}


def test_create_and_get_by_key_or_id(svc, tenant):
    c = svc.create_concept(tenant, _concept("revenue_gross", domain="FINANCE"))

    assert c.tenant_id == tenant
    assert c.is_active is True
    assert svc.get_concept(tenant, "revenue_gross").id == c.id
    assert svc.get_concept(tenant, c.id).canonical_key == "revenue_gross"


def test_duplicate_key_conflicts(svc, tenant):
    svc.create_concept(tenant, _concept("revenue_gross"))
    with pytest.raises(ConflictError) as ei:
        svc.create_concept(tenant, _concept("revenue_gross", label="Another"))
    assert ei.value.details["field"] == "canonical_key"


def test_same_key_in_other_tenant_is_independent(svc, tenant):
    a = svc.create_concept(tenant, _concept("revenue_gross"))
    b = svc.create_concept("globex", _concept("revenue_gross"))
    assert a.id != b.id

    with pytest.raises(NotFoundError):
        svc.get_concept("globex", a.id)


@pytest.mark.parametrize("key", ["Revenue", "revenue gross", "1revenue", "revenue__gross", "revenue-gross", ""])
def test_invalid_key_rejected(svc, tenant, key):
    with pytest.raises(ValidationError) as ei:
        svc.create_concept(tenant, _concept("placeholder") | {"canonical_key": key})
    assert ei.value.details["field"] == "canonical_key"


def test_tier_out_of_range_rejected(svc, tenant):
    with pytest.raises(ValidationError) as ei:
        svc.create_concept(tenant, _concept("headcount", tier=5))
    assert ei.value.details["field"] == "governance_tier"


def test_domain_case_is_normalized_on_create_and_list(svc, tenant):
    c = svc.create_concept(tenant, _concept("revenue_gross", domain="finance"))
    assert c.domain.value == "FINANCE"
    assert [x.id for x in svc.list_concepts(tenant, domain="finance")] == [c.id]

    updated = svc.update_concept(tenant, c.id, {"domain": " hr "})
    assert updated.domain.value == "HR"

    with pytest.raises(ValidationError):
        svc.create_concept(tenant, _concept("other", domain="astrology"))


def test_list_order_and_filters(svc, tenant):
    svc.create_concept(tenant, _concept("order_count", domain="SALES", tier=3))
    svc.create_concept(tenant, _concept("opex", domain="FINANCE", tier=3))
    svc.create_concept(tenant, _concept("capex", domain="FINANCE", tier=3))
    svc.create_concept(tenant, _concept("headcount", domain="HR", tier=2, description="Employees on payroll"))
    svc.create_concept(tenant, _concept("cash_balance", domain="FINANCE", tier=4))

    keys = [c.canonical_key for c in svc.list_concepts(tenant)]
    assert keys == ["capex", "opex", "cash_balance", "headcount", "order_count"]

    assert [c.canonical_key for c in svc.list_concepts(tenant, domain="finance", tier=3)] == ["capex", "opex"]
    assert [c.canonical_key for c in svc.list_concepts(tenant, search="PAYROLL")] == ["headcount"]

    with pytest.raises(ValidationError):
        svc.list_concepts(tenant, domain="ASTROLOGY")


def test_deactivate_hides_from_default_list(svc, tenant):
    c = svc.create_concept(tenant, _concept("legacy_margin"))

    out = svc.deactivate_concept(tenant, c.id)
    assert out.is_active is False
    # idempotent
    assert svc.deactivate_concept(tenant, c.id).is_active is False

    assert svc.list_concepts(tenant) == []
    assert [x.id for x in svc.list_concepts(tenant, include_inactive=True)] == [c.id]
    assert svc.get_concept(tenant, "legacy_margin").is_active is False


def test_delete_rejected_while_aliased(svc, tenant):
    c = svc.create_concept(tenant, _concept("revenue"))
    alias = svc.create_alias(tenant, {"concept_id": c.id, "alias_value": "Sales"})

    with pytest.raises(ConflictError) as ei:
        svc.delete_concept(tenant, c.id)
    assert ei.value.details["alias_ids"] == [alias.id]

    svc.delete_alias(tenant, alias.id)
    svc.delete_concept(tenant, c.id)
    with pytest.raises(NotFoundError):
        svc.get_concept(tenant, c.id)


def test_update_changes_fields(svc, tenant):
    c = svc.create_concept(tenant, _concept("revenue"))
    out = svc.update_concept(tenant, c.id, {"label": "Total revenue", "attributes": {"unit": "currency"}})

    assert out.id == c.id
    assert out.label == "Total revenue"
    assert out.attributes == {"unit": "currency"}
    assert out.created_at == c.created_at
    assert out.updated_at >= c.updated_at


def test_update_rejects_engine_owned_fields(svc, tenant):
    c = svc.create_concept(tenant, _concept("revenue"))
    with pytest.raises(ValidationError) as ei:
        svc.update_concept(tenant, c.id, {"tenant_id": "globex"})
    assert ei.value.details["field"] == "tenant_id"


def test_update_key_collision_conflicts(svc, tenant):
    svc.create_concept(tenant, _concept("revenue"))
    other = svc.create_concept(tenant, _concept("turnover"))
    with pytest.raises(ConflictError):
        svc.update_concept(tenant, other.id, {"canonical_key": "revenue"})
    assert svc.get_concept(tenant, other.id).canonical_key == "turnover"


def test_blocking_rule_aborts_create(svc, tenant):
    with pytest.raises(BlockingRuleViolation) as ei:
        svc.create_concept(tenant, _concept("revenue_ifrs_core", domain="FINANCE", tier=1))

    codes = [v.rule_code for v in ei.value.violations]
    assert codes == ["FIN_TIER_REQUIRES_LAW_PACK"]
    assert svc.list_concepts(tenant, include_inactive=True) == []


def test_blocking_rule_requires_law_authority(svc, tenant):
    with pytest.raises(BlockingRuleViolation):
        svc.create_concept(
            tenant, _concept("revenue_kpi", domain="FINANCE", tier=2, standard_pack_id_primary="FIN_KPI")
        )

    c = svc.create_concept(
        tenant, _concept("revenue_ifrs_core", domain="FINANCE", tier=1, standard_pack_id_primary="IFRS_CORE")
    )
    assert c.governance_tier == 1


def test_blocking_rule_aborts_update(svc, tenant):
    c = svc.create_concept(tenant, _concept("revenue", domain="FINANCE", tier=3))
    with pytest.raises(BlockingRuleViolation):
        svc.update_concept(tenant, c.id, {"governance_tier": 1})
    assert svc.get_concept(tenant, c.id).governance_tier == 3


def test_changes_are_published(svc, tenant):
    seen = []
    svc.bus.subscribe(seen.append)

    c = svc.create_concept(tenant, _concept("revenue"))
    svc.update_concept(tenant, c.id, {"label": "Revenue"})  # no-op, nothing published
    svc.update_concept(tenant, c.id, {"description": "Income from ordinary activities"})
    svc.deactivate_concept(tenant, c.id)

    assert [e.change_type for e in seen] == ["CREATED", "UPDATED", "DEACTIVATED"]
    assert seen[1].changed_fields == ["description"]
    assert all(e.tenant_id == tenant and e.entity_id == c.id for e in seen)


def test_failing_subscriber_does_not_undo_write(svc, tenant):
    def broken(event):
        raise RuntimeError("subscriber down")

    svc.bus.subscribe(broken)
    c = svc.create_concept(tenant, _concept("revenue"))
    assert svc.get_concept(tenant, "revenue").id == c.id


def test_concurrent_creates_have_one_winner(svc, tenant):
    """
    Many writers racing on the same canonical key: exactly one succeeds,
    every other one sees a ConflictError and the table holds one row.
    """
    svc.bootstrap(tenant)

    def worker(i):
        try:
            svc.create_concept(tenant, _concept("revenue", label=f"Revenue {i}"))
            return "ok"
        except ConflictError:
            return "conflict"

    with ThreadPoolExecutor(max_workers=8) as ex:
        outcomes = list(ex.map(worker, range(20)))

    assert outcomes.count("ok") == 1
    assert outcomes.count("conflict") == 19
    assert len(svc.list_concepts(tenant)) == 1
