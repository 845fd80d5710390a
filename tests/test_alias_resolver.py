import pytest

from metastudio.core.aliases import resolver as resolver_module
from metastudio.core.aliases.resolver import AliasResolver
from metastudio.core.aliases.similarity import TokenOverlapSimilarity, get_strategy
from metastudio.core.cancellation import CancellationToken
from metastudio.core.errors import ConflictError, NotFoundError, OperationCancelledError, ValidationError


def test_exact_alias_scores_100(svc, tenant, revenue):
    matches = svc.resolve_alias(tenant, "  SALES ")

    assert len(matches) == 1
    m = matches[0]
    assert m.concept.id == revenue.id
    assert m.confidence == 100
    assert m.matched_via == "alias"
    assert m.matched_alias.alias_value == "Sales"


def test_canonical_key_matches_exactly(svc, tenant, revenue):
    m = svc.resolve_alias(tenant, "Revenue")[0]
    assert m.matched_via == "canonical_key"
    assert m.matched_alias is None
    assert m.confidence == 100


def test_fuzzy_match_stays_below_exact(svc, tenant, revenue):
    matches = svc.resolve_alias(tenant, "Turnovr")

    assert [m.concept.id for m in matches] == [revenue.id]
    assert 0 < matches[0].confidence <= 90
    assert matches[0].is_exact is False


def test_no_match_is_empty_not_error(svc, tenant, revenue):
    assert svc.resolve_alias(tenant, "xyzzy plugh") == []
    assert svc.resolve_alias(tenant, "   ") == []


def test_ties_all_returned_and_domain_hint_filters(svc, tenant, revenue):
    sales_amount = svc.create_concept(
        tenant, {"canonical_key": "sales_amount", "label": "Sales amount", "domain": "SALES"}
    )
    svc.create_alias(tenant, {"concept_id": sales_amount.id, "alias_value": "sales"})

    matches = svc.resolve_alias(tenant, "Sales")
    assert [m.concept.canonical_key for m in matches] == ["revenue", "sales_amount"]
    assert {m.confidence for m in matches} == {100}

    hinted = svc.resolve_alias(tenant, "Sales", domain_hint="sales")
    assert [m.concept.canonical_key for m in hinted] == ["sales_amount"]

    with pytest.raises(ValidationError):
        svc.resolve_alias(tenant, "Sales", domain_hint="ASTROLOGY")


def test_preferred_alias_breaks_ties(svc, tenant, revenue):
    gross = svc.create_concept(tenant, {"canonical_key": "gross_sales", "label": "Gross sales"})
    svc.create_alias(tenant, {"concept_id": gross.id, "alias_value": "Sales", "is_preferred_for_display": True})

    matches = svc.resolve_alias(tenant, "sales")
    assert [m.concept.canonical_key for m in matches] == ["gross_sales", "revenue"]


def test_inactive_concepts_never_match(svc, tenant, revenue):
    svc.deactivate_concept(tenant, revenue.id)
    assert svc.resolve_alias(tenant, "Sales") == []
    assert svc.lookup_concept(tenant, "Sales") is None


def test_resolution_is_tenant_scoped(svc, tenant, revenue):
    assert svc.resolve_alias("globex", "Sales") == []


def test_token_strategy_ignores_word_order(svc, tenant):
    svc.create_concept(tenant, {"canonical_key": "revenue_gross", "label": "Gross revenue"})
    resolver = AliasResolver(ctx=svc.ctx, store=svc.store, strategy=TokenOverlapSimilarity())

    matches = resolver.resolve(tenant, "gross revenue")
    assert [m.concept.canonical_key for m in matches] == ["revenue_gross"]
    assert matches[0].confidence == 90


def test_cancelled_token_stops_resolution(svc, tenant, revenue):
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelledError) as ei:
        svc.resolve_alias(tenant, "Turnovr", token=token)
    assert ei.value.details["operation"] == "alias.resolve"

    with pytest.raises(OperationCancelledError):
        svc.search_glossary(tenant, "turn", token=token)


def test_fuzzy_scan_checks_token_between_batches(svc, tenant, revenue, monkeypatch):
    token = CancellationToken()
    scored = []

    class CancelAfterFirst:
        name = "cancel_after_first"

        def similarity(self, a, b):
            scored.append(b)
            token.cancel()
            return 0.0

    monkeypatch.setattr(resolver_module, "CANCEL_CHECK_EVERY", 1)
    resolver = AliasResolver(ctx=svc.ctx, store=svc.store, strategy=CancelAfterFirst())

    with pytest.raises(OperationCancelledError):
        resolver.resolve(tenant, "Turnovr", token=token)
    assert len(scored) == 1


def test_unknown_strategy_rejected():
    assert get_strategy("token_overlap").name == "token_overlap"
    with pytest.raises(ValueError):
        get_strategy("soundex")


def test_alias_uniqueness(svc, tenant, revenue):
    with pytest.raises(ConflictError):
        svc.create_alias(tenant, {"concept_id": revenue.id, "alias_value": "sales"})

    # same value from another source system is a different alias
    other = svc.create_alias(tenant, {"concept_id": revenue.id, "alias_value": "Sales", "source_system": "SFDC"})
    assert other.source_system == "SFDC"


def test_one_preferred_alias_per_locale(svc, tenant, revenue):
    svc.create_alias(tenant, {"concept_id": revenue.id, "alias_value": "Net sales", "is_preferred_for_display": True})
    with pytest.raises(ConflictError) as ei:
        svc.create_alias(
            tenant, {"concept_id": revenue.id, "alias_value": "Revenues", "is_preferred_for_display": True}
        )
    assert ei.value.details["locale"] == "en"

    de = svc.create_alias(
        tenant,
        {"concept_id": revenue.id, "alias_value": "Umsatz", "is_preferred_for_display": True, "locale": "de"},
    )
    assert de.locale == "de"


def test_alias_for_unknown_concept(svc, tenant):
    with pytest.raises(NotFoundError):
        svc.create_alias(tenant, {"concept_id": "nope", "alias_value": "Sales"})


def test_alias_by_canonical_key_is_stored_by_id(svc, tenant, revenue):
    a = svc.create_alias(tenant, {"concept_id": "revenue", "alias_value": "Top line"})
    assert a.concept_id == revenue.id


def test_list_aliases_display_order(svc, tenant, revenue):
    svc.create_alias(tenant, {"concept_id": revenue.id, "alias_value": "Net sales", "is_preferred_for_display": True})
    values = [a.alias_value for a in svc.list_aliases(tenant, "revenue")]
    assert values == ["Net sales", "Sales", "Turnover", "GAAP Revenue"]


def test_lookup_concept_by_key_and_alias(svc, tenant, revenue):
    by_key = svc.lookup_concept(tenant, "revenue")
    by_alias = svc.lookup_concept(tenant, "TURNOVER")

    assert by_key.concept.id == revenue.id
    assert by_alias.concept.id == revenue.id
    assert by_alias.pack is None
    assert len(by_alias.aliases) == 3
    assert svc.lookup_concept(tenant, "ebitda") is None


def test_lookup_concept_carries_primary_pack(svc, tenant):
    svc.create_concept(
        tenant,
        {
            "canonical_key": "revenue_ifrs_core",
            "label": "Revenue (IFRS)",
            "domain": "FINANCE",
            "governance_tier": 1,
            "standard_pack_id_primary": "IFRS_CORE",
        },
    )
    out = svc.lookup_concept(tenant, "revenue_ifrs_core")
    assert out.pack.pack_id == "IFRS_CORE"
    assert out.to_dict()["pack"]["tier"] == "LAW"


def test_search_glossary(svc, tenant, revenue):
    out = svc.search_glossary(tenant, "turn")
    assert out["concepts"] == []
    assert [a.alias_value for a in out["aliases"]] == ["Turnover"]

    out = svc.search_glossary(tenant, "revenue")
    assert [c.canonical_key for c in out["concepts"]] == ["revenue"]
    assert [a.alias_value for a in out["aliases"]] == ["GAAP Revenue"]


def test_alias_changes_are_published(svc, tenant, revenue):
    seen = []
    svc.bus.subscribe(seen.append)
    a = svc.create_alias(tenant, {"concept_id": revenue.id, "alias_value": "Income"})
    svc.delete_alias(tenant, a.id)

    assert [(e.change_type, e.changed_fields) for e in seen] == [("UPDATED", ["aliases"]), ("UPDATED", ["aliases"])]
