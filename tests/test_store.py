import pytest

from metastudio.core.errors import ConflictError
from metastudio.core.registry.models import Concept
from metastudio.core.registry.store import MetadataStore, UniqueConstraintError, check_then_insert


def _row(key):
    return Concept(tenant_id="acme", canonical_key=key, label=key)


def test_transaction_rolls_back_on_error():
    store = MetadataStore()
    kept = _row("kept")
    with store.transaction("acme") as p:
        p.concepts.insert(kept.id, kept)

    with pytest.raises(RuntimeError):
        with store.transaction("acme") as p:
            dropped = _row("dropped")
            p.concepts.insert(dropped.id, dropped)
            p.concepts.delete(kept.id)
            raise RuntimeError("abort")

    p = store.partition("acme")
    assert [c.canonical_key for c in p.concepts] == ["kept"]
    assert p.concepts.find_unique("dropped") is None
    assert p.concepts.find_unique("kept").id == kept.id


def test_unique_index_is_enforced():
    store = MetadataStore()
    p = store.partition("acme")
    a, b = _row("revenue"), _row("revenue")
    p.concepts.insert(a.id, a)
    with pytest.raises(UniqueConstraintError) as ei:
        p.concepts.insert(b.id, b)
    assert ei.value.key == "revenue"


def test_partitions_are_disjoint():
    store = MetadataStore()
    row = _row("revenue")
    store.partition("acme").concepts.insert(row.id, row)
    assert len(store.partition("globex").concepts) == 0
    assert store.tenants() == ["acme", "globex"]


def test_check_then_insert_retries_once():
    calls = []

    def attempt():
        calls.append(1)
        if len(calls) == 1:
            raise UniqueConstraintError("concepts", "revenue")
        return "inserted"

    assert check_then_insert(attempt, on_conflict=lambda e: ConflictError("dup")) == "inserted"
    assert len(calls) == 2


def test_check_then_insert_surfaces_conflict():
    calls = []

    def attempt():
        calls.append(1)
        raise UniqueConstraintError("concepts", "revenue")

    with pytest.raises(ConflictError) as ei:
        check_then_insert(attempt, on_conflict=lambda e: ConflictError(f"dup {e.key}"))
    assert ei.value.message == "dup revenue"
    assert len(calls) == 2
