import pytest

from metastudio.core.compat import CompatibilityContext, GateState, is_version_compatible, parse_version
from metastudio.core.compat.gate import can_transition
from metastudio.core.config import Settings
from metastudio.core.errors import VersionMismatchError
from metastudio.core.service import MetadataService


def test_same_major_is_compatible():
    ctx = CompatibilityContext.establish("1.4.2", "1.0.0")
    assert ctx.state == GateState.COMPATIBLE
    ctx.ensure_compatible()


def test_major_mismatch_blocks():
    ctx = CompatibilityContext.establish("2.0.0", "1.0.0")
    assert ctx.state == GateState.BLOCKED

    with pytest.raises(VersionMismatchError) as ei:
        ctx.ensure_compatible()
    assert ei.value.client_version == "2.0.0"
    assert ei.value.engine_version == "1.0.0"
    assert ei.value.code == "VERSION_MISMATCH"


@pytest.mark.parametrize("raw", ["1.0", "one.two.three", "", "1.0.0.0", "-1.0.0"])
def test_malformed_version_is_blocked(raw):
    assert parse_version(raw) is None
    assert is_version_compatible(raw, "1.0.0") is False
    assert CompatibilityContext.establish(raw, "1.0.0").state == GateState.BLOCKED


def test_unchecked_context_fails_closed():
    ctx = CompatibilityContext("1.0.0")
    assert ctx.state == GateState.UNCHECKED
    with pytest.raises(VersionMismatchError):
        ctx.ensure_compatible()


def test_decision_is_final():
    assert can_transition(GateState.UNCHECKED, GateState.COMPATIBLE)
    assert not can_transition(GateState.COMPATIBLE, GateState.BLOCKED)
    assert not can_transition(GateState.BLOCKED, GateState.COMPATIBLE)


def test_sdk_info_reports_compatible_range():
    info = CompatibilityContext.establish("1.2.0", "1.3.1").sdk_info()
    assert info["engine_version"] == "1.3.1"
    assert info["compatible_with"] == "^1.0.0"
    assert info["state"] == "COMPATIBLE"


def test_blocked_service_touches_no_state():
    svc = MetadataService(Settings(client_sdk_version="2.0.0", engine_version="1.0.0"))

    with pytest.raises(VersionMismatchError):
        svc.create_concept("acme", {"canonical_key": "revenue", "label": "Revenue"})
    with pytest.raises(VersionMismatchError):
        svc.list_concepts("acme")
    with pytest.raises(VersionMismatchError):
        svc.resolve_name("user_id", "snake_case", "camelCase")

    # no tenant partition was even created, let alone bootstrapped
    assert svc.store.tenants() == []


def test_every_component_checks_the_gate():
    svc = MetadataService(Settings(client_sdk_version="0.9.0", engine_version="1.0.0"))
    with pytest.raises(VersionMismatchError):
        svc.concepts.get_concept("acme", "revenue")
    with pytest.raises(VersionMismatchError):
        svc.resolver.resolve("acme", "sales")
    with pytest.raises(VersionMismatchError):
        svc.lineage.coverage("acme")
    with pytest.raises(VersionMismatchError):
        svc.rules.evaluate("acme")
    with pytest.raises(VersionMismatchError):
        svc.conformance.check_conformance("acme", "revenue", "IFRS_CORE")
