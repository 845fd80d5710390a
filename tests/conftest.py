import os

import pytest
from fastapi.testclient import TestClient

from metastudio.api.main import create_app
from metastudio.core.config import Settings
from metastudio.core.observability.metrics import reset_metrics
from metastudio.core.service import MetadataService

TENANT = "acme"


@pytest.fixture(scope="session", autouse=True)
def _force_test_env():
    # Make runtime behave deterministically in tests
    os.environ.setdefault("METASTUDIO_ENV", "dev")


@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture()
def tenant():
    return TENANT


@pytest.fixture()
def settings():
    return Settings(env="test")


@pytest.fixture()
def svc(settings):
    return MetadataService(settings)


@pytest.fixture()
def client(svc):
    return TestClient(create_app(service=svc), headers={"X-Tenant": TENANT})


@pytest.fixture()
def revenue(svc, tenant):
    """A FINANCE concept with three aliases, one of them system-specific."""
    concept = svc.create_concept(
        tenant,
        {
            "canonical_key": "revenue",
            "label": "Revenue",
            "description": "Income from ordinary activities",
            "domain": "FINANCE",
            "governance_tier": 3,
        },
    )
    svc.create_alias(tenant, {"concept_id": concept.id, "alias_value": "Sales"})
    svc.create_alias(tenant, {"concept_id": concept.id, "alias_value": "Turnover", "alias_type": "SYNONYM"})
    svc.create_alias(
        tenant,
        {"concept_id": concept.id, "alias_value": "GAAP Revenue", "source_system": "SAP", "alias_type": "SYSTEM_FIELD"},
    )
    return concept


@pytest.fixture()
def revenue_lineage(svc, tenant):
    """
    sales_orders --DIRECT------> revenue_gross --DERIVED--> revenue_net --DIRECT--> dashboard_kpi
    invoice_lines --AGGREGATION-^
    """
    for entity_id, entity_type in (
        ("sales_orders", "TABLE"),
        ("invoice_lines", "TABLE"),
        ("revenue_gross", "METRIC"),
        ("revenue_net", "METRIC"),
        ("dashboard_kpi", "REPORT"),
    ):
        svc.register_entity(
            tenant,
            {"entity_id": entity_id, "entity_name": entity_id.replace("_", " ").title(), "entity_type": entity_type},
        )
    svc.add_edge(tenant, "sales_orders", "revenue_gross", "DIRECT")
    svc.add_edge(tenant, "invoice_lines", "revenue_gross", "AGGREGATION", "SUM(amount)", 80)
    svc.add_edge(tenant, "revenue_gross", "revenue_net", "DERIVED", "gross - returns")
    svc.add_edge(tenant, "revenue_net", "dashboard_kpi", "DIRECT")
    return svc
