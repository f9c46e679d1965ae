from datetime import date
from decimal import Decimal

import pytest

from reconciliation_config import ExpectedRateTable, ReconciliationConfig
from statement_models import StatementTransaction


@pytest.fixture
def rate_table() -> ExpectedRateTable:
    return ExpectedRateTable({
        ("Homeowners", "Preferred", "renewal", "*"): "0.05",
        ("Homeowners", "*", "new_business", "*"): "0.08",
        ("Non-Standard Auto", "*", "*", "*"): "0.08",
        ("Standard Auto", "*", "renewal", "*"): "0.04",
        ("Standard Auto", "*", "new_business", "*"): "0.06",
        ("*", "Monoline", "renewal", "*"): "0.02",
        ("*", "*", "endorsement", "*"): "0.05",
    })


@pytest.fixture
def config(rate_table: ExpectedRateTable) -> ReconciliationConfig:
    return ReconciliationConfig(
        statement_period_start=date(2026, 2, 1),
        rate_table=rate_table,
        agency_is_elite=False,
        large_cancellation_threshold=Decimal("1000"),
        aap_level="Pro",
        state="TX",
    )


@pytest.fixture
def make_tx():
    """Factory for an agent-bound Homeowners Preferred renewal with no VC paid."""
    def _make(**overrides) -> StatementTransaction:
        fields = dict(
            policy_number="900100200",
            row_number=1,
            agent_number="0A1234",
            transaction_type="Renewal",
            product_raw="Homeowners",
            business_type="Homeowners",
            bundle_type="Preferred",
            written_premium=Decimal("2000"),
            vc_amount=Decimal("0"),
            channel_of_bind="Agent",
            insured_name="SMITH, JOHN",
        )
        fields.update(overrides)
        return StatementTransaction(**fields)
    return _make
