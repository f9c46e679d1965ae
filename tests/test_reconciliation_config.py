from datetime import date
from decimal import Decimal

import pytest

from reconciliation_config import (
    ExpectedRateTable,
    ReconciliationConfig,
    Tenure,
    determine_tenure,
    load_rate_table,
)
from statement_models import BundleType, TransactionType

PERIOD = date(2026, 2, 1)


def test_lookup_prefers_fewest_wildcards() -> None:
    table = ExpectedRateTable({
        ("*", "*", "renewal", "*"): "0.01",
        ("Homeowners", "*", "renewal", "*"): "0.03",
        ("Homeowners", "Preferred", "renewal", "*"): "0.05",
    })
    assert table.lookup("Homeowners", BundleType.PREFERRED, TransactionType.RENEWAL, Tenure.RENEWAL) == Decimal("0.05")
    assert table.lookup("Homeowners", BundleType.STANDARD, TransactionType.RENEWAL, Tenure.RENEWAL) == Decimal("0.03")
    assert table.lookup("Condo", BundleType.STANDARD, TransactionType.RENEWAL, Tenure.RENEWAL) == Decimal("0.01")
    assert table.lookup("Condo", BundleType.STANDARD, TransactionType.NEW_BUSINESS, Tenure.FIRST_TERM) is None


def test_lookup_tie_goes_to_earlier_specific_part() -> None:
    table = ExpectedRateTable({
        ("Standard Auto", "*", "renewal", "first_renewal"): "0.06",
        ("Standard Auto", "Preferred", "renewal", "*"): "0.04",
    })
    rate = table.lookup("Standard Auto", BundleType.PREFERRED, TransactionType.RENEWAL, Tenure.FIRST_RENEWAL)
    assert rate == Decimal("0.04")


def test_rate_values_given_as_percentages() -> None:
    table = ExpectedRateTable({
        ("Homeowners", "*", "*", "*"): "8%",
        ("Condo", "*", "*", "*"): 5,
        ("Renters", "*", "*", "*"): "0.5%",
        ("Umbrella", "*", "*", "*"): "1%",
    })
    assert table.lookup("homeowners", BundleType.MONOLINE, TransactionType.RENEWAL, Tenure.RENEWAL) == Decimal("0.08")
    assert table.lookup("Condo", BundleType.MONOLINE, TransactionType.RENEWAL, Tenure.RENEWAL) == Decimal("0.05")
    # a percent sign always means percent, even below 1
    assert table.lookup("Renters", BundleType.MONOLINE, TransactionType.RENEWAL, Tenure.RENEWAL) == Decimal("0.005")
    assert table.lookup("Umbrella", BundleType.MONOLINE, TransactionType.RENEWAL, Tenure.RENEWAL) == Decimal("0.01")


def test_unmapped_combination_expects_zero(make_tx) -> None:
    rate, note = ExpectedRateTable().expected_rate(make_tx(business_type="Boat"), Tenure.RENEWAL)
    assert rate == Decimal("0")
    assert "No VC rate configured" in note


def test_load_rate_table_from_csv(tmp_path) -> None:
    path = tmp_path / "rates.csv"
    path.write_text(
        "business_type,bundle_type,transaction_type,tenure,rate\n"
        "Homeowners,Preferred,Renewal,*,5\n"
        "Standard Auto,,New Business,,0.06\n"
    )
    table = load_rate_table(str(path))
    assert len(table) == 2
    assert table.lookup("Homeowners", BundleType.PREFERRED, TransactionType.RENEWAL, Tenure.RENEWAL) == Decimal("0.05")
    assert table.lookup("Standard Auto", BundleType.MONOLINE, TransactionType.NEW_BUSINESS, Tenure.FIRST_TERM) == Decimal("0.06")


def test_tenure_from_renewal_number(make_tx) -> None:
    assert determine_tenure(make_tx(renewal_number=0), PERIOD) == Tenure.FIRST_TERM
    assert determine_tenure(make_tx(renewal_number=1), PERIOD) == Tenure.FIRST_RENEWAL
    assert determine_tenure(make_tx(renewal_number=4), PERIOD) == Tenure.RENEWAL


def test_tenure_from_effective_date(make_tx) -> None:
    auto = dict(business_type="Standard Auto", product_raw="Auto")
    # 6-month auto, six months after inception -> first renewal
    assert determine_tenure(make_tx(original_policy_effective_date=date(2025, 8, 1), **auto), PERIOD) == Tenure.FIRST_RENEWAL
    assert determine_tenure(make_tx(original_policy_effective_date=date(2024, 8, 1), **auto), PERIOD) == Tenure.RENEWAL
    # 12-month home, 14 months in -> first renewal
    assert determine_tenure(make_tx(original_policy_effective_date=date(2024, 12, 1)), PERIOD) == Tenure.FIRST_RENEWAL


def test_tenure_without_date(make_tx) -> None:
    assert determine_tenure(make_tx(transaction_type="New Business"), PERIOD) == Tenure.FIRST_TERM
    assert determine_tenure(make_tx(), PERIOD) == Tenure.RENEWAL
    assert determine_tenure(make_tx(transaction_type="Endorsement"), PERIOD) == Tenure.UNKNOWN


def test_config_rejects_bad_values() -> None:
    with pytest.raises(TypeError):
        ReconciliationConfig(statement_period_start="2026-02-01")
    with pytest.raises(ValueError):
        ReconciliationConfig(statement_period_start=PERIOD, large_cancellation_threshold=0)
    with pytest.raises(ValueError):
        ReconciliationConfig(statement_period_start=PERIOD, rate_epsilon="-0.01")


def test_with_overrides_returns_copy(config: ReconciliationConfig) -> None:
    changed = config.with_overrides(agency_is_elite=True, large_cancellation_threshold="2500")
    assert changed.agency_is_elite
    assert changed.large_cancellation_threshold == Decimal("2500")
    assert not config.agency_is_elite
    assert changed.rate_table is config.rate_table
