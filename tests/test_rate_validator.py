from decimal import Decimal

import pytest

from exclusion_rules import ExclusionReason
from rate_validator import (
    DISCREPANCY_COLUMNS,
    build_discrepancy,
    run_statement_audit,
    validate,
    validate_by_agent,
)


@pytest.fixture
def statement(make_tx):
    return [
        # underpaid, nothing explains it
        make_tx(row_number=1),
        # non-standard auto
        make_tx(
            row_number=2, policy_number="900333444", transaction_type="New Business",
            business_type="Non-Standard Auto", bundle_type="Monoline",
            product_raw="Encompass Auto", written_premium="1000", insured_name="DOE, JANE",
        ),
        # paid in full
        make_tx(row_number=3, policy_number="900555666", vc_amount="100", insured_name="LEE, ANN"),
        # monoline renewal, 2% expected
        make_tx(
            row_number=4, policy_number="900777888", bundle_type="Monoline",
            written_premium="1000", insured_name="PARK, SAM",
        ),
        # partially paid: 2% of an expected 5%
        make_tx(
            row_number=5, policy_number="900999000", written_premium="1000",
            vc_amount="20", insured_name="KIM, LEE",
        ),
    ]


def test_unexplained_shortfall_is_potential_underpayment(make_tx, config) -> None:
    d = build_discrepancy(make_tx(), config)
    assert d is not None
    assert d.expected_vc_rate == Decimal("0.05")
    assert d.actual_vc_rate == Decimal("0")
    assert d.missing_vc_dollars == Decimal("100.00")
    assert d.exclusion_reason == ExclusionReason.UNKNOWN_EXCLUSION
    assert d.is_potential_underpayment
    assert "POTENTIAL UNDERPAYMENT" in d.exclusion_note


def test_non_standard_auto_shortfall_is_excluded(make_tx, config) -> None:
    tx = make_tx(
        transaction_type="New Business", business_type="Non-Standard Auto",
        bundle_type="Monoline", written_premium="1000",
    )
    d = build_discrepancy(tx, config)
    assert d.exclusion_reason == ExclusionReason.EXCLUDED_NONSTANDARD_AUTO
    assert d.expected_vc_rate == Decimal("0.08")
    assert d.missing_vc_dollars == Decimal("80.00")
    assert not d.is_potential_underpayment

    result = validate([tx], config=config)
    assert result.excluded_transactions == (d,)
    assert result.potential_underpayments == ()
    assert result.total_missing_vc_dollars == Decimal("0")


@pytest.mark.parametrize("vc_amount", ["100", "99.50", "150"])
def test_clean_pay_has_no_discrepancy(make_tx, config, vc_amount) -> None:
    assert build_discrepancy(make_tx(vc_amount=vc_amount), config) is None


def test_shortfall_beyond_epsilon_is_flagged(make_tx, config) -> None:
    d = build_discrepancy(make_tx(vc_amount="90"), config)
    assert d.actual_vc_rate == Decimal("0.045")
    assert d.missing_vc_dollars == Decimal("10.00")
    assert d.rate_difference == Decimal("-0.005")


def test_unmapped_business_type_is_never_flagged(make_tx, config) -> None:
    assert build_discrepancy(make_tx(business_type="Boat"), config) is None


@pytest.mark.parametrize("premium", ["0", "-500"])
def test_unusable_premium_does_not_crash(make_tx, config, premium) -> None:
    d = build_discrepancy(make_tx(written_premium=premium), config)
    assert d.actual_vc_rate == Decimal("0")
    assert d.missing_vc_dollars == Decimal("0")


def test_cancellation_is_never_a_discrepancy(make_tx, config) -> None:
    cancelled = make_tx(
        row_number=2, policy_number="P2", transaction_type="Cancellation",
        written_premium="-2000", vc_amount="-40", base_commission_amount="-200",
    )
    assert build_discrepancy(cancelled, config) is None

    result = validate([make_tx(row_number=1, vc_amount="100"), cancelled], config=config)
    assert result.discrepancies == []
    assert result.exclusion_breakdown[ExclusionReason.UNKNOWN_EXCLUSION] == 0
    assert result.large_cancellations.count == 1
    assert result.commission_summary.transaction_count == 2


def test_blank_identifiers_are_reported_as_unknown(make_tx, config) -> None:
    d = build_discrepancy(make_tx(policy_number="", product_raw=""), config)
    assert d.policy_number == "Unknown"
    assert d.product_raw == "Unknown"


def test_missing_dollars_round_per_row(make_tx, config) -> None:
    rows = [make_tx(row_number=n, written_premium="100.10") for n in (1, 2)]
    result = validate(rows, config=config)
    assert [d.missing_vc_dollars for d in result.potential_underpayments] == [Decimal("5.01")] * 2
    assert result.total_missing_vc_dollars == Decimal("10.02")


def test_validate_partitions_statement(statement, config) -> None:
    result = validate(statement, config=config)

    assert result.total == 5
    assert result.analyzed == 5
    assert [d.row_number for d in result.potential_underpayments] == [1, 5]
    assert [d.row_number for d in result.excluded_transactions] == [2, 4]
    assert result.total_missing_vc_dollars == Decimal("130.00")
    assert result.total_missing_vc_dollars == sum(
        (d.missing_vc_dollars for d in result.potential_underpayments), Decimal("0")
    )
    assert [d.row_number for d in result.discrepancies] == [1, 2, 4, 5]
    assert result.aap_level == "Pro"
    assert result.state == "TX"


def test_exclusion_breakdown_counts(statement, config) -> None:
    result = validate(statement, config=config)
    breakdown = result.exclusion_breakdown

    assert set(breakdown) == {r for r in ExclusionReason if r != ExclusionReason.NONE}
    assert breakdown[ExclusionReason.EXCLUDED_NONSTANDARD_AUTO] == 1
    assert breakdown[ExclusionReason.EXCLUDED_MONOLINE_RENEWAL] == 1
    assert breakdown[ExclusionReason.EXCLUDED_DIRECT_BOUND] == 0
    assert breakdown[ExclusionReason.UNKNOWN_EXCLUSION] == len(result.potential_underpayments)
    assert result.excluded_count == len(result.excluded_transactions)


def test_statement_order_is_kept(make_tx, config) -> None:
    rows = [make_tx(row_number=n, policy_number=f"P{n}") for n in (3, 1, 2)]
    result = validate(rows, config=config)
    assert [d.row_number for d in result.potential_underpayments] == [3, 1, 2]


def test_flagged_rows_appear_exactly_once(statement, config) -> None:
    result = validate(statement, config=config)
    flagged = [d.row_number for d in result.discrepancies]
    expected = [tx.row_number for tx in statement if build_discrepancy(tx, config) is not None]
    assert flagged == expected


def test_validate_is_deterministic(statement, config) -> None:
    assert validate(statement, config=config) == validate(statement, config=config)


def test_mapping_warning_when_most_rows_are_short(statement, config) -> None:
    result = validate(statement, config=config)
    assert any("Column mapping" in w for w in result.warnings)


def test_clean_statement_has_no_warnings(make_tx, config) -> None:
    result = validate([make_tx(vc_amount="100")], config=config)
    assert result.warnings == ()
    assert result.discrepancies == []
    assert result.total_missing_vc_dollars == Decimal("0")


def test_bad_row_is_skipped_with_warning(make_tx, config) -> None:
    rows = [make_tx(row_number=1), None, make_tx(row_number=3, vc_amount="100")]
    result = validate(rows, config=config)
    assert result.total == 3
    assert result.analyzed == 2
    assert len(result.potential_underpayments) == 1
    assert any(w.startswith("Row 2") for w in result.warnings)
    assert result.commission_summary.transaction_count == 2


@pytest.mark.parametrize("bad_input", [None, "statement.csv", 42])
def test_non_list_input_is_rejected(config, bad_input) -> None:
    with pytest.raises(TypeError):
        validate(bad_input, config=config)


def test_config_is_required(make_tx) -> None:
    with pytest.raises(TypeError):
        validate([make_tx()], config=None)


def test_empty_prior_skips_period_comparisons(statement, config) -> None:
    result = validate(statement, [], config=config)
    assert result.business_type_mix is None
    assert result.rate_summary_comparison is None
    assert result.prior_commission_summary is None
    assert result.commission_summary.transaction_count == 5


def test_prior_period_enables_comparisons(statement, make_tx, config) -> None:
    prior = [
        make_tx(row_number=1, written_premium="3000", vc_amount="150"),
        make_tx(row_number=2, business_type="Standard Auto", product_raw="Auto", written_premium="1000"),
    ]
    result = validate(statement, prior, config=config)
    assert result.business_type_mix is not None
    assert result.rate_summary_comparison.prior.total_premium == Decimal("4000")
    assert result.prior_commission_summary.total_vc_amount == Decimal("150")


def test_aggregates_ride_along(make_tx, config) -> None:
    rows = [
        make_tx(row_number=1, sub_producer_code="850", transaction_type="New Business"),
        make_tx(
            row_number=2, policy_number="P2", transaction_type="Cancellation",
            written_premium="-2400", base_commission_amount="-240", insured_name="PARK, SAM",
        ),
    ]
    result = validate(rows, config=config)
    assert result.large_cancellations.count == 1
    assert result.large_cancellations.total_estimated_lost_commission == Decimal("240.00")
    assert [p.code for p in result.sub_producers.producers] == ["", "850"]


def test_to_frame(statement, config) -> None:
    frame = validate(statement, config=config).to_frame()
    assert list(frame.columns) == DISCREPANCY_COLUMNS
    assert list(frame["row_number"]) == [1, 2, 4, 5]
    assert frame.loc[0, "exclusion_label"] == "Unknown - Investigate"


def test_validate_by_agent(make_tx, config) -> None:
    rows = [
        make_tx(row_number=1, agent_number="0A1111"),
        make_tx(row_number=2, agent_number="0A2222", vc_amount="100"),
        make_tx(row_number=3, agent_number="0A1111", vc_amount="100"),
    ]
    results = validate_by_agent(rows, config=config)
    assert list(results) == ["0A1111", "0A2222"]
    assert results["0A1111"].analyzed == 2
    assert len(results["0A1111"].potential_underpayments) == 1
    assert results["0A2222"].discrepancies == []


def test_run_statement_audit_from_csv(tmp_path) -> None:
    statement_file = tmp_path / "statement.csv"
    statement_file.write_text(
        "policy_number,transaction_type,product,business_type,bundle_type,"
        "written_premium,vc_amount,channel,named_insured\n"
        '900100200,Renewal,Homeowners,Homeowners,Preferred,"$2,000.00",0,Agent,"SMITH, JOHN"\n'
        '900100201,New Business,Encompass Auto,Non-Standard Auto,Monoline,1000,0,Agent,"DOE, JANE"\n'
    )
    rates_file = tmp_path / "rates.csv"
    rates_file.write_text(
        "business_type,bundle_type,transaction_type,tenure,rate\n"
        "Homeowners,Preferred,Renewal,*,5\n"
        "Non-Standard Auto,*,*,*,8\n"
    )

    result = run_statement_audit(str(statement_file), str(rates_file), "2026-02-01")

    assert result.total == 2
    assert [d.policy_number for d in result.potential_underpayments] == ["900100200"]
    assert result.potential_underpayments[0].missing_vc_dollars == Decimal("100.00")
    assert result.excluded_transactions[0].exclusion_reason == ExclusionReason.EXCLUDED_NONSTANDARD_AUTO
