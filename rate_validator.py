"""
Commission Rate Validator
Carrier VC reconciliation for agency commission statements

Purpose: For every statement row, compare the variable compensation the
carrier actually paid with the rate the agency's rate table says it should
have paid, explain shortfalls through the documented VC exclusions, and
report what is left as potential underpayments. The same run produces the
commission-rate summary, business-type mix shift, large-cancellation alerts
and sub-producer mix used to audit the carrier relationship.

Usage:
    config = ReconciliationConfig(
        statement_period_start=date(2026, 2, 1),
        rate_table=load_rate_table("vc_rates.csv"),
    )
    result = validate(current, prior, config=config)
    print_summary(result)
"""

import logging
from collections.abc import Sequence as SequenceABC
from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from exclusion_rules import (
    EXCLUSION_LABELS,
    ExclusionReason,
    classify,
    exclusion_note,
)
from reconciliation_config import (
    ExpectedRateTable,
    ReconciliationConfig,
    Tenure,
    determine_tenure,
    load_rate_table,
)
from statement_aggregates import (
    BusinessTypeMixComparison,
    CommissionRateSummary,
    LargeCancellationSummary,
    RateSummaryComparison,
    compare_business_type_mix,
    compare_rate_summaries,
    decimal_sum,
    detect_large_cancellations,
    summarize_commission_rates,
    to_cents,
)
from statement_models import (
    ZERO,
    BundleType,
    StatementTransaction,
    TransactionType,
    load_statement_csv,
    split_by_agent,
)
from sub_producer_analyzer import SubProducerSummary, analyze_sub_producers

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("RateValidator")

# More than this share of analyzed rows short on VC usually means a bad column mapping.
MAPPING_WARNING_SHARE = Decimal("0.5")

# =============================================================================
# 1. RATE DISCREPANCY
# =============================================================================

@dataclass(frozen=True)
class RateDiscrepancy:
    policy_number: str
    row_number: int
    agent_number: str
    transaction_type: TransactionType
    product_raw: str
    product_category: str
    business_type: str
    bundle_type: BundleType
    tenure: Tenure
    written_premium: Decimal
    actual_vc_rate: Decimal
    expected_vc_rate: Decimal
    expected_note: str
    missing_vc_dollars: Decimal
    exclusion_reason: ExclusionReason
    exclusion_note: str

    @property
    def rate_difference(self) -> Decimal:
        return self.actual_vc_rate - self.expected_vc_rate

    @property
    def is_potential_underpayment(self) -> bool:
        return self.exclusion_reason == ExclusionReason.UNKNOWN_EXCLUSION


def actual_vc_rate(tx: StatementTransaction) -> Decimal:
    premium = tx.rate_premium
    if premium == 0:
        return ZERO
    return tx.vc_amount / premium


def build_discrepancy(
    tx: StatementTransaction,
    config: ReconciliationConfig,
) -> Optional[RateDiscrepancy]:
    """
    Compare the VC paid on one transaction with the expected rate.

    Returns None for a clean pay (actual rate within epsilon of expected, or
    better) and for cancellations, whose VC reversal is never an
    underpayment. Otherwise returns the classified discrepancy; missing dollars
    are rounded to cents here, per row.
    """
    if tx.is_cancellation:
        return None

    tenure = determine_tenure(tx, config.statement_period_start)
    expected, expected_note = config.rate_table.expected_rate(tx, tenure)
    actual = actual_vc_rate(tx)

    if actual >= expected - config.rate_epsilon:
        return None

    reason = classify(tx, config, rate_gap=True)
    missing = max(ZERO, (expected - actual) * tx.rate_premium)

    return RateDiscrepancy(
        policy_number=tx.policy_number or "Unknown",
        row_number=tx.row_number,
        agent_number=tx.agent_number,
        transaction_type=tx.transaction_type,
        product_raw=tx.product_raw or "Unknown",
        product_category=tx.product_category,
        business_type=tx.business_type,
        bundle_type=tx.bundle_type,
        tenure=tenure,
        written_premium=tx.written_premium,
        actual_vc_rate=actual,
        expected_vc_rate=expected,
        expected_note=expected_note,
        missing_vc_dollars=to_cents(missing),
        exclusion_reason=reason,
        exclusion_note=exclusion_note(reason),
    )

# =============================================================================
# 2. VALIDATION RESULT
# =============================================================================

DISCREPANCY_COLUMNS = [
    "policy_number", "row_number", "agent_number", "transaction_type",
    "product_raw", "business_type", "bundle_type", "written_premium",
    "actual_vc_rate", "expected_vc_rate", "missing_vc_dollars",
    "exclusion_reason", "exclusion_label", "exclusion_note",
]


@dataclass(frozen=True)
class ValidationResult:
    """
    One reconciled statement.

    exclusion_breakdown also counts UNKNOWN_EXCLUSION (the potential
    underpayments), so only its EXCLUDED_* counts sum to
    len(excluded_transactions); that sum is excluded_count.
    """
    total: int
    analyzed: int
    potential_underpayments: Tuple[RateDiscrepancy, ...]
    excluded_transactions: Tuple[RateDiscrepancy, ...]
    exclusion_breakdown: Dict[ExclusionReason, int]
    total_missing_vc_dollars: Decimal
    aap_level: str
    state: str
    commission_summary: CommissionRateSummary
    large_cancellations: LargeCancellationSummary
    sub_producers: SubProducerSummary
    prior_commission_summary: Optional[CommissionRateSummary] = None
    rate_summary_comparison: Optional[RateSummaryComparison] = None
    business_type_mix: Optional[BusinessTypeMixComparison] = None
    warnings: Tuple[str, ...] = ()

    @property
    def discrepancies(self) -> List[RateDiscrepancy]:
        """Every discrepancy, back in statement row order."""
        return sorted(
            self.potential_underpayments + self.excluded_transactions,
            key=lambda d: d.row_number,
        )

    @property
    def excluded_count(self) -> int:
        return sum(
            count for reason, count in self.exclusion_breakdown.items() if reason.is_exclusion
        )

    def to_frame(self) -> pd.DataFrame:
        """Discrepancy rows for the reporting layer."""
        rows = [
            {
                "policy_number": d.policy_number,
                "row_number": d.row_number,
                "agent_number": d.agent_number,
                "transaction_type": d.transaction_type.value,
                "product_raw": d.product_raw,
                "business_type": d.business_type,
                "bundle_type": d.bundle_type.value,
                "written_premium": d.written_premium,
                "actual_vc_rate": d.actual_vc_rate,
                "expected_vc_rate": d.expected_vc_rate,
                "missing_vc_dollars": d.missing_vc_dollars,
                "exclusion_reason": d.exclusion_reason.value,
                "exclusion_label": EXCLUSION_LABELS[d.exclusion_reason],
                "exclusion_note": d.exclusion_note,
            }
            for d in self.discrepancies
        ]
        return pd.DataFrame(rows, columns=DISCREPANCY_COLUMNS)


def empty_exclusion_breakdown() -> Dict[ExclusionReason, int]:
    """Every reason except NONE at zero, in rule priority order."""
    return {reason: 0 for reason in ExclusionReason if reason != ExclusionReason.NONE}

# =============================================================================
# 3. ORCHESTRATOR
# =============================================================================

def _require_transaction_list(value, name: str) -> None:
    if value is None or isinstance(value, (str, bytes)) or not isinstance(value, SequenceABC):
        raise TypeError(f"{name} must be a list of StatementTransaction, got {type(value).__name__}")


def validate(
    current_transactions: Sequence[StatementTransaction],
    prior_transactions: Optional[Sequence[StatementTransaction]] = None,
    *,
    config: ReconciliationConfig,
) -> ValidationResult:
    """
    Reconcile one statement.

    Every current transaction goes through build_discrepancy; shortfalls with
    a documented exclusion land in excluded_transactions, the rest in
    potential_underpayments, both in statement order. The aggregate
    summaries run over the same rows; period comparisons need
    prior_transactions. A row that fails is skipped and reported in
    warnings.
    """
    _require_transaction_list(current_transactions, "current_transactions")
    if prior_transactions is not None:
        _require_transaction_list(prior_transactions, "prior_transactions")
    if not isinstance(config, ReconciliationConfig):
        raise TypeError("config must be a ReconciliationConfig")

    warnings: List[str] = []
    underpayments: List[RateDiscrepancy] = []
    excluded: List[RateDiscrepancy] = []
    breakdown = empty_exclusion_breakdown()
    readable: List[StatementTransaction] = []

    for idx, tx in enumerate(current_transactions):
        try:
            discrepancy = build_discrepancy(tx, config)
        except Exception as e:
            row = getattr(tx, "row_number", idx + 1)
            warnings.append(f"Row {row}: {str(e)}")
            logger.error(f"Row {row} skipped: {e}")
            continue
        readable.append(tx)
        if discrepancy is None:
            continue
        breakdown[discrepancy.exclusion_reason] += 1
        if discrepancy.is_potential_underpayment:
            underpayments.append(discrepancy)
        else:
            excluded.append(discrepancy)

    total_missing = decimal_sum(d.missing_vc_dollars for d in underpayments)

    analyzed = len(readable)
    gaps = len(underpayments) + len(excluded)
    if analyzed and Decimal(gaps) > Decimal(analyzed) * MAPPING_WARNING_SHARE:
        warnings.append(
            "A large percentage of transactions show rate differences. "
            "Column mapping may need adjustment."
        )

    current_summary = summarize_commission_rates(readable)
    prior_summary = None
    comparison = None
    mix = None
    if prior_transactions:
        prior_summary = summarize_commission_rates(prior_transactions)
        comparison = compare_rate_summaries(prior_summary, current_summary)
        mix = compare_business_type_mix(prior_transactions, readable)

    logger.info(
        f"Analyzed {analyzed} of {len(current_transactions)} transactions: "
        f"{len(underpayments)} potential underpayments, {len(excluded)} excluded, "
        f"missing VC ${total_missing:,.2f}"
    )

    return ValidationResult(
        total=len(current_transactions),
        analyzed=analyzed,
        potential_underpayments=tuple(underpayments),
        excluded_transactions=tuple(excluded),
        exclusion_breakdown=breakdown,
        total_missing_vc_dollars=total_missing,
        aap_level=config.aap_level,
        state=config.state,
        commission_summary=current_summary,
        large_cancellations=detect_large_cancellations(
            readable, config.large_cancellation_threshold
        ),
        sub_producers=analyze_sub_producers(readable, period_start=config.statement_period_start),
        prior_commission_summary=prior_summary,
        rate_summary_comparison=comparison,
        business_type_mix=mix,
        warnings=tuple(warnings),
    )


def validate_by_agent(
    current_transactions: Sequence[StatementTransaction],
    prior_transactions: Optional[Sequence[StatementTransaction]] = None,
    *,
    config: ReconciliationConfig,
) -> Dict[str, ValidationResult]:
    """Run validate() separately for each agent number (location) in the statement."""
    _require_transaction_list(current_transactions, "current_transactions")
    prior_slices = split_by_agent(list(prior_transactions)) if prior_transactions is not None else {}
    return {
        agent: validate(
            slice_,
            prior_slices.get(agent, []) if prior_transactions is not None else None,
            config=config,
        )
        for agent, slice_ in split_by_agent(list(current_transactions)).items()
    }

# =============================================================================
# 4. CONSOLE REPORT
# =============================================================================

def print_summary(result: ValidationResult, limit: int = 10) -> None:
    """Print the reconciliation to the console."""
    print("\n" + "=" * 80)
    print("  VC RATE RECONCILIATION")
    print("=" * 80)
    print(f"  Transactions:            {result.total}")
    print(f"  Analyzed:                {result.analyzed}")
    print(f"  Potential underpayments: {len(result.potential_underpayments)}")
    print(f"  Legitimately excluded:   {len(result.excluded_transactions)}")
    print(f"  MISSING VC (potential):  ${result.total_missing_vc_dollars:,.2f}")
    if result.state or result.aap_level:
        print(f"  State: {result.state or '-'} | AAP Level: {result.aap_level or '-'}")
    summary = result.commission_summary
    print(f"  Premium:                 ${summary.total_premium:,.2f}")
    print(f"  Effective rate:          {summary.effective_rate}% (VC {summary.avg_vc_rate}%)")
    print("=" * 80)

    print("\n  Exclusion breakdown:")
    for reason, count in result.exclusion_breakdown.items():
        if count:
            print(f"   {EXCLUSION_LABELS[reason]:<28} {count}")

    if result.potential_underpayments:
        print(f"\n  {len(result.potential_underpayments)} potential underpayments to investigate:")
        for d in result.potential_underpayments[:limit]:
            print(
                f"   row {d.row_number} | {d.policy_number} | {d.business_type or '?'} "
                f"{d.bundle_type.value} | expected {d.expected_vc_rate:.2%} "
                f"actual {d.actual_vc_rate:.2%} | ${d.missing_vc_dollars:,.2f}"
            )
        if len(result.potential_underpayments) > limit:
            print(f"   ... and {len(result.potential_underpayments) - limit} more")

    if result.large_cancellations.count:
        lc = result.large_cancellations
        print(
            f"\n  {lc.count} cancellations >= ${lc.threshold:,.2f}: "
            f"${lc.total_cancelled_premium:,.2f} premium, "
            f"~${lc.total_estimated_lost_commission:,.2f} commission lost"
        )

    mix = result.business_type_mix
    if mix is not None:
        if mix.largest_increase is not None:
            print(f"\n  Largest mix gain: {mix.largest_increase.business_type} "
                  f"(+{mix.largest_increase.shift_points} pts)")
        if mix.largest_decrease is not None:
            print(f"  Largest mix drop: {mix.largest_decrease.business_type} "
                  f"({mix.largest_decrease.shift_points} pts)")

    if result.warnings:
        print(f"\n  {len(result.warnings)} warnings:")
        for w in result.warnings[:limit]:
            print(f"   {w}")

# =============================================================================
# 5. COMPLETE STATEMENT AUDIT WORKFLOW
# =============================================================================

def run_statement_audit(
    current_file: str,
    rate_table_file: str,
    period_start: str,
    prior_file: Optional[str] = None,
    agency_is_elite: bool = False,
    cancellation_threshold: Decimal = Decimal("1000"),
    col_map: Optional[Dict[str, str]] = None,
) -> ValidationResult:
    """
    End-to-end reconciliation of statement CSVs.

    Args:
        current_file:            Current-period statement CSV
        rate_table_file:         Expected VC rate table CSV
        period_start:            Statement period start as YYYY-MM-DD
        prior_file:              Prior-period statement CSV (optional)
        agency_is_elite:         Agency tier flag
        cancellation_threshold:  Minimum cancelled premium to alert on
        col_map:                 Column name mapping if the CSV uses different headers
    """
    config = ReconciliationConfig(
        statement_period_start=datetime.strptime(period_start, "%Y-%m-%d").date(),
        rate_table=load_rate_table(rate_table_file),
        agency_is_elite=agency_is_elite,
        large_cancellation_threshold=cancellation_threshold,
    )
    current, load_warnings = load_statement_csv(current_file, col_map=col_map)
    prior = None
    if prior_file:
        prior, prior_warnings = load_statement_csv(prior_file, col_map=col_map)
        load_warnings.extend(f"Prior {w}" for w in prior_warnings)

    result = validate(current, prior, config=config)
    if load_warnings:
        result = replace(result, warnings=tuple(load_warnings) + result.warnings)
    print_summary(result)
    return result

# =============================================================================
# 6. EXAMPLE EXECUTION
# =============================================================================

if __name__ == "__main__":

    table = ExpectedRateTable({
        ("Homeowners", "Preferred", "renewal", "*"): "0.05",
        ("Homeowners", "Preferred", "new_business", "*"): "0.08",
        ("*", "*", "new_business", "*"): "0.08",
    })
    config = ReconciliationConfig(
        statement_period_start=date(2026, 2, 1),
        rate_table=table,
        large_cancellation_threshold=Decimal("1500"),
    )

    statement = [
        # Underpaid renewal with no exclusion -> investigate
        StatementTransaction(
            policy_number="900111222", row_number=1, agent_number="0A1234",
            transaction_type="Renewal", business_type="Homeowners", bundle_type="Preferred",
            product_raw="Homeowners", written_premium="2000", vc_amount="0",
            channel_of_bind="Agent", insured_name="SMITH, JOHN", sub_producer_code="850",
        ),
        # Non-standard auto -> legitimately excluded
        StatementTransaction(
            policy_number="900333444", row_number=2, agent_number="0A1234",
            transaction_type="New Business", business_type="Non-Standard Auto",
            bundle_type="Monoline", product_raw="Encompass Auto",
            written_premium="1000", vc_amount="0", insured_name="DOE, JANE",
        ),
        # Paid in full
        StatementTransaction(
            policy_number="900555666", row_number=3, agent_number="0A1234",
            transaction_type="New Business", business_type="Homeowners", bundle_type="Preferred",
            product_raw="Homeowners", written_premium="1500", vc_amount="120",
            insured_name="LEE, ANN", sub_producer_code="851",
        ),
        # Large cancellation
        StatementTransaction(
            policy_number="900777888", row_number=4, agent_number="0A1234",
            transaction_type="Cancellation", business_type="Homeowners", bundle_type="Standard",
            product_raw="Homeowners", written_premium="-2400", base_commission_amount="-240",
            insured_name="PARK, SAM", sub_producer_code="850",
        ),
    ]

    print_summary(validate(statement, config=config))
