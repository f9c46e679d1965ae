"""
Statement Aggregates

Read-only summaries over a statement's transactions: commission-rate
summary (and its period-over-period deltas), business-type mix shift, and
large-cancellation alerts. Every function here is pure; results are frozen.
"""

import logging
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from statement_models import ZERO, StatementTransaction, to_decimal

logger = logging.getLogger("StatementAggregates")

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def to_cents(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def percent(numerator: Decimal, denominator: Decimal) -> Decimal:
    """numerator / denominator as a percentage; 0 when the denominator is not positive."""
    if denominator <= 0:
        return ZERO
    return (numerator / denominator * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def decimal_sum(values) -> Decimal:
    return sum(values, ZERO)

# =============================================================================
# 1. COMMISSION RATE SUMMARY
# =============================================================================

@dataclass(frozen=True)
class RateBreakdown:
    transaction_count: int
    premium: Decimal
    commission: Decimal
    avg_base_rate: Decimal
    avg_vc_rate: Decimal
    effective_rate: Decimal


@dataclass(frozen=True)
class CommissionRateSummary:
    """Statement totals. Rates are premium-weighted percentages."""
    transaction_count: int
    total_premium: Decimal
    total_commissionable_premium: Decimal
    total_base_commission: Decimal
    total_vc_amount: Decimal
    total_commission: Decimal
    avg_base_rate: Decimal
    avg_vc_rate: Decimal
    effective_rate: Decimal
    new_business: Optional[RateBreakdown]


def _breakdown(transactions: Sequence[StatementTransaction]) -> RateBreakdown:
    premium = decimal_sum(tx.written_premium for tx in transactions)
    base = decimal_sum(tx.base_commission_amount for tx in transactions)
    vc = decimal_sum(tx.vc_amount for tx in transactions)
    commission = decimal_sum(tx.total_commission for tx in transactions)
    return RateBreakdown(
        transaction_count=len(transactions),
        premium=premium,
        commission=commission,
        avg_base_rate=percent(base, premium),
        avg_vc_rate=percent(vc, premium),
        effective_rate=percent(commission, premium),
    )


def summarize_commission_rates(transactions: Sequence[StatementTransaction]) -> CommissionRateSummary:
    """
    Totals and premium-weighted rates for a statement.

    Rates divide summed dollars by summed premium, so a $50,000 policy moves
    the average far more than a $500 one. The new-business block is None
    when the statement has no new-business rows.
    """
    overall = _breakdown(transactions)
    new_business_rows = [tx for tx in transactions if tx.is_new_business]
    commissionable = decimal_sum(
        tx.written_premium if tx.commissionable_premium is None else tx.commissionable_premium
        for tx in transactions
    )
    return CommissionRateSummary(
        transaction_count=overall.transaction_count,
        total_premium=overall.premium,
        total_commissionable_premium=commissionable,
        total_base_commission=decimal_sum(tx.base_commission_amount for tx in transactions),
        total_vc_amount=decimal_sum(tx.vc_amount for tx in transactions),
        total_commission=overall.commission,
        avg_base_rate=overall.avg_base_rate,
        avg_vc_rate=overall.avg_vc_rate,
        effective_rate=overall.effective_rate,
        new_business=_breakdown(new_business_rows) if new_business_rows else None,
    )


@dataclass(frozen=True)
class RateSummaryComparison:
    prior: CommissionRateSummary
    current: CommissionRateSummary
    premium_change: Decimal
    premium_change_pct: Decimal
    avg_base_rate_change: Decimal   # percentage points
    avg_vc_rate_change: Decimal
    effective_rate_change: Decimal


def compare_rate_summaries(
    prior: CommissionRateSummary,
    current: CommissionRateSummary,
) -> RateSummaryComparison:
    premium_change = current.total_premium - prior.total_premium
    return RateSummaryComparison(
        prior=prior,
        current=current,
        premium_change=premium_change,
        premium_change_pct=percent(premium_change, prior.total_premium),
        avg_base_rate_change=current.avg_base_rate - prior.avg_base_rate,
        avg_vc_rate_change=current.avg_vc_rate - prior.avg_vc_rate,
        effective_rate_change=current.effective_rate - prior.effective_rate,
    )

# =============================================================================
# 2. BUSINESS TYPE MIX
# =============================================================================

@dataclass(frozen=True)
class BusinessTypeShare:
    business_type: str
    prior_premium: Decimal
    current_premium: Decimal
    prior_pct: Decimal
    current_pct: Decimal
    shift_points: Decimal


@dataclass(frozen=True)
class BusinessTypeMixComparison:
    prior_total_premium: Decimal
    current_total_premium: Decimal
    shares: Tuple[BusinessTypeShare, ...]
    largest_increase: Optional[BusinessTypeShare]
    largest_decrease: Optional[BusinessTypeShare]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(share) for share in self.shares])


def premium_by_business_type(transactions: Sequence[StatementTransaction]) -> Dict[str, Decimal]:
    frame = pd.DataFrame({
        "business_type": [tx.business_type or "Unknown" for tx in transactions],
        "premium": [tx.written_premium for tx in transactions],
    })
    if frame.empty:
        return {}
    grouped = frame.groupby("business_type", sort=True)["premium"].agg(decimal_sum)
    return {str(k): v for k, v in grouped.items()}


def compare_business_type_mix(
    prior: Sequence[StatementTransaction],
    current: Sequence[StatementTransaction],
) -> Optional[BusinessTypeMixComparison]:
    """
    Share of premium per business type in each period and the shift between
    them. Returns None when either period has no premium to compare against;
    reporting every type as a 100-point shift would be misleading.
    """
    if not prior or not current:
        logger.info("Business type mix skipped: prior or current period is empty")
        return None

    prior_mix = premium_by_business_type(prior)
    current_mix = premium_by_business_type(current)
    prior_total = decimal_sum(prior_mix.values())
    current_total = decimal_sum(current_mix.values())
    if prior_total <= 0 or current_total <= 0:
        logger.warning("Business type mix skipped: a period has no positive premium")
        return None

    shares: List[BusinessTypeShare] = []
    for business_type in sorted(set(prior_mix) | set(current_mix)):
        prior_premium = prior_mix.get(business_type, ZERO)
        current_premium = current_mix.get(business_type, ZERO)
        prior_pct = percent(prior_premium, prior_total)
        current_pct = percent(current_premium, current_total)
        shares.append(BusinessTypeShare(
            business_type=business_type,
            prior_premium=prior_premium,
            current_premium=current_premium,
            prior_pct=prior_pct,
            current_pct=current_pct,
            shift_points=current_pct - prior_pct,
        ))
    shares.sort(key=lambda s: s.current_pct, reverse=True)

    increase = max(shares, key=lambda s: s.shift_points)
    decrease = min(shares, key=lambda s: s.shift_points)
    return BusinessTypeMixComparison(
        prior_total_premium=prior_total,
        current_total_premium=current_total,
        shares=tuple(shares),
        largest_increase=increase if increase.shift_points > 0 else None,
        largest_decrease=decrease if decrease.shift_points < 0 else None,
    )

# =============================================================================
# 3. LARGE CANCELLATIONS
# =============================================================================

@dataclass(frozen=True)
class LargeCancellation:
    policy_number: str
    row_number: int
    insured_name: str
    business_type: str
    product_raw: str
    cancelled_premium: Decimal
    effective_rate: Decimal          # ratio the policy had been paid at
    estimated_lost_commission: Decimal


@dataclass(frozen=True)
class LargeCancellationSummary:
    threshold: Decimal
    cancellations: Tuple[LargeCancellation, ...]
    total_cancelled_premium: Decimal
    total_estimated_lost_commission: Decimal

    @property
    def count(self) -> int:
        return len(self.cancellations)


def _statement_effective_ratio(transactions: Sequence[StatementTransaction]) -> Decimal:
    written = [tx for tx in transactions if not tx.is_cancellation]
    premium = decimal_sum(tx.written_premium for tx in written)
    if premium <= 0:
        return ZERO
    return decimal_sum(tx.total_commission for tx in written) / premium


def detect_large_cancellations(
    transactions: Sequence[StatementTransaction],
    threshold: Decimal,
) -> LargeCancellationSummary:
    """
    Cancellations whose premium reversal is at least `threshold` dollars.

    Lost commission is the cancelled premium at the rate the policy itself
    was paid (its reversed commission over its reversed premium). Rows that
    carry no commission reversal fall back to the statement's effective rate.
    """
    threshold = to_decimal(threshold)
    if threshold <= 0:
        raise ValueError("Cancellation threshold must be positive")

    fallback_ratio = None
    flagged: List[LargeCancellation] = []
    for tx in transactions:
        if not tx.is_cancellation:
            continue
        cancelled = abs(tx.written_premium)
        if cancelled < threshold:
            continue
        commission = abs(tx.total_commission)
        if commission > 0:
            ratio = commission / cancelled
        else:
            if fallback_ratio is None:
                fallback_ratio = _statement_effective_ratio(transactions)
            ratio = fallback_ratio
        flagged.append(LargeCancellation(
            policy_number=tx.policy_number,
            row_number=tx.row_number,
            insured_name=tx.insured_name,
            business_type=tx.business_type,
            product_raw=tx.product_raw,
            cancelled_premium=cancelled,
            effective_rate=ratio,
            estimated_lost_commission=to_cents(cancelled * ratio),
        ))

    flagged.sort(key=lambda c: c.cancelled_premium, reverse=True)
    if flagged:
        logger.info(f"{len(flagged)} cancellations at or above ${threshold:,.2f}")
    return LargeCancellationSummary(
        threshold=threshold,
        cancellations=tuple(flagged),
        total_cancelled_premium=decimal_sum(c.cancelled_premium for c in flagged),
        total_estimated_lost_commission=decimal_sum(c.estimated_lost_commission for c in flagged),
    )
