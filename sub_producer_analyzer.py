"""
Sub-Producer Mix Analyzer

Breaks a statement's first-term business down by sub-producer code: how
many households each producer wrote in each bundle tier, the tier
percentages, and the producer's net premium and commission, with premium
split by bundle tier and by product. Households are netted first, so an
insured who wrote and cancelled in the same statement contributes nothing.

First-term business is new business, rows whose raw transaction type says
"First Term", and rows on policies still inside their first term as of the
statement period. Renewals are left out; chargebacks (negative premium)
always count.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from reconciliation_config import months_between, term_length_months
from statement_aggregates import decimal_sum, percent
from statement_models import ZERO, BundleType, StatementTransaction

logger = logging.getLogger("SubProducerAnalyzer")

# Best tier first; a household written across tiers counts once, in its best tier.
TIERS: Tuple[BundleType, ...] = (BundleType.PREFERRED, BundleType.STANDARD, BundleType.MONOLINE)
TIER_RANK: Dict[BundleType, int] = {tier: rank for rank, tier in enumerate(TIERS)}

AGENCY_CODE = ""

CREDIT = "credit"
CHARGEBACK = "chargeback"
NETTED_OUT = "netted_out"


@dataclass(frozen=True)
class TierShare:
    tier: BundleType
    households: int
    percentage: Decimal


@dataclass(frozen=True)
class PremiumBreakdown:
    """Premium under one bundle tier or product, split by household side."""
    label: str
    premium_written: Decimal
    premium_chargebacks: Decimal
    net_premium: Decimal
    credit_count: int
    chargeback_count: int


@dataclass(frozen=True)
class SubProducerMetrics:
    code: str
    display_name: str
    transaction_count: int
    household_count: int
    tiers: Tuple[TierShare, ...]
    premium_written: Decimal        # households with positive net premium
    premium_chargebacks: Decimal    # households with negative net premium, as a positive amount
    net_premium: Decimal
    net_commission: Decimal
    credit_count: int
    chargeback_count: int
    effective_rate: Decimal
    by_bundle: Tuple[PremiumBreakdown, ...] = ()
    by_product: Tuple[PremiumBreakdown, ...] = ()

    def tier(self, bundle_type: BundleType) -> TierShare:
        for share in self.tiers:
            if share.tier == bundle_type:
                return share
        return TierShare(bundle_type, 0, ZERO)

    def product(self, label: str) -> Optional[PremiumBreakdown]:
        return next((b for b in self.by_product if b.label == label), None)


@dataclass(frozen=True)
class SubProducerSummary:
    producers: Tuple[SubProducerMetrics, ...]
    totals: Optional[SubProducerMetrics]

    @property
    def producer_count(self) -> int:
        return len(self.producers)

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for p in self.producers:
            row = {
                "code": p.code,
                "display_name": p.display_name,
                "households": p.household_count,
                "net_premium": p.net_premium,
                "net_commission": p.net_commission,
                "effective_rate": p.effective_rate,
            }
            for share in p.tiers:
                row[f"{share.tier.value.lower()}_households"] = share.households
                row[f"{share.tier.value.lower()}_pct"] = share.percentage
            rows.append(row)
        return pd.DataFrame(rows)


def producer_display_name(code: str, team_members: Optional[Iterable[Mapping[str, str]]] = None) -> str:
    """Team member name for a sub-producer code, or a generic label."""
    if not code:
        return "Agency"
    for member in team_members or []:
        if str(member.get("sub_producer_code") or "").strip() == code:
            return member.get("name") or f"Sub-Producer: {code}"
    return f"Sub-Producer: {code}"


def household_tier(tx: StatementTransaction) -> BundleType:
    # statements leave the bundle blank on single-policy households
    if tx.bundle_type == BundleType.UNKNOWN:
        return BundleType.MONOLINE
    return tx.bundle_type


def is_first_term(tx: StatementTransaction, period_start: Optional[date]) -> bool:
    """
    Whether a row counts toward the producer mix.

    Without a period start only explicit markers (new business, "First
    Term") and chargebacks count.
    """
    if tx.written_premium < 0:
        return True
    raw = tx.transaction_type_raw.lower()
    if "first term" in raw and "first renewal" not in raw:
        return True
    if tx.is_new_business:
        return True
    if tx.is_renewal:
        return False
    effective = tx.original_policy_effective_date
    if period_start is None or effective is None:
        return False
    # 6-month terms reach back 5 months, 12-month terms 11
    return months_between(effective, period_start) < term_length_months(tx)


def _household_side(net_premium: Decimal) -> str:
    if abs(net_premium) < Decimal("0.01"):
        return NETTED_OUT
    return CREDIT if net_premium > 0 else CHARGEBACK


def _natural_key(code: str) -> Tuple[bool, List]:
    parts = re.split(r"(\d+)", code)
    return code != AGENCY_CODE, [int(p) if p.isdigit() else p.lower() for p in parts]


def premium_breakdown(rows: pd.DataFrame, column: str) -> Tuple[PremiumBreakdown, ...]:
    """
    Premium per value of `column`. Rows of credit households add to written
    premium, rows of chargeback households to chargebacks; rows of netted-out
    households are ignored. Labels with no activity are dropped.
    """
    breakdowns: List[PremiumBreakdown] = []
    for label, group in rows.groupby(column, sort=True):
        credits = group[group["side"] == CREDIT]
        chargebacks = group[group["side"] == CHARGEBACK]
        written = decimal_sum(credits["premium"])
        charged = decimal_sum(abs(p) for p in chargebacks["premium"])
        if written <= 0 and charged <= 0:
            continue
        breakdowns.append(PremiumBreakdown(
            label=str(label),
            premium_written=written,
            premium_chargebacks=charged,
            net_premium=written - charged,
            credit_count=len(credits),
            chargeback_count=len(chargebacks),
        ))
    breakdowns.sort(key=lambda b: b.premium_written, reverse=True)
    return tuple(breakdowns)


def _producer_metrics(
    code: str,
    display_name: str,
    households: pd.DataFrame,
    rows: pd.DataFrame,
) -> SubProducerMetrics:
    household_count = len(households)
    counts = {tier: int((households["tier_rank"] == TIER_RANK[tier]).sum()) for tier in TIERS}
    tiers = tuple(
        TierShare(tier, counts[tier], percent(Decimal(counts[tier]), Decimal(household_count)))
        for tier in TIERS
    )

    premium_written = premium_chargebacks = ZERO
    commission_earned = commission_chargebacks = ZERO
    credit_count = chargeback_count = 0
    for row in households.itertuples(index=False):
        if row.side == CREDIT:
            premium_written += row.net_premium
            commission_earned += row.net_commission
            credit_count += 1
        elif row.side == CHARGEBACK:
            premium_chargebacks += abs(row.net_premium)
            commission_chargebacks += abs(row.net_commission)
            chargeback_count += 1

    net_premium = premium_written - premium_chargebacks
    net_commission = commission_earned - commission_chargebacks
    return SubProducerMetrics(
        code=code,
        display_name=display_name,
        transaction_count=int(households["transactions"].sum()),
        household_count=household_count,
        tiers=tiers,
        premium_written=premium_written,
        premium_chargebacks=premium_chargebacks,
        net_premium=net_premium,
        net_commission=net_commission,
        credit_count=credit_count,
        chargeback_count=chargeback_count,
        effective_rate=percent(net_commission, net_premium),
        by_bundle=premium_breakdown(rows, "bundle"),
        by_product=premium_breakdown(rows, "product"),
    )


def analyze_sub_producers(
    transactions: Sequence[StatementTransaction],
    team_members: Optional[Iterable[Mapping[str, str]]] = None,
    period_start: Optional[date] = None,
) -> SubProducerSummary:
    """
    Group a statement's first-term business by sub-producer code and measure
    each producer's bundle-tier mix. Transactions with no code belong to the
    agency itself. Producers with no first-term rows never appear in the
    result.
    """
    first_term = [tx for tx in transactions if is_first_term(tx, period_start)]
    if transactions:
        logger.info(
            f"Sub-producer first-term filter: kept {len(first_term)} of {len(transactions)} transactions"
        )
    if not first_term:
        return SubProducerSummary(producers=(), totals=None)
    team_members = list(team_members or [])

    frame = pd.DataFrame([
        {
            "code": tx.sub_producer_code,
            "household": tx.household_key,
            "tier_rank": TIER_RANK[household_tier(tx)],
            "bundle": household_tier(tx).value,
            "product": tx.product_category or "Other",
            "premium": tx.written_premium,
            "commission": tx.total_commission,
        }
        for tx in first_term
    ])
    households = frame.groupby(["code", "household"], sort=False).agg(
        tier_rank=pd.NamedAgg(column="tier_rank", aggfunc="min"),
        net_premium=pd.NamedAgg(column="premium", aggfunc=decimal_sum),
        net_commission=pd.NamedAgg(column="commission", aggfunc=decimal_sum),
        transactions=pd.NamedAgg(column="premium", aggfunc="count"),
    ).reset_index()
    households["side"] = [_household_side(net) for net in households["net_premium"]]

    sides = {
        (code, household): side
        for code, household, side in zip(households["code"], households["household"], households["side"])
    }
    frame["side"] = [sides[(code, household)] for code, household in zip(frame["code"], frame["household"])]

    producers = [
        _producer_metrics(code, producer_display_name(code, team_members), group, frame[frame["code"] == code])
        for code, group in households.groupby("code", sort=False)
    ]
    producers.sort(key=lambda p: _natural_key(p.code))

    totals = _producer_metrics("TOTAL", "All Producers", households, frame)
    logger.info(
        f"Sub-producer mix: {len(producers)} producers, {totals.household_count} households"
    )
    return SubProducerSummary(producers=tuple(producers), totals=totals)
