"""
Reconciliation Configuration

Everything agency- or program-specific that the reconciliation engine needs
is passed in through a ReconciliationConfig: the expected VC rate table, the
analysis anchor date, the agency tier, and the analyst's cancellation
threshold. The engine itself never reads a clock or embeds agency rates.

Usage:
    table = load_rate_table("vc_rates_2026.csv")
    config = ReconciliationConfig(
        statement_period_start=date(2026, 2, 1),
        rate_table=table,
        agency_is_elite=False,
    )
"""

import itertools
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Tuple

import pandas as pd

from statement_models import (
    BundleType,
    StatementTransaction,
    TransactionType,
    normalize_bundle_type,
    resolve_transaction_type,
    to_decimal,
)

logger = logging.getLogger("ReconciliationConfig")

# VC applies only to policies originally effective on or after this date.
VC_PROGRAM_START = date(2023, 1, 1)

DEFAULT_RATE_EPSILON = Decimal("0.0005")
DEFAULT_LARGE_CANCELLATION_THRESHOLD = Decimal("1000")

WILDCARD = "*"

# =============================================================================
# 1. POLICY TENURE
# =============================================================================

class Tenure(str, Enum):
    FIRST_TERM = "first_term"
    FIRST_RENEWAL = "first_renewal"
    RENEWAL = "renewal"
    UNKNOWN = "unknown"


def term_length_months(tx: StatementTransaction) -> int:
    if tx.term_months:
        return tx.term_months
    return 6 if tx.is_auto else 12


def months_between(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


def determine_tenure(tx: StatementTransaction, period_start: date) -> Tenure:
    """
    Which term of the policy this transaction belongs to.

    An explicit renewal number wins; otherwise the number of whole terms
    between the original effective date and the statement period decides.
    """
    if tx.renewal_number is not None:
        if tx.renewal_number <= 0:
            return Tenure.FIRST_TERM
        return Tenure.FIRST_RENEWAL if tx.renewal_number == 1 else Tenure.RENEWAL

    if tx.is_new_business:
        return Tenure.FIRST_TERM

    if "FIRST RENEWAL" in tx.transaction_type_raw.upper():
        return Tenure.FIRST_RENEWAL

    if tx.original_policy_effective_date is not None:
        elapsed = months_between(tx.original_policy_effective_date, period_start)
        terms = max(elapsed, 0) // term_length_months(tx)
        if terms == 0:
            return Tenure.FIRST_RENEWAL if tx.is_renewal else Tenure.FIRST_TERM
        return Tenure.FIRST_RENEWAL if terms == 1 else Tenure.RENEWAL

    if tx.is_renewal:
        return Tenure.RENEWAL
    return Tenure.UNKNOWN

# =============================================================================
# 2. EXPECTED VC RATE TABLE
# =============================================================================

RateKey = Tuple[str, str, str, str]


def _normalize_rate(value: Any) -> Decimal:
    # "0.5%" is always a percentage; a bare 8 means 8%, a bare 0.08 is a ratio
    if isinstance(value, str) and "%" in value:
        return to_decimal(value.replace("%", "")) / 100
    rate = to_decimal(value)
    return rate / 100 if rate > 1 else rate


def _key_part(value: Any, kind: str) -> str:
    text = str(value if value is not None else "").strip()
    if text in ("", WILDCARD) or text.lower() == "nan":
        return WILDCARD
    if kind == "bundle_type":
        return normalize_bundle_type(text).value.lower()
    if kind == "transaction_type":
        return resolve_transaction_type(text).value
    if kind == "tenure":
        return Tenure(text.lower().replace(" ", "_").replace("-", "_")).value
    return text.lower()


class ExpectedRateTable:
    """
    Expected VC rates keyed by (business_type, bundle_type, transaction_type,
    tenure). Any key part may be "*"; the entry with the fewest wildcards
    wins, earlier key parts breaking ties. A missing entry means no VC is
    owed.
    """

    KEY_FIELDS = ("business_type", "bundle_type", "transaction_type", "tenure")

    def __init__(self, rates: Optional[Mapping[RateKey, Any]] = None):
        self._rates: Dict[RateKey, Decimal] = {}
        for key, rate in (rates or {}).items():
            normalized = tuple(_key_part(part, kind) for part, kind in zip(key, self.KEY_FIELDS))
            self._rates[normalized] = _normalize_rate(rate)

    def __len__(self) -> int:
        return len(self._rates)

    @classmethod
    def from_records(cls, records: Iterable[Mapping[str, Any]]) -> "ExpectedRateTable":
        rates: Dict[RateKey, Any] = {}
        for record in records:
            key = tuple(record.get(name, WILDCARD) for name in cls.KEY_FIELDS)
            rates[key] = record.get("rate", 0)
        return cls(rates)

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "ExpectedRateTable":
        return cls.from_records(df.to_dict(orient="records"))

    def lookup(
        self,
        business_type: str,
        bundle_type: BundleType,
        transaction_type: TransactionType,
        tenure: Tenure,
    ) -> Optional[Decimal]:
        actual = (
            _key_part(business_type, "business_type"),
            bundle_type.value.lower(),
            transaction_type.value,
            tenure.value,
        )
        candidates = sorted(
            itertools.product(*[(part, WILDCARD) for part in actual]),
            key=lambda key: (sum(p == WILDCARD for p in key), [p == WILDCARD for p in key]),
        )
        for key in candidates:
            if key in self._rates:
                return self._rates[key]
        return None

    def expected_rate(self, tx: StatementTransaction, tenure: Tenure) -> Tuple[Decimal, str]:
        """Return (rate, note) for a transaction; unmapped combinations yield 0."""
        rate = self.lookup(tx.business_type, tx.bundle_type, tx.transaction_type, tenure)
        label = tx.business_type or "unknown business type"
        if rate is None:
            return Decimal("0"), (
                f"No VC rate configured for {label} / {tx.bundle_type.value} / "
                f"{tx.transaction_type.value} / {tenure.value}"
            )
        return rate, f"{tenure.value.replace('_', ' ').title()} {tx.bundle_type.value} rate for {label}"


def load_rate_table(filepath: str) -> ExpectedRateTable:
    """
    Load the expected VC rate table from CSV.
    Expected columns: business_type, bundle_type, transaction_type, tenure, rate
    (blank or "*" key cells match anything).
    """
    df = pd.read_csv(filepath, dtype=str, keep_default_na=False)
    table = ExpectedRateTable.from_frame(df)
    logger.info(f"Loaded {len(table)} expected VC rates from {filepath}")
    return table

# =============================================================================
# 3. RUN CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class ReconciliationConfig:
    statement_period_start: date
    rate_table: ExpectedRateTable = field(default_factory=ExpectedRateTable)
    agency_is_elite: bool = False
    vc_program_start: date = VC_PROGRAM_START
    rate_epsilon: Decimal = DEFAULT_RATE_EPSILON
    large_cancellation_threshold: Decimal = DEFAULT_LARGE_CANCELLATION_THRESHOLD
    disabled_rules: FrozenSet[str] = frozenset()
    aap_level: str = ""
    state: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.statement_period_start, date):
            raise TypeError("statement_period_start must be a date")
        object.__setattr__(self, "rate_epsilon", to_decimal(self.rate_epsilon))
        object.__setattr__(
            self, "large_cancellation_threshold", to_decimal(self.large_cancellation_threshold)
        )
        object.__setattr__(self, "disabled_rules", frozenset(self.disabled_rules))
        if self.rate_epsilon < 0:
            raise ValueError("rate_epsilon cannot be negative")
        if self.large_cancellation_threshold <= 0:
            raise ValueError("large_cancellation_threshold must be positive")

    def with_overrides(self, **changes: Any) -> "ReconciliationConfig":
        """Copy with some settings changed (e.g. a new cancellation threshold)."""
        return replace(self, **changes)

    def rule_enabled(self, reason: str) -> bool:
        return reason not in self.disabled_rules
