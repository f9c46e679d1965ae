"""
VC Exclusion Rules

When the carrier paid less variable compensation than the rate table says it
should have, the shortfall is either legitimate (one of the carrier's
documented VC exclusions applies) or needs investigating. Each exclusion is a
separate rule object; DEFAULT_RULES fixes the order in which they are
checked, and the first rule that matches decides the reason.

Usage:
    reason = classify(tx, config)
    if reason is ExclusionReason.UNKNOWN_EXCLUSION:
        ...  # potential underpayment
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Sequence

from reconciliation_config import ReconciliationConfig, Tenure, determine_tenure, term_length_months
from statement_models import BundleType, StatementTransaction, TransactionType, matches_any

logger = logging.getLogger("ExclusionRules")

# =============================================================================
# 1. EXCLUSION REASONS (declared in priority order)
# =============================================================================

class ExclusionReason(str, Enum):
    EXCLUDED_DIRECT_BOUND = "EXCLUDED_DIRECT_BOUND"
    EXCLUDED_FIRST_RENEWAL_6MO = "EXCLUDED_FIRST_RENEWAL_6MO"
    EXCLUDED_SERVICE_FEE = "EXCLUDED_SERVICE_FEE"
    EXCLUDED_PLUS_POLICY = "EXCLUDED_PLUS_POLICY"
    EXCLUDED_NONSTANDARD_AUTO = "EXCLUDED_NONSTANDARD_AUTO"
    EXCLUDED_PRE_2023_POLICY = "EXCLUDED_PRE_2023_POLICY"
    EXCLUDED_JUA_JUP = "EXCLUDED_JUA_JUP"
    EXCLUDED_FACILITY_CEDED = "EXCLUDED_FACILITY_CEDED"
    EXCLUDED_MONOLINE_RENEWAL = "EXCLUDED_MONOLINE_RENEWAL"
    EXCLUDED_NB_ITEM_ADDITION = "EXCLUDED_NB_ITEM_ADDITION"
    EXCLUDED_ENDORSEMENT_ADD_DROP = "EXCLUDED_ENDORSEMENT_ADD_DROP"
    UNKNOWN_EXCLUSION = "UNKNOWN_EXCLUSION"
    NONE = "NONE"

    @property
    def is_exclusion(self) -> bool:
        return self not in (ExclusionReason.UNKNOWN_EXCLUSION, ExclusionReason.NONE)


EXCLUSION_LABELS: Dict[ExclusionReason, str] = {
    ExclusionReason.EXCLUDED_DIRECT_BOUND:          "Direct/Web Bound",
    ExclusionReason.EXCLUDED_FIRST_RENEWAL_6MO:     "First Renewal (6-mo)",
    ExclusionReason.EXCLUDED_SERVICE_FEE:           "Service Fee Policy",
    ExclusionReason.EXCLUDED_PLUS_POLICY:           "Plus Policy",
    ExclusionReason.EXCLUDED_NONSTANDARD_AUTO:      "Non-Standard Auto",
    ExclusionReason.EXCLUDED_PRE_2023_POLICY:       "Pre-2023 Policy",
    ExclusionReason.EXCLUDED_JUA_JUP:               "JUA/JUP Policy",
    ExclusionReason.EXCLUDED_FACILITY_CEDED:        "Facility Ceded",
    ExclusionReason.EXCLUDED_MONOLINE_RENEWAL:      "Monoline Renewal",
    ExclusionReason.EXCLUDED_NB_ITEM_ADDITION:      "NB Item Addition",
    ExclusionReason.EXCLUDED_ENDORSEMENT_ADD_DROP:  "Add/Drop Endorsement",
    ExclusionReason.UNKNOWN_EXCLUSION:              "Unknown - Investigate",
    ExclusionReason.NONE:                           "No Exclusion",
}

UNKNOWN_EXCLUSION_NOTE = (
    "No exclusion reason detected - POTENTIAL UNDERPAYMENT. "
    "Verify channel of bind and policy type in source data."
)

# =============================================================================
# 2. DETECTION PATTERNS
# =============================================================================

DIRECT_BOUND_PATTERNS = [
    re.compile(p, re.I)
    for p in (
        r"\bCCC\b", r"800-ALLSTATE", r"1-800", r"ALLSTATE\.COM", r"WEB ?BOUND",
        r"\bDIRECT\b", r"\bONLINE\b", r"\bWEB\b", r"AGENCY ROUTED", r"CUSTOMER CONTACT",
    )
]
NON_STANDARD_AUTO_PATTERNS = [
    re.compile(p, re.I) for p in (r"NON[- ]?STANDARD", r"\bNSA\b", r"\bENCOMPASS\b")
]
JUA_JUP_PATTERNS = [
    re.compile(p, re.I) for p in (r"\bJUA\b", r"\bJUP\b", r"JOINT UNDERWRITING", r"ASSIGNED RISK")
]
FACILITY_PATTERNS = [re.compile(p, re.I) for p in (r"\bFACILITY\b", r"\bCEDED\b")]

# =============================================================================
# 3. PREDICATES
# =============================================================================

Predicate = Callable[[StatementTransaction, ReconciliationConfig], bool]


def is_direct_bound(tx: StatementTransaction, config: ReconciliationConfig) -> bool:
    return matches_any(DIRECT_BOUND_PATTERNS, tx.channel_of_bind)


def is_first_renewal_6mo(tx: StatementTransaction, config: ReconciliationConfig) -> bool:
    """6-month auto on its first renewal earns NB-style VC, and only for Elite agencies."""
    if config.agency_is_elite or not tx.is_renewal:
        return False
    if term_length_months(tx) != 6:
        return False
    return determine_tenure(tx, config.statement_period_start) == Tenure.FIRST_RENEWAL


def is_service_fee(tx: StatementTransaction, config: ReconciliationConfig) -> bool:
    return tx.is_service_fee


def is_plus_policy(tx: StatementTransaction, config: ReconciliationConfig) -> bool:
    return tx.is_plus_policy


def is_non_standard_auto(tx: StatementTransaction, config: ReconciliationConfig) -> bool:
    return matches_any(NON_STANDARD_AUTO_PATTERNS, tx.business_type, tx.product_category)


def predates_vc_program(tx: StatementTransaction, config: ReconciliationConfig) -> bool:
    effective = tx.original_policy_effective_date
    return effective is not None and effective < config.vc_program_start


def is_jua_jup(tx: StatementTransaction, config: ReconciliationConfig) -> bool:
    return matches_any(JUA_JUP_PATTERNS, tx.channel_of_bind, tx.product_raw)


def is_facility_ceded(tx: StatementTransaction, config: ReconciliationConfig) -> bool:
    return matches_any(FACILITY_PATTERNS, tx.channel_of_bind, tx.product_raw)


def is_monoline_renewal(tx: StatementTransaction, config: ReconciliationConfig) -> bool:
    return tx.is_renewal and tx.bundle_type == BundleType.MONOLINE


def is_nb_item_addition(tx: StatementTransaction, config: ReconciliationConfig) -> bool:
    return tx.is_new_business and tx.is_item_addition


def is_add_drop_endorsement(tx: StatementTransaction, config: ReconciliationConfig) -> bool:
    return tx.transaction_type == TransactionType.ENDORSEMENT and tx.is_add_drop_endorsement

# =============================================================================
# 4. RULE CHAIN
# =============================================================================

@dataclass(frozen=True)
class ExclusionRule:
    reason: ExclusionReason
    note: str
    predicate: Predicate

    def applies(self, tx: StatementTransaction, config: ReconciliationConfig) -> bool:
        return config.rule_enabled(self.reason) and self.predicate(tx, config)


DEFAULT_RULES: Sequence[ExclusionRule] = (
    ExclusionRule(
        ExclusionReason.EXCLUDED_DIRECT_BOUND,
        "Policy bound via 1-800 / web / customer contact center - excluded from agent VC",
        is_direct_bound,
    ),
    ExclusionRule(
        ExclusionReason.EXCLUDED_FIRST_RENEWAL_6MO,
        "First renewal of 6-month auto - uses NB VC rates (Elite only), not renewal VC rates",
        is_first_renewal_6mo,
    ),
    ExclusionRule(
        ExclusionReason.EXCLUDED_SERVICE_FEE,
        "Service Fee policy - excluded from variable compensation",
        is_service_fee,
    ),
    ExclusionRule(
        ExclusionReason.EXCLUDED_PLUS_POLICY,
        "Plus Policy - excluded from variable compensation",
        is_plus_policy,
    ),
    ExclusionRule(
        ExclusionReason.EXCLUDED_NONSTANDARD_AUTO,
        "Non-Standard Auto is excluded from all variable compensation",
        is_non_standard_auto,
    ),
    ExclusionRule(
        ExclusionReason.EXCLUDED_PRE_2023_POLICY,
        "Original policy effective date predates the VC program start",
        predates_vc_program,
    ),
    ExclusionRule(
        ExclusionReason.EXCLUDED_JUA_JUP,
        "JUA/JUP/Assigned Risk policy - excluded from variable compensation",
        is_jua_jup,
    ),
    ExclusionRule(
        ExclusionReason.EXCLUDED_FACILITY_CEDED,
        "Facility (ceded) premium - excluded from variable compensation",
        is_facility_ceded,
    ),
    ExclusionRule(
        ExclusionReason.EXCLUDED_MONOLINE_RENEWAL,
        "Monoline renewals do not receive renewal VC - only Bundled and Preferred Bundled qualify",
        is_monoline_renewal,
    ),
    ExclusionRule(
        ExclusionReason.EXCLUDED_NB_ITEM_ADDITION,
        "New item (vehicle/coverage) added to an existing policy - NB VC applies only to new policies",
        is_nb_item_addition,
    ),
    ExclusionRule(
        ExclusionReason.EXCLUDED_ENDORSEMENT_ADD_DROP,
        "Add/drop item endorsement premium is excluded until the next renewal",
        is_add_drop_endorsement,
    ),
)

_NOTES: Dict[ExclusionReason, str] = {rule.reason: rule.note for rule in DEFAULT_RULES}
_NOTES[ExclusionReason.UNKNOWN_EXCLUSION] = UNKNOWN_EXCLUSION_NOTE
_NOTES[ExclusionReason.NONE] = ""


def exclusion_note(reason: ExclusionReason) -> str:
    return _NOTES.get(reason, "")


def classify(
    tx: StatementTransaction,
    config: ReconciliationConfig,
    rate_gap: bool = True,
    rules: Optional[Sequence[ExclusionRule]] = None,
) -> ExclusionReason:
    """
    Return the first exclusion whose rule matches the transaction.

    With no match the result is UNKNOWN_EXCLUSION when a rate gap exists and
    NONE otherwise. Never raises: a rule that errors on odd data is logged
    and treated as not matching.
    """
    for rule in DEFAULT_RULES if rules is None else rules:
        try:
            if rule.applies(tx, config):
                return rule.reason
        except Exception as e:
            logger.error(
                f"Rule {rule.reason.value} failed on policy {tx.policy_number} "
                f"(row {tx.row_number}): {e}"
            )
    return ExclusionReason.UNKNOWN_EXCLUSION if rate_gap else ExclusionReason.NONE
