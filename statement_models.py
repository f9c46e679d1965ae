"""
Statement Transaction Model

Normalized shape of one carrier commission-statement row, plus the helpers
that turn loosely-typed statement values (currency strings, raw transaction
codes, bundle labels) into the values the reconciliation engine works with.

Usage:
    df = pd.read_csv("statement_2026_02.csv")
    transactions, warnings = transactions_from_frame(df)
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

logger = logging.getLogger("StatementModels")

ZERO = Decimal("0")

# =============================================================================
# 1. VALUE PARSING
# =============================================================================

def to_decimal(value: Any) -> Decimal:
    """Parse a statement amount ("$1,234.56", "(12.00)", 9.5, None) to Decimal.

    Anything unparseable is read as zero so a single bad cell never aborts
    a statement run.
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    if isinstance(value, (int, float)):
        if pd.isna(value) or value in (float("inf"), float("-inf")):
            return ZERO
        return Decimal(str(value))

    text = str(value).strip().replace("$", "").replace(",", "")
    if not text:
        return ZERO
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1]
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return ZERO
    if not parsed.is_finite():
        return ZERO
    return -parsed if negative else parsed


def to_date(value: Any) -> Optional[date]:
    """Parse MM/YYYY, MM/DD/YYYY, ISO strings, datetimes and Timestamps."""
    if value is None or value is pd.NaT:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, float) and pd.isna(value):
        return None

    text = str(value).strip()
    if not text:
        return None
    month_year = re.match(r"^(\d{1,2})/(\d{4})$", text)
    if month_year:
        month, year = int(month_year.group(1)), int(month_year.group(2))
        if 1 <= month <= 12:
            return date(year, month, 1)
        return None

    parsed = pd.to_datetime(text, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date()


def to_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().upper() in ("TRUE", "1", "YES", "Y", "X")


def _optional_int(value: Any) -> Optional[int]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    try:
        return int(float(str(value).strip()))
    except (ValueError, OverflowError):
        return None

# =============================================================================
# 2. TRANSACTION TYPE MAPPING
# =============================================================================

class TransactionType(str, Enum):
    NEW_BUSINESS = "new_business"
    RENEWAL = "renewal"
    ENDORSEMENT = "endorsement"
    CANCELLATION = "cancellation"
    REINSTATEMENT = "reinstatement"
    OTHER = "other"


TRANSACTION_TYPE_EXACT: Dict[str, TransactionType] = {
    "NEW BUSINESS":        TransactionType.NEW_BUSINESS,
    "NEWBUSINESS":         TransactionType.NEW_BUSINESS,
    "NEW":                 TransactionType.NEW_BUSINESS,
    "NB":                  TransactionType.NEW_BUSINESS,
    "POLICIES ISSUED":     TransactionType.NEW_BUSINESS,
    "COVERAGE ISSUED":     TransactionType.NEW_BUSINESS,
    "RENEWAL":             TransactionType.RENEWAL,
    "RENEW":               TransactionType.RENEWAL,
    "RN":                  TransactionType.RENEWAL,
    "FIRST RENEWAL TERM":  TransactionType.RENEWAL,
    "ENDORSEMENT":         TransactionType.ENDORSEMENT,
    "END":                 TransactionType.ENDORSEMENT,
    "CHANGES":             TransactionType.ENDORSEMENT,
    "POLICY CHANGE":       TransactionType.ENDORSEMENT,
    "CANCELLATION":        TransactionType.CANCELLATION,
    "CANCEL":              TransactionType.CANCELLATION,
    "CX":                  TransactionType.CANCELLATION,
    "REINSTATEMENT":       TransactionType.REINSTATEMENT,
    "REINSTATE":           TransactionType.REINSTATEMENT,
}

# Checked in order; cancellation wording wins over the line it cancels.
TRANSACTION_TYPE_PATTERNS: List[Tuple[re.Pattern, TransactionType]] = [
    (re.compile(r"CANC|^CX\b|CHARGE ?BACK"),             TransactionType.CANCELLATION),
    (re.compile(r"REINST"),                              TransactionType.REINSTATEMENT),
    (re.compile(r"RENEW"),                               TransactionType.RENEWAL),
    (re.compile(r"^NEW\b|NEW BUSINESS|NEW POLICY"),      TransactionType.NEW_BUSINESS),
    (re.compile(r"ENDORSE|CHANGE|\bADD\b|\bDROP\b"),     TransactionType.ENDORSEMENT),
]


def resolve_transaction_type(raw_type: Any) -> TransactionType:
    """Translate a carrier transaction label to a TransactionType."""
    if isinstance(raw_type, TransactionType):
        return raw_type
    raw = re.sub(r"[\s_\-]+", " ", str(raw_type or "")).strip().upper()
    if not raw:
        return TransactionType.OTHER

    if raw in TRANSACTION_TYPE_EXACT:
        return TRANSACTION_TYPE_EXACT[raw]

    for pattern, transaction_type in TRANSACTION_TYPE_PATTERNS:
        if pattern.search(raw):
            return transaction_type

    logger.warning(f"Unknown transaction type: '{raw_type}', treating as OTHER")
    return TransactionType.OTHER

# =============================================================================
# 3. BUNDLE & PRODUCT NORMALIZATION
# =============================================================================

class BundleType(str, Enum):
    PREFERRED = "Preferred"
    STANDARD = "Standard"
    MONOLINE = "Monoline"
    UNKNOWN = "Unknown"


def normalize_bundle_type(raw_bundle: Any) -> BundleType:
    """Preferred = auto + home, Standard = other multi-policy, Monoline = single."""
    if isinstance(raw_bundle, BundleType):
        return raw_bundle
    lower = str(raw_bundle or "").strip().lower()
    if not lower or lower == "nan":
        return BundleType.UNKNOWN
    if "prefer" in lower or "auto+home" in lower or "auto & home" in lower:
        return BundleType.PREFERRED
    if "mono" in lower or "single" in lower:
        return BundleType.MONOLINE
    if (
        lower in ("standard", "std", "bundle", "bundled")
        or "bundle" in lower
        or "multi" in lower
        or "2+" in lower
    ):
        return BundleType.STANDARD
    return BundleType.UNKNOWN


PRODUCT_CATEGORY_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"auto|alpac", re.I),           "Auto"),
    (re.compile(r"homeowner", re.I),            "Homeowners"),
    (re.compile(r"condo", re.I),                "Condo"),
    (re.compile(r"renter", re.I),               "Renters"),
    (re.compile(r"landlord|dwelling", re.I),    "Landlord"),
    (re.compile(r"umbrella", re.I),             "Umbrella"),
    (re.compile(r"home", re.I),                 "Homeowners"),
]


def categorize_product(product_raw: Any) -> str:
    text = str(product_raw or "").strip()
    for pattern, category in PRODUCT_CATEGORY_PATTERNS:
        if pattern.search(text):
            return category
    return "Other"

# =============================================================================
# 4. RAW-TEXT FLAG DETECTION (used when the export has no explicit column)
# =============================================================================

SERVICE_FEE_PATTERNS = [re.compile(p, re.I) for p in (r"SERVICE FEE", r"SVC FEE", r"SF POLICY", r"SERV FEE")]
PLUS_POLICY_PATTERNS = [re.compile(p, re.I) for p in (r"PLUS POLICY", r"PLUS POL")]
ITEM_ADDITION_PATTERNS = [
    re.compile(p, re.I)
    for p in (r"COVERAGE ISSUED", r"\bADD(ED)? (CAR|VEHICLE|ITEM|COVERAGE)", r"ITEM ADD")
]
ADD_DROP_PATTERNS = [
    re.compile(p, re.I)
    for p in (r"\bADD(ED)? (CAR|VEHICLE|ITEM)", r"\bDROP(PED)? (CAR|VEHICLE|ITEM)", r"ADD/DROP", r"SUBSTITUT")
]


def matches_any(patterns: Iterable[re.Pattern], *texts: Any) -> bool:
    haystack = " ".join(str(t or "") for t in texts)
    return any(p.search(haystack) for p in patterns)

# =============================================================================
# 5. THE TRANSACTION
# =============================================================================

@dataclass(frozen=True)
class StatementTransaction:
    """One statement row. Amounts are coerced to Decimal on construction."""
    policy_number: str = ""
    row_number: int = 0
    agent_number: str = ""
    transaction_type: TransactionType = TransactionType.OTHER
    transaction_type_raw: str = ""
    product_raw: str = ""
    product_category: str = ""
    business_type: str = ""
    bundle_type: BundleType = BundleType.UNKNOWN
    written_premium: Decimal = ZERO
    commissionable_premium: Optional[Decimal] = None
    base_commission_amount: Decimal = ZERO
    vc_amount: Decimal = ZERO
    reported_total_commission: Optional[Decimal] = None
    channel_of_bind: str = ""
    is_service_fee: bool = False
    is_plus_policy: bool = False
    is_item_addition: bool = False
    is_add_drop_endorsement: bool = False
    original_policy_effective_date: Optional[date] = None
    term_months: Optional[int] = None
    renewal_number: Optional[int] = None
    sub_producer_code: str = ""
    insured_name: str = ""

    def __post_init__(self) -> None:
        def coerce(name: str, value: Any) -> None:
            object.__setattr__(self, name, value)

        coerce("policy_number", str(self.policy_number or "").strip())
        if not isinstance(self.transaction_type, TransactionType):
            if not self.transaction_type_raw:
                coerce("transaction_type_raw", str(self.transaction_type or ""))
            coerce("transaction_type", resolve_transaction_type(self.transaction_type))
        coerce("bundle_type", normalize_bundle_type(self.bundle_type))
        coerce("business_type", str(self.business_type or "").strip())
        if not self.product_category:
            coerce("product_category", categorize_product(self.product_raw))
        for name in ("written_premium", "base_commission_amount", "vc_amount"):
            coerce(name, to_decimal(getattr(self, name)))
        for name in ("commissionable_premium", "reported_total_commission"):
            if getattr(self, name) is not None:
                coerce(name, to_decimal(getattr(self, name)))
        coerce("original_policy_effective_date", to_date(self.original_policy_effective_date))
        coerce("sub_producer_code", _normalize_code(self.sub_producer_code))

    @property
    def total_commission(self) -> Decimal:
        if self.reported_total_commission is not None:
            return self.reported_total_commission
        return self.base_commission_amount + self.vc_amount

    @property
    def is_cancellation(self) -> bool:
        return self.transaction_type == TransactionType.CANCELLATION

    @property
    def is_new_business(self) -> bool:
        return self.transaction_type == TransactionType.NEW_BUSINESS

    @property
    def is_renewal(self) -> bool:
        return self.transaction_type == TransactionType.RENEWAL

    @property
    def is_auto(self) -> bool:
        return self.product_category == "Auto" or "auto" in self.business_type.lower()

    @property
    def rate_premium(self) -> Decimal:
        """Premium used as a rate denominator.

        Negative premium is only meaningful on a cancellation (a reversal);
        anywhere else it is malformed and read as zero.
        """
        if self.written_premium < 0 and not self.is_cancellation:
            return ZERO
        return self.written_premium

    @property
    def household_key(self) -> str:
        return self.insured_name.strip().upper() or self.policy_number


def _normalize_code(code: Any) -> str:
    text = str(code if code is not None else "").strip()
    if text.lower() in ("nan", "none", "undefined"):
        return ""
    if text.endswith(".0") and text[:-2].isdigit():
        text = text[:-2]
    return text

# =============================================================================
# 6. DATAFRAME ADAPTER
# =============================================================================

DEFAULT_COLUMN_MAP: Dict[str, str] = {
    "policy_number":                   "policy_number",
    "row_number":                      "row_number",
    "agent_number":                    "agent_number",
    "transaction_type":                "transaction_type",
    "product_raw":                     "product",
    "business_type":                   "business_type",
    "bundle_type":                     "bundle_type",
    "written_premium":                 "written_premium",
    "commissionable_premium":          "commissionable_premium",
    "base_commission_amount":          "base_commission_amount",
    "vc_amount":                       "vc_amount",
    "total_commission":                "total_commission",
    "channel_of_bind":                 "channel",
    "is_service_fee":                  "is_service_fee",
    "is_plus_policy":                  "is_plus_policy",
    "is_item_addition":                "is_item_addition",
    "is_add_drop_endorsement":         "is_add_drop_endorsement",
    "original_policy_effective_date":  "orig_policy_eff_date",
    "term_months":                     "term_months",
    "renewal_number":                  "renewal_number",
    "sub_producer_code":               "sub_prod_code",
    "insured_name":                    "named_insured",
    "indicator":                       "indicator",
}


def transaction_from_row(row: Dict[str, Any], row_number: int, cmap: Dict[str, str]) -> StatementTransaction:
    """Build one transaction from a row mapping using the given column map."""
    def get(field_name: str, default: Any = "") -> Any:
        column = cmap.get(field_name)
        if column is None or column not in row:
            return default
        value = row[column]
        if value is None or (isinstance(value, float) and pd.isna(value)):
            return default
        if isinstance(value, str) and not value.strip():
            return default
        return value

    def flag(field_name: str, patterns: List[re.Pattern]) -> bool:
        explicit = get(field_name, None)
        if explicit is not None:
            return to_flag(explicit)
        return matches_any(patterns, trans_type_raw, product, indicator)

    trans_type_raw = str(get("transaction_type")).strip()
    product = str(get("product_raw")).strip()
    indicator = str(get("indicator")).strip()
    reported_total = get("total_commission", None)
    commissionable = get("commissionable_premium", None)

    return StatementTransaction(
        policy_number=str(get("policy_number")).strip(),
        row_number=_optional_int(get("row_number", None)) or row_number,
        agent_number=_normalize_code(get("agent_number")),
        transaction_type=resolve_transaction_type(trans_type_raw),
        transaction_type_raw=trans_type_raw,
        product_raw=product,
        business_type=str(get("business_type")).strip(),
        bundle_type=normalize_bundle_type(get("bundle_type")),
        written_premium=to_decimal(get("written_premium", None)),
        commissionable_premium=to_decimal(commissionable) if commissionable is not None else None,
        base_commission_amount=to_decimal(get("base_commission_amount", None)),
        vc_amount=to_decimal(get("vc_amount", None)),
        reported_total_commission=to_decimal(reported_total) if reported_total is not None else None,
        channel_of_bind=str(get("channel_of_bind")).strip(),
        is_service_fee=flag("is_service_fee", SERVICE_FEE_PATTERNS),
        is_plus_policy=flag("is_plus_policy", PLUS_POLICY_PATTERNS),
        is_item_addition=flag("is_item_addition", ITEM_ADDITION_PATTERNS),
        is_add_drop_endorsement=flag("is_add_drop_endorsement", ADD_DROP_PATTERNS),
        original_policy_effective_date=to_date(get("original_policy_effective_date", None)),
        term_months=_optional_int(get("term_months", None)),
        renewal_number=_optional_int(get("renewal_number", None)),
        sub_producer_code=_normalize_code(get("sub_producer_code")),
        insured_name=str(get("insured_name")).strip(),
    )


def transactions_from_frame(
    df: pd.DataFrame,
    col_map: Optional[Dict[str, str]] = None,
) -> Tuple[List[StatementTransaction], List[str]]:
    """
    Convert a parsed statement DataFrame into transactions.

    Columns follow DEFAULT_COLUMN_MAP; pass col_map to override individual
    entries. Rows that cannot be read are skipped and reported in the
    returned warning list.
    """
    cmap = {**DEFAULT_COLUMN_MAP, **(col_map or {})}
    transactions: List[StatementTransaction] = []
    warnings: List[str] = []

    for position, (idx, row) in enumerate(df.iterrows()):
        try:
            transactions.append(transaction_from_row(row.to_dict(), position + 1, cmap))
        except Exception as e:
            warnings.append(f"Row {idx}: {str(e)}")
            logger.error(f"Row {idx} skipped: {e}")

    logger.info(f"Loaded {len(transactions)} transactions, skipped {len(warnings)}")
    return transactions, warnings


def load_statement_csv(
    filepath: str,
    col_map: Optional[Dict[str, str]] = None,
) -> Tuple[List[StatementTransaction], List[str]]:
    """Read a statement export that has already been flattened to CSV."""
    df = pd.read_csv(filepath, dtype=str, keep_default_na=False)
    return transactions_from_frame(df, col_map=col_map)


def split_by_agent(transactions: List[StatementTransaction]) -> Dict[str, List[StatementTransaction]]:
    """Group transactions by agent number (location), keeping statement order."""
    slices: Dict[str, List[StatementTransaction]] = {}
    for tx in transactions:
        slices.setdefault(tx.agent_number, []).append(tx)
    return slices
