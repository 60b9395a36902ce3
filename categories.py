from typing import Optional

from schemas import TransactionRecord

UNCATEGORIZED = "Uncategorized"

# primary segments of the aggregator's personal-finance category taxonomy
CATEGORY_CODES = (
    "INCOME",
    "TRANSFER_IN",
    "TRANSFER_OUT",
    "FOOD_AND_DRINK",
    "GENERAL_MERCHANDISE",
    "TRANSPORTATION",
    "TRAVEL",
    "RENT_AND_UTILITIES",
    "ENTERTAINMENT",
    "PERSONAL_CARE",
    "GENERAL_SERVICES",
    "GOVERNMENT_AND_NON_PROFIT",
    "MEDICAL",
    "BANK_FEES",
    "LOAN_PAYMENTS",
    "OFFICE_SUPPLIES",
    "PROFESSIONAL_SERVICES",
    "ADVERTISING",
    "INSURANCE",
    "PAYROLL",
)


def category_label(code: Optional[str]) -> str:
    if not code:
        return ""
    return code.replace("_", " ").strip()


def resolve_category(txn: TransactionRecord) -> str:
    """Manual override, then taxonomy primary, then legacy list, then the fallback."""
    if txn.coa_keywords:
        return txn.coa_keywords
    if txn.pfc_primary:
        return category_label(txn.pfc_primary)
    if txn.category:
        first = txn.category[0]
        if first:
            return first
    return UNCATEGORIZED
