import csv
import re
from datetime import date
from io import StringIO
from typing import Optional, Sequence

from categories import resolve_category
from periods import local_today
from schemas import TransactionRecord

EXPORT_HEADERS = [
    "Date",
    "Merchant",
    "Category",
    "Amount",
    "Type",
    "Account",
    "Status",
    "Notes",
]


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize free-text CSV values against formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def export_filename(today: Optional[date] = None) -> str:
    today = today or local_today()
    return f"transactions_{today.isoformat()}.csv"


def export_transactions(transactions: Sequence[TransactionRecord]) -> str:
    output = StringIO()
    # every field quoted, embedded quotes doubled
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)
    for txn in transactions:
        amount = txn.signed_amount
        writer.writerow(
            [
                txn.date,
                sanitize_csv_value(txn.merchant_name or txn.name or "Unknown"),
                sanitize_csv_value(resolve_category(txn)),
                f"{amount:.2f}",
                "Income" if amount < 0 else "Expense",
                txn.institution_name or "",
                txn.review_status.value if txn.review_status else "unreviewed",
                sanitize_csv_value(txn.review_notes or ""),
            ]
        )
    return output.getvalue()
