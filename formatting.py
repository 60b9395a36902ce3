import re
from datetime import date, timedelta
from typing import Optional

from periods import local_today

_MERCHANT_SPECIAL_CASES = {
    "PURCH RTN": "Purchase Return",
    "ONLINE TRANSFER": "Online Transfer",
    "TRANSFER INSTANT": "Instant Transfer",
    "MONEY TRANSFER": "Money Transfer",
    "E-PAYMENT": "E-Payment",
    "ACH CREDIT": "ACH Credit",
    "ACH DEBIT": "ACH Debit",
    "WIRE TRANSFER": "Wire Transfer",
    "DIRECT DEPOSIT": "Direct Deposit",
}


def format_amount(amount: Optional[float], *, show_sign: bool = True) -> str:
    """``+$1,234.50`` for money in, ``-$12.00`` for money out."""
    value = float(amount or 0.0)
    is_income = value < 0
    formatted = f"${abs(value):,.2f}"
    if not show_sign:
        return formatted
    return f"{'+' if is_income else '-'}{formatted}"


def format_balance(balance: Optional[float]) -> str:
    if balance is None:
        return ""
    value = float(balance)
    if value < 0:
        return f"-${abs(value):,.2f}"
    return f"${value:,.2f}"


def normalize_merchant_name(merchant: Optional[str]) -> str:
    if not merchant:
        return "Unknown"

    upper = merchant.upper()
    for key, value in _MERCHANT_SPECIAL_CASES.items():
        if key in upper:
            return value

    clean = re.sub(r"[^A-Z0-9\s]", " ", upper)
    clean = re.sub(r"\s+", " ", clean).strip()
    clean = re.sub(r"\s(INC|LLC|CORP|CO|LTD|COMPANY)$", "", clean)
    clean = re.sub(r"\d{4,}", "", clean)
    words = [word for word in clean.split(" ") if word]
    result = " ".join(word[0] + word[1:].lower() for word in words)
    return result or "Unknown"


def date_group_label(day: str, *, today: Optional[date] = None) -> str:
    today = today or local_today()
    value = date.fromisoformat(day)
    if value == today:
        return "Today"
    if value == today - timedelta(days=1):
        return "Yesterday"
    return f"{value.strftime('%A, %B')} {value.day}"
