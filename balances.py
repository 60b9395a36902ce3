from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from models import AccountType
from schemas import AccountRecord, TransactionRecord

LIABILITY_TYPES = frozenset({AccountType.credit, AccountType.loan})


def is_liability(account_type: AccountType) -> bool:
    return AccountType(account_type) in LIABILITY_TYPES


def account_anchor(account: AccountRecord) -> float:
    """Live balance as a signed figure; what a liability owes counts as negative."""
    balance = float(account.balance_current or 0.0)
    if is_liability(account.type):
        return -balance
    return balance


def total_balance(accounts: Iterable[AccountRecord]) -> float:
    return round(sum(float(acc.balance_current or 0.0) for acc in accounts), 2)


def resolve_starting_balance(
    accounts: Sequence[AccountRecord], account_filter: Optional[str] = None
) -> tuple[float, bool]:
    """Return ``(starting_balance, reliable)`` for the accounts in view.

    With several accounts and no filter there is no meaningful combined
    running balance, so the walk starts from zero and is reported unreliable.
    """
    if account_filter:
        for account in accounts:
            if account.plaid_account_id == account_filter:
                return account_anchor(account), True
        return 0.0, False
    if len(accounts) == 1:
        return account_anchor(accounts[0]), True
    return 0.0, False


@dataclass(frozen=True)
class BalanceRow:
    transaction: TransactionRecord
    balance: Optional[float]

    @property
    def is_negative(self) -> bool:
        return self.balance is not None and self.balance < 0


def reconstruct_running_balances(
    transactions: Sequence[TransactionRecord],
    starting_balance: float,
    *,
    enabled: bool = True,
) -> list[BalanceRow]:
    """Balance after each transaction, walking newest to oldest.

    ``transactions`` must already be sorted by date descending and
    ``starting_balance`` is the balance after the newest one. Amounts use the
    inflow-negative convention, so stepping back in time adds the amount.
    """
    if not enabled:
        return [BalanceRow(transaction=txn, balance=None) for txn in transactions]

    balance = float(starting_balance)
    rows = []
    for txn in transactions:
        rows.append(BalanceRow(transaction=txn, balance=balance))
        balance = round(balance + txn.signed_amount, 2)
    return rows
