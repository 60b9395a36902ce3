from balances import (
    account_anchor,
    reconstruct_running_balances,
    resolve_starting_balance,
    total_balance,
)
from models import AccountType
from schemas import AccountRecord


def _account(plaid_id: str, balance: float, type_=AccountType.depository) -> AccountRecord:
    return AccountRecord(
        id=f"id-{plaid_id}",
        plaid_account_id=plaid_id,
        name=plaid_id.title(),
        type=type_,
        balance_current=balance,
    )


def test_walks_backward_from_current_balance(make_txn) -> None:
    txns = [
        make_txn(-100.0, "2024-03-03"),
        make_txn(50.0, "2024-03-02"),
        make_txn(-20.0, "2024-03-01"),
    ]

    rows = reconstruct_running_balances(txns, 1000.0)

    assert [r.balance for r in rows] == [1000.0, 900.0, 950.0]
    assert [r.transaction.id for r in rows] == [t.id for t in txns]


def test_each_balance_is_previous_plus_previous_amount(make_txn) -> None:
    txns = [make_txn(a) for a in (12.34, -500.0, 0.01, 77.7, -3.33)]

    rows = reconstruct_running_balances(txns, 250.0)

    assert rows[0].balance == 250.0
    for prev, row in zip(rows, rows[1:]):
        assert row.balance == round(prev.balance + prev.transaction.signed_amount, 2)


def test_negative_balance_is_flagged_not_rejected(make_txn) -> None:
    rows = reconstruct_running_balances([make_txn(10.0), make_txn(-80.0)], 20.0)

    assert [r.balance for r in rows] == [20.0, 30.0]
    rows = reconstruct_running_balances([make_txn(-80.0), make_txn(5.0)], 20.0)
    assert rows[1].balance == -60.0
    assert rows[1].is_negative


def test_disabled_running_balance_reports_nothing(make_txn) -> None:
    rows = reconstruct_running_balances([make_txn(5.0), make_txn(6.0)], 100.0, enabled=False)

    assert [r.balance for r in rows] == [None, None]
    assert not any(r.is_negative for r in rows)


def test_single_account_uses_its_live_balance() -> None:
    balance, reliable = resolve_starting_balance([_account("checking", 1520.5)])

    assert balance == 1520.5
    assert reliable


def test_multiple_accounts_without_filter_start_at_zero() -> None:
    accounts = [_account("checking", 1000.0), _account("savings", 5000.0)]

    assert resolve_starting_balance(accounts) == (0.0, False)
    assert resolve_starting_balance(accounts, "savings") == (5000.0, True)


def test_liability_anchor_is_negated() -> None:
    card = _account("card", 420.0, AccountType.credit)

    assert account_anchor(card) == -420.0
    assert resolve_starting_balance([card]) == (-420.0, True)
    assert account_anchor(_account("brokerage", 10.0, AccountType.investment)) == 10.0


def test_total_balance_ignores_missing_values() -> None:
    accounts = [_account("a", 10.25), _account("b", 0.0)]
    accounts.append(AccountRecord(id="x", plaid_account_id="c", name="C"))

    assert total_balance(accounts) == 10.25
