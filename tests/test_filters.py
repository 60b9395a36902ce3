from itertools import permutations

from filters import (
    FILTER_PIPELINE,
    SelectionModel,
    TransactionFilters,
    TransactionTableView,
    apply_filters,
    group_by_date,
    totals,
)
from ledger import TransactionLedger


def _sample(make_txn):
    return [
        make_txn(42.5, "2024-02-01", merchant_name="Blue Bottle", pfc_primary="FOOD_AND_DRINK"),
        make_txn(-900.0, "2024-02-03", merchant_name="Acme Client", account_id="acc-savings"),
        make_txn(18.0, "2024-01-20", merchant_name="Blue Apron", coa_keywords="Meals"),
        make_txn(120.0, "2024-02-10", name="UBER TRIP", pfc_primary="TRANSPORTATION"),
        make_txn(42.0, "2024-01-05", merchant_name="Office Depot", category=["Shops"]),
    ]


def test_filter_order_does_not_change_result(make_txn) -> None:
    txns = _sample(make_txn)
    tags = {txns[0].id: {"t1"}, txns[2].id: {"t2"}, txns[3].id: {"t1"}}
    filters = TransactionFilters(
        account_id="acc-checking", query="blue", tag_ids=frozenset({"t1", "t2"})
    )

    expected = [t.id for t in apply_filters(txns, filters, tags)]
    for order in permutations(FILTER_PIPELINE):
        result = apply_filters(txns, filters, tags, steps=order)
        assert [t.id for t in result] == expected

    assert expected == [txns[0].id, txns[2].id]


def test_result_is_sorted_newest_first(make_txn) -> None:
    result = apply_filters(_sample(make_txn), TransactionFilters())

    dates = [t.date for t in result]
    assert dates == sorted(dates, reverse=True)


def test_tag_filter_matches_any_selected_tag(make_txn) -> None:
    txns = _sample(make_txn)
    tags = {txns[0].id: {"travel"}, txns[1].id: {"client"}, txns[2].id: {"other"}}

    result = apply_filters(
        txns, TransactionFilters(tag_ids=frozenset({"travel", "client"})), tags
    )

    assert {t.id for t in result} == {txns[0].id, txns[1].id}


def test_category_filter_is_case_insensitive_substring(make_txn) -> None:
    txns = _sample(make_txn)

    result = apply_filters(txns, TransactionFilters(category="food"))

    assert [t.id for t in result] == [txns[0].id]


def test_search_covers_name_category_and_amount(make_txn) -> None:
    txns = _sample(make_txn)

    assert [t.id for t in apply_filters(txns, TransactionFilters(query="uber"))] == [txns[3].id]
    assert [t.id for t in apply_filters(txns, TransactionFilters(query="meals"))] == [txns[2].id]
    by_amount = apply_filters(txns, TransactionFilters(query="42"))
    assert {t.id for t in by_amount} == {txns[0].id, txns[4].id}


def test_totals_split_income_and_expenses(make_txn) -> None:
    result = totals(_sample(make_txn))

    assert result.income == 900.0
    assert result.expenses == 222.5
    assert result.net == 677.5


def test_group_by_date_keeps_row_order(make_txn) -> None:
    txns = [make_txn(1.0, "2024-02-02"), make_txn(2.0, "2024-02-02"), make_txn(3.0, "2024-02-01")]

    groups = group_by_date(txns)

    assert list(groups) == ["2024-02-02", "2024-02-01"]
    assert [t.id for t in groups["2024-02-02"]] == [txns[0].id, txns[1].id]


def test_filter_change_keeps_selection_but_resets_page_and_focus(make_txn) -> None:
    view = TransactionTableView(TransactionLedger(_sample(make_txn)), page_size=2)
    view.selection.toggle("txn-001")
    view.go_to_page(2)
    view.handle_key("ArrowDown")

    view.update_filters(query="blue")

    assert view.current_page == 1
    assert view.selection.focused_index == -1
    assert view.selection.selected_ids == {"txn-001"}


def test_focus_is_clamped_when_filtered_list_shrinks(make_txn) -> None:
    txns = _sample(make_txn)
    view = TransactionTableView(TransactionLedger(txns))
    for _ in range(4):
        view.handle_key("ArrowDown")
    assert view.selection.focused_index == 3

    view.ledger.replace([t for t in txns if "Blue" in (t.merchant_name or "")])
    opened = view.handle_key("Enter")

    assert view.selection.focused_index == 1
    assert opened is not None and opened.merchant_name == "Blue Apron"


def test_keys_on_an_empty_list_leave_focus_unset(make_txn) -> None:
    selection = SelectionModel()
    for key in ("ArrowUp", "ArrowDown", "Enter", " "):
        assert selection.handle_key(key, []) is None
        assert selection.focused_index == -1

    view = TransactionTableView(TransactionLedger(_sample(make_txn)))
    view.handle_key("ArrowDown")
    view.handle_key("ArrowDown")
    view.update_filters(query="no such merchant")

    assert view.handle_key("ArrowUp") is None
    assert view.selection.focused_index == -1
    view.handle_key("ArrowDown")
    assert view.selection.focused_index == -1


def test_keyboard_space_toggles_and_escape_clears(make_txn) -> None:
    txns = _sample(make_txn)
    selection = SelectionModel()
    rows = sorted(txns, key=lambda t: t.date, reverse=True)

    selection.handle_key("ArrowDown", rows)
    selection.handle_key(" ", rows)
    assert selection.selected_ids == {rows[0].id}

    selection.handle_key("ArrowUp", rows)
    assert selection.focused_index == 0
    selection.handle_key("Escape", rows)
    assert selection.selected_ids == set()


def test_toggle_visible_selects_then_clears_current_page(make_txn) -> None:
    view = TransactionTableView(TransactionLedger(_sample(make_txn)), page_size=2)
    visible = [t.id for t in view.page_rows()]

    view.toggle_visible()
    assert view.selection.all_selected(visible)
    view.toggle_visible()
    assert view.selection.selected_ids == set()


def test_pagination_of_filtered_rows(make_txn) -> None:
    view = TransactionTableView(TransactionLedger(_sample(make_txn)), page_size=2)

    assert view.total_pages == 3
    view.go_to_page(10)
    assert view.current_page == 3
    assert len(view.page_rows()) == 1


def test_balances_continue_across_pages(make_txn) -> None:
    txns = [make_txn(10.0, f"2024-01-{d:02d}") for d in (5, 4, 3)]
    view = TransactionTableView(TransactionLedger(txns), page_size=2)

    view.go_to_page(2)
    [row] = view.page_with_balances(100.0)

    assert row.balance == 120.0
