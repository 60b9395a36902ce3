from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, Mapping, Optional, Sequence

from balances import BalanceRow, reconstruct_running_balances
from categories import resolve_category
from ledger import TransactionLedger
from schemas import TransactionRecord

TagMap = Mapping[str, Iterable[str]]

TABLE_PAGE_SIZE = 50


@dataclass(frozen=True)
class TransactionFilters:
    account_id: Optional[str] = None
    category: Optional[str] = None
    query: Optional[str] = None
    tag_ids: frozenset[str] = frozenset()

    @property
    def active(self) -> bool:
        return bool(self.account_id or self.category or self.query or self.tag_ids)


def amount_text(amount: Optional[float]) -> str:
    value = float(amount or 0.0)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _by_account(
    rows: list[TransactionRecord], filters: TransactionFilters, _tags: TagMap
) -> list[TransactionRecord]:
    if not filters.account_id:
        return rows
    return [txn for txn in rows if txn.account_id == filters.account_id]


def _by_category(
    rows: list[TransactionRecord], filters: TransactionFilters, _tags: TagMap
) -> list[TransactionRecord]:
    if not filters.category:
        return rows
    needle = filters.category.lower()
    return [txn for txn in rows if needle in resolve_category(txn).lower()]


def _by_search(
    rows: list[TransactionRecord], filters: TransactionFilters, _tags: TagMap
) -> list[TransactionRecord]:
    if not filters.query:
        return rows
    needle = filters.query.lower()

    def matches(txn: TransactionRecord) -> bool:
        haystacks = (
            txn.merchant_name or "",
            txn.name or "",
            resolve_category(txn),
            amount_text(txn.amount),
        )
        return any(needle in value.lower() for value in haystacks)

    return [txn for txn in rows if matches(txn)]


def _by_tags(
    rows: list[TransactionRecord], filters: TransactionFilters, tags: TagMap
) -> list[TransactionRecord]:
    if not filters.tag_ids:
        return rows
    wanted = filters.tag_ids
    return [txn for txn in rows if wanted.intersection(tags.get(txn.id, ()))]


FilterStep = Callable[
    [list[TransactionRecord], TransactionFilters, TagMap], list[TransactionRecord]
]

FILTER_PIPELINE: tuple[FilterStep, ...] = (_by_account, _by_category, _by_search, _by_tags)


def sort_by_date_desc(rows: Iterable[TransactionRecord]) -> list[TransactionRecord]:
    return sorted(rows, key=lambda txn: txn.date, reverse=True)


def apply_filters(
    transactions: Iterable[TransactionRecord],
    filters: TransactionFilters,
    tag_map: Optional[TagMap] = None,
    *,
    steps: Sequence[FilterStep] = FILTER_PIPELINE,
) -> list[TransactionRecord]:
    rows = list(transactions)
    tags = tag_map or {}
    for step in steps:
        rows = step(rows, filters, tags)
    return sort_by_date_desc(rows)


@dataclass(frozen=True)
class Totals:
    income: float
    expenses: float
    net: float


def totals(transactions: Iterable[TransactionRecord]) -> Totals:
    income = 0.0
    expenses = 0.0
    for txn in transactions:
        amount = txn.signed_amount
        if amount < 0:
            income += abs(amount)
        elif amount > 0:
            expenses += amount
    return Totals(
        income=round(income, 2),
        expenses=round(expenses, 2),
        net=round(income - expenses, 2),
    )


def group_by_date(
    transactions: Iterable[TransactionRecord],
) -> dict[str, list[TransactionRecord]]:
    groups: dict[str, list[TransactionRecord]] = {}
    for txn in transactions:
        groups.setdefault(txn.date, []).append(txn)
    return groups


@dataclass
class SelectionModel:
    """Selected ids plus the keyboard focus row.

    The id set survives filter changes. ``focused_index`` points into the
    filtered list and is -1 when nothing is focused.
    """

    selected_ids: set[str] = field(default_factory=set)
    focused_index: int = -1

    def __len__(self) -> int:
        return len(self.selected_ids)

    def toggle(self, transaction_id: str) -> None:
        if transaction_id in self.selected_ids:
            self.selected_ids.discard(transaction_id)
        else:
            self.selected_ids.add(transaction_id)

    def toggle_all(self, visible_ids: Sequence[str]) -> None:
        if visible_ids and all(i in self.selected_ids for i in visible_ids):
            self.selected_ids.difference_update(visible_ids)
        else:
            self.selected_ids.update(visible_ids)

    def all_selected(self, visible_ids: Sequence[str]) -> bool:
        if not visible_ids:
            return False
        return all(i in self.selected_ids for i in visible_ids)

    def clear(self) -> None:
        self.selected_ids = set()

    def reset_focus(self) -> None:
        self.focused_index = -1

    def clamp_focus(self, count: int) -> None:
        if count <= 0:
            self.focused_index = -1
        elif self.focused_index >= count:
            self.focused_index = count - 1

    def handle_key(
        self, key: str, rows: Sequence[TransactionRecord]
    ) -> Optional[TransactionRecord]:
        """Apply one navigation key to ``rows``; returns the row to open on Enter."""
        self.clamp_focus(len(rows))
        if key == "Escape":
            self.clear()
        elif not rows:
            return None
        elif key == "ArrowDown":
            if self.focused_index < len(rows) - 1:
                self.focused_index += 1
        elif key == "ArrowUp":
            self.focused_index = self.focused_index - 1 if self.focused_index > 0 else 0
        elif key == "Enter":
            if 0 <= self.focused_index < len(rows):
                return rows[self.focused_index]
        elif key == " ":
            if 0 <= self.focused_index < len(rows):
                self.toggle(rows[self.focused_index].id)
        return None


class TransactionTableView:
    """Filtered, sorted, paginated read model over a ledger.

    Nothing here is stored between reads except the filters, the page and the
    selection; rows are re-derived from the ledger every time.
    """

    def __init__(
        self,
        ledger: TransactionLedger,
        *,
        page_size: int = TABLE_PAGE_SIZE,
        selection: Optional[SelectionModel] = None,
    ) -> None:
        self.ledger = ledger
        self.page_size = page_size
        self.selection = selection if selection is not None else SelectionModel()
        self.filters = TransactionFilters()
        self.tag_map: dict[str, set[str]] = {}
        self.current_page = 1

    def set_filters(self, filters: TransactionFilters) -> None:
        if filters == self.filters:
            return
        self.filters = filters
        self.current_page = 1
        self.selection.reset_focus()

    def update_filters(self, **changes: object) -> None:
        if "tag_ids" in changes:
            changes["tag_ids"] = frozenset(changes["tag_ids"] or ())
        self.set_filters(replace(self.filters, **changes))

    def set_tag_map(self, tag_map: Mapping[str, Iterable[str]]) -> None:
        self.tag_map = {txn_id: set(tag_ids) for txn_id, tag_ids in tag_map.items()}

    def filtered(self) -> list[TransactionRecord]:
        return apply_filters(self.ledger.rows, self.filters, self.tag_map)

    @property
    def total_pages(self) -> int:
        return math.ceil(len(self.filtered()) / self.page_size)

    def go_to_page(self, page: int) -> None:
        last = max(self.total_pages, 1)
        self.current_page = min(max(page, 1), last)

    def page_rows(self) -> list[TransactionRecord]:
        start = (self.current_page - 1) * self.page_size
        return self.filtered()[start : start + self.page_size]

    def page_with_balances(
        self, starting_balance: float, *, enabled: bool = True
    ) -> list[BalanceRow]:
        # walk the full filtered list, then slice
        rows = reconstruct_running_balances(
            self.filtered(), starting_balance, enabled=enabled
        )
        start = (self.current_page - 1) * self.page_size
        return rows[start : start + self.page_size]

    def grouped_page(self) -> dict[str, list[TransactionRecord]]:
        return group_by_date(self.page_rows())

    def totals(self) -> Totals:
        return totals(self.filtered())

    def toggle_visible(self) -> None:
        self.selection.toggle_all([txn.id for txn in self.page_rows()])

    def handle_key(self, key: str) -> Optional[TransactionRecord]:
        return self.selection.handle_key(key, self.filtered())
