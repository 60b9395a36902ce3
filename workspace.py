from __future__ import annotations

import logging
from typing import Optional, Sequence

from aggregation import AggregationCache, DashboardRanges, PanelResult, build_dashboard
from balances import BalanceRow, resolve_starting_balance
from bulk import BulkMutationCoordinator, SavedHook
from config import get_settings
from filters import SelectionModel, TransactionTableView
from ledger import TransactionLedger
from pagination import FetchState, PaginatedFetchController
from periods import DateRange
from schemas import AccountRecord, AggregatedData
from store import StoreError, TransactionStore

logger = logging.getLogger(__name__)


class LedgerWorkspace:
    """One entity's loaded ledger with the views and actions built on it.

    Everything shares a single :class:`TransactionLedger`, so a bulk update
    merged by the coordinator is immediately visible to the table, the
    balances and the aggregates.
    """

    def __init__(
        self,
        store: TransactionStore,
        *,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        table_page_size: Optional[int] = None,
        on_saved: Optional[SavedHook] = None,
    ) -> None:
        if table_page_size is None:
            table_page_size = get_settings().table_page_size
        self.store = store
        self.ledger = TransactionLedger()
        self.selection = SelectionModel()
        self.fetcher = PaginatedFetchController(
            store, self.ledger, page_size=page_size, max_pages=max_pages
        )
        self.table = TransactionTableView(
            self.ledger, page_size=table_page_size, selection=self.selection
        )
        self.bulk = BulkMutationCoordinator(
            store, self.ledger, self.selection, on_saved=on_saved
        )
        self.cache = AggregationCache()
        self.accounts: list[AccountRecord] = []

    async def load(self, entity_id: str, date_range: DateRange) -> FetchState:
        state = await self.fetcher.fetch_all(entity_id, date_range)
        if self.ledger.rows:
            await self.load_tags()
        return state

    async def load_tags(self) -> None:
        ids = [txn.id for txn in self.ledger.rows]
        try:
            tag_map = await self.store.transaction_tag_map(ids)
        except StoreError as exc:
            logger.warning(f"tag_map_failed: rows={len(ids)} error={exc}")
            tag_map = {}
        self.table.set_tag_map(tag_map)

    def set_accounts(self, accounts: Sequence[AccountRecord]) -> None:
        self.accounts = list(accounts)

    def aggregated(self, date_range: Optional[DateRange] = None) -> AggregatedData:
        return self.cache.get(self.ledger.version, self.ledger.rows, date_range)

    def dashboard(
        self, ranges: Optional[DashboardRanges] = None
    ) -> dict[str, PanelResult]:
        return build_dashboard(self.ledger.rows, ranges)

    def starting_balance(self) -> tuple[float, bool]:
        return resolve_starting_balance(self.accounts, self.table.filters.account_id)

    def balance_page(self, enabled: bool = True) -> tuple[list[BalanceRow], bool]:
        starting, reliable = self.starting_balance()
        return self.table.page_with_balances(starting, enabled=enabled), reliable
