from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from config import get_settings
from ledger import TransactionLedger
from periods import DateRange
from store import StoreError, TransactionQuery, TransactionStore

logger = logging.getLogger(__name__)

FetchKey = tuple[str, tuple[str, str]]


@dataclass
class FetchState:
    is_loading: bool = False
    error: Optional[str] = None
    page: int = 0
    total_count: int = 0
    has_more: bool = False


class PaginatedFetchController:
    """Loads one (entity, date range) worth of transactions page by page.

    ``max_pages`` caps how many rows a single key can pull into memory no
    matter what the store reports as its total.
    """

    def __init__(
        self,
        store: TransactionStore,
        ledger: TransactionLedger,
        *,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> None:
        if page_size is None or max_pages is None:
            settings = get_settings()
            page_size = page_size or settings.page_size
            max_pages = max_pages or settings.max_pages
        self.store = store
        self.ledger = ledger
        self.page_size = page_size
        self.max_pages = max_pages
        self.state = FetchState()
        self._key: Optional[FetchKey] = None
        self._date_range: Optional[DateRange] = None

    @property
    def key(self) -> Optional[FetchKey]:
        return self._key

    @property
    def has_more(self) -> bool:
        return self.state.has_more

    @property
    def is_loading(self) -> bool:
        return self.state.is_loading

    def _activate(self, entity_id: str, date_range: DateRange) -> bool:
        key = (entity_id, date_range.key)
        if key == self._key:
            return False
        self._key = key
        self._date_range = date_range
        self.ledger.clear()
        self.state = FetchState()
        return True

    async def fetch(
        self,
        entity_id: str,
        date_range: DateRange,
        page: int = 0,
        append: bool = False,
    ) -> bool:
        """Fetch one page. Returns True when rows were committed to the ledger."""
        if self._activate(entity_id, date_range):
            page = 0
            append = False

        if page < 0:
            raise ValueError("Page index cannot be negative")
        if page >= self.max_pages:
            self.state.has_more = False
            return False

        captured_key = self._key
        offset = page * self.page_size
        self.state.is_loading = True
        self.state.error = None
        query = TransactionQuery(
            entity_id=entity_id,
            date_from=date_range.date_from,
            date_to=date_range.date_to,
            offset=offset,
            limit=self.page_size,
        )
        try:
            result = await self.store.query_transactions(query)
        except StoreError as exc:
            if captured_key != self._key:
                logger.info(f"fetch_discarded: key={captured_key} page={page} error")
                return False
            logger.warning(f"fetch_failed: key={captured_key} page={page} error={exc}")
            self.state.is_loading = False
            self.state.error = str(exc) or "Failed to fetch transactions"
            self.state.has_more = False
            return False

        if captured_key != self._key:
            logger.info(f"fetch_discarded: key={captured_key} page={page}")
            return False

        if append:
            self.ledger.extend(result.rows)
        else:
            self.ledger.replace(result.rows)

        fetched_through = offset + len(result.rows)
        self.state.page = page
        self.state.total_count = result.total_count
        self.state.has_more = (
            len(result.rows) > 0
            and result.total_count > fetched_through
            and page + 1 < self.max_pages
        )
        self.state.is_loading = False
        logger.info(
            f"fetch_page: key={captured_key} page={page} rows={len(result.rows)} "
            f"total={result.total_count} has_more={self.state.has_more}"
        )
        return True

    async def load_more(self) -> bool:
        if self._key is None or self._date_range is None:
            return False
        if self.state.is_loading or not self.state.has_more:
            return False
        return await self.fetch(
            self._key[0], self._date_range, self.state.page + 1, append=True
        )

    async def refresh(self) -> bool:
        if self._key is None or self._date_range is None:
            return False
        return await self.fetch(self._key[0], self._date_range, 0, append=False)

    async def fetch_all(self, entity_id: str, date_range: DateRange) -> FetchState:
        """Load page 0 for the key, then keep appending until nothing is left."""
        loaded = await self.fetch(entity_id, date_range, 0, append=False)
        while loaded and self.state.has_more:
            loaded = await self.load_more()
        return self.state
