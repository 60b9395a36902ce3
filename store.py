"""Record store adapter.

The engine talks to the transaction store only through :class:`TransactionStore`.
Callers construct a store handle and pass it to the fetch controller and the
bulk coordinator; nothing in the engine reaches for a module-level client.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Mapping, Optional, Protocol, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from schemas import TransactionRecord
from services import TransactionService

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    pass


@dataclass(frozen=True)
class TransactionQuery:
    entity_id: str
    date_from: str
    date_to: str
    offset: int = 0
    limit: int = 1000
    account_id: Optional[str] = None


@dataclass(frozen=True)
class TransactionPage:
    rows: list[TransactionRecord]
    total_count: int


class TransactionStore(Protocol):
    async def query_transactions(self, query: TransactionQuery) -> TransactionPage:
        ...

    async def update_transactions(
        self, ids: Sequence[str], fields: Mapping[str, object]
    ) -> list[TransactionRecord]:
        ...

    async def transaction_tag_map(self, ids: Sequence[str]) -> dict[str, set[str]]:
        ...


class SQLAlchemyTransactionStore:
    def __init__(self, session: Session) -> None:
        self.session = session
        self.transactions = TransactionService(session)

    async def query_transactions(self, query: TransactionQuery) -> TransactionPage:
        try:
            date_from = date.fromisoformat(query.date_from)
            date_to = date.fromisoformat(query.date_to)
        except ValueError as exc:
            raise StoreError(f"Invalid date bounds: {exc}") from exc
        try:
            rows, total = await run_in_threadpool(
                self.transactions.list_page,
                query.entity_id,
                date_from,
                date_to,
                account_id=query.account_id,
                offset=query.offset,
                limit=query.limit,
            )
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Failed to load transactions") from exc
        return TransactionPage(
            rows=[TransactionRecord.model_validate(row) for row in rows],
            total_count=total,
        )

    async def update_transactions(
        self, ids: Sequence[str], fields: Mapping[str, object]
    ) -> list[TransactionRecord]:
        try:
            updated = await run_in_threadpool(self.transactions.update_fields, ids, fields)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Failed to update transactions") from exc
        logger.info(
            f"store_update: requested={len(ids)} updated={len(updated)} "
            f"fields={','.join(sorted(fields))}"
        )
        return [TransactionRecord.model_validate(row) for row in updated]

    async def transaction_tag_map(self, ids: Sequence[str]) -> dict[str, set[str]]:
        try:
            return await run_in_threadpool(self.transactions.tag_map, ids)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError("Failed to load transaction tags") from exc
