from typing import Mapping, Optional, Sequence

import pytest

from schemas import TransactionRecord
from store import StoreError, TransactionPage, TransactionQuery


class FakeTransactionStore:
    """In-memory store following the async store contract.

    ``rows`` must already be ordered date descending. ``echo_ids`` limits which
    requested ids an update hands back; ``fail_on_page`` makes that page's
    query raise.
    """

    def __init__(self, rows: Sequence[TransactionRecord] = ()) -> None:
        self.rows = list(rows)
        self.queries: list[TransactionQuery] = []
        self.updates: list[tuple[list[str], dict[str, object]]] = []
        self.tags: dict[str, set[str]] = {}
        self.total_override: Optional[int] = None
        self.fail_on_page: Optional[int] = None
        self.fail_updates = False
        self.echo_ids: Optional[set[str]] = None

    async def query_transactions(self, query: TransactionQuery) -> TransactionPage:
        self.queries.append(query)
        page = query.offset // query.limit if query.limit else 0
        if self.fail_on_page is not None and page == self.fail_on_page:
            raise StoreError("connection reset")
        matching = [
            txn
            for txn in self.rows
            if txn.entity_id == query.entity_id
            and query.date_from <= txn.date <= query.date_to
            and (not query.account_id or txn.account_id == query.account_id)
        ]
        total = self.total_override if self.total_override is not None else len(matching)
        return TransactionPage(
            rows=matching[query.offset : query.offset + query.limit],
            total_count=total,
        )

    async def update_transactions(
        self, ids: Sequence[str], fields: Mapping[str, object]
    ) -> list[TransactionRecord]:
        self.updates.append((list(ids), dict(fields)))
        if self.fail_updates:
            raise StoreError("update rejected")
        updated = []
        for index, txn in enumerate(self.rows):
            if txn.id not in ids:
                continue
            if self.echo_ids is not None and txn.id not in self.echo_ids:
                continue
            changed = txn.model_copy(update=dict(fields))
            self.rows[index] = changed
            updated.append(changed)
        return updated

    async def transaction_tag_map(self, ids: Sequence[str]) -> dict[str, set[str]]:
        return {i: set(self.tags[i]) for i in ids if i in self.tags}


@pytest.fixture
def make_txn():
    counter = {"n": 0}

    def factory(amount: float = 10.0, day: str = "2024-03-15", **fields) -> TransactionRecord:
        counter["n"] += 1
        data = {
            "id": f"txn-{counter['n']:03d}",
            "entity_id": "ent-1",
            "tenant_id": "ten-1",
            "account_id": "acc-checking",
            "amount": amount,
            "date": day,
            "merchant_name": f"Merchant {counter['n']}",
        }
        data.update(fields)
        return TransactionRecord(**data)

    return factory


@pytest.fixture
def fake_store():
    return FakeTransactionStore()
