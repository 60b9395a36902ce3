import asyncio
import time
from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from models import Account, AccountType, Entity, Receipt, ReviewStatus, Tenant, Transaction
from services import AccountService, EntityService, ReceiptService, TagService
from store import SQLAlchemyTransactionStore, StoreError, TransactionQuery


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(session):
    tenant = Tenant(id="ten-1", name="Acme Holdings")
    session.add(tenant)
    session.add_all(
        [
            Entity(id="ent-1", tenant_id="ten-1", name="Acme Studio"),
            Entity(id="ent-2", tenant_id="ten-1", name="Acme Labs"),
        ]
    )
    session.add(
        Account(
            tenant_id="ten-1",
            entity_id="ent-1",
            plaid_account_id="acc-checking",
            name="Checking",
            type=AccountType.depository,
            balance_current=1200.0,
        )
    )
    txns = [
        Transaction(
            id=f"t{i}",
            tenant_id="ten-1",
            entity_id="ent-1",
            account_id="acc-checking",
            amount=amount,
            date=day,
            merchant_name=f"Vendor {i}",
        )
        for i, (amount, day) in enumerate(
            [
                (-500.0, date(2024, 3, 10)),
                (25.0, date(2024, 3, 10)),
                (80.0, date(2024, 2, 1)),
                (12.0, date(2023, 12, 31)),
            ]
        )
    ]
    txns.append(
        Transaction(
            id="t-removed",
            tenant_id="ten-1",
            entity_id="ent-1",
            account_id="acc-checking",
            amount=99.0,
            date=date(2024, 3, 11),
            is_removed=True,
        )
    )
    session.add_all(txns)
    session.commit()


def _query(**overrides) -> TransactionQuery:
    data = {"entity_id": "ent-1", "date_from": "2024-01-01", "date_to": "2024-12-31"}
    data.update(overrides)
    return TransactionQuery(**data)


def test_query_orders_newest_first_and_skips_removed() -> None:
    session = make_session()
    seed(session)
    store = SQLAlchemyTransactionStore(session)

    page = asyncio.run(store.query_transactions(_query()))

    assert [t.id for t in page.rows] == ["t1", "t0", "t2"]
    assert page.total_count == 3
    assert page.rows[0].date == "2024-03-10"


def test_slow_query_does_not_block_the_event_loop() -> None:
    session = make_session()
    seed(session)
    store = SQLAlchemyTransactionStore(session)
    list_page = store.transactions.list_page

    def slow_list_page(*args, **kwargs):
        time.sleep(0.3)
        return list_page(*args, **kwargs)

    store.transactions.list_page = slow_list_page
    ticks = []

    async def ticker():
        for _ in range(5):
            ticks.append(time.monotonic())
            await asyncio.sleep(0.02)

    async def query():
        page = await store.query_transactions(_query())
        return page, time.monotonic()

    async def scenario():
        return await asyncio.gather(query(), ticker())

    (page, finished), _ = asyncio.run(scenario())

    assert page.total_count == 3
    assert len(ticks) == 5
    assert ticks[-1] < finished


def test_query_pages_with_offset_and_limit() -> None:
    session = make_session()
    seed(session)
    store = SQLAlchemyTransactionStore(session)

    page = asyncio.run(store.query_transactions(_query(offset=2, limit=2)))

    assert [t.id for t in page.rows] == ["t2"]
    assert page.total_count == 3


def test_date_bounds_are_inclusive() -> None:
    session = make_session()
    seed(session)
    store = SQLAlchemyTransactionStore(session)

    page = asyncio.run(
        store.query_transactions(_query(date_from="2023-12-31", date_to="2024-02-01"))
    )

    assert {t.id for t in page.rows} == {"t2", "t3"}


def test_invalid_dates_raise_store_error() -> None:
    session = make_session()
    store = SQLAlchemyTransactionStore(session)

    with pytest.raises(StoreError):
        asyncio.run(store.query_transactions(_query(date_from="not-a-day")))


def test_update_returns_only_rows_that_exist() -> None:
    session = make_session()
    seed(session)
    store = SQLAlchemyTransactionStore(session)
    now = datetime(2024, 4, 1, 9, 30)

    updated = asyncio.run(
        store.update_transactions(
            ["t0", "missing", "t-removed"],
            {"review_status": "flagged", "reviewed_at": now},
        )
    )

    assert [t.id for t in updated] == ["t0"]
    assert updated[0].review_status == ReviewStatus.flagged
    assert session.get(Transaction, "t0").reviewed_at == now


def test_update_rejects_fields_outside_the_allowlist() -> None:
    session = make_session()
    seed(session)
    store = SQLAlchemyTransactionStore(session)

    with pytest.raises(ValueError):
        asyncio.run(store.update_transactions(["t0"], {"amount": 1.0}))


def test_tag_map_reads_the_join_table() -> None:
    session = make_session()
    seed(session)
    tags = TagService(session, "ten-1")
    travel = tags.create("Travel", "#3366ff")
    client = tags.create("Client A")
    tags.attach("t0", travel.id)
    tags.attach("t0", client.id)
    tags.attach("t0", client.id)
    tags.attach("t2", travel.id)
    tags.detach("t0", client.id)
    store = SQLAlchemyTransactionStore(session)

    mapping = asyncio.run(store.transaction_tag_map(["t0", "t1", "t2"]))

    assert mapping == {"t0": {travel.id}, "t2": {travel.id}}
    assert [t.name for t in tags.list_all()] == ["Client A", "Travel"]


def test_duplicate_tag_names_are_rejected() -> None:
    session = make_session()
    seed(session)
    tags = TagService(session, "ten-1")
    tags.create("Travel")

    with pytest.raises(ValueError):
        tags.create(" travel ")


def test_entity_account_and_receipt_listing() -> None:
    session = make_session()
    seed(session)
    session.add(
        Receipt(
            tenant_id="ten-1",
            entity_id="ent-1",
            vendor="Office Depot",
            amount=80.0,
            date=date(2024, 2, 1),
            match_status="matched",
            match_confidence=0.92,
            matched_transaction_id="t2",
        )
    )
    session.commit()

    assert [e.name for e in EntityService(session, "ten-1").list_all()] == [
        "Acme Labs",
        "Acme Studio",
    ]
    [account] = AccountService(session, "ent-1").list_active()
    assert account.plaid_account_id == "acc-checking"
    [receipt] = ReceiptService(session, "ent-1").list_recent()
    assert receipt.matched_transaction_id == "t2"
