from __future__ import annotations

from datetime import date
from typing import Mapping, Optional, Sequence

from sqlalchemy import delete, func, insert, select
from sqlalchemy.orm import Session

from models import (
    Account,
    Entity,
    Receipt,
    ReviewStatus,
    Tag,
    transaction_tags,
    Transaction,
)

UPDATABLE_FIELDS = frozenset(
    {
        "coa_keywords",
        "categorization_source",
        "categorized_at",
        "review_status",
        "review_notes",
        "reviewed_at",
        "reviewed_by",
    }
)


class EntityService:
    def __init__(self, session: Session, tenant_id: str) -> None:
        self.session = session
        self.tenant_id = tenant_id

    def list_all(self) -> list[Entity]:
        stmt = (
            select(Entity)
            .where(Entity.tenant_id == self.tenant_id)
            .order_by(Entity.name.asc())
        )
        return self.session.scalars(stmt).all()


class AccountService:
    def __init__(self, session: Session, entity_id: str) -> None:
        self.session = session
        self.entity_id = entity_id

    def list_active(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.entity_id == self.entity_id, Account.is_active.is_(True))
            .order_by(Account.institution_name.asc(), Account.name.asc())
        )
        return self.session.scalars(stmt).all()


class TagService:
    def __init__(self, session: Session, tenant_id: str) -> None:
        self.session = session
        self.tenant_id = tenant_id

    def list_all(self) -> list[Tag]:
        stmt = select(Tag).where(Tag.tenant_id == self.tenant_id).order_by(Tag.name)
        return self.session.scalars(stmt).all()

    def create(self, name: str, color: Optional[str] = None) -> Tag:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Tag name cannot be empty")

        stmt = select(Tag).where(
            Tag.tenant_id == self.tenant_id, func.lower(Tag.name) == clean_name.lower()
        )
        if self.session.scalar(stmt):
            raise ValueError("Tag already exists")

        tag = Tag(tenant_id=self.tenant_id, name=clean_name, color=color)
        self.session.add(tag)
        self.session.commit()
        self.session.refresh(tag)
        return tag

    def _get(self, tag_id: str) -> Tag:
        tag = self.session.get(Tag, tag_id)
        if not tag or tag.tenant_id != self.tenant_id:
            raise ValueError("Tag not found")
        return tag

    def attach(self, transaction_id: str, tag_id: str) -> None:
        tag = self._get(tag_id)
        exists = self.session.execute(
            select(transaction_tags.c.tag_id).where(
                transaction_tags.c.transaction_id == transaction_id,
                transaction_tags.c.tag_id == tag.id,
            )
        ).first()
        if exists:
            return
        self.session.execute(
            insert(transaction_tags).values(transaction_id=transaction_id, tag_id=tag.id)
        )
        self.session.commit()

    def detach(self, transaction_id: str, tag_id: str) -> None:
        tag = self._get(tag_id)
        self.session.execute(
            delete(transaction_tags).where(
                transaction_tags.c.transaction_id == transaction_id,
                transaction_tags.c.tag_id == tag.id,
            )
        )
        self.session.commit()


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_page(
        self,
        entity_id: str,
        date_from: date,
        date_to: date,
        *,
        account_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 1000,
    ) -> tuple[list[Transaction], int]:
        conditions = [
            Transaction.entity_id == entity_id,
            Transaction.is_removed.is_(False),
            Transaction.date.between(date_from, date_to),
        ]
        if account_id:
            conditions.append(Transaction.account_id == account_id)

        total = self.session.execute(
            select(func.count(Transaction.id)).where(*conditions)
        ).scalar_one()
        stmt = (
            select(Transaction)
            .where(*conditions)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all()), int(total or 0)

    def update_fields(
        self, ids: Sequence[str], fields: Mapping[str, object]
    ) -> list[Transaction]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")
        if not ids:
            return []

        values = dict(fields)
        if values.get("review_status") is not None:
            values["review_status"] = ReviewStatus(values["review_status"])

        stmt = select(Transaction).where(
            Transaction.id.in_(list(ids)), Transaction.is_removed.is_(False)
        )
        txns = list(self.session.scalars(stmt).all())
        for txn in txns:
            for name, value in values.items():
                setattr(txn, name, value)
        self.session.commit()
        for txn in txns:
            self.session.refresh(txn)
        return txns

    def tag_map(self, ids: Sequence[str]) -> dict[str, set[str]]:
        if not ids:
            return {}
        rows = self.session.execute(
            select(transaction_tags.c.transaction_id, transaction_tags.c.tag_id).where(
                transaction_tags.c.transaction_id.in_(list(ids))
            )
        ).all()
        mapping: dict[str, set[str]] = {}
        for row in rows:
            mapping.setdefault(row.transaction_id, set()).add(row.tag_id)
        return mapping


class ReceiptService:
    def __init__(self, session: Session, entity_id: str) -> None:
        self.session = session
        self.entity_id = entity_id

    def list_recent(self, limit: int = 200) -> list[Receipt]:
        stmt = (
            select(Receipt)
            .where(Receipt.entity_id == self.entity_id)
            .order_by(Receipt.created_at.desc(), Receipt.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()
