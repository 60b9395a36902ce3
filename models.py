import uuid
import datetime as dt
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class AccountType(str, Enum):
    depository = "depository"
    credit = "credit"
    loan = "loan"
    investment = "investment"
    other = "other"


class ReviewStatus(str, Enum):
    flagged = "flagged"
    approved = "approved"
    rejected = "rejected"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Tenant(Base, TimestampMixin):
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    entities: Mapped[list["Entity"]] = relationship(
        "Entity", back_populates="tenant"
    )


class Entity(Base, TimestampMixin):
    __tablename__ = "entities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    entity_type: Mapped[Optional[str]] = mapped_column(String(50))
    ein: Mapped[Optional[str]] = mapped_column(String(20))

    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="entities")
    accounts: Mapped[list["Account"]] = relationship(
        "Account", back_populates="entity"
    )

    __table_args__ = (Index("ix_entities_tenant_name", "tenant_id", "name"),)


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(ForeignKey("entities.id"))
    plaid_account_id: Mapped[str] = mapped_column(
        String(100), nullable=False, unique=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    official_name: Mapped[Optional[str]] = mapped_column(String(200))
    display_name: Mapped[Optional[str]] = mapped_column(String(200))
    mask: Mapped[Optional[str]] = mapped_column(String(10))
    type: Mapped[AccountType] = mapped_column(
        SAEnum(AccountType), nullable=False, default=AccountType.depository
    )
    subtype: Mapped[Optional[str]] = mapped_column(String(50))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    balance_current: Mapped[Optional[float]] = mapped_column(Float)
    balance_available: Mapped[Optional[float]] = mapped_column(Float)
    institution_name: Mapped[Optional[str]] = mapped_column(String(200))

    entity: Mapped[Optional["Entity"]] = relationship(
        "Entity", back_populates="accounts"
    )


class Tag(Base, TimestampMixin):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("tenant_id", "name", name="uq_tag_tenant_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(9))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", secondary="transaction_tags", back_populates="tags"
    )


transaction_tags = Table(
    "transaction_tags",
    Base.metadata,
    Column(
        "transaction_id", String(36), ForeignKey("transactions.id"), primary_key=True
    ),
    Column("tag_id", String(36), ForeignKey("tags.id"), primary_key=True),
)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    plaid_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True
    )
    tenant_id: Mapped[Optional[str]] = mapped_column(ForeignKey("tenants.id"))
    entity_id: Mapped[Optional[str]] = mapped_column(ForeignKey("entities.id"))
    # external aggregator account id, matches Account.plaid_account_id
    account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    iso_currency_code: Mapped[Optional[str]] = mapped_column(String(3))
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    authorized_date: Mapped[Optional[dt.date]] = mapped_column(Date)
    merchant_name: Mapped[Optional[str]] = mapped_column(String(200))
    name: Mapped[Optional[str]] = mapped_column(String(300))
    category: Mapped[Optional[list]] = mapped_column(JSON)
    pfc_primary: Mapped[Optional[str]] = mapped_column(String(100))
    pfc_detailed: Mapped[Optional[str]] = mapped_column(String(100))
    coa_keywords: Mapped[Optional[str]] = mapped_column(String(200))
    categorization_source: Mapped[Optional[str]] = mapped_column(String(50))
    categorized_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    institution_name: Mapped[Optional[str]] = mapped_column(String(200))
    pending: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_removed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    review_status: Mapped[Optional[ReviewStatus]] = mapped_column(
        SAEnum(ReviewStatus)
    )
    review_notes: Mapped[Optional[str]] = mapped_column(Text)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(200))

    tags: Mapped[list["Tag"]] = relationship(
        "Tag", secondary="transaction_tags", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_entity_date", "entity_id", "date"),
        Index("ix_transactions_entity_account_date", "entity_id", "account_id", "date"),
    )


class Receipt(Base, TimestampMixin):
    __tablename__ = "receipts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(ForeignKey("tenants.id"), nullable=False)
    entity_id: Mapped[str] = mapped_column(ForeignKey("entities.id"), nullable=False)
    vendor: Mapped[Optional[str]] = mapped_column(String(200))
    amount: Mapped[Optional[float]] = mapped_column(Float)
    date: Mapped[Optional[dt.date]] = mapped_column(Date)
    match_status: Mapped[str] = mapped_column(
        String(30), nullable=False, default="unmatched"
    )
    match_confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    ocr_confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    matched_transaction_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("transactions.id")
    )
    storage_path: Mapped[Optional[str]] = mapped_column(String(500))

    __table_args__ = (Index("ix_receipts_entity_created", "entity_id", "created_at"),)
