"""initial ledger schema

Revision ID: 202601150900
Revises:
Create Date: 2026-01-15 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601150900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "entities",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("entity_type", sa.String(length=50)),
        sa.Column("ein", sa.String(length=20)),
        *_timestamps(),
    )
    op.create_index("ix_entities_tenant_name", "entities", ["tenant_id", "name"])

    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id"), nullable=False
        ),
        sa.Column("entity_id", sa.String(length=36), sa.ForeignKey("entities.id")),
        sa.Column("plaid_account_id", sa.String(length=100), nullable=False, unique=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("official_name", sa.String(length=200)),
        sa.Column("display_name", sa.String(length=200)),
        sa.Column("mask", sa.String(length=10)),
        sa.Column(
            "type",
            sa.Enum(
                "depository",
                "credit",
                "loan",
                "investment",
                "other",
                name="accounttype",
            ),
            nullable=False,
        ),
        sa.Column("subtype", sa.String(length=50)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("balance_current", sa.Float()),
        sa.Column("balance_available", sa.Float()),
        sa.Column("institution_name", sa.String(length=200)),
        *_timestamps(),
    )

    op.create_table(
        "tags",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("color", sa.String(length=9)),
        *_timestamps(),
        sa.UniqueConstraint("tenant_id", "name", name="uq_tag_tenant_name"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("plaid_transaction_id", sa.String(length=100), unique=True),
        sa.Column("tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id")),
        sa.Column("entity_id", sa.String(length=36), sa.ForeignKey("entities.id")),
        sa.Column("account_id", sa.String(length=100), nullable=False),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("iso_currency_code", sa.String(length=3)),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("authorized_date", sa.Date()),
        sa.Column("merchant_name", sa.String(length=200)),
        sa.Column("name", sa.String(length=300)),
        sa.Column("category", sa.JSON()),
        sa.Column("pfc_primary", sa.String(length=100)),
        sa.Column("pfc_detailed", sa.String(length=100)),
        sa.Column("coa_keywords", sa.String(length=200)),
        sa.Column("categorization_source", sa.String(length=50)),
        sa.Column("categorized_at", sa.DateTime()),
        sa.Column("institution_name", sa.String(length=200)),
        sa.Column("pending", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_removed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "review_status",
            sa.Enum("flagged", "approved", "rejected", name="reviewstatus"),
        ),
        sa.Column("review_notes", sa.Text()),
        sa.Column("reviewed_at", sa.DateTime()),
        sa.Column("reviewed_by", sa.String(length=200)),
        *_timestamps(),
    )
    op.create_index(
        "ix_transactions_entity_date", "transactions", ["entity_id", "date"]
    )
    op.create_index(
        "ix_transactions_entity_account_date",
        "transactions",
        ["entity_id", "account_id", "date"],
    )

    op.create_table(
        "transaction_tags",
        sa.Column(
            "transaction_id",
            sa.String(length=36),
            sa.ForeignKey("transactions.id"),
            primary_key=True,
        ),
        sa.Column(
            "tag_id", sa.String(length=36), sa.ForeignKey("tags.id"), primary_key=True
        ),
    )

    op.create_table(
        "receipts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id"), nullable=False
        ),
        sa.Column(
            "entity_id", sa.String(length=36), sa.ForeignKey("entities.id"), nullable=False
        ),
        sa.Column("vendor", sa.String(length=200)),
        sa.Column("amount", sa.Float()),
        sa.Column("date", sa.Date()),
        sa.Column(
            "match_status", sa.String(length=30), nullable=False, server_default="unmatched"
        ),
        sa.Column("match_confidence", sa.Float(), nullable=False, server_default="0"),
        sa.Column("ocr_confidence", sa.Float(), nullable=False, server_default="0"),
        sa.Column(
            "matched_transaction_id", sa.String(length=36), sa.ForeignKey("transactions.id")
        ),
        sa.Column("storage_path", sa.String(length=500)),
        *_timestamps(),
    )
    op.create_index("ix_receipts_entity_created", "receipts", ["entity_id", "created_at"])


def downgrade():
    op.drop_index("ix_receipts_entity_created", table_name="receipts")
    op.drop_table("receipts")
    op.drop_table("transaction_tags")
    op.drop_index("ix_transactions_entity_account_date", table_name="transactions")
    op.drop_index("ix_transactions_entity_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("tags")
    op.drop_table("accounts")
    op.drop_index("ix_entities_tenant_name", table_name="entities")
    op.drop_table("entities")
    op.drop_table("tenants")
