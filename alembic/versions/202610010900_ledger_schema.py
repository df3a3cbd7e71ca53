"""ledger schema: links, accounts, transactions

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "links",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("external_link_id", sa.String(length=128), nullable=False),
        sa.Column("access_token_encrypted", sa.Text(), nullable=False),
        sa.Column("institution_id", sa.String(length=64)),
        sa.Column("institution_name", sa.String(length=200)),
        sa.Column("cursor", sa.Text()),
        sa.Column("last_synced_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("external_link_id"),
    )
    op.create_index("ix_links_user_id", "links", ["user_id"])

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("link_id", sa.Integer(), sa.ForeignKey("links.id"), nullable=False),
        sa.Column("external_account_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("mask", sa.String(length=10)),
        sa.Column("type", sa.String(length=40), nullable=False),
        sa.Column("subtype", sa.String(length=60)),
        sa.Column("current_balance", sa.Float(), nullable=False, server_default="0"),
        sa.Column("available_balance", sa.Float()),
        sa.Column("iso_currency_code", sa.String(length=3)),
        sa.Column("unofficial_currency_code", sa.String(length=10)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("external_account_id"),
    )
    op.create_index("ix_accounts_user_link", "accounts", ["user_id", "link_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("link_id", sa.Integer(), sa.ForeignKey("links.id"), nullable=False),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("external_transaction_id", sa.String(length=128), nullable=False),
        sa.Column("pending_transaction_id", sa.String(length=128)),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("iso_currency_code", sa.String(length=3)),
        sa.Column("unofficial_currency_code", sa.String(length=10)),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("authorized_date", sa.Date()),
        sa.Column("pending", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_channel", sa.String(length=40)),
        sa.Column("name", sa.String(length=300), nullable=False),
        sa.Column("merchant_name", sa.String(length=300)),
        sa.Column("primary_category", sa.String(length=100)),
        sa.Column("detailed_category", sa.String(length=150)),
        sa.Column("raw_json", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("external_transaction_id"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "primary_category", "date"],
    )
    op.create_index("ix_transactions_link", "transactions", ["link_id"])


def downgrade():
    op.drop_index("ix_transactions_link", table_name="transactions")
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_accounts_user_link", table_name="accounts")
    op.drop_table("accounts")
    op.drop_index("ix_links_user_id", table_name="links")
    op.drop_table("links")
