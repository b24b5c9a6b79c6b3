"""initial schema

Revision ID: 202510190900
Revises:
Create Date: 2025-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202510190900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("color", sa.String(length=20), nullable=False),
        sa.Column("icon", sa.String(length=16)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.String(length=64), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column(
            "transaction_type",
            sa.String(length=64),
            nullable=False,
            server_default="Other",
        ),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("card_number", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("posted_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("posting_date", sa.String(length=10), nullable=False, server_default=""),
        sa.Column("value_date", sa.String(length=10), nullable=False, server_default=""),
        sa.Column("action_date", sa.String(length=10), nullable=False, server_default=""),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "running_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "account_id",
            "transaction_date",
            "amount_cents",
            "description",
            name="uq_transaction_account_date_amount_description",
        ),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transaction_amount_positive"),
    )
    op.create_index("idx_transactions_date", "transactions", ["transaction_date"])
    op.create_index("idx_transactions_category", "transactions", ["category_id"])
    op.create_index("idx_transactions_account", "transactions", ["account_id"])

    op.create_table(
        "kv_entries",
        sa.Column("key", sa.String(length=100), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )


def downgrade():
    op.drop_table("kv_entries")
    op.drop_index("idx_transactions_account", table_name="transactions")
    op.drop_index("idx_transactions_category", table_name="transactions")
    op.drop_index("idx_transactions_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
