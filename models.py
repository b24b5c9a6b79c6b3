from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class Direction(str, Enum):
    credit = "credit"
    debit = "debit"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    color: Mapped[str] = mapped_column(String(20), nullable=False)
    icon: Mapped[Optional[str]] = mapped_column(String(16))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint(
            "account_id",
            "transaction_date",
            "amount_cents",
            "description",
            name="uq_transaction_account_date_amount_description",
        ),
        CheckConstraint("amount_cents >= 0", name="ck_transaction_amount_positive"),
        Index("idx_transactions_date", "transaction_date"),
        Index("idx_transactions_category", "category_id"),
        Index("idx_transactions_account", "account_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)
    # Lower-cased on ingest; queries still compare through func.lower().
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    transaction_type: Mapped[str] = mapped_column(
        String(64), nullable=False, default="Other"
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    card_number: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    posted_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    posting_date: Mapped[str] = mapped_column(String(10), nullable=False, default="")
    value_date: Mapped[str] = mapped_column(String(10), nullable=False, default="")
    action_date: Mapped[str] = mapped_column(String(10), nullable=False, default="")
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    running_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    category_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("categories.id", ondelete="SET NULL")
    )

    category: Mapped[Optional[Category]] = relationship(
        "Category", back_populates="transactions"
    )

    @property
    def direction(self) -> Optional[Direction]:
        try:
            return Direction((self.type or "").lower())
        except ValueError:
            return None

    @property
    def signed_amount_cents(self) -> int:
        if self.direction == Direction.debit:
            return -self.amount_cents
        return self.amount_cents


class KeyValueEntry(Base, TimestampMixin):
    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
