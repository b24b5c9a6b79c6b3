from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import and_, case, delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from database import Base
from models import Category, Direction, Transaction
from schemas import CategoryIn, TransactionIn


logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"
UNCATEGORIZED_COLOR = "#9E9E9E"

DEFAULT_CATEGORIES: tuple[tuple[str, str, str], ...] = (
    ("Groceries", "#4CAF50", "🛒"),
    ("Dining", "#FF9800", "🍽️"),
    ("Transportation", "#2196F3", "🚗"),
    ("Entertainment", "#E91E63", "🎬"),
    ("Shopping", "#9C27B0", "🛍️"),
    ("Bills", "#F44336", "📄"),
    ("Healthcare", "#00BCD4", "🏥"),
    ("Income", "#8BC34A", "💰"),
    ("Other", "#607D8B", "📌"),
)

# Columns that identify a remote record across syncs.
UPSERT_KEY = ("account_id", "transaction_date", "amount_cents", "description")


def cents_to_rands(cents: int) -> float:
    return cents / 100


def _insert_for(session: Session):
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


def _is_debit():
    return func.lower(Transaction.type) == Direction.debit.value


def _is_credit():
    return func.lower(Transaction.type) == Direction.credit.value


def _date_window(column, start: Optional[date], end: Optional[date]) -> list:
    clauses = []
    if start is not None:
        clauses.append(column >= start)
    if end is not None:
        clauses.append(column <= end)
    return clauses


def init_store(session: Session) -> None:
    """Create missing tables and indexes, then seed the default categories.

    Safe to call any number of times; existing rows are never touched.
    """
    Base.metadata.create_all(session.get_bind(), checkfirst=True)
    now = datetime.utcnow()
    insert = _insert_for(session)
    for name, color, icon in DEFAULT_CATEGORIES:
        stmt = (
            insert(Category)
            .values(name=name, color=color, icon=icon, created_at=now, updated_at=now)
            .on_conflict_do_nothing(index_elements=["name"])
        )
        session.execute(stmt)
    session.commit()


class CategoryNotFound(ValueError):
    pass


class CategoryAmbiguous(ValueError):
    pass


@dataclass(frozen=True)
class CategoryTotal:
    category_id: Optional[int]
    category_name: str
    category_color: str
    total_cents: int
    count: int


@dataclass(frozen=True)
class IncomeSpending:
    income_cents: int
    spending_cents: int

    @property
    def net_cents(self) -> int:
        return self.income_cents - self.spending_cents


@dataclass(frozen=True)
class BatchResult:
    applied: int
    failed: int


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        return self.session.scalars(select(Category).order_by(Category.name)).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise CategoryNotFound("Category not found")
        return category

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Category.id).where(func.lower(Category.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        if self._name_taken(name):
            raise ValueError("Category with this name already exists")
        category = Category(name=name, color=data.color, icon=data.icon or None)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryIn) -> Category:
        category = self.get(category_id)
        name = data.name.strip()
        if self._name_taken(name, exclude_id=category_id):
            raise ValueError("Category with this name already exists")
        category.name = name
        category.color = data.color
        category.icon = data.icon or None
        self.session.commit()
        return category

    def delete(self, category_id: int) -> None:
        """Detach every transaction from the category, then drop it.

        Both statements commit together so no reader sees a transaction
        pointing at a removed category.
        """
        self.get(category_id)
        try:
            detached = self.session.execute(
                update(Transaction)
                .where(Transaction.category_id == category_id)
                .values(category_id=None)
            ).rowcount
            self.session.execute(delete(Category).where(Category.id == category_id))
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise
        self.session.expire_all()
        logger.info(f"category_deleted: id={category_id} detached={detached}")

    def find_by_name(self, name: str) -> Category:
        """Resolve a user-typed name: exact (case-insensitive), else one edit away."""
        input_lower = name.strip().lower()
        if not input_lower:
            raise CategoryNotFound("Category name cannot be empty")
        exact = self.session.scalar(
            select(Category).where(func.lower(Category.name) == input_lower)
        )
        if exact:
            return exact

        best_distance: Optional[int] = None
        best: list[Category] = []
        for category in self.list_all():
            dist = int(Levenshtein.distance(input_lower, category.name.lower()))
            if best_distance is None or dist < best_distance:
                best_distance = dist
                best = [category]
            elif dist == best_distance:
                best.append(category)

        if best_distance is None or best_distance > 1:
            raise CategoryNotFound(f"Category '{name}' not found")
        if len(best) > 1:
            options = ", ".join(sorted(c.name for c in best))
            raise CategoryAmbiguous(f"Category '{name}' is ambiguous; matches: {options}")
        return best[0]


class TransactionService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def upsert(self, data: TransactionIn) -> int:
        """Insert or overwrite the row sharing ``UPSERT_KEY`` and return its id.

        The row id and any user-assigned category survive the overwrite.
        """
        values = data.model_dump()
        now = datetime.utcnow()
        insert = _insert_for(self.session)
        stmt = insert(Transaction).values(**values, created_at=now, updated_at=now)
        overwrite = {
            key: stmt.excluded[key] for key in values if key not in UPSERT_KEY
        }
        overwrite["updated_at"] = now
        stmt = stmt.on_conflict_do_update(
            index_elements=list(UPSERT_KEY), set_=overwrite
        ).returning(Transaction.id)
        txn_id = self.session.execute(stmt).scalar_one()
        self.session.commit()
        return txn_id

    def batch_upsert(self, items: Iterable[TransactionIn]) -> BatchResult:
        applied = 0
        failed = 0
        for item in items:
            try:
                self.upsert(item)
                applied += 1
            except (SQLAlchemyError, OverflowError):
                self.session.rollback()
                failed += 1
                logger.exception(
                    f"upsert_failed: account={item.account_id} "
                    f"date={item.transaction_date} description={item.description!r}"
                )
        self.session.expire_all()
        return BatchResult(applied=applied, failed=failed)

    def set_category(self, transaction_id: int, category_id: Optional[int]) -> None:
        if category_id is not None and not self.session.get(Category, category_id):
            raise CategoryNotFound("Category not found")
        result = self.session.execute(
            update(Transaction)
            .where(Transaction.id == transaction_id)
            .values(category_id=category_id)
        )
        if result.rowcount == 0:
            self.session.rollback()
            raise ValueError("Transaction not found")
        self.session.commit()
        self.session.expire_all()

    def _base_query(self):
        return select(Transaction).options(joinedload(Transaction.category))

    def _ordered(self, stmt):
        return stmt.order_by(Transaction.transaction_date.desc(), Transaction.id.desc())

    def list(self, limit: Optional[int] = None, offset: int = 0) -> list[Transaction]:
        stmt = self._ordered(self._base_query())
        if limit:
            stmt = stmt.limit(limit)
        if offset:
            stmt = stmt.offset(offset)
        return self.session.scalars(stmt).all()

    def get(self, transaction_id: int) -> Optional[Transaction]:
        return self.session.scalar(
            self._base_query().where(Transaction.id == transaction_id)
        )

    def search(self, term: str) -> list[Transaction]:
        like = f"%{term.lower()}%"
        stmt = self._base_query().where(func.lower(Transaction.description).like(like))
        return self.session.scalars(self._ordered(stmt)).all()

    def by_category(self, category_id: int) -> list[Transaction]:
        stmt = self._base_query().where(Transaction.category_id == category_id)
        return self.session.scalars(self._ordered(stmt)).all()

    def between(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[Transaction]:
        stmt = self._base_query().where(
            *_date_window(Transaction.transaction_date, start, end)
        )
        return self.session.scalars(self._ordered(stmt)).all()

    def recent_debits(self, limit: int = 20) -> list[Transaction]:
        stmt = self._ordered(self._base_query().where(_is_debit())).limit(limit)
        return self.session.scalars(stmt).all()

    def count(self) -> int:
        return int(
            self.session.scalar(select(func.count()).select_from(Transaction)) or 0
        )

    def clear_all(self) -> int:
        removed = self.session.execute(delete(Transaction)).rowcount
        self.session.commit()
        logger.info(f"transactions_cleared: removed={removed}")
        return removed


class MetricsService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def category_totals(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[CategoryTotal]:
        """Signed totals (credit positive, debit negative) for every category.

        The date window sits in the join condition so categories without
        activity still report a zero row.
        """
        signed = case(
            (_is_debit(), -Transaction.amount_cents), else_=Transaction.amount_cents
        )
        join_on = and_(
            Transaction.category_id == Category.id,
            *_date_window(Transaction.transaction_date, start, end),
        )
        total = func.coalesce(func.sum(signed), 0).label("total")
        stmt = (
            select(
                Category.id,
                Category.name,
                Category.color,
                total,
                func.count(Transaction.id).label("count"),
            )
            .select_from(Category)
            .outerjoin(Transaction, join_on)
            .group_by(Category.id, Category.name, Category.color)
            .order_by(total.desc(), Category.name)
        )
        return [
            CategoryTotal(
                category_id=row.id,
                category_name=row.name,
                category_color=row.color,
                total_cents=int(row.total or 0),
                count=int(row.count or 0),
            )
            for row in self.session.execute(stmt)
        ]

    def category_spending(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[CategoryTotal]:
        """Debit totals per category, with uncategorized debits as their own bucket."""
        stmt = (
            select(
                Transaction.category_id,
                Category.name,
                Category.color,
                func.sum(Transaction.amount_cents).label("total"),
                func.count(Transaction.id).label("count"),
            )
            .select_from(Transaction)
            .outerjoin(Category, Category.id == Transaction.category_id)
            .where(_is_debit(), *_date_window(Transaction.transaction_date, start, end))
            .group_by(Transaction.category_id, Category.name, Category.color)
        )
        out = [
            CategoryTotal(
                category_id=row.category_id,
                category_name=row.name or UNCATEGORIZED,
                category_color=row.color or UNCATEGORIZED_COLOR,
                total_cents=int(row.total or 0),
                count=int(row.count or 0),
            )
            for row in self.session.execute(stmt)
        ]
        out.sort(key=lambda t: (-t.total_cents, t.category_name))
        return out

    def income_and_spending(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> IncomeSpending:
        stmt = select(
            func.coalesce(
                func.sum(case((_is_credit(), Transaction.amount_cents), else_=0)), 0
            ).label("income"),
            func.coalesce(
                func.sum(case((_is_debit(), Transaction.amount_cents), else_=0)), 0
            ).label("spending"),
        ).where(*_date_window(Transaction.transaction_date, start, end))
        row = self.session.execute(stmt).one()
        return IncomeSpending(
            income_cents=int(row.income or 0), spending_cents=int(row.spending or 0)
        )

    def debit_stats(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> tuple[int, int]:
        """Return (count, total cents) of debits in the window."""
        row = self.session.execute(
            select(
                func.count(Transaction.id),
                func.coalesce(func.sum(Transaction.amount_cents), 0),
            ).where(_is_debit(), *_date_window(Transaction.transaction_date, start, end))
        ).one()
        return int(row[0] or 0), int(row[1] or 0)

    def uncategorized_count(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> int:
        return int(
            self.session.scalar(
                select(func.count(Transaction.id)).where(
                    Transaction.category_id.is_(None),
                    *_date_window(Transaction.transaction_date, start, end),
                )
            )
            or 0
        )

    @staticmethod
    def _add_months(d: date, count: int) -> date:
        month_index = (d.year * 12) + (d.month - 1) + count
        return date(month_index // 12, (month_index % 12) + 1, 1)

    def monthly_spending(self, today: date, months_back: int = 6) -> list[dict[str, object]]:
        """Debit totals for the trailing ``months_back`` calendar months, oldest first."""
        current = today.replace(day=1)
        months = [self._add_months(current, -i) for i in range(months_back - 1, -1, -1)]
        stmt = (
            select(
                func.strftime("%Y", Transaction.transaction_date).label("year"),
                func.strftime("%m", Transaction.transaction_date).label("month"),
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(_is_debit(), Transaction.transaction_date.between(months[0], today))
            .group_by("year", "month")
        )
        totals: dict[tuple[int, int], int] = {}
        for row in self.session.execute(stmt):
            totals[(int(row.year), int(row.month))] = int(row.total or 0)

        return [
            {
                "year": month.year,
                "month": month.month,
                "label": month.strftime("%b %Y"),
                "spending_cents": totals.get((month.year, month.month), 0),
            }
            for month in months
        ]
