from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Category, Transaction
from schemas import CategoryIn, TransactionIn
from services import (
    DEFAULT_CATEGORIES,
    CategoryAmbiguous,
    CategoryNotFound,
    CategoryService,
    TransactionService,
    init_store,
)


def _txn(**overrides) -> TransactionIn:
    data = dict(
        account_id="acc-1",
        type="debit",
        transaction_type="CardPurchases",
        status="POSTED",
        description="PICK N PAY",
        transaction_date=date(2025, 3, 1),
        amount_cents=12000,
    )
    data.update(overrides)
    return TransactionIn(**data)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    session = Session(engine)
    init_store(session)
    return session


def test_init_store_seeds_defaults_once() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        init_store(session)
        init_store(session)
        names = [c.name for c in CategoryService(session).list_all()]

    assert sorted(names) == sorted(name for name, _, _ in DEFAULT_CATEGORIES)


def test_init_store_keeps_edited_default_category() -> None:
    session = _session()
    categories = CategoryService(session)
    groceries = categories.find_by_name("Groceries")
    categories.update(groceries.id, CategoryIn(name="Groceries", color="#000000"))

    init_store(session)

    assert categories.get(groceries.id).color == "#000000"
    session.close()


def test_upsert_deduplicates_on_identity_key() -> None:
    session = _session()
    service = TransactionService(session)

    first = service.upsert(_txn())
    second = service.upsert(_txn())

    assert first == second
    assert service.count() == 1
    session.close()


def test_upsert_overwrites_fields_but_keeps_category() -> None:
    session = _session()
    service = TransactionService(session)
    groceries = CategoryService(session).find_by_name("Groceries")

    txn_id = service.upsert(_txn(status="PENDING", running_balance_cents=100))
    service.set_category(txn_id, groceries.id)
    again = service.upsert(_txn(status="POSTED", running_balance_cents=250))

    stored = service.get(txn_id)
    assert again == txn_id
    assert stored.status == "POSTED"
    assert stored.running_balance_cents == 250
    assert stored.category_id == groceries.id
    session.close()


def test_distinct_key_fields_create_separate_rows() -> None:
    session = _session()
    service = TransactionService(session)

    service.upsert(_txn())
    service.upsert(_txn(account_id="acc-2"))
    service.upsert(_txn(amount_cents=12001))
    service.upsert(_txn(transaction_date=date(2025, 3, 2)))
    service.upsert(_txn(description="PICK N PAY CLAREMONT"))

    assert service.count() == 5
    session.close()


def test_batch_upsert_counts_applied_rows() -> None:
    session = _session()
    service = TransactionService(session)

    result = service.batch_upsert([_txn(), _txn(description="Other shop"), _txn()])

    assert result.applied == 3
    assert result.failed == 0
    assert service.count() == 2
    session.close()


def test_batch_upsert_skips_failing_row_and_keeps_the_rest() -> None:
    session = _session()
    service = TransactionService(session)

    result = service.batch_upsert(
        [
            _txn(description="FIRST", amount_cents=1000),
            _txn(description="TOO BIG", amount_cents=10**20),
            _txn(description="LAST", amount_cents=2000),
        ]
    )

    assert result.applied == 2
    assert result.failed == 1
    assert service.count() == 2
    assert sorted(t.description for t in service.list()) == ["FIRST", "LAST"]
    session.close()


def test_list_applies_offset_without_limit() -> None:
    session = _session()
    service = TransactionService(session)
    for day in (1, 2, 3):
        service.upsert(_txn(description=f"DAY {day}", transaction_date=date(2025, 3, day)))

    rows = service.list(offset=1)

    assert [t.description for t in rows] == ["DAY 2", "DAY 1"]
    session.close()


def test_delete_category_detaches_transactions() -> None:
    session = _session()
    categories = CategoryService(session)
    transactions = TransactionService(session)
    dining = categories.find_by_name("Dining")
    txn_id = transactions.upsert(_txn(description="NANDOS"))
    transactions.set_category(txn_id, dining.id)

    categories.delete(dining.id)

    assert session.get(Category, dining.id) is None
    assert transactions.get(txn_id).category_id is None
    assert transactions.get(txn_id).category is None
    session.close()


def test_delete_missing_category_raises() -> None:
    session = _session()

    with pytest.raises(CategoryNotFound):
        CategoryService(session).delete(9999)
    session.close()


def test_create_category_rejects_duplicate_name_case_insensitive() -> None:
    session = _session()

    with pytest.raises(ValueError, match="already exists"):
        CategoryService(session).create(CategoryIn(name="groceries", color="#111111"))
    session.close()


def test_find_by_name_tolerates_one_edit() -> None:
    session = _session()
    categories = CategoryService(session)

    assert categories.find_by_name("dinning").name == "Dining"
    assert categories.find_by_name("  BILLS ").name == "Bills"
    with pytest.raises(CategoryNotFound):
        categories.find_by_name("Holidays")
    session.close()


def test_find_by_name_reports_ambiguous_match() -> None:
    session = _session()
    categories = CategoryService(session)
    categories.create(CategoryIn(name="Cat", color="#111111"))
    categories.create(CategoryIn(name="Car", color="#222222"))

    with pytest.raises(CategoryAmbiguous, match="Car, Cat"):
        categories.find_by_name("Caz")
    session.close()


def test_set_category_validates_ids() -> None:
    session = _session()
    transactions = TransactionService(session)
    txn_id = transactions.upsert(_txn())

    with pytest.raises(CategoryNotFound):
        transactions.set_category(txn_id, 9999)
    with pytest.raises(ValueError, match="Transaction not found"):
        transactions.set_category(9999, None)
    session.close()


def test_search_list_and_clear() -> None:
    session = _session()
    transactions = TransactionService(session)
    transactions.upsert(_txn(description="UBER TRIP", transaction_date=date(2025, 3, 3)))
    transactions.upsert(_txn(description="Uber Eats", transaction_date=date(2025, 3, 5)))
    transactions.upsert(_txn(description="SHELL GARAGE", transaction_date=date(2025, 3, 4)))

    found = transactions.search("uber")
    ordered = transactions.list()
    page = transactions.list(limit=1, offset=1)

    assert [t.description for t in found] == ["Uber Eats", "UBER TRIP"]
    assert [t.transaction_date.day for t in ordered] == [5, 4, 3]
    assert [t.description for t in page] == ["SHELL GARAGE"]

    assert transactions.clear_all() == 3
    assert transactions.count() == 0
    assert session.scalars(select(Category)).first() is not None
    session.close()


def test_recent_debits_skips_credits() -> None:
    session = _session()
    transactions = TransactionService(session)
    transactions.upsert(_txn(description="SALARY", type="credit", amount_cents=2500000))
    transactions.upsert(_txn(description="COFFEE", amount_cents=3500))

    rows = transactions.recent_debits()

    assert [t.description for t in rows] == ["COFFEE"]
    session.close()


def test_stored_amounts_are_never_negative() -> None:
    with pytest.raises(ValueError):
        _txn(amount_cents=-1)

    session = _session()
    TransactionService(session).upsert(_txn())
    amounts = session.scalars(select(Transaction.amount_cents)).all()
    assert all(a >= 0 for a in amounts)
    session.close()
