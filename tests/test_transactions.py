from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from database import Base, create_db_engine
from models import Transaction, TransactionType, User
from schemas import TransactionIn, TransactionPatch
from services import NotFound, TransactionFilters, TransactionService


def make_session():
    engine = create_db_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_user(session, email: str = "ana@example.com") -> User:
    user = User(name="Ana", email=email, password_hash="not-a-real-hash")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def txn_in(
    description: str = "Mercado",
    amount: str = "50.00",
    txn_type: TransactionType = TransactionType.expense,
    category: str = "Alimentação",
    on: date = date(2024, 3, 5),
) -> TransactionIn:
    return TransactionIn(
        description=description,
        amount=Decimal(amount),
        type=txn_type,
        category=category,
        date=on,
    )


def test_create_then_get_returns_stored_fields() -> None:
    session = make_session()
    user = make_user(session)
    service = TransactionService(session, user.id)

    created = service.create(txn_in())
    fetched = service.get(created.id)

    assert fetched.id == created.id
    assert fetched.user_id == user.id
    assert fetched.description == "Mercado"
    assert fetched.amount == Decimal("50.00")
    assert fetched.amount_cents == 5_000
    assert fetched.type == TransactionType.expense
    assert fetched.category == "Alimentação"
    assert fetched.date == date(2024, 3, 5)
    assert fetched.created_at is not None
    assert fetched.updated_at is not None


def test_other_users_transactions_are_not_found() -> None:
    session = make_session()
    alice = make_user(session, "alice@example.com")
    bob = make_user(session, "bob@example.com")
    bobs_txn = TransactionService(session, bob.id).create(txn_in())

    as_alice = TransactionService(session, alice.id)
    with pytest.raises(NotFound):
        as_alice.get(bobs_txn.id)
    with pytest.raises(NotFound):
        as_alice.update(bobs_txn.id, TransactionPatch(description="Hijack"))
    with pytest.raises(NotFound):
        as_alice.delete(bobs_txn.id)

    untouched = TransactionService(session, bob.id).get(bobs_txn.id)
    assert untouched.description == "Mercado"


def test_ids_outside_the_integer_range_are_not_found() -> None:
    session = make_session()
    user = make_user(session)
    service = TransactionService(session, user.id)
    huge = 10**23

    with pytest.raises(NotFound):
        service.get(huge)
    with pytest.raises(NotFound):
        service.update(huge, TransactionPatch(description="x"))
    with pytest.raises(NotFound):
        service.delete(huge)
    with pytest.raises(NotFound):
        service.get(0)


def test_list_by_type_returns_only_matching_transactions() -> None:
    session = make_session()
    user = make_user(session)
    service = TransactionService(session, user.id)
    service.create(
        txn_in("Salário março", "2000.00", TransactionType.income, "Salário")
    )
    expense = service.create(txn_in())

    items = service.list(TransactionFilters(type=TransactionType.expense))

    assert [t.id for t in items] == [expense.id]


def test_list_filters_are_combined() -> None:
    session = make_session()
    user = make_user(session)
    service = TransactionService(session, user.id)
    service.create(txn_in("Feira", on=date(2024, 2, 28)))
    in_range = service.create(txn_in("Padaria", on=date(2024, 3, 10)))
    service.create(txn_in("Ônibus", category="Transporte", on=date(2024, 3, 11)))
    service.create(txn_in("Restaurante", on=date(2024, 4, 1)))

    items = service.list(
        TransactionFilters(
            date_from=date(2024, 3, 1),
            date_to=date(2024, 3, 31),
            category="Alimentação",
        )
    )

    assert [t.id for t in items] == [in_range.id]


def test_list_orders_newest_date_first_then_latest_created() -> None:
    session = make_session()
    user = make_user(session)
    service = TransactionService(session, user.id)
    older = service.create(txn_in("A", on=date(2024, 3, 1)))
    first_same_day = service.create(txn_in("B", on=date(2024, 3, 5)))
    second_same_day = service.create(txn_in("C", on=date(2024, 3, 5)))

    items = service.list()

    assert [t.id for t in items] == [second_same_day.id, first_same_day.id, older.id]


def test_list_without_matches_is_empty() -> None:
    session = make_session()
    user = make_user(session)
    service = TransactionService(session, user.id)
    service.create(txn_in())

    assert service.list(TransactionFilters(category="Lazer")) == []


def test_update_applies_only_supplied_fields() -> None:
    session = make_session()
    user = make_user(session)
    service = TransactionService(session, user.id)
    txn = service.create(txn_in())

    updated = service.update(
        txn.id, TransactionPatch(amount=Decimal("75.50"), category="Lazer")
    )

    assert updated.amount == Decimal("75.50")
    assert updated.category == "Lazer"
    assert updated.description == "Mercado"
    assert updated.type == TransactionType.expense
    assert updated.date == date(2024, 3, 5)


def test_update_accepts_kind_alias() -> None:
    session = make_session()
    user = make_user(session)
    service = TransactionService(session, user.id)
    txn = service.create(txn_in())

    patch = TransactionPatch.model_validate({"kind": "income"})
    updated = service.update(txn.id, patch)

    assert updated.type == TransactionType.income


def test_update_with_empty_patch_is_rejected() -> None:
    session = make_session()
    user = make_user(session)
    service = TransactionService(session, user.id)
    txn = service.create(txn_in())

    with pytest.raises(ValueError, match="No fields to update"):
        service.update(txn.id, TransactionPatch())


def test_update_with_identical_values_keeps_business_fields() -> None:
    session = make_session()
    user = make_user(session)
    service = TransactionService(session, user.id)
    txn = service.create(txn_in())
    before = (txn.description, txn.amount_cents, txn.type, txn.category, txn.date)

    service.update(
        txn.id,
        TransactionPatch(
            description="Mercado",
            amount=Decimal("50.00"),
            type=TransactionType.expense,
            category="Alimentação",
            date=date(2024, 3, 5),
        ),
    )
    after = service.get(txn.id)

    assert (
        after.description,
        after.amount_cents,
        after.type,
        after.category,
        after.date,
    ) == before


def test_patch_rejects_non_positive_amount() -> None:
    with pytest.raises(ValidationError):
        TransactionPatch(amount=Decimal("-5"))
    with pytest.raises(ValidationError):
        TransactionPatch(amount=Decimal("0"))


def test_patch_rejects_explicit_null_and_bad_type() -> None:
    with pytest.raises(ValidationError):
        TransactionPatch.model_validate({"description": None})
    with pytest.raises(ValidationError):
        TransactionPatch.model_validate({"type": "transfer"})


def test_transaction_input_requires_every_field() -> None:
    with pytest.raises(ValidationError):
        TransactionIn.model_validate(
            {
                "description": "Sem data",
                "amount": 10,
                "type": "expense",
                "category": "X",
            }
        )
    with pytest.raises(ValidationError):
        TransactionIn.model_validate(
            {
                "description": "   ",
                "amount": 10,
                "type": "expense",
                "category": "X",
                "date": "2024-03-05",
            }
        )


def test_transaction_input_rejects_unknown_type() -> None:
    with pytest.raises(ValidationError):
        TransactionIn.model_validate(
            {
                "description": "Pix",
                "amount": 10,
                "type": "transfer",
                "category": "Outros",
                "date": "2024-03-05",
            }
        )


def test_transaction_input_accepts_kind_alias_and_numeric_amount() -> None:
    data = TransactionIn.model_validate(
        {
            "description": "Freela",
            "amount": 19.99,
            "kind": "income",
            "category": " Freelance ",
            "date": "2024-03-05",
        }
    )

    assert data.type == TransactionType.income
    assert data.amount == Decimal("19.99")
    assert data.category == "Freelance"


def test_delete_removes_transaction_and_repeat_is_not_found() -> None:
    session = make_session()
    user = make_user(session)
    service = TransactionService(session, user.id)
    txn = service.create(txn_in())

    service.delete(txn.id)

    with pytest.raises(NotFound):
        service.get(txn.id)
    with pytest.raises(NotFound):
        service.delete(txn.id)


def test_deleting_user_cascades_to_transactions() -> None:
    session = make_session()
    user = make_user(session)
    TransactionService(session, user.id).create(txn_in())
    TransactionService(session, user.id).create(txn_in("Aluguel", "1200.00"))

    session.delete(user)
    session.commit()

    remaining = session.execute(select(func.count(Transaction.id))).scalar_one()
    assert remaining == 0
