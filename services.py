from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import AuthError, hash_password, verify_password
from models import Category, Transaction, TransactionType, User
from money import amount_to_cents, average_amount, cents_to_amount
from periods import custom_period, month_period
from schemas import (
    ProfileUpdateIn,
    RegisterIn,
    TransactionIn,
    TransactionPatch,
)

logger = logging.getLogger(__name__)


class NotFound(ValueError):
    pass


# Largest id an INTEGER PRIMARY KEY can hold.
MAX_ROW_ID = 2**63 - 1


class Conflict(ValueError):
    pass


DEFAULT_CATEGORIES: tuple[tuple[str, TransactionType], ...] = (
    ("Salário", TransactionType.income),
    ("Freelance", TransactionType.income),
    ("Investimentos", TransactionType.income),
    ("Outros", TransactionType.income),
    ("Alimentação", TransactionType.expense),
    ("Transporte", TransactionType.expense),
    ("Moradia", TransactionType.expense),
    ("Lazer", TransactionType.expense),
    ("Saúde", TransactionType.expense),
    ("Educação", TransactionType.expense),
    ("Compras", TransactionType.expense),
    ("Outros", TransactionType.expense),
)


def seed_default_categories(session: Session) -> int:
    """Insert the default categories when the table is empty."""
    existing = session.execute(select(func.count(Category.id))).scalar_one() or 0
    if existing:
        return 0
    session.add_all(
        Category(name=name, type=category_type)
        for name, category_type in DEFAULT_CATEGORIES
    )
    session.flush()
    return len(DEFAULT_CATEGORIES)


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    category: Optional[str] = None


@dataclass(frozen=True)
class BalanceSummary:
    total: Decimal
    total_income: Decimal
    total_expense: Decimal


@dataclass(frozen=True)
class MonthlySummary:
    month: int
    year: int
    income: Decimal
    expense: Decimal
    balance: Decimal


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    type: TransactionType
    total: Decimal


@dataclass(frozen=True)
class DashboardView:
    balance: BalanceSummary
    monthly: MonthlySummary
    category_breakdown: list[CategoryTotal]


@dataclass(frozen=True)
class PeriodBucket:
    period: str  # YYYY-MM
    type: TransactionType
    total: Decimal
    count: int


@dataclass(frozen=True)
class CategoryStat:
    category: str
    type: TransactionType
    total: Decimal
    count: int
    average: Decimal


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _email_taken(self, email: str, *, exclude_id: Optional[int] = None) -> bool:
        stmt = select(User.id).where(User.email == email)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def _commit_unique(self) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict("Email already registered") from exc

    def register(self, data: RegisterIn) -> User:
        if self._email_taken(data.email):
            raise Conflict("Email already registered")
        user = User(
            name=data.name,
            email=data.email,
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        self._commit_unique()
        self.session.refresh(user)
        logger.info("user_registered: user_id=%s", user.id)
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.session.scalar(select(User).where(User.email == email))
        if not user or not verify_password(password, user.password_hash):
            raise AuthError("Invalid credentials")
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def update_profile(self, user_id: int, data: ProfileUpdateIn) -> User:
        if data.name is None and data.email is None:
            raise ValueError("Provide at least one field to update")
        user = self.get(user_id)
        if data.email is not None and data.email != user.email:
            if self._email_taken(data.email, exclude_id=user.id):
                raise Conflict("Email already in use")
            user.email = data.email
        if data.name is not None:
            user.name = data.name
        self._commit_unique()
        self.session.refresh(user)
        return user


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(
        self, category_type: Optional[TransactionType] = None
    ) -> list[Category]:
        stmt = select(Category).order_by(Category.name, Category.type, Category.id)
        if category_type:
            stmt = stmt.where(Category.type == category_type)
        return list(self.session.scalars(stmt).all())


class TransactionService:
    """Transactions of a single owner; other users' rows are never visible."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            description=data.description,
            amount_cents=amount_to_cents(data.amount),
            type=data.type,
            category=data.category,
            date=data.date,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info("transaction_created: user_id=%s id=%s", self.user_id, txn.id)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        if not 0 < transaction_id <= MAX_ROW_ID:
            raise NotFound("Transaction not found")
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def list(self, filters: Optional[TransactionFilters] = None) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(
                Transaction.date.desc(),
                Transaction.created_at.desc(),
                Transaction.id.desc(),
            )
        )
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.date_from:
            stmt = stmt.where(Transaction.date >= filters.date_from)
        if filters.date_to:
            stmt = stmt.where(Transaction.date <= filters.date_to)
        if filters.category:
            stmt = stmt.where(Transaction.category == filters.category)
        return list(self.session.scalars(stmt).all())

    def update(self, transaction_id: int, patch: TransactionPatch) -> Transaction:
        txn = self.get(transaction_id)
        changes = patch.changes()
        if not changes:
            raise ValueError("No fields to update")

        for field, value in changes.items():
            if field == "amount":
                txn.amount_cents = amount_to_cents(value)
            else:
                setattr(txn, field, value)

        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            "transaction_updated: user_id=%s id=%s fields=%s",
            self.user_id,
            txn.id,
            ",".join(sorted(changes)),
        )
        return txn

    def delete(self, transaction_id: int) -> None:
        if not 0 < transaction_id <= MAX_ROW_ID:
            raise NotFound("Transaction not found")
        result = self.session.execute(
            delete(Transaction).where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not result.rowcount:
            self.session.rollback()
            raise NotFound("Transaction not found")
        self.session.commit()
        logger.info(
            "transaction_deleted: user_id=%s id=%s", self.user_id, transaction_id
        )


class ReportService:
    """Read-only summaries over one owner's transactions.

    Sums are taken over integer cents in the database and converted to
    two-decimal ``Decimal`` values; groups with no rows read as zero.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _income_expense(
        self, start: Optional[date], end: Optional[date]
    ) -> tuple[int, int]:
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.income,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.expense,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("expense"),
        ).where(Transaction.user_id == self.user_id)
        if start and end:
            stmt = stmt.where(Transaction.date.between(start, end))
        row = self.session.execute(stmt).one()
        return int(row.income or 0), int(row.expense or 0)

    def dashboard(
        self,
        month: Optional[int] = None,
        year: Optional[int] = None,
        *,
        today: date,
    ) -> DashboardView:
        period = month_period(month, year, today=today)

        total_income, total_expense = self._income_expense(None, None)
        month_income, month_expense = self._income_expense(period.start, period.end)

        total_cents = func.sum(Transaction.amount_cents)
        rows = self.session.execute(
            select(
                Transaction.category,
                Transaction.type,
                total_cents.label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.category, Transaction.type)
            .order_by(total_cents.desc(), Transaction.category, Transaction.type)
        ).all()

        return DashboardView(
            balance=BalanceSummary(
                total=cents_to_amount(total_income - total_expense),
                total_income=cents_to_amount(total_income),
                total_expense=cents_to_amount(total_expense),
            ),
            monthly=MonthlySummary(
                month=period.month,
                year=period.year,
                income=cents_to_amount(month_income),
                expense=cents_to_amount(month_expense),
                balance=cents_to_amount(month_income - month_expense),
            ),
            category_breakdown=[
                CategoryTotal(
                    category=row.category,
                    type=row.type,
                    total=cents_to_amount(row.total),
                )
                for row in rows
            ],
        )

    def report_by_period(
        self,
        start: Optional[date],
        end: Optional[date],
        transaction_type: Optional[TransactionType] = None,
    ) -> list[PeriodBucket]:
        period = custom_period(start, end)

        month_key = func.strftime("%Y-%m", Transaction.date).label("period")
        stmt = (
            select(
                month_key,
                Transaction.type,
                func.sum(Transaction.amount_cents).label("total"),
                func.count(Transaction.id).label("count"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(month_key, Transaction.type)
            .order_by(month_key.desc(), Transaction.type)
        )
        if transaction_type:
            stmt = stmt.where(Transaction.type == transaction_type)

        return [
            PeriodBucket(
                period=row.period,
                type=row.type,
                total=cents_to_amount(row.total),
                count=int(row.count),
            )
            for row in self.session.execute(stmt).all()
        ]

    def category_report(
        self,
        month: Optional[int] = None,
        year: Optional[int] = None,
        *,
        today: date,
    ) -> list[CategoryStat]:
        period = month_period(month, year, today=today)

        total_cents = func.sum(Transaction.amount_cents)
        rows = self.session.execute(
            select(
                Transaction.category,
                Transaction.type,
                total_cents.label("total"),
                func.count(Transaction.id).label("count"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .group_by(Transaction.category, Transaction.type)
            .order_by(total_cents.desc(), Transaction.category, Transaction.type)
        ).all()

        return [
            CategoryStat(
                category=row.category,
                type=row.type,
                total=cents_to_amount(row.total),
                count=int(row.count),
                average=average_amount(int(row.total or 0), int(row.count)),
            )
            for row in rows
        ]
