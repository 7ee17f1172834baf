from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Mapping
from uuid import uuid4

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine

from finance_insights.db import accounts, bills, categories, recurring_incomes, transactions
from finance_insights.events import (
    ACCOUNTS_CHANGED,
    BILLS_CHANGED,
    CATEGORIES_CHANGED,
    RECURRING_INCOME_CHANGED,
    TRANSACTIONS_CHANGED,
    EventBus,
)
from finance_insights.models import (
    Account,
    Bill,
    RecurringIncome,
    Transaction,
    TransactionCategory,
)
from finance_insights.recurring_income import is_currently_active

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    ("cat_salary", "Salary", "income", 0xFF4CAF50),
    ("cat_freelance", "Freelance", "income", 0xFF26A69A),
    ("cat_investment", "Investment", "income", 0xFF42A5F5),
    ("cat_gift", "Gift", "income", 0xFFAB47BC),
    ("cat_refund", "Refund", "income", 0xFF8D6E63),
    ("cat_shopping", "Shopping & Groceries", "expense", 0xFFFF7043),
    ("cat_food", "Food & Dining", "expense", 0xFFFFA726),
    ("cat_transport", "Transportation", "expense", 0xFF29B6F6),
    ("cat_bills", "Bills & Utilities", "expense", 0xFFEF5350),
    ("cat_rent", "Rent", "expense", 0xFF7E57C2),
    ("cat_health", "Health & Medical", "expense", 0xFFEC407A),
    ("cat_subscriptions", "Subscriptions", "expense", 0xFF5C6BC0),
    ("other", "Other", "expense", 0xFF9E9E9E),
]


class _Repository:
    def __init__(self, engine: Engine, bus: EventBus | None = None) -> None:
        self.engine = engine
        self.bus = bus

    def _notify(self, topic: str, **payload) -> None:
        if self.bus is not None:
            self.bus.publish(topic, payload)


class TransactionRepository(_Repository):
    def list_transactions(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        txn_type: str | None = None,
    ) -> list[Transaction]:
        stmt = select(transactions)
        if start is not None:
            stmt = stmt.where(transactions.c.transaction_date >= start)
        if end is not None:
            stmt = stmt.where(transactions.c.transaction_date <= end)
        if txn_type is not None:
            stmt = stmt.where(transactions.c.type == txn_type)
        stmt = stmt.order_by(transactions.c.transaction_date.desc())
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [transaction_from_row(row) for row in rows]

    def create_transaction(
        self, txn: Transaction, balance_delta: Decimal | None = None
    ) -> Transaction:
        """Insert ``txn``; a ``balance_delta`` moves its account balance in the same transaction."""
        created = replace(txn, id=txn.id or str(uuid4()))
        if balance_delta is not None and not created.account_id:
            raise ValueError("Account id required to adjust a balance.")
        with self.engine.begin() as conn:
            conn.execute(
                insert(transactions).values(
                    id=created.id,
                    title=created.title,
                    amount=created.amount,
                    currency=created.currency,
                    type=created.type,
                    category_id=created.category_id,
                    account_id=created.account_id,
                    bill_id=created.bill_id,
                    transaction_date=created.transaction_date,
                    is_cleared=created.is_cleared,
                    is_balance_adjustment=created.is_balance_adjustment,
                    notes=created.notes,
                )
            )
            if balance_delta is not None:
                result = conn.execute(
                    update(accounts)
                    .where(accounts.c.id == created.account_id)
                    .values(balance=accounts.c.balance + balance_delta)
                )
                if result.rowcount == 0:
                    raise LookupError("Account not found.")
        self._notify(TRANSACTIONS_CHANGED, id=created.id)
        if balance_delta is not None:
            self._notify(ACCOUNTS_CHANGED, id=created.account_id)
        return created

    def get_active_bills(self) -> list[Bill]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(bills).where(bills.c.is_active.is_(True))
            ).mappings().all()
        return [bill_from_row(row) for row in rows]

    def get_bill(self, bill_id: str) -> Bill | None:
        with self.engine.begin() as conn:
            row = conn.execute(select(bills).where(bills.c.id == bill_id)).mappings().first()
        return bill_from_row(row) if row else None

    def create_bill(self, bill: Bill) -> Bill:
        created = replace(bill, id=bill.id or str(uuid4()))
        with self.engine.begin() as conn:
            conn.execute(insert(bills).values(**_bill_values(created), id=created.id))
        self._notify(BILLS_CHANGED, id=created.id)
        return created

    def update_bill(self, bill: Bill) -> Bill:
        if not bill.id:
            raise ValueError("Bill id required.")
        with self.engine.begin() as conn:
            result = conn.execute(
                update(bills).where(bills.c.id == bill.id).values(**_bill_values(bill))
            )
        if result.rowcount == 0:
            raise LookupError("Bill not found.")
        self._notify(BILLS_CHANGED, id=bill.id)
        return bill


class CategoryRepository(_Repository):
    def list_categories(self, category_type: str | None = None) -> list[TransactionCategory]:
        stmt = select(categories)
        if category_type is not None:
            stmt = stmt.where(categories.c.type == category_type)
        stmt = stmt.order_by(categories.c.sort_order.asc(), categories.c.name.asc())
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [category_from_row(row) for row in rows]

    def create_category(self, category: TransactionCategory) -> TransactionCategory:
        with self.engine.begin() as conn:
            conn.execute(
                insert(categories).values(
                    id=category.id,
                    name=category.name,
                    type=category.type,
                    color_value=category.color_value,
                    icon=category.icon,
                    is_system=category.is_system,
                    sort_order=category.sort_order,
                )
            )
        self._notify(CATEGORIES_CHANGED, id=category.id)
        return category

    def ensure_default_categories(self) -> None:
        with self.engine.begin() as conn:
            existing = conn.execute(select(categories.c.id).limit(1)).first()
            if existing:
                return
            conn.execute(
                insert(categories),
                [
                    {
                        "id": category_id,
                        "name": name,
                        "type": category_type,
                        "color_value": color_value,
                        "is_system": True,
                        "sort_order": index,
                    }
                    for index, (category_id, name, category_type, color_value) in enumerate(
                        DEFAULT_CATEGORIES
                    )
                ],
            )
        logger.info("Seeded %d default categories", len(DEFAULT_CATEGORIES))


class RecurringIncomeRepository(_Repository):
    def get_all(self) -> list[RecurringIncome]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(recurring_incomes).order_by(recurring_incomes.c.created_at.desc())
            ).mappings().all()
        return [recurring_income_from_row(row) for row in rows]

    def get_active(self) -> list[RecurringIncome]:
        return [income for income in self.get_all() if income.is_active]

    def get_currently_active(self, today: date | None = None) -> list[RecurringIncome]:
        return [income for income in self.get_all() if is_currently_active(income, today)]

    def get(self, income_id: str) -> RecurringIncome | None:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(recurring_incomes).where(recurring_incomes.c.id == income_id)
            ).mappings().first()
        return recurring_income_from_row(row) if row else None

    def create(self, income: RecurringIncome) -> RecurringIncome:
        created = replace(income, id=income.id or str(uuid4()))
        with self.engine.begin() as conn:
            conn.execute(
                insert(recurring_incomes).values(
                    id=created.id,
                    title=created.title,
                    amount=created.amount,
                    currency=created.currency,
                    category_id=created.category_id,
                    frequency=created.frequency,
                    start_date=created.start_date,
                    end_date=created.end_date,
                    is_active=created.is_active,
                    account_id=created.account_id,
                    notes=created.notes,
                )
            )
        self._notify(RECURRING_INCOME_CHANGED, id=created.id)
        return created

    def set_active(self, income_id: str, is_active: bool) -> RecurringIncome:
        with self.engine.begin() as conn:
            result = conn.execute(
                update(recurring_incomes)
                .where(recurring_incomes.c.id == income_id)
                .values(is_active=is_active)
            )
        if result.rowcount == 0:
            raise LookupError("Recurring income not found.")
        self._notify(RECURRING_INCOME_CHANGED, id=income_id)
        return self.get(income_id)

    def delete(self, income_id: str) -> None:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(recurring_incomes).where(recurring_incomes.c.id == income_id)
            )
        if result.rowcount == 0:
            raise LookupError("Recurring income not found.")
        self._notify(RECURRING_INCOME_CHANGED, id=income_id)


class AccountRepository(_Repository):
    def list_accounts(self) -> list[Account]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(accounts).order_by(accounts.c.created_at.asc())
            ).mappings().all()
        return [account_from_row(row) for row in rows]

    def get_default_account(self) -> Account | None:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(accounts).where(accounts.c.is_default.is_(True)).limit(1)
            ).mappings().first()
        return account_from_row(row) if row else None

    def create_account(self, account: Account) -> Account:
        created = replace(account, id=account.id or str(uuid4()))
        with self.engine.begin() as conn:
            if created.is_default:
                conn.execute(update(accounts).values(is_default=False))
            conn.execute(
                insert(accounts).values(
                    id=created.id,
                    name=created.name,
                    balance=created.balance,
                    currency=created.currency,
                    is_default=created.is_default,
                )
            )
        self._notify(ACCOUNTS_CHANGED, id=created.id)
        return created

    def update_account(self, account: Account) -> Account:
        if not account.id:
            raise ValueError("Account id required.")
        with self.engine.begin() as conn:
            if account.is_default:
                conn.execute(
                    update(accounts).where(accounts.c.id != account.id).values(is_default=False)
                )
            result = conn.execute(
                update(accounts)
                .where(accounts.c.id == account.id)
                .values(
                    name=account.name,
                    balance=account.balance,
                    currency=account.currency,
                    is_default=account.is_default,
                )
            )
        if result.rowcount == 0:
            raise LookupError("Account not found.")
        self._notify(ACCOUNTS_CHANGED, id=account.id)
        return account


def transaction_from_row(row: Mapping) -> Transaction:
    return Transaction(
        id=row["id"],
        title=row["title"],
        amount=_coerce_decimal(row["amount"]),
        currency=row["currency"],
        type=row["type"],
        category_id=row["category_id"],
        account_id=row["account_id"],
        bill_id=row["bill_id"],
        transaction_date=row["transaction_date"],
        is_cleared=bool(row["is_cleared"]),
        is_balance_adjustment=bool(row["is_balance_adjustment"]),
        notes=row["notes"],
    )


def bill_from_row(row: Mapping) -> Bill:
    return Bill(
        id=row["id"],
        name=row["name"],
        amount=_coerce_decimal(row["amount"]),
        currency=row["currency"],
        type=row["type"],
        next_due_date=row["next_due_date"],
        reminder_enabled=bool(row["reminder_enabled"]),
        reminder_days_before=row["reminder_days_before"],
        is_active=bool(row["is_active"]),
        category_id=row["category_id"],
    )


def category_from_row(row: Mapping) -> TransactionCategory:
    return TransactionCategory(
        id=row["id"],
        name=row["name"],
        type=row["type"],
        color_value=row["color_value"],
        icon=row["icon"],
        is_system=bool(row["is_system"]),
        sort_order=row["sort_order"],
        created_at=row["created_at"],
    )


def recurring_income_from_row(row: Mapping) -> RecurringIncome:
    return RecurringIncome(
        id=row["id"],
        title=row["title"],
        amount=_coerce_decimal(row["amount"]),
        currency=row["currency"],
        category_id=row["category_id"],
        frequency=row["frequency"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        is_active=bool(row["is_active"]),
        account_id=row["account_id"],
        notes=row["notes"],
    )


def account_from_row(row: Mapping) -> Account:
    return Account(
        id=row["id"],
        name=row["name"],
        balance=_coerce_decimal(row["balance"]),
        currency=row["currency"],
        is_default=bool(row["is_default"]),
    )


def _bill_values(bill: Bill) -> dict:
    return {
        "name": bill.name,
        "amount": bill.amount,
        "currency": bill.currency,
        "type": bill.type,
        "next_due_date": bill.next_due_date,
        "reminder_enabled": bill.reminder_enabled,
        "reminder_days_before": bill.reminder_days_before,
        "is_active": bill.is_active,
        "category_id": bill.category_id,
    }


def _coerce_decimal(value: Decimal | float | int | str) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))
