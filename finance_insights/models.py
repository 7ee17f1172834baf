from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal

TRANSACTION_TYPES = {"expense", "income"}
BILL_TYPES = {"bill", "subscription"}


@dataclass(frozen=True)
class Transaction:
    title: str
    amount: Decimal
    type: str
    transaction_date: datetime
    currency: str | None = None
    id: str | None = None
    category_id: str | None = None
    account_id: str | None = None
    bill_id: str | None = None
    is_cleared: bool = True
    is_balance_adjustment: bool = False
    notes: str | None = None

    @property
    def is_expense(self) -> bool:
        return self.type == "expense"

    @property
    def is_income(self) -> bool:
        return self.type == "income"

    @property
    def local_date(self) -> date:
        if isinstance(self.transaction_date, datetime):
            value = self.transaction_date
            if value.tzinfo is not None:
                value = value.astimezone()
            return value.date()
        return self.transaction_date


@dataclass(frozen=True)
class TransactionCategory:
    id: str
    name: str
    type: str
    color_value: int = 0xFF9E9E9E
    icon: str | None = None
    is_system: bool = False
    sort_order: int = 0
    created_at: datetime | None = None


@dataclass(frozen=True)
class RecurringIncome:
    title: str
    amount: Decimal
    currency: str
    category_id: str
    start_date: date
    frequency: str = "monthly"
    end_date: date | None = None
    is_active: bool = True
    id: str | None = None
    account_id: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Bill:
    name: str
    amount: Decimal
    currency: str
    id: str | None = None
    type: str = "bill"
    next_due_date: date | None = None
    reminder_enabled: bool = True
    reminder_days_before: int = 3
    is_active: bool = True
    category_id: str | None = None


@dataclass(frozen=True)
class Account:
    name: str
    balance: Decimal
    currency: str
    id: str | None = None
    is_default: bool = False


@dataclass(frozen=True)
class BillNotificationProfile:
    bill_id: str
    template_key: str = "bill_due"
    channel_key: str | None = None
    sound_key: str | None = None
    type_override: str | None = None
    reminder_days_before: int = 3
    preferred_time: time | None = None
