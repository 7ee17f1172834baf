from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional

from finance_insights.aggregation import resolve_category
from finance_insights.models import RecurringIncome, Transaction
from finance_insights.recurring_income import (
    RecurringIncomeRow,
    is_currently_active,
    monthly_estimate,
    monthly_estimate_by_category,
    summarize_incomes,
)
from finance_insights.repositories import (
    AccountRepository,
    CategoryRepository,
    TransactionRepository,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class IncomeValidationError(ValueError):
    """Quick-add input rejected before anything is written."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class RecurringSummary:
    currency: str
    monthly_estimate: Decimal
    active_count: int
    rows: List[RecurringIncomeRow]
    by_category: Dict[str, Decimal]


def parse_quick_amount(raw: str | Decimal | float | int | None) -> Decimal:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        raise IncomeValidationError("missing_amount", "Please enter an amount")
    try:
        amount = Decimal(str(raw).strip())
    except InvalidOperation as exc:
        raise IncomeValidationError("invalid_amount", "Please enter a valid amount") from exc
    if not amount.is_finite() or amount <= ZERO:
        raise IncomeValidationError("invalid_amount", "Please enter a valid amount")
    return amount


def quick_add_transaction(
    transaction_repository: TransactionRepository,
    account_repository: AccountRepository,
    category_repository: CategoryRepository,
    txn_type: str,
    category_id: str | None,
    raw_amount: str | Decimal | float | int | None,
    currency: str,
    now: datetime | None = None,
) -> Transaction:
    """Record a cleared transaction on the default account and move its balance.

    Validation runs in the order the entry form reports problems: category,
    amount, then default account. Nothing is written when any check fails.
    """
    if not category_id or not category_id.strip():
        raise IncomeValidationError("missing_category", "Please select a category first")
    amount = parse_quick_amount(raw_amount)

    account = account_repository.get_default_account()
    if account is None:
        raise IncomeValidationError(
            "no_default_account",
            "No default account set. Please set a default account first.",
        )

    categories = category_repository.list_categories(txn_type)
    category = resolve_category(categories, category_id.strip(), humanize=True)

    created = transaction_repository.create_transaction(
        Transaction(
            title=category.name,
            amount=amount,
            type=txn_type,
            transaction_date=now or datetime.now(),
            currency=currency,
            category_id=category_id.strip(),
            account_id=account.id,
            is_cleared=True,
        ),
        balance_delta=amount if txn_type == "income" else -amount,
    )
    logger.info("Quick-added %s %s %s to account %s", txn_type, amount, currency, account.id)
    return created


def quick_add_income(
    transaction_repository: TransactionRepository,
    account_repository: AccountRepository,
    category_repository: CategoryRepository,
    category_id: str | None,
    raw_amount: str | Decimal | float | int | None,
    currency: str,
    now: datetime | None = None,
) -> Transaction:
    return quick_add_transaction(
        transaction_repository,
        account_repository,
        category_repository,
        "income",
        category_id,
        raw_amount,
        currency,
        now,
    )


def quick_add_expense(
    transaction_repository: TransactionRepository,
    account_repository: AccountRepository,
    category_repository: CategoryRepository,
    category_id: str | None,
    raw_amount: str | Decimal | float | int | None,
    currency: str,
    now: datetime | None = None,
) -> Transaction:
    return quick_add_transaction(
        transaction_repository,
        account_repository,
        category_repository,
        "expense",
        category_id,
        raw_amount,
        currency,
        now,
    )


def recurring_summary(
    incomes: Iterable[RecurringIncome],
    currency: str,
    today: Optional[date] = None,
) -> RecurringSummary:
    current = today or date.today()
    active = [income for income in incomes if is_currently_active(income, current)]
    return RecurringSummary(
        currency=currency,
        monthly_estimate=monthly_estimate(active, currency),
        active_count=len(active),
        rows=summarize_incomes(active, current),
        by_category=monthly_estimate_by_category(active, currency),
    )
