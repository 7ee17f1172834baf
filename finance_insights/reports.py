from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from finance_insights.aggregation import (
    UNCATEGORIZED,
    ZERO,
    BillSplit,
    CategoryTotal,
    DailyTotal,
    MonthlyTotal,
    SummaryStats,
    WeekdayTotal,
    category_totals,
    daily_totals,
    filter_expenses_for_range,
    filter_incomes_for_range,
    monthly_totals,
    resolve_category,
    split_bills,
    summary_stats,
    top_transactions,
    weekday_totals,
)
from finance_insights.date_ranges import DateRange, previous_range, range_for, range_label
from finance_insights.models import RecurringIncome, Transaction, TransactionCategory
from finance_insights.recurring_income import expected_income

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class CategoryDrilldown:
    category_id: str
    name: str
    total: Decimal
    transactions: List[Transaction]
    daily: List[DailyTotal]


@dataclass(frozen=True)
class ExpenseReport:
    view: str
    label: str
    date_range: DateRange
    currency: str
    summary: SummaryStats
    daily: List[DailyTotal]
    weekday: List[WeekdayTotal]
    categories: List[CategoryTotal]
    top: List[Transaction]
    monthly: List[MonthlyTotal]
    bills: BillSplit
    drilldown: Optional[CategoryDrilldown] = None


@dataclass(frozen=True)
class IncomeReport:
    view: str
    label: str
    date_range: DateRange
    currency: str
    summary: SummaryStats
    previous_total: Decimal
    difference: Decimal
    change_percent: Decimal
    expected: Decimal
    variance: Decimal
    variance_percent: Decimal
    categories: List[CategoryTotal]
    daily: List[DailyTotal]
    monthly: List[MonthlyTotal]
    top: List[Transaction]


def percent_change(previous: Decimal, current: Decimal) -> Decimal:
    """Change relative to ``previous``; zero when there is nothing to compare to."""
    if previous <= ZERO:
        return ZERO
    return (current - previous) / previous * HUNDRED


def build_category_drilldown(
    expenses: Sequence[Transaction],
    categories: Iterable[TransactionCategory],
    category_id: str,
    date_range: DateRange,
    currency: str,
) -> CategoryDrilldown:
    matched = [
        txn
        for txn in expenses
        if (txn.category_id or UNCATEGORIZED) == category_id
    ]
    lookup_id = None if category_id == UNCATEGORIZED else category_id
    category = resolve_category(categories, lookup_id, humanize=True)
    return CategoryDrilldown(
        category_id=category_id,
        name=category.name,
        total=sum((txn.amount for txn in matched), ZERO),
        transactions=sorted(matched, key=lambda txn: txn.transaction_date, reverse=True),
        daily=daily_totals(matched, date_range, default_currency=currency),
    )


def build_expense_report(
    transactions: Iterable[Transaction],
    categories: Iterable[TransactionCategory],
    anchor: date,
    view: str,
    currency: str,
    today: Optional[date] = None,
    category_id: Optional[str] = None,
    top_limit: int = 5,
) -> ExpenseReport:
    category_list = list(categories)
    date_range = range_for(anchor, view, today=today)
    expenses = filter_expenses_for_range(
        transactions, date_range, currency=currency, default_currency=currency
    )
    drilldown = None
    if category_id:
        drilldown = build_category_drilldown(
            expenses, category_list, category_id, date_range, currency
        )
    return ExpenseReport(
        view=view,
        label=range_label(date_range, view),
        date_range=date_range,
        currency=currency,
        summary=summary_stats(expenses, date_range),
        daily=daily_totals(expenses, date_range, default_currency=currency),
        weekday=weekday_totals(expenses),
        categories=category_totals(expenses, category_list),
        top=top_transactions(expenses, limit=top_limit),
        monthly=monthly_totals(expenses, date_range),
        bills=split_bills(expenses),
        drilldown=drilldown,
    )


def build_income_report(
    transactions: Iterable[Transaction],
    categories: Iterable[TransactionCategory],
    incomes: Iterable[RecurringIncome],
    anchor: date,
    view: str,
    currency: str,
    today: Optional[date] = None,
    top_limit: int = 5,
) -> IncomeReport:
    transaction_list = list(transactions)
    date_range = range_for(anchor, view, today=today)
    earlier = previous_range(anchor, view, today=today)

    current = filter_incomes_for_range(
        transaction_list, date_range, currency=currency, default_currency=currency
    )
    previous = filter_incomes_for_range(
        transaction_list, earlier, currency=currency, default_currency=currency
    )
    summary = summary_stats(current, date_range)
    previous_total = sum((txn.amount for txn in previous), ZERO)
    expected = expected_income(incomes, date_range, currency)
    variance = summary.total - expected

    return IncomeReport(
        view=view,
        label=range_label(date_range, view),
        date_range=date_range,
        currency=currency,
        summary=summary,
        previous_total=previous_total,
        difference=summary.total - previous_total,
        change_percent=percent_change(previous_total, summary.total),
        expected=expected,
        variance=variance,
        variance_percent=variance / expected * HUNDRED if expected > ZERO else ZERO,
        categories=category_totals(current, categories),
        daily=daily_totals(current, date_range, default_currency=currency),
        monthly=monthly_totals(current, date_range),
        top=top_transactions(current, limit=top_limit),
    )
