from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence

from finance_insights.config import FALLBACK_CURRENCY
from finance_insights.date_ranges import DateRange, iter_months
from finance_insights.models import Transaction, TransactionCategory

ZERO = Decimal("0")
UNCATEGORIZED = "uncategorized"
WEEKDAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
PLACEHOLDER_COLOR = 0xFF9E9E9E


@dataclass(frozen=True)
class DailyTotal:
    date: date
    totals_by_currency: dict[str, Decimal]
    transaction_count: int


@dataclass(frozen=True)
class WeekdayTotal:
    weekday: int
    label: str
    total: Decimal
    count: int


@dataclass(frozen=True)
class MonthlyTotal:
    month: date
    total: Decimal


@dataclass(frozen=True)
class CategoryTotal:
    category_id: str
    name: str
    color_value: int
    total: Decimal
    count: int
    share: Decimal


@dataclass(frozen=True)
class SummaryStats:
    total: Decimal
    count: int
    average: Decimal
    highest: Decimal
    daily_average: Decimal
    source_count: int


@dataclass(frozen=True)
class BillSplit:
    bills_total: Decimal
    bills_count: int
    one_time_total: Decimal
    one_time_count: int


def filter_transactions(
    transactions: Iterable[Transaction],
    date_range: DateRange,
    txn_type: str,
    currency: str | None = None,
    default_currency: str | None = None,
) -> list[Transaction]:
    fallback = default_currency or FALLBACK_CURRENCY
    filtered: list[Transaction] = []
    for txn in transactions:
        if txn.type != txn_type or txn.is_balance_adjustment:
            continue
        if currency is not None and (txn.currency or fallback) != currency:
            continue
        if not date_range.start <= txn.local_date <= date_range.end:
            continue
        filtered.append(txn)
    return filtered


def filter_expenses_for_range(
    transactions: Iterable[Transaction],
    date_range: DateRange,
    currency: str | None = None,
    default_currency: str | None = None,
) -> list[Transaction]:
    return filter_transactions(
        transactions, date_range, "expense", currency, default_currency
    )


def filter_incomes_for_range(
    transactions: Iterable[Transaction],
    date_range: DateRange,
    currency: str | None = None,
    default_currency: str | None = None,
) -> list[Transaction]:
    return filter_transactions(
        transactions, date_range, "income", currency, default_currency
    )


def totals_by_currency(
    transactions: Iterable[Transaction],
    default_currency: str | None = None,
) -> dict[str, Decimal]:
    fallback = default_currency or FALLBACK_CURRENCY
    totals: dict[str, Decimal] = {}
    for txn in transactions:
        currency = txn.currency or fallback
        totals[currency] = totals.get(currency, ZERO) + _coerce_amount(txn.amount)
    return totals


def daily_totals(
    transactions: Iterable[Transaction],
    date_range: DateRange,
    default_currency: str | None = None,
) -> list[DailyTotal]:
    fallback = default_currency or FALLBACK_CURRENCY
    totals_by_day: dict[date, dict[str, Decimal]] = {day: {} for day in date_range.days()}
    counts_by_day: dict[date, int] = {day: 0 for day in totals_by_day}

    for txn in transactions:
        day = txn.local_date
        day_totals = totals_by_day.get(day)
        if day_totals is None:
            continue
        currency = txn.currency or fallback
        day_totals[currency] = day_totals.get(currency, ZERO) + _coerce_amount(txn.amount)
        counts_by_day[day] += 1

    return [
        DailyTotal(
            date=day,
            totals_by_currency=totals_by_day[day],
            transaction_count=counts_by_day[day],
        )
        for day in sorted(totals_by_day)
    ]


def group_by_category(transactions: Iterable[Transaction]) -> dict[str, list[Transaction]]:
    grouped: dict[str, list[Transaction]] = {}
    for txn in transactions:
        grouped.setdefault(txn.category_id or UNCATEGORIZED, []).append(txn)
    return grouped


def weekday_totals(transactions: Iterable[Transaction]) -> list[WeekdayTotal]:
    totals = [ZERO] * 7
    counts = [0] * 7
    for txn in transactions:
        weekday = txn.local_date.weekday()
        totals[weekday] += _coerce_amount(txn.amount)
        counts[weekday] += 1
    return [
        WeekdayTotal(weekday=index, label=WEEKDAY_LABELS[index], total=totals[index], count=counts[index])
        for index in range(7)
    ]


def monthly_totals(
    transactions: Iterable[Transaction],
    date_range: DateRange,
) -> list[MonthlyTotal]:
    months = iter_months(date_range.start, date_range.end)
    totals: dict[date, Decimal] = {month: ZERO for month in months}
    for txn in transactions:
        day = txn.local_date
        if not date_range.start <= day <= date_range.end:
            continue
        month = day.replace(day=1)
        if month in totals:
            totals[month] += _coerce_amount(txn.amount)
    return [MonthlyTotal(month=month, total=totals[month]) for month in months]


def resolve_category(
    categories: Iterable[TransactionCategory],
    category_id: str | None,
    placeholder: str = "Unknown",
    humanize: bool = False,
) -> TransactionCategory:
    for category in categories:
        if category.id == category_id:
            return category
    return TransactionCategory(
        id=category_id or "",
        name=_placeholder_name(category_id, placeholder, humanize),
        type="expense",
        color_value=PLACEHOLDER_COLOR,
    )


def category_totals(
    transactions: Sequence[Transaction],
    categories: Iterable[TransactionCategory],
    placeholder: str = "Unknown",
) -> list[CategoryTotal]:
    category_list = list(categories)
    overall = sum((_coerce_amount(txn.amount) for txn in transactions), ZERO)
    rows: list[CategoryTotal] = []
    for category_id, grouped in group_by_category(transactions).items():
        lookup_id = None if category_id == UNCATEGORIZED else category_id
        category = resolve_category(category_list, lookup_id, placeholder, humanize=True)
        total = sum((_coerce_amount(txn.amount) for txn in grouped), ZERO)
        share = (total / overall * 100) if overall > ZERO else ZERO
        rows.append(
            CategoryTotal(
                category_id=category_id,
                name=category.name,
                color_value=category.color_value,
                total=total,
                count=len(grouped),
                share=share,
            )
        )
    rows.sort(key=lambda row: row.total, reverse=True)
    return rows


def top_transactions(transactions: Iterable[Transaction], limit: int = 5) -> list[Transaction]:
    ranked = sorted(transactions, key=lambda txn: _coerce_amount(txn.amount), reverse=True)
    return ranked[:limit]


def summary_stats(transactions: Sequence[Transaction], date_range: DateRange) -> SummaryStats:
    amounts = [_coerce_amount(txn.amount) for txn in transactions]
    total = sum(amounts, ZERO)
    count = len(amounts)
    return SummaryStats(
        total=total,
        count=count,
        average=total / count if count else ZERO,
        highest=max(amounts) if amounts else ZERO,
        daily_average=total / date_range.total_days,
        source_count=len(group_by_category(transactions)),
    )


def split_bills(transactions: Iterable[Transaction]) -> BillSplit:
    bills_total = one_time_total = ZERO
    bills_count = one_time_count = 0
    for txn in transactions:
        if txn.bill_id:
            bills_total += _coerce_amount(txn.amount)
            bills_count += 1
        else:
            one_time_total += _coerce_amount(txn.amount)
            one_time_count += 1
    return BillSplit(
        bills_total=bills_total,
        bills_count=bills_count,
        one_time_total=one_time_total,
        one_time_count=one_time_count,
    )


def _placeholder_name(category_id: str | None, placeholder: str, humanize: bool) -> str:
    if category_id == "other":
        return "Other"
    if not category_id or not humanize:
        return placeholder
    words = category_id.replace("cat_", "").replace("_", " ").split(" ")
    humanized = " ".join(word[:1].upper() + word[1:] for word in words if word)
    return humanized or placeholder


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
