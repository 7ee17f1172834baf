from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, Iterator, List, Optional

from finance_insights.date_ranges import DateRange, normalize_date
from finance_insights.models import RecurringIncome

ZERO = Decimal("0")
SUPPORTED_FREQUENCIES = ("daily", "weekly", "biweekly", "monthly", "quarterly", "yearly")

DAY_INTERVALS = {
    "daily": 1,
    "weekly": 7,
    "biweekly": 14,
}
MONTH_INTERVALS = {
    "monthly": 1,
    "quarterly": 3,
    "yearly": 12,
}

# Approximate monthly multipliers; unknown frequencies count as monthly.
MONTHLY_MULTIPLIERS = {
    "daily": (Decimal("30"), Decimal("1")),
    "weekly": (Decimal("4.33"), Decimal("1")),
    "biweekly": (Decimal("2.17"), Decimal("1")),
    "monthly": (Decimal("1"), Decimal("1")),
    "quarterly": (Decimal("1"), Decimal("3")),
    "yearly": (Decimal("1"), Decimal("12")),
}

FREQUENCY_LABELS = {
    "daily": "Daily",
    "weekly": "Weekly",
    "biweekly": "Bi-weekly",
    "monthly": "Monthly",
    "quarterly": "Quarterly",
    "yearly": "Yearly",
}


@dataclass(frozen=True)
class RecurringIncomeRow:
    income: RecurringIncome
    frequency_label: str
    monthly_equivalent: Decimal
    next_occurrence: Optional[date]


def validate_frequency(frequency: str) -> str:
    normalized = _normalize_frequency(frequency)
    if normalized in {"byweekly", "fortnightly"}:
        normalized = "biweekly"
    if normalized == "annually":
        normalized = "yearly"
    if normalized not in SUPPORTED_FREQUENCIES:
        raise ValueError(
            "Only daily, weekly, biweekly, monthly, quarterly, or yearly schedules are supported."
        )
    return normalized


def frequency_label(frequency: str) -> str:
    return FREQUENCY_LABELS.get(frequency, frequency)


def monthly_equivalent(amount: Decimal, frequency: str) -> Decimal:
    multiplier, divisor = MONTHLY_MULTIPLIERS.get(frequency, (Decimal("1"), Decimal("1")))
    value = _coerce_amount(amount) * multiplier
    if divisor != 1:
        value = value / divisor
    return value


def monthly_estimate(incomes: Iterable[RecurringIncome], currency: str) -> Decimal:
    return sum(
        (monthly_equivalent(income.amount, income.frequency) for income in incomes if income.currency == currency),
        ZERO,
    )


def monthly_estimate_by_category(
    incomes: Iterable[RecurringIncome], currency: str
) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = {}
    for income in incomes:
        if income.currency != currency:
            continue
        totals[income.category_id] = totals.get(income.category_id, ZERO) + monthly_equivalent(
            income.amount, income.frequency
        )
    return totals


def iter_occurrences(
    income: RecurringIncome,
    range_start: date | datetime,
    range_end: date | datetime,
) -> Iterator[date]:
    start = normalize_date(range_start)
    end = normalize_date(range_end)
    if income.end_date is not None and income.end_date < end:
        end = income.end_date
    if start > end:
        return

    anchor = income.start_date
    if income.frequency in DAY_INTERVALS:
        interval = DAY_INTERVALS[income.frequency]
        current = _first_occurrence_on_or_after(anchor, start, interval)
        while current <= end:
            yield current
            current += timedelta(days=interval)
    elif income.frequency in MONTH_INTERVALS:
        increment = MONTH_INTERVALS[income.frequency]
        current, month_offset = _first_monthly_on_or_after(anchor, start, increment)
        while current <= end:
            yield current
            month_offset += increment
            current = _add_months(anchor, month_offset, anchor.day)
    elif start <= anchor <= end:
        yield anchor


def occurrences_between(
    income: RecurringIncome,
    range_start: date | datetime,
    range_end: date | datetime,
) -> List[date]:
    return list(iter_occurrences(income, range_start, range_end))


def next_occurrence_after(income: RecurringIncome, now: date | datetime) -> Optional[date]:
    if not income.is_active:
        return None
    after = normalize_date(now) + timedelta(days=1)
    if income.end_date is not None and after > income.end_date:
        return None
    horizon = max(after, income.start_date)
    if income.frequency in MONTH_INTERVALS:
        horizon = _add_months(horizon, MONTH_INTERVALS[income.frequency], 31)
    else:
        horizon += timedelta(days=DAY_INTERVALS.get(income.frequency, 1))
    return next(iter_occurrences(income, after, horizon), None)


def expected_income(
    incomes: Iterable[RecurringIncome],
    date_range: DateRange,
    currency: str,
) -> Decimal:
    total = ZERO
    for income in incomes:
        if income.currency != currency:
            continue
        occurrences = occurrences_between(income, date_range.start, date_range.end)
        total += _coerce_amount(income.amount) * len(occurrences)
    return total


def is_currently_active(income: RecurringIncome, today: date | datetime | None = None) -> bool:
    current = normalize_date(today) if today is not None else date.today()
    if not income.is_active:
        return False
    if current < income.start_date:
        return False
    if income.end_date is not None and current > income.end_date:
        return False
    return True


def summarize_incomes(
    incomes: Iterable[RecurringIncome],
    today: date | datetime | None = None,
) -> List[RecurringIncomeRow]:
    current = normalize_date(today) if today is not None else date.today()
    return [
        RecurringIncomeRow(
            income=income,
            frequency_label=frequency_label(income.frequency),
            monthly_equivalent=monthly_equivalent(income.amount, income.frequency),
            next_occurrence=next_occurrence_after(income, current),
        )
        for income in incomes
    ]


def _normalize_frequency(value: str) -> str:
    return "".join(ch for ch in value.strip().lower() if ch.isalnum())


def _first_occurrence_on_or_after(
    start_date: date, minimum_date: date, interval_days: int
) -> date:
    if start_date >= minimum_date:
        return start_date
    days_between = (minimum_date - start_date).days
    intervals = (days_between + interval_days - 1) // interval_days
    return start_date + timedelta(days=interval_days * intervals)


def _first_monthly_on_or_after(
    start_date: date, minimum_date: date, increment: int
) -> tuple[date, int]:
    if start_date >= minimum_date:
        return start_date, 0
    months_between = (minimum_date.year - start_date.year) * 12 + (
        minimum_date.month - start_date.month
    )
    months_between -= months_between % increment
    candidate = _add_months(start_date, months_between, start_date.day)
    while candidate < minimum_date:
        months_between += increment
        candidate = _add_months(start_date, months_between, start_date.day)
    return candidate, months_between


def _add_months(start_date: date, months: int, anchor_day: int) -> date:
    total_month = start_date.month - 1 + months
    year = start_date.year + total_month // 12
    month = total_month % 12 + 1
    last_day = monthrange(year, month)[1]
    day = min(anchor_day, last_day)
    return date(year, month, day)


def _coerce_amount(amount: Decimal) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
