from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterator

ALL_TIME_FLOOR = date(2000, 1, 1)
END_OF_DAY = time(23, 59, 59)


class RangeView:
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    THREE_MONTHS = "three_months"
    SIX_MONTHS = "six_months"
    YEAR = "year"
    ALL = "all"

    values = (DAY, WEEK, MONTH, THREE_MONTHS, SIX_MONTHS, YEAR, ALL)
    aliases = {
        "day": DAY,
        "1d": DAY,
        "daily": DAY,
        "week": WEEK,
        "1w": WEEK,
        "weekly": WEEK,
        "month": MONTH,
        "1m": MONTH,
        "monthly": MONTH,
        "threemonths": THREE_MONTHS,
        "3m": THREE_MONTHS,
        "sixmonths": SIX_MONTHS,
        "6m": SIX_MONTHS,
        "year": YEAR,
        "1y": YEAR,
        "yearly": YEAR,
        "all": ALL,
        "alltime": ALL,
        "custom": ALL,
    }

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = "".join(ch for ch in value.strip().lower() if ch.isalnum())
        try:
            return cls.aliases[normalized]
        except KeyError as exc:
            raise ValueError(f"Unsupported range view: {value}") from exc


# Months spanned beyond the anchor month by the multi-month views.
_EXTRA_MONTHS = {
    RangeView.MONTH: 0,
    RangeView.THREE_MONTHS: 2,
    RangeView.SIX_MONTHS: 5,
    RangeView.YEAR: 11,
}
_SHIFT_MONTHS = {
    RangeView.MONTH: 1,
    RangeView.THREE_MONTHS: 3,
    RangeView.SIX_MONTHS: 6,
    RangeView.YEAR: 12,
}


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of whole days."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError("start must be on or before end.")

    @property
    def total_days(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def start_datetime(self) -> datetime:
        return datetime.combine(self.start, time.min)

    @property
    def end_datetime(self) -> datetime:
        return datetime.combine(self.end, END_OF_DAY)

    def contains(self, value: date | datetime) -> bool:
        return self.start <= normalize_date(value) <= self.end

    def days(self) -> Iterator[date]:
        for offset in range(self.total_days):
            yield self.start + timedelta(days=offset)


def normalize_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.date()
    return value


def range_for(
    anchor: date | datetime,
    view: str,
    today: date | None = None,
) -> DateRange:
    anchor_day = normalize_date(anchor)
    if view == RangeView.DAY:
        return DateRange(start=anchor_day, end=anchor_day)
    if view == RangeView.WEEK:
        start = start_of_week(anchor_day)
        return DateRange(start=start, end=start + timedelta(days=6))
    if view in _EXTRA_MONTHS:
        start = month_start(anchor_day)
        end = month_end(shift_month(start, _EXTRA_MONTHS[view]))
        return DateRange(start=start, end=end)
    if view == RangeView.ALL:
        current = today or date.today()
        return DateRange(start=ALL_TIME_FLOOR, end=current + timedelta(days=1))
    raise ValueError(f"Unsupported range view: {view}")


def shift_anchor(anchor: date | datetime, view: str, direction: int) -> date:
    anchor_day = normalize_date(anchor)
    if view == RangeView.DAY:
        return anchor_day + timedelta(days=direction)
    if view == RangeView.WEEK:
        return anchor_day + timedelta(days=7 * direction)
    if view in _SHIFT_MONTHS:
        return shift_month(anchor_day, _SHIFT_MONTHS[view] * direction)
    if view == RangeView.ALL:
        return anchor_day
    raise ValueError(f"Unsupported range view: {view}")


def previous_range(
    anchor: date | datetime,
    view: str,
    today: date | None = None,
) -> DateRange:
    return range_for(shift_anchor(anchor, view, -1), view, today=today)


def range_label(date_range: DateRange, view: str) -> str:
    start, end = date_range.start, date_range.end
    if view == RangeView.ALL:
        return "All Time"
    if view == RangeView.DAY:
        return start.strftime("%a, %d %b %Y")
    if view == RangeView.WEEK:
        return f"{start:%d %b} - {end:%d %b %Y}"
    if view == RangeView.MONTH:
        return start.strftime("%B %Y")
    if start.year == end.year:
        return f"{start:%b} - {end:%b %Y}"
    return f"{start:%b %Y} - {end:%b %Y}"


def start_of_week(value: date) -> date:
    return value - timedelta(days=value.weekday())


def month_start(value: date) -> date:
    return value.replace(day=1)


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def month_end(value: date) -> date:
    return value.replace(day=monthrange(value.year, value.month)[1])


def iter_months(start_value: date, end_value: date) -> list[date]:
    months: list[date] = []
    cursor = month_start(start_value)
    end_month = month_start(end_value)
    while cursor <= end_month:
        months.append(cursor)
        cursor = shift_month(cursor, 1)
    return months
