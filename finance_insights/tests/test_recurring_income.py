import unittest
from datetime import date, datetime
from decimal import Decimal

from finance_insights.date_ranges import DateRange
from finance_insights.models import RecurringIncome
from finance_insights.recurring_income import (
    expected_income,
    is_currently_active,
    monthly_equivalent,
    monthly_estimate,
    next_occurrence_after,
    occurrences_between,
    summarize_incomes,
    validate_frequency,
)


def make_income(
    frequency: str = "monthly",
    start: date = date(2024, 1, 31),
    end: date | None = None,
    amount: str = "100",
    currency: str = "ETB",
    is_active: bool = True,
) -> RecurringIncome:
    return RecurringIncome(
        id="income-1",
        title="Salary",
        amount=Decimal(amount),
        currency=currency,
        category_id="cat_salary",
        start_date=start,
        frequency=frequency,
        end_date=end,
        is_active=is_active,
    )


class MonthlyEquivalentTests(unittest.TestCase):
    def test_multiplier_table(self) -> None:
        amount = Decimal("100")

        self.assertEqual(monthly_equivalent(amount, "daily"), Decimal("3000"))
        self.assertEqual(monthly_equivalent(amount, "weekly"), Decimal("433.00"))
        self.assertEqual(monthly_equivalent(amount, "biweekly"), Decimal("217.00"))
        self.assertEqual(monthly_equivalent(amount, "monthly"), Decimal("100"))
        self.assertEqual(monthly_equivalent(Decimal("300"), "quarterly"), Decimal("100"))
        self.assertEqual(monthly_equivalent(Decimal("1200"), "yearly"), Decimal("100"))

    def test_unknown_frequency_counts_as_monthly(self) -> None:
        self.assertEqual(monthly_equivalent(Decimal("80"), "lunar"), Decimal("80"))

    def test_monthly_estimate_filters_currency(self) -> None:
        incomes = [
            make_income("weekly"),
            make_income("monthly", amount="500"),
            make_income("monthly", amount="999", currency="USD"),
        ]

        self.assertEqual(monthly_estimate(incomes, "ETB"), Decimal("933.00"))


class OccurrenceTests(unittest.TestCase):
    def test_monthly_clamps_to_month_end_and_keeps_anchor_day(self) -> None:
        income = make_income("monthly", start=date(2024, 1, 31))

        result = occurrences_between(income, date(2024, 1, 1), date(2024, 4, 30))

        self.assertEqual(
            result,
            [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)],
        )

    def test_weekly_occurrences_start_inside_range(self) -> None:
        income = make_income("weekly", start=date(2024, 1, 1))

        result = occurrences_between(income, date(2024, 1, 10), date(2024, 1, 31))

        self.assertEqual(result, [date(2024, 1, 15), date(2024, 1, 22), date(2024, 1, 29)])

    def test_quarterly_occurrences(self) -> None:
        income = make_income("quarterly", start=date(2023, 11, 15))

        result = occurrences_between(income, date(2024, 1, 1), date(2024, 12, 31))

        self.assertEqual(
            result,
            [date(2024, 2, 15), date(2024, 5, 15), date(2024, 8, 15), date(2024, 11, 15)],
        )

    def test_end_date_stops_series(self) -> None:
        income = make_income("biweekly", start=date(2024, 1, 1), end=date(2024, 1, 20))

        result = occurrences_between(income, date(2024, 1, 1), date(2024, 3, 1))

        self.assertEqual(result, [date(2024, 1, 1), date(2024, 1, 15)])

    def test_unknown_frequency_yields_start_date_only(self) -> None:
        income = make_income("lunar", start=date(2024, 1, 5))

        self.assertEqual(
            occurrences_between(income, date(2024, 1, 1), date(2024, 12, 31)),
            [date(2024, 1, 5)],
        )
        self.assertEqual(occurrences_between(income, date(2024, 2, 1), date(2024, 12, 31)), [])

    def test_expected_income_for_range(self) -> None:
        incomes = [make_income("weekly", start=date(2024, 3, 1), amount="50")]

        total = expected_income(incomes, DateRange(date(2024, 3, 1), date(2024, 3, 31)), "ETB")

        self.assertEqual(total, Decimal("250"))


class NextOccurrenceTests(unittest.TestCase):
    def test_next_occurrence_is_strictly_after_now(self) -> None:
        income = make_income("monthly", start=date(2024, 1, 15))

        self.assertEqual(next_occurrence_after(income, date(2024, 3, 15)), date(2024, 4, 15))
        self.assertEqual(
            next_occurrence_after(income, datetime(2024, 3, 14, 18, 0)), date(2024, 3, 15)
        )

    def test_future_start_date(self) -> None:
        income = make_income("weekly", start=date(2024, 6, 1))

        self.assertEqual(next_occurrence_after(income, date(2024, 3, 1)), date(2024, 6, 1))

    def test_none_when_series_ended_or_inactive(self) -> None:
        ended = make_income("monthly", start=date(2024, 1, 15), end=date(2024, 3, 1))
        inactive = make_income("monthly", is_active=False)

        self.assertIsNone(next_occurrence_after(ended, date(2024, 3, 1)))
        self.assertIsNone(next_occurrence_after(ended, date(2024, 2, 20)))
        self.assertIsNone(next_occurrence_after(inactive, date(2024, 3, 1)))


class FrequencyAndActivityTests(unittest.TestCase):
    def test_validate_frequency_aliases(self) -> None:
        self.assertEqual(validate_frequency("Bi-Weekly"), "biweekly")
        self.assertEqual(validate_frequency("fortnightly"), "biweekly")
        self.assertEqual(validate_frequency("annually"), "yearly")
        with self.assertRaises(ValueError):
            validate_frequency("hourly")

    def test_currently_active_window(self) -> None:
        income = make_income(start=date(2024, 1, 1), end=date(2024, 6, 30))

        self.assertTrue(is_currently_active(income, date(2024, 3, 1)))
        self.assertFalse(is_currently_active(income, date(2023, 12, 31)))
        self.assertFalse(is_currently_active(income, date(2024, 7, 1)))

    def test_summarize_incomes(self) -> None:
        rows = summarize_incomes([make_income("weekly", start=date(2024, 1, 1))], date(2024, 1, 3))

        self.assertEqual(rows[0].frequency_label, "Weekly")
        self.assertEqual(rows[0].monthly_equivalent, Decimal("433.00"))
        self.assertEqual(rows[0].next_occurrence, date(2024, 1, 8))


if __name__ == "__main__":
    unittest.main()
