import unittest
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from finance_insights import main
from finance_insights.db import create_db_engine


def as_decimal(value) -> Decimal:
    return Decimal(str(value))


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.services = main.build_services(create_db_engine("sqlite://"))
        main.app.dependency_overrides[main.get_services] = lambda: self.services
        self.client = TestClient(main.app)

    def tearDown(self) -> None:
        self.services.bill_notifications.close()
        main.app.dependency_overrides.clear()


class RangeAndHealthApiTests(ApiTestCase):
    def test_health(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_week_range(self) -> None:
        response = self.client.get("/ranges", params={"view": "week", "anchor": "2026-02-11"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["start"], "2026-02-09")
        self.assertEqual(body["end"], "2026-02-15")
        self.assertEqual(body["total_days"], 7)
        self.assertEqual(body["previous"]["start"], "2026-02-02")
        self.assertEqual(body["next_anchor"], "2026-02-18")

    def test_unknown_view_is_rejected(self) -> None:
        response = self.client.get("/ranges", params={"view": "fortnight"})

        self.assertEqual(response.status_code, 400)


class LedgerApiTests(ApiTestCase):
    def test_seeded_categories_and_account(self) -> None:
        categories = self.client.get("/categories", params={"type": "income"}).json()
        accounts = self.client.get("/accounts").json()

        self.assertIn("cat_salary", [row["id"] for row in categories])
        self.assertEqual(len(accounts), 1)
        self.assertTrue(accounts[0]["is_default"])

    def test_create_category_and_conflict(self) -> None:
        payload = {"name": "Side Hustle", "type": "income"}

        created = self.client.post("/categories", json=payload)
        duplicate = self.client.post("/categories", json=payload)

        self.assertEqual(created.status_code, 200)
        self.assertEqual(created.json()["id"], "cat_side_hustle")
        self.assertEqual(duplicate.status_code, 409)

    def test_transactions_feed_expense_report_and_revisions(self) -> None:
        before = self.client.get("/changes").json()["revisions"]["TRANSACTIONS_CHANGED"]
        for amount, day in (("20", "2024-03-04T10:00:00"), ("30", "2024-03-05T10:00:00")):
            response = self.client.post(
                "/transactions",
                json={
                    "title": "Lunch",
                    "amount": amount,
                    "type": "expense",
                    "transaction_date": day,
                    "currency": "ETB",
                    "category_id": "cat_food",
                },
            )
            self.assertEqual(response.status_code, 200)

        report = self.client.get(
            "/reports/expenses",
            params={"view": "week", "anchor": "2024-03-06", "currency": "ETB"},
        ).json()
        daily = self.client.get(
            "/reports/daily",
            params={"view": "week", "anchor": "2024-03-06", "currency": "ETB"},
        ).json()
        after = self.client.get("/changes").json()["revisions"]["TRANSACTIONS_CHANGED"]

        self.assertEqual(as_decimal(report["summary"]["total"]), Decimal("50"))
        self.assertEqual(report["categories"][0]["name"], "Food & Dining")
        self.assertEqual(len(daily["days"]), 7)
        self.assertEqual(after - before, 2)

    def test_changes_reports_only_dirty_topics(self) -> None:
        revisions = self.client.get("/changes").json()["revisions"]
        self.client.post("/categories", json={"name": "Side Hustle", "type": "income"})

        response = self.client.get("/changes", params=revisions)
        invalid = self.client.get("/changes", params={"BILLS_CHANGED": "soon"})

        self.assertEqual(response.json()["changed"], ["CATEGORIES_CHANGED"])
        self.assertEqual(invalid.status_code, 400)

    def test_transaction_validation(self) -> None:
        response = self.client.post(
            "/transactions", json={"title": "Bad", "amount": "-1", "type": "expense"}
        )

        self.assertEqual(response.status_code, 400)

    def test_quick_add_income_updates_balance(self) -> None:
        response = self.client.post(
            "/income/quick-add", json={"category_id": "cat_salary", "amount": "150"}
        )
        hub = self.client.get("/income/hub").json()
        accounts = self.client.get("/accounts").json()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["title"], "Salary")
        self.assertEqual(as_decimal(accounts[0]["balance"]), Decimal("150"))
        self.assertEqual(as_decimal(hub["month_total"]), Decimal("150"))
        self.assertEqual(len(hub["recent"]), 1)

    def test_quick_add_validation_notices(self) -> None:
        missing = self.client.post("/income/quick-add", json={"amount": "10"})
        invalid = self.client.post(
            "/income/quick-add", json={"category_id": "cat_salary", "amount": "ten"}
        )
        account = self.client.get("/accounts").json()[0]
        self.client.put(
            f"/accounts/{account['id']}",
            json={"name": account["name"], "balance": "0", "is_default": False},
        )
        no_account = self.client.post(
            "/income/quick-add", json={"category_id": "cat_salary", "amount": "10"}
        )

        self.assertEqual(missing.status_code, 400)
        self.assertEqual(missing.json()["detail"]["code"], "missing_category")
        self.assertEqual(invalid.json()["detail"]["code"], "invalid_amount")
        self.assertEqual(no_account.status_code, 409)
        self.assertEqual(no_account.json()["detail"]["code"], "no_default_account")

    def test_storage_failure_is_retryable(self) -> None:
        failure = OperationalError("SELECT", {}, Exception("database is locked"))
        with patch.object(self.services.accounts, "list_accounts", side_effect=failure):
            with self.assertLogs("finance_insights.main", level="ERROR"):
                response = self.client.get("/accounts")

        self.assertEqual(response.status_code, 503)
        self.assertTrue(response.json()["detail"]["retryable"])


class RecurringIncomeApiTests(ApiTestCase):
    def create_income(self, **overrides) -> dict:
        payload = {
            "title": "Tutoring",
            "amount": "100",
            "category_id": "cat_freelance",
            "start_date": "2024-01-01",
            "frequency": "weekly",
        }
        payload.update(overrides)
        response = self.client.post("/recurring-incomes", json=payload)
        self.assertEqual(response.status_code, 200, response.text)
        return response.json()

    def test_create_lists_monthly_equivalent(self) -> None:
        created = self.create_income()

        listed = self.client.get("/recurring-incomes").json()

        self.assertEqual(created["frequency_label"], "Weekly")
        self.assertEqual(as_decimal(created["monthly_equivalent"]), Decimal("433"))
        self.assertEqual([row["id"] for row in listed], [created["id"]])

    def test_occurrences(self) -> None:
        created = self.create_income()

        response = self.client.get(
            f"/recurring-incomes/{created['id']}/occurrences",
            params={"start": "2024-01-10", "end": "2024-01-31"},
        )

        self.assertEqual(response.json()["dates"], ["2024-01-15", "2024-01-22", "2024-01-29"])

    def test_rejects_unknown_frequency(self) -> None:
        response = self.client.post(
            "/recurring-incomes",
            json={
                "title": "Odd",
                "amount": "5",
                "category_id": "cat_gift",
                "start_date": "2024-01-01",
                "frequency": "hourly",
            },
        )

        self.assertEqual(response.status_code, 400)

    def test_pause_and_delete(self) -> None:
        created = self.create_income()

        paused = self.client.put(
            f"/recurring-incomes/{created['id']}/active", json={"is_active": False}
        )
        deleted = self.client.delete(f"/recurring-incomes/{created['id']}")
        missing = self.client.delete(f"/recurring-incomes/{created['id']}")

        self.assertFalse(paused.json()["is_active"])
        self.assertIsNone(paused.json()["next_occurrence"])
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(missing.status_code, 404)


class BillNotificationApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        due = date.today() + timedelta(days=20)
        response = self.client.post(
            "/bills",
            json={"name": "Rent", "amount": "500", "next_due_date": due.isoformat()},
        )
        self.assertEqual(response.status_code, 200, response.text)
        self.bill = response.json()

    def test_bill_listing_and_status(self) -> None:
        body = self.client.get("/bills/notifications").json()

        self.assertEqual(self.bill["due_status"], "Due in 20 days")
        self.assertEqual(len(body["bills"]), 1)
        self.assertTrue(body["bills"][0]["profile"]["is_default"])
        self.assertIn("bill_friendly", body["options"]["template"])

    def test_update_notification_choice(self) -> None:
        response = self.client.put(
            f"/bills/{self.bill['id']}/notifications/sound", json={"value": "alarm"}
        )
        unknown_field = self.client.put(
            f"/bills/{self.bill['id']}/notifications/volume", json={"value": "loud"}
        )
        bad_option = self.client.put(
            f"/bills/{self.bill['id']}/notifications/sound", json={"value": "trumpet"}
        )
        missing_bill = self.client.put(
            "/bills/nope/notifications/sound", json={"value": "alarm"}
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["sound_key"], "alarm")
        self.assertFalse(response.json()["is_default"])
        self.assertEqual(unknown_field.status_code, 404)
        self.assertEqual(bad_option.status_code, 400)
        self.assertEqual(missing_bill.status_code, 404)

    def test_reminder_update_and_manual_sync(self) -> None:
        updated = self.client.put(
            f"/bills/{self.bill['id']}/reminder", json={"days_before": 7}
        )
        synced = self.client.post("/bills/notifications/sync")
        scheduled = self.client.get("/notifications/scheduled").json()

        self.assertEqual(updated.json()["reminder_days_before"], 7)
        self.assertEqual(synced.status_code, 200)
        self.assertEqual(synced.json()["scheduled"], 1)
        self.assertEqual(synced.json()["scheduled_by_section"], {"bills": 1})
        expected_day = date.fromisoformat(self.bill["next_due_date"]) - timedelta(days=7)
        self.assertEqual(scheduled[0]["scheduled_at"], f"{expected_day.isoformat()}T09:00:00")

    def test_reminder_update_requires_a_field(self) -> None:
        response = self.client.put(f"/bills/{self.bill['id']}/reminder", json={})

        self.assertEqual(response.status_code, 400)


class SecurityApiTests(ApiTestCase):
    UNLOCKED = {
        "has_passcode": False,
        "has_memorable_word": False,
        "passcode_recovery_only": False,
        "memorable_word_wipe_required": False,
    }

    def test_passcode_lifecycle(self) -> None:
        self.assertEqual(self.client.get("/security/status").json(), self.UNLOCKED)

        rejected = self.client.put("/security/passcode", json={"passcode": "12ab56"})
        stored = self.client.put("/security/passcode", json={"passcode": "123456"})
        word = self.client.put(
            "/security/memorable-word",
            json={"memorable_word": "Sunflower1", "current_passcode": "123456"},
        )
        verified = self.client.post(
            "/security/verify", json={"passcode": "123456", "memorable_word": "sunflower1"}
        )
        reset = self.client.post("/security/reset", json={"current_passcode": "123456"})

        self.assertEqual(rejected.status_code, 400)
        self.assertTrue(stored.json()["has_passcode"])
        self.assertTrue(word.json()["has_memorable_word"])
        self.assertEqual(verified.json(), {"passcode": True, "memorable_word": True})
        self.assertEqual(reset.json(), self.UNLOCKED)

    def test_existing_passcode_cannot_be_replaced_without_it(self) -> None:
        self.client.put("/security/passcode", json={"passcode": "123456"})

        anonymous = self.client.put("/security/passcode", json={"passcode": "999999"})
        wrong = self.client.put(
            "/security/passcode", json={"passcode": "999999", "current_passcode": "000000"}
        )
        reset = self.client.post("/security/reset")
        still_old = self.client.post("/security/verify", json={"passcode": "123456"})
        changed = self.client.put(
            "/security/passcode", json={"passcode": "999999", "current_passcode": "123456"}
        )

        self.assertEqual(anonymous.status_code, 403)
        self.assertEqual(wrong.status_code, 403)
        self.assertEqual(reset.status_code, 403)
        self.assertEqual(still_old.json(), {"passcode": True})
        self.assertEqual(changed.status_code, 200)
        self.assertFalse(
            self.client.post("/security/verify", json={"passcode": "123456"}).json()["passcode"]
        )

    def test_repeated_failures_lock_verification(self) -> None:
        self.client.put("/security/passcode", json={"passcode": "123456"})

        for _ in range(4):
            self.client.post("/security/verify", json={"passcode": "000000"})
        locked = self.client.post("/security/verify", json={"passcode": "123456"})

        self.assertEqual(locked.status_code, 423)
        self.assertEqual(locked.json()["detail"]["code"], "temporary_lockout")
        self.assertIn(locked.json()["detail"]["retry_after_seconds"], range(1, 31))


if __name__ == "__main__":
    unittest.main()
