import unittest
from datetime import datetime, timedelta

from sqlalchemy import select

from finance_insights.db import create_db_engine, init_db, security_secrets
from finance_insights.security import (
    MEMORABLE_WORD_WIPE_ATTEMPT_LIMIT,
    PASSCODE_FAILED_KEY,
    PASSCODE_RECOVERY_ONLY_ATTEMPT_LIMIT,
    PASSCODE_SOFT_ATTEMPT_LIMIT,
    SecurityLockedOut,
    SecurityService,
    validate_memorable_word,
    validate_passcode,
)


class ValidationTests(unittest.TestCase):
    def test_passcode_must_be_six_digits(self) -> None:
        self.assertEqual(validate_passcode(" 123456 "), "123456")
        for bad in ("12345", "1234567", "12a456", ""):
            with self.assertRaises(ValueError):
                validate_passcode(bad)

    def test_memorable_word_rules(self) -> None:
        self.assertEqual(validate_memorable_word("Sunflower1"), "sunflower1")
        for bad in ("short", "waytoolongword1", "sun flower", "sunflöwer1"):
            with self.assertRaises(ValueError):
                validate_memorable_word(bad)


class SecurityServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_db_engine("sqlite://")
        init_db(self.engine)
        self.service = SecurityService(self.engine)

    def test_passcode_is_stored_hashed_and_verifiable(self) -> None:
        self.assertFalse(self.service.has_passcode())

        self.service.set_passcode("246810")

        with self.engine.begin() as conn:
            stored = conn.execute(
                select(security_secrets.c.value).where(security_secrets.c.key == "passcode_hash")
            ).scalar_one()
        self.assertNotIn("246810", stored)
        self.assertTrue(self.service.has_passcode())
        self.assertTrue(self.service.verify_passcode("246810"))
        self.assertFalse(self.service.verify_passcode("000000"))

    def test_memorable_word_is_case_insensitive(self) -> None:
        self.service.set_memorable_word("Sunflower1")

        self.assertTrue(self.service.verify_memorable_word("SUNFLOWER1"))
        self.assertFalse(self.service.verify_memorable_word("sunflower2"))

    def test_changing_passcode_replaces_previous(self) -> None:
        self.service.set_passcode("111111")
        self.service.set_passcode("222222")

        self.assertFalse(self.service.verify_passcode("111111"))
        self.assertTrue(self.service.verify_passcode("222222"))

    def test_verify_without_secret_is_false(self) -> None:
        self.assertFalse(self.service.verify_passcode("123456"))
        self.assertFalse(self.service.verify_memorable_word("sunflower1"))

    def test_reset_clears_everything(self) -> None:
        self.service.set_passcode("123456")
        self.service.set_memorable_word("sunflower1")

        self.service.reset_all_security_state()

        self.assertEqual(
            self.service.status(),
            {
                "has_passcode": False,
                "has_memorable_word": False,
                "passcode_recovery_only": False,
                "memorable_word_wipe_required": False,
            },
        )

class AuthorizationTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_db_engine("sqlite://")
        init_db(engine)
        self.service = SecurityService(engine)

    def test_first_passcode_needs_no_credentials(self) -> None:
        self.service.change_passcode("123456")

        self.assertTrue(self.service.verify_passcode("123456"))

    def test_change_requires_current_passcode(self) -> None:
        self.service.change_passcode("123456")

        with self.assertRaises(PermissionError):
            self.service.change_passcode("999999")
        with self.assertRaises(PermissionError):
            self.service.change_passcode("999999", current_passcode="000000")
        self.service.change_passcode("999999", current_passcode="123456")

        self.assertTrue(self.service.verify_passcode("999999"))

    def test_memorable_word_recovers_passcode(self) -> None:
        self.service.set_memorable_word("sunflower1")
        self.service.set_passcode("123456")

        self.service.change_passcode("654321", memorable_word="Sunflower1")

        self.assertTrue(self.service.verify_passcode("654321"))

    def test_invalid_new_passcode_does_not_spend_an_attempt(self) -> None:
        self.service.set_passcode("123456")

        with self.assertRaises(ValueError):
            self.service.change_passcode("12", current_passcode="000000")

        self.assertIsNone(self.service._read(PASSCODE_FAILED_KEY))


class LockoutTests(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_db_engine("sqlite://")
        init_db(engine)
        self.now = datetime(2024, 3, 10, 8, 0)
        self.service = SecurityService(engine, now_fn=lambda: self.now)
        self.service.set_passcode("123456")
        self.service.set_memorable_word("sunflower1")

    def fail_passcode(self, times: int) -> None:
        for _ in range(times):
            self.assertFalse(self.service.verify_passcode("000000"))

    def test_soft_limit_then_timed_lockout(self) -> None:
        self.fail_passcode(PASSCODE_SOFT_ATTEMPT_LIMIT)
        self.assertIsNone(self.service.passcode_lockout_remaining())

        self.fail_passcode(1)

        with self.assertRaises(SecurityLockedOut) as ctx:
            self.service.verify_passcode("123456")
        self.assertEqual(ctx.exception.code, "temporary_lockout")
        self.assertEqual(ctx.exception.retry_after_seconds, 30)

        self.now += timedelta(seconds=31)
        self.assertTrue(self.service.verify_passcode("123456"))
        self.assertIsNone(self.service._read(PASSCODE_FAILED_KEY))

    def test_lockouts_grow_with_each_failure(self) -> None:
        self.fail_passcode(PASSCODE_SOFT_ATTEMPT_LIMIT + 1)
        self.now += timedelta(seconds=31)
        self.fail_passcode(1)

        self.assertEqual(self.service.passcode_lockout_remaining(), timedelta(minutes=1))

    def test_recovery_only_after_hard_limit(self) -> None:
        for _ in range(PASSCODE_RECOVERY_ONLY_ATTEMPT_LIMIT):
            self.now += timedelta(hours=1)
            self.assertFalse(self.service.verify_passcode("000000"))

        self.now += timedelta(hours=1)
        with self.assertRaises(SecurityLockedOut) as ctx:
            self.service.verify_passcode("123456")
        self.assertEqual(ctx.exception.code, "recovery_only")
        self.assertTrue(self.service.status()["passcode_recovery_only"])

        self.service.change_passcode("222222", memorable_word="sunflower1")

        self.assertFalse(self.service.is_passcode_recovery_only())
        self.assertTrue(self.service.verify_passcode("222222"))

    def test_memorable_word_locks_after_each_failure(self) -> None:
        self.assertFalse(self.service.verify_memorable_word("wrongword1"))

        with self.assertRaises(SecurityLockedOut) as ctx:
            self.service.verify_memorable_word("sunflower1")
        self.assertEqual(ctx.exception.retry_after_seconds, 60)

        self.now += timedelta(minutes=2)
        self.assertTrue(self.service.verify_memorable_word("sunflower1"))

    def test_memorable_word_requires_reset_after_limit(self) -> None:
        for _ in range(MEMORABLE_WORD_WIPE_ATTEMPT_LIMIT):
            self.now += timedelta(hours=1)
            self.assertFalse(self.service.verify_memorable_word("wrongword1"))

        with self.assertRaises(SecurityLockedOut) as ctx:
            self.service.verify_memorable_word("sunflower1")
        self.assertEqual(ctx.exception.code, "wipe_required")

        self.service.reset_all_security_state()

        self.assertFalse(self.service.is_memorable_word_wipe_required())


if __name__ == "__main__":
    unittest.main()
