from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Optional

import bcrypt
from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine

from finance_insights.db import security_secrets

logger = logging.getLogger(__name__)

PASSCODE_KEY = "passcode_hash"
MEMORABLE_WORD_KEY = "memorable_word_hash"
PASSCODE_FAILED_KEY = "passcode_failed_attempts"
PASSCODE_LOCKOUT_KEY = "passcode_lockout_until"
PASSCODE_RECOVERY_ONLY_KEY = "passcode_recovery_only"
MEMORABLE_WORD_FAILED_KEY = "memorable_word_failed_attempts"
MEMORABLE_WORD_LOCKOUT_KEY = "memorable_word_lockout_until"

PASSCODE_LENGTH = 6
MEMORABLE_WORD_MIN = 8
MEMORABLE_WORD_MAX = 12

# Failures allowed before timed lockouts start, and before only the
# memorable word can unlock passcode changes.
PASSCODE_SOFT_ATTEMPT_LIMIT = 3
PASSCODE_RECOVERY_ONLY_ATTEMPT_LIMIT = 7
PASSCODE_LOCKOUT_SCHEDULE = (
    timedelta(seconds=30),
    timedelta(minutes=1),
    timedelta(minutes=5),
    timedelta(minutes=15),
)
MEMORABLE_WORD_WIPE_ATTEMPT_LIMIT = 3
MEMORABLE_WORD_LOCKOUT_SCHEDULE = (
    timedelta(minutes=1),
    timedelta(minutes=5),
)


class SecurityLockedOut(RuntimeError):
    """Verification refused until a lockout expires or security is reset."""

    def __init__(self, code: str, message: str, retry_after: Optional[timedelta] = None) -> None:
        super().__init__(message)
        self.code = code
        self.retry_after = retry_after

    @property
    def retry_after_seconds(self) -> Optional[int]:
        if self.retry_after is None:
            return None
        return max(1, math.ceil(self.retry_after.total_seconds()))


def validate_passcode(passcode: str) -> str:
    value = (passcode or "").strip()
    if len(value) != PASSCODE_LENGTH or not value.isdigit():
        raise ValueError(f"Passcode must be exactly {PASSCODE_LENGTH} digits")
    return value


def validate_memorable_word(word: str) -> str:
    value = (word or "").strip()
    if not (MEMORABLE_WORD_MIN <= len(value) <= MEMORABLE_WORD_MAX):
        raise ValueError(
            f"Memorable word must be {MEMORABLE_WORD_MIN}-{MEMORABLE_WORD_MAX} characters"
        )
    if not value.isalnum() or not value.isascii():
        raise ValueError("Memorable word must contain only letters and numbers")
    return value.lower()


def _hash_secret(secret: str) -> str:
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def _check_secret(secret: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(secret.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored secret hash is malformed")
        return False


class SecurityService:
    """Stores the app passcode and memorable word as bcrypt hashes.

    Failed attempts are counted in the same table. Passcode failures past
    ``PASSCODE_SOFT_ATTEMPT_LIMIT`` start timed lockouts that grow along
    ``PASSCODE_LOCKOUT_SCHEDULE``; reaching
    ``PASSCODE_RECOVERY_ONLY_ATTEMPT_LIMIT`` refuses the passcode until a new
    one is set with the memorable word. Every memorable word failure starts a
    lockout, and ``MEMORABLE_WORD_WIPE_ATTEMPT_LIMIT`` failures refuse it until
    security is reset.
    """

    def __init__(self, engine: Engine, now_fn: Callable[[], datetime] = datetime.now) -> None:
        self.engine = engine
        self.now_fn = now_fn

    def _read(self, key: str) -> str | None:
        with self.engine.begin() as conn:
            return conn.execute(
                select(security_secrets.c.value).where(security_secrets.c.key == key)
            ).scalar_one_or_none()

    def _write(self, key: str, value: str) -> None:
        now = datetime.now()
        with self.engine.begin() as conn:
            exists = conn.execute(
                select(security_secrets.c.key).where(security_secrets.c.key == key)
            ).first()
            if exists:
                conn.execute(
                    update(security_secrets)
                    .where(security_secrets.c.key == key)
                    .values(value=value, updated_at=now)
                )
            else:
                conn.execute(insert(security_secrets).values(key=key, value=value, updated_at=now))

    def _delete(self, *keys: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(security_secrets).where(security_secrets.c.key.in_(keys)))

    def _read_count(self, key: str) -> int:
        raw = self._read(key)
        return int(raw) if raw else 0

    def _lockout_remaining(self, key: str) -> Optional[timedelta]:
        raw = self._read(key)
        if raw is None:
            return None
        remaining = datetime.fromisoformat(raw) - self.now_fn()
        if remaining <= timedelta(0):
            self._delete(key)
            return None
        return remaining

    def _start_lockout(self, key: str, duration: timedelta) -> None:
        self._write(key, (self.now_fn() + duration).isoformat())

    def has_passcode(self) -> bool:
        return self._read(PASSCODE_KEY) is not None

    def has_memorable_word(self) -> bool:
        return self._read(MEMORABLE_WORD_KEY) is not None

    def passcode_lockout_remaining(self) -> Optional[timedelta]:
        return self._lockout_remaining(PASSCODE_LOCKOUT_KEY)

    def memorable_word_lockout_remaining(self) -> Optional[timedelta]:
        return self._lockout_remaining(MEMORABLE_WORD_LOCKOUT_KEY)

    def is_passcode_recovery_only(self) -> bool:
        return self._read(PASSCODE_RECOVERY_ONLY_KEY) is not None

    def is_memorable_word_wipe_required(self) -> bool:
        return self._read_count(MEMORABLE_WORD_FAILED_KEY) >= MEMORABLE_WORD_WIPE_ATTEMPT_LIMIT

    def set_passcode(self, passcode: str) -> None:
        self._write(PASSCODE_KEY, _hash_secret(validate_passcode(passcode)))
        self._delete(PASSCODE_FAILED_KEY, PASSCODE_LOCKOUT_KEY, PASSCODE_RECOVERY_ONLY_KEY)
        logger.info("Passcode updated")

    def set_memorable_word(self, word: str) -> None:
        self._write(MEMORABLE_WORD_KEY, _hash_secret(validate_memorable_word(word)))
        self._delete(MEMORABLE_WORD_FAILED_KEY, MEMORABLE_WORD_LOCKOUT_KEY)
        logger.info("Memorable word updated")

    def verify_passcode(self, passcode: str) -> bool:
        if self.is_passcode_recovery_only():
            raise SecurityLockedOut(
                "recovery_only",
                "Too many failed passcode attempts. Use your memorable word to set a new passcode.",
            )
        remaining = self.passcode_lockout_remaining()
        if remaining is not None:
            raise SecurityLockedOut(
                "temporary_lockout", "Too many failed passcode attempts. Try again later.", remaining
            )
        stored = self._read(PASSCODE_KEY)
        if stored is None:
            return False
        if _check_secret((passcode or "").strip(), stored):
            self._delete(PASSCODE_FAILED_KEY, PASSCODE_LOCKOUT_KEY)
            return True
        self._register_passcode_failure()
        return False

    def verify_memorable_word(self, word: str) -> bool:
        if self.is_memorable_word_wipe_required():
            raise SecurityLockedOut(
                "wipe_required",
                "Too many failed memorable word attempts. Reset security to continue.",
            )
        remaining = self.memorable_word_lockout_remaining()
        if remaining is not None:
            raise SecurityLockedOut(
                "temporary_lockout",
                "Too many failed memorable word attempts. Try again later.",
                remaining,
            )
        stored = self._read(MEMORABLE_WORD_KEY)
        if stored is None:
            return False
        if _check_secret((word or "").strip().lower(), stored):
            self._delete(MEMORABLE_WORD_FAILED_KEY, MEMORABLE_WORD_LOCKOUT_KEY)
            return True
        self._register_memorable_word_failure()
        return False

    def _register_passcode_failure(self) -> None:
        failed = self._read_count(PASSCODE_FAILED_KEY) + 1
        self._write(PASSCODE_FAILED_KEY, str(failed))
        if failed >= PASSCODE_RECOVERY_ONLY_ATTEMPT_LIMIT:
            self._write(PASSCODE_RECOVERY_ONLY_KEY, "1")
            self._delete(PASSCODE_LOCKOUT_KEY)
            logger.warning("Passcode locked after %d failed attempts; recovery required", failed)
        elif failed > PASSCODE_SOFT_ATTEMPT_LIMIT:
            index = min(failed - PASSCODE_SOFT_ATTEMPT_LIMIT - 1, len(PASSCODE_LOCKOUT_SCHEDULE) - 1)
            self._start_lockout(PASSCODE_LOCKOUT_KEY, PASSCODE_LOCKOUT_SCHEDULE[index])
            logger.warning(
                "Passcode locked for %s after %d failed attempts",
                PASSCODE_LOCKOUT_SCHEDULE[index],
                failed,
            )

    def _register_memorable_word_failure(self) -> None:
        failed = self._read_count(MEMORABLE_WORD_FAILED_KEY) + 1
        self._write(MEMORABLE_WORD_FAILED_KEY, str(failed))
        if failed >= MEMORABLE_WORD_WIPE_ATTEMPT_LIMIT:
            self._delete(MEMORABLE_WORD_LOCKOUT_KEY)
            logger.warning("Memorable word refused after %d failed attempts", failed)
            return
        index = min(failed - 1, len(MEMORABLE_WORD_LOCKOUT_SCHEDULE) - 1)
        self._start_lockout(MEMORABLE_WORD_LOCKOUT_KEY, MEMORABLE_WORD_LOCKOUT_SCHEDULE[index])

    def authorize(
        self, current_passcode: str | None = None, memorable_word: str | None = None
    ) -> None:
        """Require proof of the current secrets before security settings change.

        Nothing is required until a passcode exists. The memorable word is the
        recovery path and is checked first when given.
        """
        if not self.has_passcode():
            return
        if memorable_word is not None and self.has_memorable_word():
            if self.verify_memorable_word(memorable_word):
                return
        elif current_passcode is not None:
            if self.verify_passcode(current_passcode):
                return
        raise PermissionError("Current passcode or memorable word is incorrect.")

    def change_passcode(
        self,
        passcode: str,
        current_passcode: str | None = None,
        memorable_word: str | None = None,
    ) -> None:
        validate_passcode(passcode)
        self.authorize(current_passcode, memorable_word)
        self.set_passcode(passcode)

    def change_memorable_word(
        self,
        word: str,
        current_passcode: str | None = None,
        memorable_word: str | None = None,
    ) -> None:
        validate_memorable_word(word)
        self.authorize(current_passcode, memorable_word)
        self.set_memorable_word(word)

    def reset_all_security_state(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(security_secrets))
        logger.info("Security state reset")

    def status(self) -> dict:
        return {
            "has_passcode": self.has_passcode(),
            "has_memorable_word": self.has_memorable_word(),
            "passcode_recovery_only": self.is_passcode_recovery_only(),
            "memorable_word_wipe_required": self.is_memorable_word_wipe_required(),
        }
