from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, Mapping

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine

from finance_insights.db import scheduled_notifications
from finance_insights.models import Bill, BillNotificationProfile, RecurringIncome
from finance_insights.notification_profiles import (
    TYPE_BILL_UPCOMING,
    TYPE_INCOME_REMINDER,
    TYPE_PAYMENT_DUE,
    BillNotificationProfileService,
)
from finance_insights.recurring_income import iter_occurrences
from finance_insights.repositories import RecurringIncomeRepository, TransactionRepository
from finance_insights.sync import SyncResult

logger = logging.getLogger(__name__)

SECTION_BILLS = "bills"
SECTION_RECURRING_INCOME = "recurring_income"
DEFAULT_REMINDER_TIME = time(9, 0)
# Long enough to reach the next yearly occurrence.
INCOME_REMINDER_HORIZON = timedelta(days=400)


@dataclass(frozen=True)
class PlannedNotification:
    logical_key: str
    section: str
    entity_id: str
    type_key: str
    title: str
    scheduled_at: datetime
    template_key: str | None = None
    channel_key: str | None = None
    sound_key: str | None = None


def plan_bill_reminders(
    bills: Iterable[Bill],
    profiles: Mapping[str, BillNotificationProfile],
    now: datetime,
) -> list[PlannedNotification]:
    planned: list[PlannedNotification] = []
    for bill in bills:
        if not bill.is_active or not bill.reminder_enabled or bill.next_due_date is None:
            continue
        profile = profiles.get(bill.id) or BillNotificationProfile(bill_id=bill.id)
        fire_date = bill.next_due_date - timedelta(days=bill.reminder_days_before)
        scheduled_at = datetime.combine(fire_date, profile.preferred_time or DEFAULT_REMINDER_TIME)
        if scheduled_at <= now:
            continue
        type_key = profile.type_override or (
            TYPE_PAYMENT_DUE if bill.reminder_days_before <= 1 else TYPE_BILL_UPCOMING
        )
        planned.append(
            PlannedNotification(
                logical_key=f"{SECTION_BILLS}:{bill.id}:{fire_date.isoformat()}",
                section=SECTION_BILLS,
                entity_id=bill.id,
                type_key=type_key,
                title=f"{bill.name} is due {bill.next_due_date.isoformat()}",
                scheduled_at=scheduled_at,
                template_key=profile.template_key,
                channel_key=profile.channel_key,
                sound_key=profile.sound_key,
            )
        )
    return planned


def plan_income_reminders(
    incomes: Iterable[RecurringIncome],
    now: datetime,
) -> list[PlannedNotification]:
    planned: list[PlannedNotification] = []
    for income in incomes:
        if not income.is_active:
            continue
        reminder = _next_income_reminder(income, now)
        if reminder is None:
            continue
        occurrence, scheduled_at = reminder
        planned.append(
            PlannedNotification(
                logical_key=f"{SECTION_RECURRING_INCOME}:{income.id}:{occurrence.isoformat()}",
                section=SECTION_RECURRING_INCOME,
                entity_id=income.id,
                type_key=TYPE_INCOME_REMINDER,
                title=f"{income.title} expected {occurrence.isoformat()}",
                scheduled_at=scheduled_at,
            )
        )
    return planned


def _next_income_reminder(income: RecurringIncome, now: datetime) -> tuple[date, datetime] | None:
    """First occurrence whose day-before reminder is still ahead of ``now``."""
    for occurrence in iter_occurrences(income, now.date(), now.date() + INCOME_REMINDER_HORIZON):
        scheduled_at = datetime.combine(occurrence - timedelta(days=1), DEFAULT_REMINDER_TIME)
        if scheduled_at > now:
            return occurrence, scheduled_at
    return None


class NotificationScheduler:
    def __init__(
        self,
        engine: Engine,
        transaction_repository: TransactionRepository,
        profile_service: BillNotificationProfileService,
        income_repository: RecurringIncomeRepository,
        now_fn: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.engine = engine
        self.transaction_repository = transaction_repository
        self.profile_service = profile_service
        self.income_repository = income_repository
        self.now_fn = now_fn

    def plan(self) -> list[PlannedNotification]:
        now = self.now_fn()
        bills = self.transaction_repository.get_active_bills()
        profiles = self.profile_service.load_all()
        incomes = self.income_repository.get_currently_active(now.date())
        return plan_bill_reminders(bills, profiles, now) + plan_income_reminders(incomes, now)

    def sync_schedules(self) -> SyncResult:
        planned = self.plan()
        planned_by_key = {entry.logical_key: entry for entry in planned}
        with self.engine.begin() as conn:
            existing_keys = set(
                conn.execute(select(scheduled_notifications.c.logical_key)).scalars().all()
            )
            stale_keys = existing_keys - planned_by_key.keys()
            if stale_keys:
                conn.execute(
                    delete(scheduled_notifications).where(
                        scheduled_notifications.c.logical_key.in_(stale_keys)
                    )
                )
            for key, entry in planned_by_key.items():
                values = _entry_values(entry)
                if key in existing_keys:
                    conn.execute(
                        update(scheduled_notifications)
                        .where(scheduled_notifications.c.logical_key == key)
                        .values(**values)
                    )
                else:
                    conn.execute(insert(scheduled_notifications).values(logical_key=key, **values))

        by_section: dict[str, int] = {}
        for entry in planned_by_key.values():
            by_section[entry.section] = by_section.get(entry.section, 0) + 1
        logger.debug("Planned %d reminder(s) across %d section(s)", len(planned_by_key), len(by_section))
        return SyncResult(
            scheduled=len(planned_by_key),
            cancelled=len(stale_keys),
            scheduled_by_section=by_section,
        )

    def list_scheduled(self) -> list[PlannedNotification]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(scheduled_notifications).order_by(scheduled_notifications.c.scheduled_at.asc())
            ).mappings().all()
        return [
            PlannedNotification(
                logical_key=row["logical_key"],
                section=row["section"],
                entity_id=row["entity_id"],
                type_key=row["type_key"],
                title=row["title"],
                scheduled_at=row["scheduled_at"],
                template_key=row["template_key"],
                channel_key=row["channel_key"],
                sound_key=row["sound_key"],
            )
            for row in rows
        ]


def _entry_values(entry: PlannedNotification) -> dict:
    return {
        "section": entry.section,
        "entity_id": entry.entity_id,
        "type_key": entry.type_key,
        "template_key": entry.template_key,
        "channel_key": entry.channel_key,
        "sound_key": entry.sound_key,
        "title": entry.title,
        "scheduled_at": entry.scheduled_at,
    }
