from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Callable, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool

from finance_insights.models import Bill, BillNotificationProfile
from finance_insights.notification_profiles import (
    DAYS_BEFORE_OPTIONS,
    BillNotificationProfileService,
    apply_choice,
)
from finance_insights.repositories import TransactionRepository
from finance_insights.scheduler import NotificationScheduler
from finance_insights.sync import SyncCoalescer, SyncResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BillNotificationsState:
    bills: List[Bill]
    profiles: Dict[str, BillNotificationProfile]

    def profile_for(self, bill_id: str) -> BillNotificationProfile:
        return self.profiles.get(bill_id) or BillNotificationProfile(bill_id=bill_id)


def sort_bills(bills: List[Bill]) -> List[Bill]:
    """Due date ascending, then name; bills without a due date go last."""
    return sorted(
        bills,
        key=lambda bill: (
            bill.next_due_date is None,
            bill.next_due_date or date.max,
            bill.name.lower(),
        ),
    )


def due_status_label(due: Optional[date], today: date) -> str:
    if due is None:
        return "No due date"
    days = (due - today).days
    if days < 0:
        overdue = -days
        return f"Overdue by {overdue} day{'s' if overdue != 1 else ''}"
    if days == 0:
        return "Due today"
    return f"Due in {days} day{'s' if days != 1 else ''}"


class BillNotificationsController:
    """Bill reminder preferences with a coalesced schedule resync after each save."""

    def __init__(
        self,
        transaction_repository: TransactionRepository,
        profile_service: BillNotificationProfileService,
        scheduler: NotificationScheduler,
        today_fn: Callable[[], date] = date.today,
    ) -> None:
        self.transaction_repository = transaction_repository
        self.profile_service = profile_service
        self.scheduler = scheduler
        self.today_fn = today_fn
        self.coalescer = SyncCoalescer(self._sync)

    async def _sync(self) -> SyncResult:
        return await run_in_threadpool(self.scheduler.sync_schedules)

    def close(self) -> None:
        self.coalescer.close()

    async def load(self) -> BillNotificationsState:
        bills = await run_in_threadpool(self.transaction_repository.get_active_bills)
        profiles = await run_in_threadpool(self.profile_service.load_all)
        return BillNotificationsState(bills=sort_bills(bills), profiles=profiles)

    async def _get_bill(self, bill_id: str) -> Bill:
        bill = await run_in_threadpool(self.transaction_repository.get_bill, bill_id)
        if bill is None:
            raise LookupError("Bill not found.")
        return bill

    async def _get_profile(self, bill_id: str) -> BillNotificationProfile:
        await self._get_bill(bill_id)
        profiles = await run_in_threadpool(self.profile_service.load_all)
        return profiles.get(bill_id) or BillNotificationProfile(bill_id=bill_id)

    async def save_bill(self, bill: Bill) -> Bill:
        saved = await run_in_threadpool(self.transaction_repository.update_bill, bill)
        await self.coalescer.request(visible=False)
        return saved

    async def save_profile(self, profile: BillNotificationProfile) -> BillNotificationProfile:
        stored = await run_in_threadpool(self.profile_service.save_profile, profile)
        if not stored:
            logger.info("Bill %s notification settings reset to defaults", profile.bill_id)
        await self.coalescer.request(visible=False)
        return profile

    async def update_choice(self, bill_id: str, field: str, value: str) -> BillNotificationProfile:
        profile = await self._get_profile(bill_id)
        return await self.save_profile(apply_choice(profile, field, value))

    async def update_reminder_enabled(self, bill_id: str, enabled: bool) -> Bill:
        bill = await self._get_bill(bill_id)
        return await self.save_bill(replace(bill, reminder_enabled=enabled))

    async def update_reminder_days(self, bill_id: str, days: int) -> Bill:
        if days not in DAYS_BEFORE_OPTIONS:
            raise ValueError(
                "Reminder days must be one of " + ", ".join(str(d) for d in DAYS_BEFORE_OPTIONS)
            )
        bill = await self._get_bill(bill_id)
        return await self.save_bill(replace(bill, reminder_days_before=days))

    async def sync_now(self, visible: bool = True) -> Optional[SyncResult]:
        return await self.coalescer.request(visible=visible)
