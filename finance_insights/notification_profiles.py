from __future__ import annotations

import json
import logging
from dataclasses import replace
from datetime import time
from typing import Mapping, Sequence

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine

from finance_insights.db import bill_notification_profiles
from finance_insights.models import BillNotificationProfile

logger = logging.getLogger(__name__)

TEMPLATE_BILL_DUE = "bill_due"
TEMPLATE_BILL_FRIENDLY = "bill_friendly"
TEMPLATE_BILL_ACTION = "bill_action"
TEMPLATE_BILL_COMPACT = "bill_compact"
DEFAULT_TEMPLATE = TEMPLATE_BILL_DUE

TYPE_BILL_UPCOMING = "finance_bill_upcoming"
TYPE_PAYMENT_DUE = "finance_payment_due"
TYPE_REMINDER = "finance_reminder"
TYPE_SUMMARY = "finance_summary"
TYPE_INCOME_REMINDER = "finance_income_reminder"

AUTO = "auto"

TEMPLATE_OPTIONS: dict[str, str] = {
    TEMPLATE_BILL_DUE: "Standard Due Alert",
    TEMPLATE_BILL_FRIENDLY: "Friendly Reminder",
    TEMPLATE_BILL_ACTION: "Action Prompt",
    TEMPLATE_BILL_COMPACT: "Compact Message",
}
CHANNEL_OPTIONS: dict[str, str] = {
    AUTO: "Auto (Use Hub Type)",
    "task_reminders": "Task Reminders Channel",
    "urgent_reminders": "Urgent Reminders Channel",
    "silent_reminders": "Silent Reminders Channel",
}
SOUND_OPTIONS: dict[str, str] = {
    AUTO: "Auto (Use Hub Type)",
    "default": "Default Sound",
    "alarm": "Alarm Sound",
    "silent": "Silent (No Sound)",
}
TYPE_OPTIONS: dict[str, str] = {
    AUTO: "Auto (Due Logic)",
    TYPE_PAYMENT_DUE: "Payment Due Alert",
    TYPE_REMINDER: "Finance Reminder",
    TYPE_SUMMARY: "Finance Summary (Low Priority)",
}
DAYS_BEFORE_OPTIONS = (0, 1, 2, 3, 5, 7, 10, 14, 21, 30)

# field name -> (profile attribute, allowed options)
PROFILE_FIELDS: dict[str, tuple[str, Mapping[str, str]]] = {
    "template": ("template_key", TEMPLATE_OPTIONS),
    "channel": ("channel_key", CHANNEL_OPTIONS),
    "sound": ("sound_key", SOUND_OPTIONS),
    "type": ("type_override", TYPE_OPTIONS),
}


def is_default_profile(profile: BillNotificationProfile) -> bool:
    return (
        profile.template_key == DEFAULT_TEMPLATE
        and not profile.channel_key
        and not profile.sound_key
        and not profile.type_override
    )


def normalized_choice(
    value: str | None,
    options: Mapping[str, str] | Sequence[str],
    fallback: str,
) -> str:
    if value is None or not value.strip():
        return fallback
    normalized = value.strip()
    return normalized if normalized in options else fallback


def apply_choice(
    profile: BillNotificationProfile, field: str, value: str
) -> BillNotificationProfile:
    try:
        attribute, options = PROFILE_FIELDS[field]
    except KeyError as exc:
        raise ValueError(f"Unsupported notification setting: {field}") from exc
    normalized = value.strip()
    if normalized not in options:
        raise ValueError(f"Unsupported {field} option: {value}")
    if field == "template":
        return replace(profile, template_key=normalized)
    if normalized == AUTO:
        return replace(profile, **{attribute: None})
    return replace(profile, **{attribute: normalized})


def profile_to_json(profile: BillNotificationProfile) -> dict:
    payload: dict = {
        "billId": profile.bill_id,
        "reminderDaysBefore": profile.reminder_days_before,
        "templateKey": profile.template_key,
    }
    if profile.preferred_time is not None:
        payload["preferredTimeHour"] = profile.preferred_time.hour
        payload["preferredTimeMinute"] = profile.preferred_time.minute
    if profile.type_override:
        payload["typeOverride"] = profile.type_override
    if profile.channel_key:
        payload["channelKey"] = profile.channel_key
    if profile.sound_key:
        payload["soundKey"] = profile.sound_key
    return payload


def profile_from_json(payload: Mapping) -> BillNotificationProfile:
    preferred_time = None
    hour = payload.get("preferredTimeHour")
    minute = payload.get("preferredTimeMinute")
    if hour is not None and minute is not None:
        preferred_time = time(int(hour), int(minute))
    return BillNotificationProfile(
        bill_id=(payload.get("billId") or "").strip(),
        template_key=normalized_choice(
            _clean(payload.get("templateKey")), TEMPLATE_OPTIONS, DEFAULT_TEMPLATE
        ),
        channel_key=_clean(payload.get("channelKey")),
        sound_key=_clean(payload.get("soundKey")),
        type_override=_clean(payload.get("typeOverride")),
        reminder_days_before=int(payload.get("reminderDaysBefore", 3)),
        preferred_time=preferred_time,
    )


class BillNotificationProfileService:
    """Stores per-bill notification overrides as JSON documents."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def load_all(self) -> dict[str, BillNotificationProfile]:
        with self.engine.begin() as conn:
            rows = conn.execute(select(bill_notification_profiles)).mappings().all()
        profiles: dict[str, BillNotificationProfile] = {}
        for row in rows:
            try:
                profile = profile_from_json(json.loads(row["payload"]))
            except (ValueError, TypeError):
                logger.warning("Skipping unreadable notification profile for bill %s", row["bill_id"])
                continue
            profiles[row["bill_id"]] = replace(profile, bill_id=row["bill_id"])
        return profiles

    def save_profile(self, profile: BillNotificationProfile) -> bool:
        """Upsert a profile; profiles equal to the defaults are deleted instead.

        Returns True when a row was written.
        """
        if not profile.bill_id:
            raise ValueError("Profile requires a bill id.")
        if is_default_profile(profile):
            self.remove_profile(profile.bill_id)
            logger.debug("Collapsed default notification profile for bill %s", profile.bill_id)
            return False
        payload = json.dumps(profile_to_json(profile))
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(bill_notification_profiles.c.bill_id).where(
                    bill_notification_profiles.c.bill_id == profile.bill_id
                )
            ).first()
            if existing:
                conn.execute(
                    update(bill_notification_profiles)
                    .where(bill_notification_profiles.c.bill_id == profile.bill_id)
                    .values(payload=payload)
                )
            else:
                conn.execute(
                    insert(bill_notification_profiles).values(
                        bill_id=profile.bill_id, payload=payload
                    )
                )
        return True

    def remove_profile(self, bill_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                delete(bill_notification_profiles).where(
                    bill_notification_profiles.c.bill_id == bill_id
                )
            )


def _clean(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None
