from datetime import datetime, timezone
import os

import pytz


CLINIC_TZ = pytz.timezone(os.getenv("CLINIC_TIMEZONE", "Asia/Kolkata"))


def as_utc(value: datetime) -> datetime:
    # naive values are taken to be UTC already
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_slot_time(value: datetime) -> datetime:
    """Canonical slot key: UTC, whole minutes."""
    return as_utc(value).replace(second=0, microsecond=0)


def format_local(value: datetime, tz=None) -> str:
    tz = tz or CLINIC_TZ
    return as_utc(value).astimezone(tz).strftime("%d %b %Y, %I:%M %p")
