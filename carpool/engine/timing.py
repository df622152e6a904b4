from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..errors import PastSlotError, UnconfiguredTimeError, ValidationError

WEEKDAYS = (
    "MONDAY",
    "TUESDAY",
    "WEDNESDAY",
    "THURSDAY",
    "FRIDAY",
    "SATURDAY",
    "SUNDAY",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_slot_datetime(value) -> datetime:
    """ISO-8601 string or datetime -> aware UTC datetime. Naive input is read as UTC."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(raw)
        except ValueError:
            raise ValidationError(
                f"Invalid datetime format: {value}. Expected ISO 8601 datetime string."
            ) from None
    else:
        raise ValidationError("Datetime is required")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def resolve_zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {tz_name}") from None


def local_wall_clock(dt: datetime, tz_name: str) -> datetime:
    return parse_slot_datetime(dt).astimezone(resolve_zone(tz_name))


def is_in_past(dt: datetime, tz_name: str, now: Optional[datetime] = None) -> bool:
    """Instant comparison. The caller's zone is validated here and only shapes
    the error message.

    Two datetimes sharing one ZoneInfo compare by wall clock and ignore `fold`,
    so both sides stay in UTC.
    """
    resolve_zone(tz_name)
    return parse_slot_datetime(dt) < parse_slot_datetime(now or utcnow())


def validate_timing(
    dt: datetime,
    tz_name: str,
    now: Optional[datetime] = None,
    action: str = "create",
) -> None:
    if is_in_past(dt, tz_name, now):
        local = local_wall_clock(dt, tz_name).strftime("%Y-%m-%d %H:%M")
        raise PastSlotError(f"Cannot {action} trips in the past ({local} in {tz_name})")


def utc_weekday_and_time(dt: datetime) -> tuple[str, str]:
    utc = parse_slot_datetime(dt)
    return WEEKDAYS[utc.weekday()], utc.strftime("%H:%M")


def validate_against_schedule_config(
    schedule_hours: Optional[Dict[str, List[str]]], dt: datetime
) -> None:
    # schedule hours are stored as UTC, so this check never looks at a caller zone
    if schedule_hours is None:
        raise UnconfiguredTimeError(
            "Group has no schedule configuration. "
            "Please contact an administrator to configure schedule times."
        )

    weekday, time_of_day = utc_weekday_and_time(dt)
    configured = schedule_hours.get(weekday) or []
    if time_of_day not in configured:
        all_times = sorted({t for times in schedule_hours.values() for t in times or []})
        raise UnconfiguredTimeError(
            f"Time {time_of_day} is not configured for {weekday} in this group. "
            f"Available times: {', '.join(all_times) if all_times else 'none'}"
        )
