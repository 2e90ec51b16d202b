from datetime import datetime, timedelta, timezone
import pytz

from ..config import settings

BUSINESS_START_HOUR = 6
BUSINESS_END_HOUR = 22
MAX_SCHEDULE_AHEAD = timedelta(days=365)

def _utcnow():
    return datetime.now(timezone.utc)

def as_utc(value: datetime | None) -> datetime | None:
    """Normalises a datetime to aware UTC; naive values (as read back from SQLite) are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def _tz(tz_name: str | None):
    return pytz.timezone(tz_name or settings.timezone)

def validate_scheduled_time(when: datetime | None, post_type: str | None = None, platform: str | None = None,
                            now: datetime | None = None, tz_name: str | None = None) -> dict:
    if when is None:
        return {"is_valid": False, "error": "Please select a scheduled time"}

    now = as_utc(now) or _utcnow()
    when = as_utc(when)

    if when <= now:
        return {"is_valid": False, "error": "Scheduled time must be in the future"}

    if when > now + MAX_SCHEDULE_AHEAD:
        return {"is_valid": False, "error": "Cannot schedule posts more than 1 year in advance"}

    if platform == "instagram" and post_type == "story":
        return {"is_valid": False, "error": "Instagram stories cannot be scheduled - they must be posted immediately"}

    local_hour = when.astimezone(_tz(tz_name)).hour
    if local_hour < BUSINESS_START_HOUR or local_hour > BUSINESS_END_HOUR:
        return {
            "is_valid": True,
            "warning": "Consider scheduling during business hours (6 AM - 10 PM) for better engagement",
        }

    return {"is_valid": True}

def time_until(when: datetime | None, now: datetime | None = None) -> str | None:
    if when is None:
        return None
    now = as_utc(now) or _utcnow()
    diff = as_utc(when) - now
    if diff.total_seconds() <= 0:
        return None

    days = diff.days
    hours, remainder = divmod(diff.seconds, 3600)
    minutes = remainder // 60

    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"

def _at(tz, day: datetime, hour: int) -> datetime:
    naive = datetime(day.year, day.month, day.day, hour, 0, 0)
    return tz.localize(naive).astimezone(pytz.utc)

def suggested_times(now: datetime | None = None, tz_name: str | None = None) -> list[dict]:
    tz = _tz(tz_name)
    now_local = (as_utc(now) or _utcnow()).astimezone(tz)

    if now_local.hour < 9:
        next_business = _at(tz, now_local, 9)
    elif now_local.hour < 17:
        next_business = _at(tz, now_local, now_local.hour + 1)
    else:
        next_business = _at(tz, now_local + timedelta(days=1), 9)

    tomorrow_10 = _at(tz, now_local + timedelta(days=1), 10)

    # Python weekday(): Monday=0 .. Saturday=5
    days_until_saturday = (5 - now_local.weekday()) % 7 or 7
    saturday_11 = _at(tz, now_local + timedelta(days=days_until_saturday), 11)

    return [
        {"label": "Next Business Hour", "value": next_business.isoformat()},
        {"label": "Tomorrow 10 AM", "value": tomorrow_10.isoformat()},
        {"label": "This Weekend", "value": saturday_11.isoformat()},
    ]
