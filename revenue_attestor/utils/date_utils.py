"""Date and timestamp utilities"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime:
    """
    Parse an ISO 8601 timestamp into an aware datetime.

    Naive values are taken as UTC. Date-only strings resolve to midnight UTC.

    Raises:
        ValueError: On missing or malformed input
    """
    if value is None or value == "":
        raise ValueError("Timestamp is missing")
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if len(text) == 10:
            parsed = datetime.combine(date.fromisoformat(text), time.min)
        else:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso_z(moment: datetime) -> str:
    """UTC ISO 8601 with millisecond precision and a Z suffix (2024-05-01T00:00:00.000Z)"""
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S") + f".{utc.microsecond // 1000:03d}Z"


def from_epoch_seconds(seconds: int | float | str) -> str:
    """Unix seconds (Stripe 'created') as an ISO 8601 string"""
    return to_iso_z(EPOCH + timedelta(seconds=int(seconds)))


def epoch_millis(moment: datetime) -> int:
    """Whole milliseconds since the Unix epoch, computed without float rounding"""
    return (moment.astimezone(timezone.utc) - EPOCH) // timedelta(milliseconds=1)


def resolve_timezone(name: str) -> ZoneInfo:
    """
    Raises:
        ValueError: If the IANA zone name is unknown
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name!r}") from e


def subtract_calendar_days(moment: datetime, days: int) -> datetime:
    """Move back N calendar days keeping the local wall-clock time"""
    return moment - timedelta(days=days)
