"""Date manipulation utilities"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Timezone-aware current time in UTC"""
    return datetime.now(timezone.utc)


def month_key(moment: datetime | None = None) -> str:
    """Calendar month bucket for usage tracking, e.g. "2024-05" (UTC)"""
    current = moment or utc_now()
    if current.tzinfo is not None:
        current = current.astimezone(timezone.utc)
    return current.strftime("%Y-%m")
