"""
"Today" in the family's timezone
"""
from datetime import date, datetime
from zoneinfo import ZoneInfo

from app.config import get_settings


def local_today(tz_name: str | None = None) -> date:
    """Calendar date now in TIMEZONE (or the given zone)."""
    tz = ZoneInfo(tz_name or get_settings().TIMEZONE)
    return datetime.now(tz).date()
