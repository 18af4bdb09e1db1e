from __future__ import annotations

from datetime import date, datetime, timezone as dt_timezone

import dateparser
from tzlocal import get_localzone_name

from app.core.config import get_settings


def utcnow() -> datetime:
    return datetime.now(dt_timezone.utc)


def parse_due_date(value: str, timezone: str | None = None) -> date | None:
    """Accepts ISO dates as well as phrases like "next friday" or "in 3 days"."""
    if not value or not value.strip():
        return None

    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        pass

    timezone = timezone or get_settings().timezone or get_local_timezone()
    settings = {
        "RETURN_AS_TIMEZONE_AWARE": True,
        "TIMEZONE": timezone,
        "TO_TIMEZONE": timezone,
        "PREFER_DATES_FROM": "future",
    }

    parsed = dateparser.parse(value, settings=settings)
    if not parsed:
        raise ValueError(f"Could not understand due date '{value}'")
    return parsed.date()


def get_local_timezone() -> str:
    try:
        return get_localzone_name()
    except Exception:
        return "UTC"
