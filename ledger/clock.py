from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from flask import current_app, has_app_context

DEFAULT_TZ = "Asia/Kolkata"


def ledger_tz() -> ZoneInfo:
    name = DEFAULT_TZ
    if has_app_context():
        name = current_app.config.get("LEDGER_TIMEZONE") or DEFAULT_TZ
    return ZoneInfo(name)


def utc_now() -> datetime:
    """Naive UTC timestamp, the form every DateTime column is stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_now() -> datetime:
    return datetime.now(ledger_tz())


def local_today() -> date:
    """Calendar date used for due-date comparisons."""
    return local_now().date()
