"""Venue wall clock.

Service start times are wall-clock times at the church, so check-in times,
calendar days and lateness are all kept as naive datetimes in the configured
``SERVICE_TIMEZONE``.
"""
from datetime import date, datetime
from zoneinfo import ZoneInfo

from flask import current_app

DEFAULT_TIMEZONE = 'Africa/Lagos'

def service_timezone() -> ZoneInfo:
    return ZoneInfo(current_app.config.get('SERVICE_TIMEZONE') or DEFAULT_TIMEZONE)

def local_now() -> datetime:
    """Current wall-clock time at the venue, without tzinfo."""
    return datetime.now(tz=service_timezone()).replace(tzinfo=None)

def local_today() -> date:
    return local_now().date()

def to_local(moment: datetime) -> datetime:
    """Aware datetimes are converted to venue time; naive ones already are."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(service_timezone()).replace(tzinfo=None)

def resolve(moment: datetime = None) -> datetime:
    """Venue time for ``moment``, or now."""
    return to_local(moment) if moment is not None else local_now()
