"""Engagement scoring.

The score blends attendance rate with how recently the member last attended:

    score = round(0.7 * attendance_rate + 0.3 * recency)
    recency = clamp(100 - days since last attendance, 0, 100)

Members who never attended have a recency of 0. Nothing here touches the
database; callers persist the results.
"""
from datetime import datetime
from math import floor
from typing import Optional

from congregation.utils.errors import ValidationError

RATE_WEIGHT = 0.7
RECENCY_WEIGHT = 0.3


def _round_half_up(value: float) -> int:
    return int(floor(value + 0.5))


def days_between(last_attendance: datetime, now: datetime) -> int:
    """Whole days elapsed from ``last_attendance`` to ``now``."""
    if last_attendance > now:
        raise ValidationError(
            "Last attendance is in the future",
            last_attendance=last_attendance.isoformat(),
            now=now.isoformat()
        )
    return (now - last_attendance).days


def recency_score(last_attendance: Optional[datetime], now: datetime) -> int:
    if last_attendance is None:
        return 0
    return max(0, min(100, 100 - days_between(last_attendance, now)))


def calculate_attendance_rate(total_present: int, total_services: int) -> int:
    if not total_services:
        return 0
    return _round_half_up(total_present / total_services * 100)


def calculate_engagement_score(attendance_rate: int, last_attendance: Optional[datetime],
                               now: datetime) -> int:
    """Blend attendance rate and recency into a 0-100 score."""
    if not 0 <= attendance_rate <= 100:
        raise ValidationError("Attendance rate must be between 0 and 100",
                              attendance_rate=attendance_rate)
    recency = recency_score(last_attendance, now)
    return _round_half_up(RATE_WEIGHT * attendance_rate + RECENCY_WEIGHT * recency)


def refresh_member_stats(member, now: datetime) -> None:
    """Recompute a member's derived stats in place."""
    member.attendance_rate = calculate_attendance_rate(member.total_present, member.total_services)
    member.engagement_score = calculate_engagement_score(
        member.attendance_rate, member.last_attendance, now
    )
