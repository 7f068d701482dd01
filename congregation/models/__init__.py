"""Models package with all models."""
from .base import BaseModel
from .member import Member, MemberRole
from .department import Department
from .service import Service
from .attendance import AttendanceRecord, AttendanceStatus, CheckInMethod, ExceptionType
from .follow_up import (
    FollowUp, ContactAttempt, FollowUpReason, FollowUpPriority,
    FollowUpStatus, FollowUpOutcome, ContactMethod, ContactOutcome
)
from .visitor import VisitorRecord, VisitorAttendance, VisitorSource
from .absence import AbsenceEvaluation, MemberAbsence

__all__ = [
    'BaseModel', 'Member', 'MemberRole', 'Department', 'Service',
    'AttendanceRecord', 'AttendanceStatus', 'CheckInMethod', 'ExceptionType',
    'FollowUp', 'ContactAttempt', 'FollowUpReason', 'FollowUpPriority',
    'FollowUpStatus', 'FollowUpOutcome', 'ContactMethod', 'ContactOutcome',
    'VisitorRecord', 'VisitorAttendance', 'VisitorSource',
    'AbsenceEvaluation', 'MemberAbsence'
]
