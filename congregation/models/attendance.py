"""Attendance model with check-in, geofence and exception details."""
from datetime import datetime, date
from enum import Enum
from math import floor
from typing import Optional
from congregation import db
from congregation.models.base import BaseModel

class AttendanceStatus(Enum):
    PRESENT = 'present'
    LATE = 'late'
    ABSENT = 'absent'
    EXCUSED = 'excused'

class CheckInMethod(Enum):
    QR = 'qr'
    MANUAL = 'manual'
    NFC = 'nfc'
    GPS = 'gps'
    FACIAL = 'facial'
    AUTO = 'auto'

class ExceptionType(Enum):
    CORRECTION = 'correction'
    LATE_ENTRY = 'late_entry'
    EXCUSED_ABSENCE = 'excused_absence'
    TECHNICAL_ISSUE = 'technical_issue'
    OTHER = 'other'

MIGRATED_NOTE = 'migrated from visitor record'

class AttendanceRecord(BaseModel):
    """One presence of a member at a service on a calendar day."""

    __tablename__ = 'attendance_records'

    member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey('services.id'), nullable=False, index=True)
    calendar_date = db.Column(db.Date, nullable=False, index=True)
    check_in_time = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    check_out_time = db.Column(db.DateTime, nullable=True)
    duration = db.Column(db.Integer, nullable=True)  # minutes

    status = db.Column(db.Enum(AttendanceStatus), nullable=False, default=AttendanceStatus.PRESENT)
    method = db.Column(db.Enum(CheckInMethod), nullable=False, default=CheckInMethod.MANUAL)

    # Location where check-in happened
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    distance_from_venue = db.Column(db.Integer, default=0, nullable=False)  # meters
    within_geofence = db.Column(db.Boolean, default=True, nullable=False)
    device_info = db.Column(db.JSON, nullable=True)

    # Late Information
    is_late = db.Column(db.Boolean, default=False, nullable=False)
    minutes_late = db.Column(db.Integer, default=0, nullable=False)

    # Manual / migrated entries
    is_manual_entry = db.Column(db.Boolean, default=False, nullable=False)
    entered_by = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True)
    is_migrated = db.Column(db.Boolean, default=False, nullable=False)
    notes = db.Column(db.String(500), nullable=True)

    # Exception Handling
    is_exception = db.Column(db.Boolean, default=False, nullable=False)
    exception_type = db.Column(db.Enum(ExceptionType), nullable=True)
    exception_reason = db.Column(db.String(255), nullable=True)
    approved_by = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True)

    # Flags
    is_duplicate = db.Column(db.Boolean, default=False, nullable=False)
    is_deleted = db.Column(db.Boolean, default=False, nullable=False)
    deleted_by = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True)
    delete_reason = db.Column(db.String(255), nullable=True)

    # One live check-in per member, service and day
    __table_args__ = (
        db.Index(
            'uq_attendance_member_service_day',
            'member_id', 'service_id', 'calendar_date',
            unique=True,
            sqlite_where=db.text('is_deleted = 0'),
            postgresql_where=db.text('NOT is_deleted')
        ),
    )

    # Relationships
    member = db.relationship('Member', foreign_keys=[member_id],
                             backref=db.backref('attendance_records', lazy='dynamic'))
    service = db.relationship('Service', backref=db.backref('attendance_records', lazy='dynamic'))

    @classmethod
    def find_active(cls, member_id: int, service_id: int, day: date) -> Optional['AttendanceRecord']:
        """The live check-in for (member, service, day), if any."""
        return cls.query.filter_by(
            member_id=member_id,
            service_id=service_id,
            calendar_date=day,
            is_deleted=False
        ).first()

    @classmethod
    def attended_member_ids(cls, service_id: int, day: date) -> set:
        """Distinct members with a live check-in for (service, day)."""
        rows = db.session.query(cls.member_id).filter_by(
            service_id=service_id,
            calendar_date=day,
            is_deleted=False
        ).distinct().all()
        return {row[0] for row in rows}

    @staticmethod
    def duration_between(check_in_time: datetime, check_out_time: datetime) -> int:
        """Minutes between check-in and check-out, rounded half up."""
        seconds = (check_out_time - check_in_time).total_seconds()
        return floor(seconds / 60 + 0.5)

    def to_dict(self, exclude: list = None):
        """Convert to dictionary."""
        data = super().to_dict(exclude=exclude)
        data['location'] = None
        if self.latitude is not None and self.longitude is not None:
            data['location'] = {
                'latitude': self.latitude,
                'longitude': self.longitude
            }
        return data

    def __repr__(self):
        return f'<AttendanceRecord {self.member_id}-{self.service_id}-{self.calendar_date}>'
