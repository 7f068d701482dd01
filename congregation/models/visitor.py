"""Visitor records for walk-ins who are not yet members."""
import secrets
from datetime import datetime, date
from enum import Enum
from congregation import db
from congregation.models.base import BaseModel

class VisitorSource(Enum):
    QR_SCAN = 'qr_scan'
    MANUAL = 'manual'
    LINK = 'link'
    REFERRAL = 'referral'
    WALK_IN = 'walk_in'

class VisitorRecord(BaseModel):
    """Anonymous visitor identified by phone number."""

    __tablename__ = 'visitor_records'

    # Basic Information
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False)
    phone = db.Column(db.String(20), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), nullable=True, index=True)

    # Visit Tracking
    visit_count = db.Column(db.Integer, default=1, nullable=False)
    first_visit = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    last_visit = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    source = db.Column(db.Enum(VisitorSource), default=VisitorSource.MANUAL, nullable=False)
    device_info = db.Column(db.JSON, nullable=True)

    # Registration Invite
    registration_invite_token = db.Column(db.String(64), unique=True, nullable=True, index=True)
    registration_invite_sent = db.Column(db.Boolean, default=False, nullable=False)
    registration_invite_sent_at = db.Column(db.DateTime, nullable=True)

    # Conversion Status
    converted_to_user = db.Column(db.Boolean, default=False, nullable=False)
    linked_member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True)
    conversion_date = db.Column(db.DateTime, nullable=True)

    # Relationships
    attendances = db.relationship('VisitorAttendance', backref='visitor',
                                  order_by='VisitorAttendance.check_in_time',
                                  cascade='all, delete-orphan')
    linked_member = db.relationship('Member')

    @property
    def full_name(self) -> str:
        return f'{self.first_name} {self.last_name}'

    @staticmethod
    def generate_invite_token() -> str:
        return secrets.token_hex(32)

    def has_attended(self, service_id: int, day: date) -> bool:
        return any(a.service_id == service_id and a.date == day for a in self.attendances)

    def to_dict(self, exclude: list = None):
        """Convert to dictionary."""
        default_exclude = ['registration_invite_token']
        data = super().to_dict(exclude=(exclude or []) + default_exclude)
        data['full_name'] = self.full_name
        data['attendances'] = [a.to_dict(exclude=['visitor_id']) for a in self.attendances]
        return data

    def __repr__(self):
        return f'<VisitorRecord {self.phone}>'

class VisitorAttendance(BaseModel):
    """One visit of a visitor to a service."""

    __tablename__ = 'visitor_attendances'

    visitor_id = db.Column(db.Integer, db.ForeignKey('visitor_records.id'), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey('services.id'), nullable=False)
    date = db.Column(db.Date, nullable=False)
    check_in_time = db.Column(db.DateTime, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('visitor_id', 'service_id', 'date', name='uq_visitor_service_day'),
    )
