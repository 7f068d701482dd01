"""Follow-up task model with contact attempt history."""
from enum import Enum
from congregation import db
from congregation.models.base import BaseModel
from congregation.utils.clock import local_now

class FollowUpReason(Enum):
    CONSECUTIVE_ABSENCES = 'consecutive_absences'
    LOW_ENGAGEMENT = 'low_engagement'
    FIRST_TIME_VISITOR = 'first_time_visitor'
    RETURNING_MEMBER = 'returning_member'
    SPECIAL_NEEDS = 'special_needs'
    BIRTHDAY = 'birthday'
    ANNIVERSARY = 'anniversary'
    PRAYER_REQUEST = 'prayer_request'
    CUSTOM = 'custom'

class FollowUpPriority(Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    URGENT = 'urgent'

class FollowUpStatus(Enum):
    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'

class FollowUpOutcome(Enum):
    RESOLVED = 'resolved'
    MEMBER_RETURNED = 'member_returned'
    NEEDS_PASTORAL_CARE = 'needs_pastoral_care'
    RELOCATED = 'relocated'
    NO_LONGER_INTERESTED = 'no_longer_interested'
    REQUIRES_ESCALATION = 'requires_escalation'
    PENDING = 'pending'

class ContactMethod(Enum):
    CALL = 'call'
    SMS = 'sms'
    EMAIL = 'email'
    VISIT = 'visit'
    WHATSAPP = 'whatsapp'
    OTHER = 'other'

class ContactOutcome(Enum):
    SUCCESSFUL = 'successful'
    NO_RESPONSE = 'no_response'
    CALLBACK_REQUESTED = 'callback_requested'
    DECLINED = 'declined'

OPEN_STATUSES = (FollowUpStatus.PENDING, FollowUpStatus.IN_PROGRESS)

ALLOWED_TRANSITIONS = {
    FollowUpStatus.PENDING: {FollowUpStatus.IN_PROGRESS, FollowUpStatus.COMPLETED, FollowUpStatus.CANCELLED},
    FollowUpStatus.IN_PROGRESS: {FollowUpStatus.COMPLETED, FollowUpStatus.CANCELLED},
    FollowUpStatus.COMPLETED: set(),
    FollowUpStatus.CANCELLED: set(),
}

class FollowUp(BaseModel):
    """Trackable outreach to a member."""

    __tablename__ = 'follow_ups'

    member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=False, index=True)
    reason = db.Column(db.Enum(FollowUpReason), nullable=False)
    custom_reason = db.Column(db.String(255), nullable=True)

    # Absence tracking: [{"service_id": 1, "date": "2024-03-03"}, ...]
    missed_occurrences = db.Column(db.JSON, nullable=False, default=list)
    consecutive_absences = db.Column(db.Integer, default=0, nullable=False)

    # Assignment
    assigned_to_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True, index=True)
    created_by_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True)

    # Priority and Status
    priority = db.Column(db.Enum(FollowUpPriority), nullable=False, default=FollowUpPriority.MEDIUM)
    status = db.Column(db.Enum(FollowUpStatus), nullable=False, default=FollowUpStatus.PENDING)

    # Scheduling
    due_date = db.Column(db.DateTime, nullable=False)
    completed_date = db.Column(db.DateTime, nullable=True)

    # Outcome
    outcome = db.Column(db.Enum(FollowUpOutcome), nullable=True)
    outcome_notes = db.Column(db.String(1000), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    # At most one open consecutive-absence task per member
    __table_args__ = (
        db.Index(
            'uq_follow_up_open_absence',
            'member_id',
            unique=True,
            sqlite_where=db.text(
                "reason = 'CONSECUTIVE_ABSENCES' AND status IN ('PENDING', 'IN_PROGRESS')"
            ),
            postgresql_where=db.text(
                "reason = 'CONSECUTIVE_ABSENCES' AND status IN ('PENDING', 'IN_PROGRESS')"
            )
        ),
    )

    # Relationships
    member = db.relationship('Member', foreign_keys=[member_id])
    assigned_to = db.relationship('Member', foreign_keys=[assigned_to_id])
    contact_attempts = db.relationship('ContactAttempt', backref='follow_up',
                                       order_by='ContactAttempt.date',
                                       cascade='all, delete-orphan')

    @classmethod
    def find_open(cls, member_id: int, reason: FollowUpReason):
        return cls.query.filter(
            cls.member_id == member_id,
            cls.reason == reason,
            cls.status.in_(OPEN_STATUSES)
        ).first()

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def can_transition_to(self, status: FollowUpStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    @property
    def days_overdue(self) -> int:
        if not self.is_open or not self.due_date:
            return 0
        overdue = (local_now() - self.due_date).days
        return overdue if overdue > 0 else 0

    def to_dict(self, exclude: list = None):
        """Convert to dictionary."""
        data = super().to_dict(exclude=exclude)
        data['member_name'] = self.member.full_name if self.member else None
        data['assigned_to_name'] = self.assigned_to.full_name if self.assigned_to else None
        data['days_overdue'] = self.days_overdue
        data['contact_attempts'] = [a.to_dict() for a in self.contact_attempts]
        return data

    def __repr__(self):
        return f'<FollowUp {self.member_id} {self.reason.value}>'

class ContactAttempt(BaseModel):
    """One outreach attempt on a follow-up."""

    __tablename__ = 'contact_attempts'

    follow_up_id = db.Column(db.Integer, db.ForeignKey('follow_ups.id'), nullable=False, index=True)
    date = db.Column(db.DateTime, nullable=False, default=local_now)
    method = db.Column(db.Enum(ContactMethod), nullable=False)
    outcome = db.Column(db.Enum(ContactOutcome), nullable=False)
    notes = db.Column(db.String(1000), nullable=True)
    contacted_by_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=True)
