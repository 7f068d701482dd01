"""Absence evaluation log."""
from datetime import datetime
from congregation import db
from congregation.models.base import BaseModel

class AbsenceEvaluation(BaseModel):
    """One evaluated (service, day); at most one per pair."""

    __tablename__ = 'absence_evaluations'

    service_id = db.Column(db.Integer, db.ForeignKey('services.id'), nullable=False)
    calendar_date = db.Column(db.Date, nullable=False)
    evaluated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    total_expected = db.Column(db.Integer, default=0, nullable=False)
    total_attended = db.Column(db.Integer, default=0, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('service_id', 'calendar_date', name='uq_absence_evaluation_service_day'),
    )

    absences = db.relationship('MemberAbsence', backref='evaluation',
                               cascade='all, delete-orphan')

    @classmethod
    def find(cls, service_id, day):
        return cls.query.filter_by(service_id=service_id, calendar_date=day).first()

class MemberAbsence(BaseModel):
    """A member expected at a service occurrence who did not check in."""

    __tablename__ = 'member_absences'

    evaluation_id = db.Column(db.Integer, db.ForeignKey('absence_evaluations.id'), nullable=False)
    member_id = db.Column(db.Integer, db.ForeignKey('members.id'), nullable=False, index=True)
    service_id = db.Column(db.Integer, db.ForeignKey('services.id'), nullable=False)
    calendar_date = db.Column(db.Date, nullable=False)
    consecutive_absences = db.Column(db.Integer, nullable=False)

    member = db.relationship('Member')

    @classmethod
    def recent_for(cls, member_id: int, limit: int):
        """Most recent absences of a member, oldest first."""
        rows = cls.query.filter_by(member_id=member_id).order_by(
            cls.calendar_date.desc(), cls.id.desc()
        ).limit(limit).all()
        return list(reversed(rows))

    def as_occurrence(self) -> dict:
        return {'service_id': self.service_id, 'date': self.calendar_date.isoformat()}
