"""Member model with embedded attendance statistics."""
import secrets
import string
from datetime import datetime
from enum import Enum
from werkzeug.security import generate_password_hash, check_password_hash
from congregation import db
from congregation.models.base import BaseModel

class MemberRole(Enum):
    """Member roles enumeration."""
    SUPER_ADMIN = 'super_admin'
    ADMIN = 'admin'
    PASTOR = 'pastor'
    DEPARTMENT_HEAD = 'department_head'
    MINISTER = 'minister'
    WORKER = 'worker'
    MEMBER = 'member'
    VISITOR = 'visitor'

member_departments = db.Table(
    'member_departments',
    db.Column('member_id', db.Integer, db.ForeignKey('members.id'), primary_key=True),
    db.Column('department_id', db.Integer, db.ForeignKey('departments.id'), primary_key=True)
)

class Member(BaseModel):
    """Church member, the subject of every check-in."""

    __tablename__ = 'members'

    # Basic Information
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=True, index=True)
    phone = db.Column(db.String(20), unique=True, nullable=True, index=True)
    password_hash = db.Column(db.String(255), nullable=True)

    # Church Information
    role = db.Column(db.Enum(MemberRole), nullable=False, default=MemberRole.MEMBER)
    membership_id = db.Column(db.String(20), unique=True, nullable=True, index=True)
    joined_date = db.Column(db.DateTime, default=datetime.utcnow)
    is_worker = db.Column(db.Boolean, default=False, nullable=False)
    is_minister = db.Column(db.Boolean, default=False, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    # Personal Details
    gender = db.Column(db.String(10), nullable=True)
    date_of_birth = db.Column(db.Date, nullable=True)
    address = db.Column(db.String(255), nullable=True)

    # Attendance Statistics
    total_services = db.Column(db.Integer, default=0, nullable=False)
    total_present = db.Column(db.Integer, default=0, nullable=False)
    total_absent = db.Column(db.Integer, default=0, nullable=False)
    total_late = db.Column(db.Integer, default=0, nullable=False)
    attendance_rate = db.Column(db.Integer, default=0, nullable=False)
    consecutive_absences = db.Column(db.Integer, default=0, nullable=False)
    last_attendance = db.Column(db.DateTime, nullable=True)
    engagement_score = db.Column(db.Integer, default=0, nullable=False)

    # Compare-and-swap guard for stat updates
    version_id = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {'version_id_col': version_id}

    # Relationships
    departments = db.relationship('Department', secondary=member_departments,
                                  backref=db.backref('members', lazy='dynamic'))

    @property
    def full_name(self) -> str:
        return f'{self.first_name} {self.last_name}'

    @property
    def attendance_stats(self) -> dict:
        return {
            'total_services': self.total_services,
            'total_present': self.total_present,
            'total_absent': self.total_absent,
            'total_late': self.total_late,
            'attendance_rate': self.attendance_rate,
            'consecutive_absences': self.consecutive_absences,
            'last_attendance': self.last_attendance.isoformat() if self.last_attendance else None,
            'engagement_score': self.engagement_score
        }

    @staticmethod
    def generate_membership_id(length: int = 6) -> str:
        """Generate a membership ID such as ``RC2024K7PX9M``."""
        characters = string.ascii_uppercase + string.digits
        # Avoid confusing characters
        characters = characters.replace('O', '').replace('0', '').replace('I', '').replace('1', '')
        suffix = ''.join(secrets.choice(characters) for _ in range(length))
        return f"RC{datetime.utcnow().year}{suffix}"

    @classmethod
    def find_by_contact(cls, phone: str = None, email: str = None):
        """Find a member by phone or email."""
        filters = []
        if phone:
            filters.append(cls.phone == phone)
        if email:
            filters.append(cls.email == email.lower())
        if not filters:
            return None
        return cls.query.filter(db.or_(*filters)).first()

    def set_password(self, password: str) -> None:
        """Set member password with hashing."""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        """Check if provided password matches member's password."""
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def to_dict(self, exclude: list = None) -> dict:
        """Convert to dictionary excluding sensitive data."""
        default_exclude = ['password_hash', 'version_id']
        exclude = (exclude or []) + default_exclude

        result = super().to_dict(exclude=exclude)
        result['full_name'] = self.full_name
        result['department_ids'] = [d.id for d in self.departments]

        return result

    def __repr__(self) -> str:
        return f'<Member {self.full_name}>'
