"""Service model: schedule, venue geofence and roster rule."""
from datetime import datetime, date
from congregation import db
from congregation.models.base import BaseModel

service_required_departments = db.Table(
    'service_required_departments',
    db.Column('service_id', db.Integer, db.ForeignKey('services.id'), primary_key=True),
    db.Column('department_id', db.Integer, db.ForeignKey('departments.id'), primary_key=True)
)

class Service(BaseModel):
    """A recurring church service that members check in to."""

    __tablename__ = 'services'

    name = db.Column(db.String(100), nullable=False)
    service_type = db.Column(db.String(50), nullable=False, default='custom')
    description = db.Column(db.String(500), nullable=True)

    # Time Settings
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    late_threshold_minutes = db.Column(db.Integer, default=15, nullable=False)
    # Weekdays the service runs on, Monday=0 .. Sunday=6
    days_of_week = db.Column(db.JSON, nullable=False, default=list)

    # Location
    venue = db.Column(db.String(100), default='Main Auditorium')
    latitude = db.Column(db.Float, nullable=False, default=6.4698)
    longitude = db.Column(db.Float, nullable=False, default=3.5852)
    geofence_radius = db.Column(db.Integer, default=500, nullable=False)  # meters
    gps_enabled = db.Column(db.Boolean, default=True, nullable=False)

    # Roster rule
    required_all_members = db.Column(db.Boolean, default=False, nullable=False)
    required_workers = db.Column(db.Boolean, default=False, nullable=False)
    required_ministers = db.Column(db.Boolean, default=False, nullable=False)

    # Status
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_cancelled = db.Column(db.Boolean, default=False, nullable=False)

    # Statistics
    total_occurrences = db.Column(db.Integer, default=0, nullable=False)
    total_check_ins = db.Column(db.Integer, default=0, nullable=False)
    last_occurrence = db.Column(db.Date, nullable=True)

    # Relationships
    required_departments = db.relationship('Department', secondary=service_required_departments)

    def start_on(self, day: date) -> datetime:
        """Start of this service on a given calendar day."""
        return datetime.combine(day, self.start_time)

    def runs_on(self, day: date) -> bool:
        return day.weekday() in (self.days_of_week or [])

    @classmethod
    def scheduled_on(cls, day: date) -> list:
        """Available services that run on the weekday of ``day``, by start time."""
        services = cls.query.filter_by(is_active=True, is_cancelled=False).order_by(cls.start_time).all()
        return [service for service in services if service.runs_on(day)]

    @property
    def is_available(self) -> bool:
        return bool(self.is_active and not self.is_cancelled)

    @property
    def roster_rule(self) -> dict:
        return {
            'all_members': self.required_all_members,
            'workers': self.required_workers,
            'ministers': self.required_ministers,
            'department_ids': [d.id for d in self.required_departments]
        }

    def to_dict(self, exclude: list = None):
        """Convert to dictionary."""
        data = super().to_dict(exclude=exclude)
        data['location'] = {
            'latitude': self.latitude,
            'longitude': self.longitude
        }
        data['required_for'] = self.roster_rule
        return data

    def __repr__(self):
        return f'<Service {self.name}>'
