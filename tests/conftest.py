"""Shared fixtures."""
import itertools
from datetime import date, datetime, time, timedelta

import pytest
from flask_jwt_extended import create_access_token

from congregation import create_app, db
from congregation.models import Department, Member, MemberRole, Service

SERVICE_DAY = date(2024, 3, 3)
VENUE_LATITUDE = 6.4698
VENUE_LONGITUDE = 3.5852

@pytest.fixture
def app():
    """Create test app."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()

@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()

@pytest.fixture
def notifier(app):
    return app.extensions['notifier']

@pytest.fixture
def make_member(app):
    """Factory for members with unique contact details."""
    counter = itertools.count(1)

    def _make(role=MemberRole.MEMBER, **kwargs):
        n = next(counter)
        fields = {
            'first_name': f'Member{n}',
            'last_name': 'Test',
            'phone': f'08030000{n:03d}',
            'email': f'member{n}@example.com',
            'membership_id': f'RC2024T{n:05d}',
            'role': role,
        }
        fields.update(kwargs)
        return Member(**fields).save()

    return _make

@pytest.fixture
def member(make_member):
    return make_member()

@pytest.fixture
def admin(make_member):
    return make_member(role=MemberRole.ADMIN, first_name='Ada', last_name='Admin')

@pytest.fixture
def make_service(app):
    """Factory for services starting at 09:00 with a 500m geofence."""
    def _make(**kwargs):
        fields = {
            'name': 'Sunday Service',
            'service_type': 'sunday_service',
            'start_time': time(9, 0),
            'end_time': time(11, 0),
            'late_threshold_minutes': 15,
            'latitude': VENUE_LATITUDE,
            'longitude': VENUE_LONGITUDE,
            'geofence_radius': 500,
            'required_all_members': True,
        }
        fields.update(kwargs)
        return Service(**fields).save()

    return _make

@pytest.fixture
def service(make_service):
    return make_service()

@pytest.fixture
def department(app):
    return Department(name='Choir').save()

@pytest.fixture
def at():
    """Datetime ``minutes`` after 09:00 on ``day``."""
    def _at(minutes=0, day=SERVICE_DAY):
        return datetime.combine(day, time(9, 0)) + timedelta(minutes=minutes)

    return _at

@pytest.fixture
def auth_headers(app):
    """Bearer headers for a member."""
    def _headers(member):
        token = create_access_token(identity=str(member.id))
        return {'Authorization': f'Bearer {token}'}

    return _headers
