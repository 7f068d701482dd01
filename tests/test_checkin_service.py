"""Test the check-in gate."""
import json
import math
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import update

from congregation import db
from congregation.models import (
    AttendanceRecord, AttendanceStatus, CheckInMethod, ExceptionType, Member, MemberRole, Service
)
from congregation.services.checkin_service import CheckInService
from congregation.services.gps_service import EARTH_RADIUS_METERS
from congregation.utils.errors import (
    AlreadyCheckedOut, ConcurrentUpdate, DuplicateCheckIn, NotFound, OutOfRange, Unauthorized,
    ValidationError
)

def north_of(service, meters):
    return {
        'latitude': service.latitude + math.degrees(meters / EARTH_RADIUS_METERS),
        'longitude': service.longitude
    }

def live_records(member_id, service_id):
    return AttendanceRecord.query.filter_by(
        member_id=member_id, service_id=service_id, is_deleted=False
    ).count()

def test_check_in_within_threshold_is_present(member, service, at):
    result = CheckInService.submit_check_in(member.id, service.id, time=at(10))

    assert result.record.status == AttendanceStatus.PRESENT
    assert result.record.minutes_late == 10
    assert result.record.is_late is False
    assert result.message == "Successfully checked in"

def test_check_in_after_threshold_is_late(member, service, at):
    result = CheckInService.submit_check_in(member.id, service.id, time=at(20))

    assert result.record.status == AttendanceStatus.LATE
    assert result.record.minutes_late == 20
    assert result.record.is_late is True
    assert member.total_late == 1
    assert result.message == "Successfully checked in (Late)"

def test_early_check_in_is_not_late(member, service, at):
    result = CheckInService.submit_check_in(member.id, service.id, time=at(-30))

    assert result.record.minutes_late == 0
    assert result.record.status == AttendanceStatus.PRESENT

def test_check_in_updates_member_stats(member, service, at):
    member.consecutive_absences = 3
    db.session.commit()

    CheckInService.submit_check_in(member.id, service.id, time=at(5))

    db.session.refresh(member)
    assert member.total_services == 1
    assert member.total_present == 1
    assert member.consecutive_absences == 0
    assert member.last_attendance == at(5)
    assert member.attendance_rate == 100
    assert member.engagement_score == 100

def test_check_in_updates_service_stats(make_member, service, at):
    first, second = make_member(), make_member()

    CheckInService.submit_check_in(first.id, service.id, time=at(0))
    CheckInService.submit_check_in(second.id, service.id, time=at(1))
    CheckInService.submit_check_in(first.id, service.id, time=at(0, day=at().date() + timedelta(days=7)))

    service = db.session.get(Service, service.id)
    db.session.refresh(service)
    assert service.total_check_ins == 3
    assert service.total_occurrences == 2
    assert service.last_occurrence == at().date() + timedelta(days=7)

def test_second_check_in_same_day_is_rejected(member, service, at):
    CheckInService.submit_check_in(member.id, service.id, time=at(0))

    with pytest.raises(DuplicateCheckIn):
        CheckInService.submit_check_in(member.id, service.id, time=at(45))

    db.session.refresh(member)
    assert member.total_present == 1
    assert live_records(member.id, service.id) == 1

def test_duplicate_race_rejected_by_storage(member, service, at, monkeypatch):
    """The unique index stops a duplicate even when the pre-check misses it."""
    CheckInService.submit_check_in(member.id, service.id, time=at(0))
    monkeypatch.setattr(AttendanceRecord, 'find_active',
                        classmethod(lambda cls, member_id, service_id, day: None))

    with pytest.raises(DuplicateCheckIn):
        CheckInService.submit_check_in(member.id, service.id, time=at(3))

    db.session.refresh(member)
    assert member.total_present == 1
    assert member.total_services == 1
    assert live_records(member.id, service.id) == 1

def test_check_in_allowed_again_after_soft_delete(member, admin, service, at):
    first = CheckInService.submit_check_in(member.id, service.id, time=at(0))
    CheckInService.soft_delete(first.record.id, admin, reason='Wrong member')

    second = CheckInService.submit_check_in(member.id, service.id, time=at(2))

    assert second.record.id != first.record.id
    assert live_records(member.id, service.id) == 1

def test_out_of_range_check_in(member, service, at):
    with pytest.raises(OutOfRange) as excinfo:
        CheckInService.submit_check_in(
            member.id, service.id, time=at(0), location=north_of(service, 600)
        )

    assert excinfo.value.distance_meters == 600
    assert excinfo.value.required_radius == 500
    assert excinfo.value.payload == {'distance': 600, 'required': 500}
    assert live_records(member.id, service.id) == 0

def test_elevated_caller_overrides_geofence(member, admin, service, at):
    result = CheckInService.submit_check_in(
        member.id, service.id, time=at(0), location=north_of(service, 600), caller=admin
    )

    assert result.record.within_geofence is False
    assert result.record.distance_from_venue == 600

def test_check_in_inside_geofence_records_distance(member, service, at):
    result = CheckInService.submit_check_in(
        member.id, service.id, time=at(0), location=north_of(service, 200),
        method='gps'
    )

    assert result.record.within_geofence is True
    assert result.record.distance_from_venue == 200
    assert result.record.method == CheckInMethod.GPS

def test_check_in_unknown_member(service, at):
    with pytest.raises(NotFound):
        CheckInService.submit_check_in(9999, service.id, time=at(0))

def test_check_in_inactive_member(make_member, service, at):
    member = make_member(is_active=False)

    with pytest.raises(NotFound):
        CheckInService.submit_check_in(member.id, service.id, time=at(0))

def test_check_in_cancelled_service(member, make_service, at):
    service = make_service(is_cancelled=True)

    with pytest.raises(NotFound):
        CheckInService.submit_check_in(member.id, service.id, time=at(0))

def test_check_in_invalid_method(member, service, at):
    with pytest.raises(ValidationError):
        CheckInService.submit_check_in(member.id, service.id, time=at(0), method='telepathy')

def test_check_out_sets_duration(member, service, at):
    result = CheckInService.submit_check_in(member.id, service.id, time=at(0))

    record = CheckInService.check_out(
        result.record.id, member.id, member.role,
        time=at(90) + timedelta(seconds=30)
    )

    assert record.check_out_time == at(90) + timedelta(seconds=30)
    assert record.duration == 91

def test_check_out_twice(member, service, at):
    result = CheckInService.submit_check_in(member.id, service.id, time=at(0))
    CheckInService.check_out(result.record.id, member.id, member.role, time=at(60))

    with pytest.raises(AlreadyCheckedOut):
        CheckInService.check_out(result.record.id, member.id, member.role, time=at(70))

def test_check_out_by_other_member_is_unauthorized(make_member, service, at):
    owner, other = make_member(), make_member()
    result = CheckInService.submit_check_in(owner.id, service.id, time=at(0))

    with pytest.raises(Unauthorized):
        CheckInService.check_out(result.record.id, other.id, other.role, time=at(60))

def test_check_out_by_admin(member, admin, service, at):
    result = CheckInService.submit_check_in(member.id, service.id, time=at(0))

    record = CheckInService.check_out(result.record.id, admin.id, admin.role, time=at(30))

    assert record.duration == 30

def test_check_out_missing_record(member):
    with pytest.raises(NotFound):
        CheckInService.check_out(404, member.id, member.role)

def test_qr_check_in(member, service, at):
    payload = CheckInService.member_qr_payload(member)

    result = CheckInService.qr_check_in(payload, service.id, time=at(0))

    assert result.record.method == CheckInMethod.QR
    assert result.record.member_id == member.id

def test_qr_check_in_mismatched_membership(member, service, at):
    payload = json.dumps({'memberId': member.id, 'membershipId': 'RC2024FORGED'})

    with pytest.raises(ValidationError):
        CheckInService.qr_check_in(payload, service.id, time=at(0))

def test_qr_check_in_malformed(service):
    with pytest.raises(ValidationError):
        CheckInService.qr_check_in('not json', service.id)

def test_bulk_check_in(make_member, admin, service, at):
    present, already, inactive = make_member(), make_member(), make_member(is_active=False)
    CheckInService.submit_check_in(already.id, service.id, time=at(0))

    results = CheckInService.bulk_check_in(
        [present.id, already.id, inactive.id], service.id, admin,
        day=at().date(), time=at(120)
    )

    assert [s['member_id'] for s in results['success']] == [present.id]
    assert {f['member_id'] for f in results['failed']} == {already.id, inactive.id}

    record = AttendanceRecord.find_active(present.id, service.id, at().date())
    assert record.is_manual_entry is True
    assert record.entered_by == admin.id
    assert record.is_late is False

def test_bulk_check_in_requires_permission(member, service):
    with pytest.raises(Unauthorized):
        CheckInService.bulk_check_in([member.id], service.id, member)

def test_record_exception(member, admin, service, at):
    result = CheckInService.submit_check_in(member.id, service.id, time=at(25))

    record = CheckInService.record_exception(
        result.record.id, admin, 'late_entry', 'Traffic on the bridge', status='present'
    )

    assert record.is_exception is True
    assert record.exception_type == ExceptionType.LATE_ENTRY
    assert record.status == AttendanceStatus.PRESENT
    assert record.approved_by == admin.id

def test_record_exception_requires_permission(make_member, service, at):
    member = make_member()
    worker = make_member(role=MemberRole.WORKER)
    result = CheckInService.submit_check_in(member.id, service.id, time=at(0))

    with pytest.raises(Unauthorized):
        CheckInService.record_exception(result.record.id, worker, 'correction', 'typo')

def test_soft_delete_keeps_record(member, admin, service, at):
    result = CheckInService.submit_check_in(member.id, service.id, time=at(0))

    CheckInService.soft_delete(result.record.id, admin)

    record = db.session.get(AttendanceRecord, result.record.id)
    assert record.is_deleted is True
    assert record.deleted_by == admin.id
    assert record.delete_reason == 'Deleted by admin'

    with pytest.raises(NotFound):
        CheckInService.soft_delete(result.record.id, admin)

def test_member_history_summary(member, admin, service, at):
    first = CheckInService.submit_check_in(member.id, service.id, time=at(0))
    CheckInService.check_out(first.record.id, member.id, member.role, time=at(60))
    CheckInService.submit_check_in(member.id, service.id, time=at(20, day=at().date() + timedelta(days=7)))
    deleted = CheckInService.submit_check_in(member.id, service.id,
                                             time=at(0, day=at().date() + timedelta(days=14)))
    CheckInService.soft_delete(deleted.record.id, admin)

    history = CheckInService.member_history(member.id)

    assert len(history['records']) == 2
    assert history['summary']['total'] == 2
    assert history['summary']['present'] == 1
    assert history['summary']['late'] == 1
    assert history['summary']['average_duration'] == 60
    assert history['summary']['total_minutes_late'] == 20

def test_implicit_clock_uses_service_timezone(app, member, make_service):
    app.config['SERVICE_TIMEZONE'] = 'America/New_York'
    venue = ZoneInfo('America/New_York')
    before = datetime.now(venue).replace(tzinfo=None)
    service = make_service(start_time=(before - timedelta(minutes=5)).time().replace(microsecond=0))

    result = CheckInService.submit_check_in(member.id, service.id)

    after = datetime.now(venue).replace(tzinfo=None)
    assert result.record.minutes_late <= 6
    assert result.record.status == AttendanceStatus.PRESENT
    assert before - timedelta(seconds=1) <= result.record.check_in_time <= after
    assert result.record.calendar_date in (before.date(), after.date())

def test_aware_time_is_converted_to_venue_time(member, service):
    # 08:20 UTC is 09:20 in Lagos
    result = CheckInService.submit_check_in(
        member.id, service.id, time=datetime(2024, 3, 3, 8, 20, tzinfo=timezone.utc)
    )

    assert result.record.check_in_time == datetime(2024, 3, 3, 9, 20)
    assert result.record.calendar_date.isoformat() == '2024-03-03'
    assert result.record.minutes_late == 20
    assert result.record.status == AttendanceStatus.LATE

def bump_version(member_id):
    """Commit-free write that moves the member's row version on, as a rival writer would."""
    db.session.execute(
        update(Member)
        .where(Member.id == member_id)
        .values(version_id=Member.version_id + 1)
        .execution_options(synchronize_session=False)
    )

def test_lost_version_check_is_retried(member, service, at, monkeypatch):
    apply_presence = CheckInService._apply_presence
    attempts = []

    def racing_apply(target, now, is_late):
        attempts.append(now)
        if len(attempts) == 1:
            bump_version(target.id)
        apply_presence(target, now, is_late)

    monkeypatch.setattr(CheckInService, '_apply_presence', staticmethod(racing_apply))

    result = CheckInService.submit_check_in(member.id, service.id, time=at(0))

    assert len(attempts) == 2
    db.session.refresh(member)
    assert member.total_present == 1
    assert member.total_services == 1
    assert live_records(member.id, service.id) == 1
    assert db.session.get(Service, service.id).total_check_ins == 1
    assert result.record.id is not None

def test_retries_exhausted_raise_concurrent_update(app, member, service, at, monkeypatch):
    apply_presence = CheckInService._apply_presence
    attempts = []

    def always_racing(target, now, is_late):
        attempts.append(now)
        bump_version(target.id)
        apply_presence(target, now, is_late)

    monkeypatch.setattr(CheckInService, '_apply_presence', staticmethod(always_racing))

    with pytest.raises(ConcurrentUpdate):
        CheckInService.submit_check_in(member.id, service.id, time=at(0))

    assert len(attempts) == app.config['CHECKIN_MAX_RETRIES']
    db.session.refresh(member)
    assert member.total_present == 0
    assert live_records(member.id, service.id) == 0
    assert db.session.get(Service, service.id).total_check_ins == 0

@pytest.fixture
def attendance_log(make_member, make_service, service, at):
    """Four live check-ins over two services and two Sundays, plus a deleted one."""
    first, second = make_member(), make_member()
    evening = make_service(name='Evening Service')
    next_week = at().date() + timedelta(days=7)
    morning = service

    CheckInService.submit_check_in(first.id, morning.id, time=at(0))
    CheckInService.submit_check_in(second.id, morning.id, time=at(30))
    CheckInService.submit_check_in(first.id, evening.id, time=at(5), method='qr')
    CheckInService.submit_check_in(first.id, morning.id, time=at(40, day=next_week))
    return {'first': first, 'second': second, 'morning': morning, 'evening': evening,
            'next_week': next_week}

def test_list_attendance_filters_and_summary(admin, attendance_log, at):
    everything = CheckInService.list_attendance(admin)
    assert everything['pagination']['total'] == 4
    assert everything['summary']['total'] == 4
    assert everything['summary']['late'] == 2
    assert everything['summary']['total_minutes_late'] == 75
    assert everything['records'][0]['calendar_date'] == attendance_log['next_week'].isoformat()
    assert everything['records'][0]['member']['id'] == attendance_log['first'].id

    by_member = CheckInService.list_attendance(admin, member_id=attendance_log['second'].id)
    assert by_member['summary']['total'] == 1

    by_method = CheckInService.list_attendance(admin, method='qr')
    assert [r['service_id'] for r in by_method['records']] == [attendance_log['evening'].id]

    first_week = CheckInService.list_attendance(admin, status='late', end=at().date())
    assert first_week['summary']['total'] == 1

    paged = CheckInService.list_attendance(admin, page=2, per_page=3)
    assert len(paged['records']) == 1
    assert paged['pagination']['pages'] == 2
    assert paged['summary']['total'] == 4

def test_list_attendance_requires_permission(member):
    with pytest.raises(Unauthorized):
        CheckInService.list_attendance(member)

def test_list_attendance_invalid_status(admin):
    with pytest.raises(ValidationError):
        CheckInService.list_attendance(admin, status='asleep')

def test_service_attendance_for_one_day(admin, attendance_log, at):
    morning = attendance_log['morning']
    deleted = CheckInService.submit_check_in(admin.id, morning.id, time=at(1))
    CheckInService.soft_delete(deleted.record.id, admin)

    result = CheckInService.service_attendance(morning.id, day=at().date())

    assert result['service']['name'] == 'Sunday Service'
    assert [r['member']['id'] for r in result['records']] == [
        attendance_log['first'].id, attendance_log['second'].id
    ]
    assert result['summary']['present'] == 1
    assert result['summary']['late'] == 1

    all_days = CheckInService.service_attendance(morning.id)
    assert all_days['pagination']['total'] == 3

def test_service_attendance_unknown_service(app):
    with pytest.raises(NotFound):
        CheckInService.service_attendance(404)
