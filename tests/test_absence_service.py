"""Test absence evaluation and escalation."""
from datetime import timedelta

import pytest

from congregation import db
from congregation.models import (
    AbsenceEvaluation, FollowUp, FollowUpPriority, FollowUpReason, FollowUpStatus,
    MemberAbsence, MemberRole
)
from congregation.services.absence_service import AbsenceService
from congregation.services.checkin_service import CheckInService
from congregation.services.notification_service import NotificationKind
from congregation.utils.clock import local_today
from congregation.utils.errors import NotFound

@pytest.fixture
def workers_service(make_service):
    return make_service(name='Workers Meeting', required_all_members=False, required_workers=True)

@pytest.fixture
def sundays(at):
    first = at().date()
    return [first + timedelta(days=7 * i) for i in range(3)]

def evaluate(service, day, at):
    return AbsenceService.evaluate_absences(service.id, day, now=at(180, day=day))

def test_absentees_are_recorded(make_member, workers_service, at):
    present = make_member(is_worker=True)
    absent = make_member(is_worker=True)
    make_member()  # not on the roster
    CheckInService.submit_check_in(present.id, workers_service.id, time=at(0))

    report = evaluate(workers_service, at().date(), at)

    assert report.total_expected == 2
    assert report.total_attended == 1
    assert report.total_absent == 1
    assert report.absentees == [{
        'member_id': absent.id,
        'name': absent.full_name,
        'consecutive_absences': 1
    }]
    assert report.follow_up_ids == []

    db.session.refresh(absent)
    assert absent.consecutive_absences == 1
    assert absent.total_absent == 1
    assert MemberAbsence.query.filter_by(member_id=absent.id).count() == 1

def test_two_consecutive_absences_open_one_follow_up(make_member, admin, workers_service,
                                                     sundays, at, notifier):
    absent = make_member(is_worker=True)

    evaluate(workers_service, sundays[0], at)
    report = evaluate(workers_service, sundays[1], at)

    tasks = FollowUp.query.filter_by(member_id=absent.id).all()
    assert len(tasks) == 1
    task = tasks[0]
    assert report.follow_up_ids == [task.id]
    assert task.reason == FollowUpReason.CONSECUTIVE_ABSENCES
    assert task.priority == FollowUpPriority.MEDIUM
    assert task.status == FollowUpStatus.PENDING
    assert task.due_date == at(180, day=sundays[1]) + timedelta(days=2)
    assert task.assigned_to_id == admin.id
    assert task.consecutive_absences == 2
    assert task.missed_occurrences == [
        {'service_id': workers_service.id, 'date': sundays[0].isoformat()},
        {'service_id': workers_service.id, 'date': sundays[1].isoformat()},
    ]

    sent = notifier.sent(NotificationKind.FOLLOW_UP_ASSIGNED)
    assert len(sent) == 1
    assert sent[0].target_id == admin.id
    assert sent[0].payload['follow_up_id'] == task.id

def test_third_absence_escalates_same_task(make_member, admin, workers_service, sundays, at, notifier):
    absent = make_member(is_worker=True)

    for day in sundays:
        evaluate(workers_service, day, at)

    tasks = FollowUp.query.filter_by(member_id=absent.id).all()
    assert len(tasks) == 1
    assert tasks[0].priority == FollowUpPriority.HIGH
    assert tasks[0].consecutive_absences == 3
    assert len(tasks[0].missed_occurrences) == 3
    assert len(notifier.sent(NotificationKind.FOLLOW_UP_ASSIGNED)) == 1

def test_attendance_resets_streak(make_member, admin, workers_service, sundays, at):
    member = make_member(is_worker=True)

    evaluate(workers_service, sundays[0], at)
    CheckInService.submit_check_in(member.id, workers_service.id, time=at(0, day=sundays[1]))
    evaluate(workers_service, sundays[1], at)
    evaluate(workers_service, sundays[2], at)

    db.session.refresh(member)
    assert member.consecutive_absences == 1
    assert member.total_absent == 2
    assert FollowUp.query.filter_by(member_id=member.id).count() == 0

def test_evaluation_is_idempotent(make_member, admin, workers_service, sundays, at):
    absent = make_member(is_worker=True)
    evaluate(workers_service, sundays[0], at)
    first = evaluate(workers_service, sundays[1], at)

    again = evaluate(workers_service, sundays[1], at)

    assert again.already_evaluated is True
    assert again.total_expected == first.total_expected
    assert again.absentees == first.absentees
    assert again.follow_up_ids == first.follow_up_ids

    db.session.refresh(absent)
    assert absent.consecutive_absences == 2
    assert absent.total_absent == 2
    assert AbsenceEvaluation.query.count() == 2
    assert FollowUp.query.count() == 1

def test_roster_by_department(make_member, make_service, department, at):
    choir_member = make_member()
    choir_member.departments.append(department)
    db.session.commit()
    make_member()
    service = make_service(required_all_members=False, required_departments=[department])

    report = evaluate(service, at().date(), at)

    assert [a['member_id'] for a in report.absentees] == [choir_member.id]

def test_roster_skips_visitors_and_inactive_members(make_member, service, at):
    regular = make_member()
    make_member(role=MemberRole.VISITOR)
    make_member(is_active=False)

    report = evaluate(service, at().date(), at)

    assert report.total_expected == 1
    assert [a['member_id'] for a in report.absentees] == [regular.id]

def test_service_without_roster_expects_nobody(make_member, make_service, at):
    make_member()
    service = make_service(required_all_members=False)

    report = evaluate(service, at().date(), at)

    assert report.total_expected == 0
    assert report.absentees == []

def test_future_last_attendance_keeps_score(make_member, workers_service, at):
    member = make_member(is_worker=True, engagement_score=55,
                         last_attendance=at(0) + timedelta(days=30))

    evaluate(workers_service, at().date(), at)

    db.session.refresh(member)
    assert member.consecutive_absences == 1
    assert member.engagement_score == 55

def test_unknown_service(app, at):
    with pytest.raises(NotFound):
        AbsenceService.evaluate_absences(404, at().date())

def test_report_to_dict(make_member, workers_service, at):
    make_member(is_worker=True)

    data = evaluate(workers_service, at().date(), at).to_dict()

    assert data['date'] == at().date().isoformat()
    assert data['total_absent'] == 1
    assert data['already_evaluated'] is False

def test_concurrent_evaluation_returns_stored_report(make_member, workers_service, at, monkeypatch):
    absent = make_member(is_worker=True)
    day = at().date()
    first = evaluate(workers_service, day, at)

    find = AbsenceEvaluation.find
    lookups = []

    def racing_find(cls, service_id, on_day):
        lookups.append(on_day)
        # The rival run commits after this run's existence check
        return None if len(lookups) == 1 else find(service_id, on_day)

    monkeypatch.setattr(AbsenceEvaluation, 'find', classmethod(racing_find))

    again = evaluate(workers_service, day, at)

    assert len(lookups) == 2
    assert again.already_evaluated is True
    assert again.absentees == first.absentees
    db.session.refresh(absent)
    assert absent.consecutive_absences == 1
    assert absent.total_absent == 1
    assert AbsenceEvaluation.query.count() == 1
    assert MemberAbsence.query.count() == 1

def test_cli_defaults_to_venue_today(app, make_member, workers_service):
    make_member(is_worker=True)

    result = app.test_cli_runner().invoke(
        args=['evaluate-absences', '--service-id', str(workers_service.id)]
    )

    assert result.exit_code == 0, result.output
    assert 'absent 1' in result.output
    evaluation = AbsenceEvaluation.query.one()
    assert evaluation.calendar_date == local_today()

def test_cli_unknown_service(app):
    result = app.test_cli_runner().invoke(args=['evaluate-absences', '--service-id', '404'])

    assert result.exit_code != 0
    assert 'Service not found' in result.output
