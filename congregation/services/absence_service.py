"""Absence evaluation for a service occurrence.

Compares the members a service expects (its roster rule) against the members
who checked in, records an absence for everyone missing and escalates
repeat absentees to the follow-up dispatcher. Each (service, day) is
evaluated once; later calls return the stored result.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List

from flask import current_app

from congregation import db
from congregation.models.absence import AbsenceEvaluation, MemberAbsence
from congregation.models.attendance import AttendanceRecord
from congregation.models.department import Department
from congregation.models.follow_up import FollowUp, FollowUpReason
from congregation.models.member import Member, MemberRole
from congregation.models.service import Service
from congregation.services.engagement_service import refresh_member_stats
from congregation.services.followup_service import FollowUpService
from congregation.utils.errors import NotFound, ValidationError
from congregation.utils import clock
from congregation.utils.transactions import run_atomic

logger = logging.getLogger(__name__)

@dataclass
class AbsenceReport:
    service_id: int
    date: date
    total_expected: int
    total_attended: int
    absentees: List[Dict] = field(default_factory=list)
    follow_up_ids: List[int] = field(default_factory=list)
    already_evaluated: bool = False

    @property
    def total_absent(self) -> int:
        return len(self.absentees)

    def to_dict(self) -> Dict:
        return {
            'service_id': self.service_id,
            'date': self.date.isoformat(),
            'total_expected': self.total_expected,
            'total_attended': self.total_attended,
            'total_absent': self.total_absent,
            'absentees': self.absentees,
            'follow_up_ids': self.follow_up_ids,
            'already_evaluated': self.already_evaluated
        }

class AbsenceService:
    """Service for absence detection."""

    @staticmethod
    def expected_members(service: Service) -> List[Member]:
        """Active, non-visitor members matching the service's roster rule."""
        query = Member.query.filter(
            Member.is_active.is_(True),
            Member.role != MemberRole.VISITOR
        )

        if not service.required_all_members:
            clauses = []
            if service.required_workers:
                clauses.append(Member.is_worker.is_(True))
            if service.required_ministers:
                clauses.append(Member.is_minister.is_(True))
            department_ids = [d.id for d in service.required_departments]
            if department_ids:
                clauses.append(Member.departments.any(Department.id.in_(department_ids)))
            if not clauses:
                return []
            query = query.filter(db.or_(*clauses))

        return query.order_by(Member.id).all()

    @staticmethod
    def _stored_report(evaluation: AbsenceEvaluation) -> AbsenceReport:
        threshold = current_app.config.get('FOLLOW_UP_ABSENCE_THRESHOLD', 2)
        report = AbsenceReport(
            service_id=evaluation.service_id,
            date=evaluation.calendar_date,
            total_expected=evaluation.total_expected,
            total_attended=evaluation.total_attended,
            already_evaluated=True
        )
        for absence in sorted(evaluation.absences, key=lambda a: a.member_id):
            report.absentees.append({
                'member_id': absence.member_id,
                'name': absence.member.full_name,
                'consecutive_absences': absence.consecutive_absences
            })
            if absence.consecutive_absences >= threshold:
                task = FollowUp.find_open(absence.member_id, FollowUpReason.CONSECUTIVE_ABSENCES)
                if task:
                    report.follow_up_ids.append(task.id)
        return report

    @staticmethod
    def _record_absence(member: Member, evaluation: AbsenceEvaluation, now: datetime) -> MemberAbsence:
        member.consecutive_absences += 1
        member.total_absent += 1
        try:
            refresh_member_stats(member, now)
        except ValidationError:
            logger.warning("Kept engagement score of member %s: last attendance %s is after %s",
                           member.id, member.last_attendance, now)

        absence = MemberAbsence(
            member_id=member.id,
            service_id=evaluation.service_id,
            calendar_date=evaluation.calendar_date,
            consecutive_absences=member.consecutive_absences
        )
        evaluation.absences.append(absence)
        return absence

    @staticmethod
    def evaluate_absences(service_id: int, day: date, now: datetime = None) -> AbsenceReport:
        """Record absences for one service occurrence and escalate repeat absentees."""
        now = clock.resolve(now)
        threshold = current_app.config.get('FOLLOW_UP_ABSENCE_THRESHOLD', 2)

        def work():
            service = Service.get_by_id(service_id)
            if not service:
                raise NotFound("Service not found")

            existing = AbsenceEvaluation.find(service.id, day)
            if existing:
                return AbsenceService._stored_report(existing), []

            expected = AbsenceService.expected_members(service)
            attended = AttendanceRecord.attended_member_ids(service.id, day)

            evaluation = AbsenceEvaluation(
                service_id=service.id,
                calendar_date=day,
                evaluated_at=now,
                total_expected=len(expected),
                total_attended=len(attended)
            )
            db.session.add(evaluation)
            # Claims (service, day) before any member is touched
            db.session.flush()

            report = AbsenceReport(
                service_id=service.id,
                date=day,
                total_expected=len(expected),
                total_attended=len(attended)
            )
            created = []

            for member in expected:
                if member.id in attended:
                    continue

                AbsenceService._record_absence(member, evaluation, now)
                db.session.flush()
                report.absentees.append({
                    'member_id': member.id,
                    'name': member.full_name,
                    'consecutive_absences': member.consecutive_absences
                })

                if member.consecutive_absences >= threshold:
                    missed = [a.as_occurrence() for a in
                              MemberAbsence.recent_for(member.id, member.consecutive_absences)]
                    task, is_new = FollowUpService._upsert_auto_follow_up(member, missed, now)
                    report.follow_up_ids.append(task.id)
                    if is_new:
                        created.append(task)

            return report, created

        report, created = run_atomic(
            work,
            retries=current_app.config.get('CHECKIN_MAX_RETRIES', 3),
            retry_on_integrity=True,
            label=f"absence evaluation service={service_id} day={day}"
        )

        if report.already_evaluated:
            logger.info("Service %s on %s already evaluated", service_id, day)
            return report

        for task in created:
            FollowUpService.notify_assigned(task)

        logger.info("Evaluated service %s on %s: expected=%d attended=%d absent=%d follow_ups=%d",
                    service_id, day, report.total_expected, report.total_attended,
                    report.total_absent, len(report.follow_up_ids))
        return report
