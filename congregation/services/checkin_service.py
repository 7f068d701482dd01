"""Check-in service: validates and commits presence events."""
import json
import logging
from dataclasses import dataclass
from datetime import datetime, date
from math import floor
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from congregation import db
from congregation.models.attendance import (
    AttendanceRecord, AttendanceStatus, CheckInMethod, ExceptionType
)
from congregation.models.member import Member
from congregation.models.service import Service
from congregation.services.engagement_service import refresh_member_stats
from congregation.services.gps_service import GPSService
from congregation.utils.errors import (
    AlreadyCheckedOut, AttendanceError, DuplicateCheckIn, NotFound,
    OutOfRange, ValidationError
)
from congregation.utils.permissions import (
    Permission, ResourceKind, ensure_owner_or_permitted, ensure_permission,
    has_permission
)
from congregation.utils import clock
from congregation.utils.helpers import pagination_meta
from congregation.utils.transactions import run_atomic
from congregation.utils.validators import Validator

logger = logging.getLogger(__name__)

@dataclass
class CheckInResult:
    """Committed check-in and the member stats it produced."""
    record: AttendanceRecord
    member: Member

    @property
    def message(self) -> str:
        return f"Successfully checked in{' (Late)' if self.record.is_late else ''}"

    def to_dict(self) -> Dict:
        return {
            'attendance': self.record.to_dict(),
            'stats': {
                'total_present': self.member.total_present,
                'attendance_rate': self.member.attendance_rate,
                'engagement_score': self.member.engagement_score
            }
        }

class CheckInService:
    """Service for recording and amending check-ins."""

    @staticmethod
    def minutes_late(service: Service, checked_in_at: datetime, day: date) -> int:
        """Whole minutes after the service start, never negative."""
        elapsed = (checked_in_at - service.start_on(day)).total_seconds()
        return max(0, floor(elapsed / 60))

    @staticmethod
    def submit_check_in(
        member_id: int,
        service_id: int,
        time: datetime = None,
        method=CheckInMethod.MANUAL,
        location: Optional[Dict] = None,
        device_info: Optional[Dict] = None,
        caller: Optional[Member] = None,
        day: date = None,
        manual_entry: bool = False,
        notes: str = None
    ) -> CheckInResult:
        """Validate and commit a check-in, updating member and service stats.

        The caller defaults to the member themself. Manual entries made on a
        member's behalf skip the lateness and geofence checks.
        """
        now = clock.resolve(time)
        day = day or now.date()
        method = Validator.enum_value(CheckInMethod, method, 'check-in method')
        caller_id = caller.id if caller is not None else None
        caller_role = caller.role if caller is not None else None

        def work():
            member = Member.get_by_id(member_id)
            if not member or not member.is_active:
                raise NotFound("Member not found")

            service = Service.get_by_id(service_id)
            if not service or not service.is_available:
                raise NotFound("Service not found or inactive")

            if AttendanceRecord.find_active(member.id, service.id, day):
                raise DuplicateCheckIn("You have already checked in for this service today")

            if manual_entry:
                minutes_late = 0
                geo = {'measured': False, 'is_inside': True, 'distance': 0}
            else:
                minutes_late = CheckInService.minutes_late(service, now, day)
                geo = GPSService.verify_location(location, service)
                role = caller_role if caller is not None else member.role
                if not geo['is_inside'] and not has_permission(role, Permission.OVERRIDE_GEOFENCE):
                    raise OutOfRange(geo['distance'], service.geofence_radius)

            is_late = minutes_late > service.late_threshold_minutes

            record = AttendanceRecord(
                member_id=member.id,
                service_id=service.id,
                calendar_date=day,
                check_in_time=now,
                status=AttendanceStatus.LATE if is_late else AttendanceStatus.PRESENT,
                method=method,
                latitude=location['latitude'] if location else None,
                longitude=location['longitude'] if location else None,
                distance_from_venue=geo['distance'],
                within_geofence=geo['is_inside'],
                device_info=device_info,
                is_late=is_late,
                minutes_late=minutes_late,
                is_manual_entry=manual_entry,
                entered_by=caller_id if manual_entry else None,
                notes=notes
            )
            db.session.add(record)
            # Trip the uniqueness index before touching stats
            db.session.flush()

            CheckInService._apply_presence(member, now, is_late)
            CheckInService._bump_service_stats(service.id, day)
            return record, member

        try:
            record, member = run_atomic(
                work,
                retries=current_app.config.get('CHECKIN_MAX_RETRIES', 3),
                label=f"check-in member={member_id} service={service_id}"
            )
        except IntegrityError:
            logger.warning("Duplicate check-in rejected by storage: member=%s service=%s day=%s",
                           member_id, service_id, day)
            raise DuplicateCheckIn("You have already checked in for this service today")

        logger.info("Checked in member=%s service=%s day=%s status=%s",
                    member_id, service_id, day, record.status.value)
        return CheckInResult(record=record, member=member)

    @staticmethod
    def _apply_presence(member: Member, now: datetime, is_late: bool) -> None:
        """Fold one present/late check-in into the member's stats."""
        member.total_services += 1
        member.total_present += 1
        if is_late:
            member.total_late += 1
        member.consecutive_absences = 0
        if member.last_attendance is None or now > member.last_attendance:
            member.last_attendance = now
        refresh_member_stats(member, max(now, member.last_attendance))

    @staticmethod
    def _bump_service_stats(service_id: int, day: date) -> None:
        """Increment service counters in SQL so concurrent check-ins don't lose updates."""
        Service.query.filter(Service.id == service_id).update(
            {Service.total_check_ins: Service.total_check_ins + 1},
            synchronize_session=False
        )
        Service.query.filter(
            Service.id == service_id,
            db.or_(Service.last_occurrence.is_(None), Service.last_occurrence < day)
        ).update(
            {Service.total_occurrences: Service.total_occurrences + 1,
             Service.last_occurrence: day},
            synchronize_session=False
        )

    @staticmethod
    def check_out(record_id: int, caller_id: int, caller_role, time: datetime = None) -> AttendanceRecord:
        """Set check-out time and duration on a check-in."""
        record = AttendanceRecord.get_by_id(record_id)
        if not record or record.is_deleted:
            raise NotFound("Attendance record not found")

        ensure_owner_or_permitted(
            ResourceKind.CHECK_IN, record, caller_id, caller_role,
            Permission.MANAGE_ANY_CHECKIN,
            "Not authorized to check out this attendance"
        )

        if record.check_out_time:
            raise AlreadyCheckedOut()

        checked_out_at = clock.resolve(time)
        if checked_out_at < record.check_in_time:
            raise ValidationError("Check-out time is before check-in time")

        duration = AttendanceRecord.duration_between(record.check_in_time, checked_out_at)

        # Only the first concurrent check-out wins
        updated = AttendanceRecord.query.filter(
            AttendanceRecord.id == record_id,
            AttendanceRecord.check_out_time.is_(None)
        ).update(
            {AttendanceRecord.check_out_time: checked_out_at,
             AttendanceRecord.duration: duration},
            synchronize_session=False
        )
        if not updated:
            db.session.rollback()
            raise AlreadyCheckedOut()

        db.session.commit()
        db.session.refresh(record)
        logger.info("Checked out attendance %s after %s minutes", record_id, duration)
        return record

    @staticmethod
    def member_qr_payload(member: Member) -> str:
        """Data encoded in a member's check-in QR code."""
        return json.dumps({
            'memberId': member.id,
            'membershipId': member.membership_id,
            'name': member.full_name
        }, separators=(',', ':'))

    @staticmethod
    def qr_check_in(qr_data: str, service_id: int, location: Optional[Dict] = None,
                    device_info: Optional[Dict] = None, time: datetime = None) -> CheckInResult:
        """Check in the member identified by a scanned QR code."""
        if not qr_data:
            raise ValidationError("QR code data required")

        try:
            parsed = json.loads(qr_data)
            member_id = int(parsed['memberId'])
            membership_id = parsed['membershipId']
        except (ValueError, TypeError, KeyError):
            raise ValidationError("Invalid QR code format")

        member = Member.get_by_id(member_id)
        if not member or not member.membership_id or member.membership_id != membership_id:
            raise ValidationError("Invalid QR code")

        return CheckInService.submit_check_in(
            member.id, service_id, time=time, method=CheckInMethod.QR,
            location=location, device_info=device_info
        )

    @staticmethod
    def bulk_check_in(member_ids: List[int], service_id: int, caller: Member,
                      day: date = None, notes: str = None, time: datetime = None) -> Dict:
        """Record manual check-ins for many members; each commits on its own."""
        ensure_permission(caller.role, Permission.BULK_CHECKIN)

        if not member_ids:
            raise ValidationError("Member IDs array required")

        service = Service.get_by_id(service_id)
        if not service or not service.is_available:
            raise NotFound("Service not found or inactive")

        results = {'success': [], 'failed': []}
        for member_id in member_ids:
            try:
                result = CheckInService.submit_check_in(
                    member_id, service_id, time=time, method=CheckInMethod.MANUAL,
                    caller=caller, day=day, manual_entry=True,
                    notes=notes or 'Bulk check-in'
                )
                results['success'].append({'member_id': member_id, 'attendance_id': result.record.id})
            except AttendanceError as e:
                results['failed'].append({'member_id': member_id, 'reason': e.message})

        logger.info("Bulk check-in service=%s: %d ok, %d failed", service_id,
                    len(results['success']), len(results['failed']))
        return results

    @staticmethod
    def record_exception(record_id: int, caller: Member, exception_type, reason: str,
                         status=None, notes: str = None) -> AttendanceRecord:
        """Flag a check-in as an approved exception (admin)."""
        ensure_permission(caller.role, Permission.EDIT_ATTENDANCE)

        record = AttendanceRecord.get_by_id(record_id)
        if not record or record.is_deleted:
            raise NotFound("Attendance record not found")

        record.is_exception = True
        record.exception_type = Validator.enum_value(ExceptionType, exception_type, 'exception type')
        record.exception_reason = reason
        record.approved_by = caller.id
        if status is not None:
            record.status = Validator.enum_value(AttendanceStatus, status, 'status')
        if notes:
            record.notes = notes

        db.session.commit()
        return record

    @staticmethod
    def soft_delete(record_id: int, caller: Member, reason: str = None) -> AttendanceRecord:
        """Mark a check-in deleted; records are never removed."""
        ensure_permission(caller.role, Permission.DELETE_ATTENDANCE)

        record = AttendanceRecord.get_by_id(record_id)
        if not record or record.is_deleted:
            raise NotFound("Attendance record not found")

        record.is_deleted = True
        record.deleted_by = caller.id
        record.deleted_at = datetime.utcnow()
        record.delete_reason = reason or 'Deleted by admin'

        db.session.commit()
        logger.info("Attendance record %s soft-deleted by %s", record_id, caller.id)
        return record

    @staticmethod
    def _live_records(service_id: int = None, member_id: int = None, status=None, method=None,
                      start: date = None, end: date = None):
        """Query over non-deleted check-ins matching the given filters."""
        query = AttendanceRecord.query.filter(AttendanceRecord.is_deleted.is_(False))
        if service_id:
            query = query.filter(AttendanceRecord.service_id == service_id)
        if member_id:
            query = query.filter(AttendanceRecord.member_id == member_id)
        if status:
            query = query.filter(
                AttendanceRecord.status == Validator.enum_value(AttendanceStatus, status, 'status')
            )
        if method:
            query = query.filter(
                AttendanceRecord.method == Validator.enum_value(CheckInMethod, method, 'check-in method')
            )
        if start:
            query = query.filter(AttendanceRecord.calendar_date >= start)
        if end:
            query = query.filter(AttendanceRecord.calendar_date <= end)
        return query

    @staticmethod
    def attendance_summary(query) -> Dict:
        """Status counts, average duration and total lateness over a record query."""
        summary = {status.value: 0 for status in AttendanceStatus}
        counts = query.with_entities(
            AttendanceRecord.status, func.count(AttendanceRecord.id)
        ).group_by(AttendanceRecord.status).all()
        for status, count in counts:
            summary[status.value] = count
        summary['total'] = sum(count for _, count in counts)

        average_duration, minutes_late = query.with_entities(
            func.avg(AttendanceRecord.duration), func.sum(AttendanceRecord.minutes_late)
        ).one()
        summary['average_duration'] = round(float(average_duration), 2) if average_duration else 0
        summary['total_minutes_late'] = int(minutes_late or 0)
        return summary

    @staticmethod
    def _listing_row(record: AttendanceRecord) -> Dict:
        data = record.to_dict()
        data['member'] = {
            'id': record.member.id,
            'name': record.member.full_name,
            'membership_id': record.member.membership_id
        }
        return data

    @staticmethod
    def member_history(member_id: int, start: date = None, end: date = None) -> Dict:
        """Live check-ins of a member with a summary."""
        query = CheckInService._live_records(member_id=member_id, start=start, end=end)
        summary = CheckInService.attendance_summary(query)

        records = query.order_by(AttendanceRecord.calendar_date.desc(),
                                 AttendanceRecord.check_in_time.desc()).all()

        return {
            'records': [r.to_dict() for r in records],
            'summary': summary
        }

    @staticmethod
    def list_attendance(caller: Member, service_id: int = None, member_id: int = None,
                        status=None, method=None, start: date = None, end: date = None,
                        page: int = 1, per_page: int = 50) -> Dict:
        """All live check-ins matching the filters, newest first (admin)."""
        ensure_permission(caller.role, Permission.VIEW_ALL_ATTENDANCE)

        query = CheckInService._live_records(service_id, member_id, status, method, start, end)
        summary = CheckInService.attendance_summary(query)

        pagination = query.order_by(
            AttendanceRecord.calendar_date.desc(), AttendanceRecord.check_in_time.desc()
        ).paginate(page=page, per_page=per_page, error_out=False)

        return {
            'records': [CheckInService._listing_row(r) for r in pagination.items],
            'summary': summary,
            'pagination': pagination_meta(pagination)
        }

    @staticmethod
    def service_attendance(service_id: int, day: date = None, page: int = 1,
                           per_page: int = 100) -> Dict:
        """Check-ins for one service, optionally on a single day, in arrival order."""
        service = Service.get_by_id(service_id)
        if not service:
            raise NotFound("Service not found")

        query = CheckInService._live_records(service_id=service.id, start=day, end=day)
        summary = CheckInService.attendance_summary(query)

        pagination = query.order_by(AttendanceRecord.check_in_time.asc()).paginate(
            page=page, per_page=per_page, error_out=False
        )

        return {
            'service': {
                'id': service.id,
                'name': service.name,
                'service_type': service.service_type,
                'venue': service.venue
            },
            'records': [CheckInService._listing_row(r) for r in pagination.items],
            'summary': summary,
            'pagination': pagination_meta(pagination)
        }
