"""Attendance API endpoints."""
from flask import Blueprint, g, request

from congregation.services.absence_service import AbsenceService
from congregation.services.checkin_service import CheckInService
from congregation.utils.decorators import member_required, permission_required
from congregation.utils.helpers import (
    get_json_body, page_args, parse_date, parse_location, success_response
)
from congregation.utils.errors import ValidationError
from congregation.utils.permissions import Permission, ensure_permission
from congregation.utils.validators import Validator

attendance_bp = Blueprint('attendance', __name__)

@attendance_bp.route('/checkin', methods=['POST'])
@member_required
def check_in():
    """Check the current member in to a service.

    Elevated callers may pass ``member_id`` to check in someone else.
    """
    data = get_json_body()
    Validator.require(Validator.validate_required_fields(data, ['service_id']))

    caller = g.current_member
    member_id = caller.id
    if data.get('member_id') is not None:
        try:
            member_id = int(data['member_id'])
        except (TypeError, ValueError):
            raise ValidationError("member_id must be an integer")
    if member_id != caller.id:
        ensure_permission(caller.role, Permission.MANAGE_ANY_CHECKIN,
                          "Not authorized to check in other members")

    result = CheckInService.submit_check_in(
        member_id,
        data['service_id'],
        method=data.get('method', 'manual'),
        location=parse_location(data),
        device_info=data.get('device_info'),
        caller=caller,
        notes=data.get('notes')
    )

    return success_response(data=result.to_dict(), message=result.message, status_code=201)

@attendance_bp.route('/qr-checkin', methods=['POST'])
@member_required
def qr_check_in():
    """Check in a member by scanning their QR code (usher device)."""
    data = get_json_body()
    Validator.require(Validator.validate_required_fields(data, ['qr_data', 'service_id']))

    result = CheckInService.qr_check_in(
        data['qr_data'],
        data['service_id'],
        location=parse_location(data),
        device_info=data.get('device_info')
    )

    return success_response(data=result.to_dict(), message=result.message, status_code=201)

@attendance_bp.route('/<int:record_id>/checkout', methods=['POST'])
@member_required
def check_out(record_id):
    caller = g.current_member
    record = CheckInService.check_out(record_id, caller.id, caller.role)

    return success_response(
        data={'attendance': record.to_dict()},
        message="Checked out successfully"
    )

@attendance_bp.route('/bulk-checkin', methods=['POST'])
@permission_required(Permission.BULK_CHECKIN)
def bulk_check_in():
    """Manual check-in for a list of members (admin)."""
    data = get_json_body()
    Validator.require(Validator.validate_required_fields(data, ['member_ids', 'service_id']))

    if not isinstance(data['member_ids'], list):
        raise ValidationError("member_ids must be a list")

    results = CheckInService.bulk_check_in(
        data['member_ids'],
        data['service_id'],
        g.current_member,
        day=parse_date(data.get('date')),
        notes=data.get('notes')
    )

    return success_response(
        data=results,
        message=f"Checked in {len(results['success'])} members, {len(results['failed'])} failed"
    )

@attendance_bp.route('/<int:record_id>', methods=['PUT'])
@permission_required(Permission.EDIT_ATTENDANCE)
def record_exception(record_id):
    """Record an exception against a check-in (admin)."""
    data = get_json_body()
    Validator.require(Validator.validate_required_fields(data, ['exception_type', 'reason']))

    record = CheckInService.record_exception(
        record_id,
        g.current_member,
        data['exception_type'],
        data['reason'],
        status=data.get('status'),
        notes=data.get('notes')
    )

    return success_response(data={'attendance': record.to_dict()}, message="Attendance updated")

@attendance_bp.route('/<int:record_id>', methods=['DELETE'])
@permission_required(Permission.DELETE_ATTENDANCE)
def delete_attendance(record_id):
    data = get_json_body()
    CheckInService.soft_delete(record_id, g.current_member, reason=data.get('reason'))

    return success_response(message="Attendance record deleted")

@attendance_bp.route('/check-absences', methods=['POST'])
@permission_required(Permission.RUN_ABSENCE_CHECK)
def check_absences():
    """Evaluate absences for a service occurrence."""
    data = get_json_body()
    Validator.require(Validator.validate_required_fields(data, ['service_id', 'date']))

    report = AbsenceService.evaluate_absences(data['service_id'], parse_date(data['date']))

    message = "Absences already evaluated" if report.already_evaluated else "Absence check completed"
    return success_response(data=report.to_dict(), message=message)

@attendance_bp.route('/my-records', methods=['GET'])
@member_required
def my_records():
    """Current member's attendance history with a summary."""
    member = g.current_member
    history = CheckInService.member_history(
        member.id,
        start=parse_date(request.args.get('start_date')),
        end=parse_date(request.args.get('end_date'))
    )
    history['stats'] = member.attendance_stats

    return success_response(data=history)

@attendance_bp.route('/', methods=['GET'])
@permission_required(Permission.VIEW_ALL_ATTENDANCE)
def list_attendance():
    """All attendance records with filters and a summary (admin, pastor)."""
    page, per_page = page_args(default_per_page=50)

    result = CheckInService.list_attendance(
        g.current_member,
        service_id=request.args.get('service_id', type=int),
        member_id=request.args.get('member_id', type=int),
        status=request.args.get('status'),
        method=request.args.get('method'),
        start=parse_date(request.args.get('start_date')),
        end=parse_date(request.args.get('end_date')),
        page=page,
        per_page=per_page
    )

    return success_response(data=result, message=f"Found {result['pagination']['total']} records")

@attendance_bp.route('/service/<int:service_id>', methods=['GET'])
@member_required
def service_attendance(service_id):
    """Attendance for one service, optionally on a single date."""
    page, per_page = page_args(default_per_page=100)

    result = CheckInService.service_attendance(
        service_id,
        day=parse_date(request.args.get('date')),
        page=page,
        per_page=per_page
    )

    return success_response(data=result)
