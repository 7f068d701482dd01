"""Follow-up API endpoints."""
from datetime import datetime, time

from flask import Blueprint, g, request

from congregation.services.followup_service import FollowUpService
from congregation.utils.decorators import member_required, permission_required
from congregation.utils.helpers import get_json_body, parse_date, success_response
from congregation.utils.permissions import Permission
from congregation.utils.validators import Validator

followups_bp = Blueprint('followups', __name__)

@followups_bp.route('/', methods=['GET'])
@member_required
def list_follow_ups():
    """Follow-ups visible to the current member."""
    tasks = FollowUpService.list_for(
        g.current_member,
        status=request.args.get('status'),
        priority=request.args.get('priority')
    )

    return success_response(data={
        'follow_ups': [task.to_dict() for task in tasks],
        'count': len(tasks)
    })

@followups_bp.route('/', methods=['POST'])
@permission_required(Permission.CREATE_FOLLOWUPS)
def create_follow_up():
    """Open a follow-up by hand (admin, super_admin, pastor)."""
    data = get_json_body()
    Validator.require(Validator.validate_required_fields(data, ['member_id', 'reason']))

    due_date = parse_date(data.get('due_date'))
    task = FollowUpService.create(
        g.current_member,
        data['member_id'],
        data['reason'],
        priority=data.get('priority'),
        due_date=datetime.combine(due_date, time.min) if due_date else None,
        assigned_to_id=data.get('assigned_to_id'),
        custom_reason=data.get('custom_reason')
    )

    return success_response(data={'follow_up': task.to_dict()}, message="Follow-up created",
                            status_code=201)

@followups_bp.route('/<int:task_id>/contact-attempts', methods=['POST'])
@member_required
def add_contact_attempt(task_id):
    data = get_json_body()
    Validator.require(Validator.validate_required_fields(data, ['method', 'outcome']))

    task = FollowUpService.add_contact_attempt(
        task_id,
        data['method'],
        data['outcome'],
        notes=data.get('notes'),
        contacted_by=g.current_member
    )

    return success_response(data={'follow_up': task.to_dict()}, message="Contact attempt recorded",
                            status_code=201)

@followups_bp.route('/<int:task_id>/complete', methods=['PUT'])
@member_required
def complete_follow_up(task_id):
    data = get_json_body()
    Validator.require(Validator.validate_required_fields(data, ['outcome']))

    task = FollowUpService.complete(
        task_id,
        data['outcome'],
        notes=data.get('notes'),
        caller=g.current_member
    )

    return success_response(data={'follow_up': task.to_dict()}, message="Follow-up completed")

@followups_bp.route('/<int:task_id>/cancel', methods=['PUT'])
@member_required
def cancel_follow_up(task_id):
    data = get_json_body()
    task = FollowUpService.cancel(task_id, reason=data.get('reason'), caller=g.current_member)

    return success_response(data={'follow_up': task.to_dict()}, message="Follow-up cancelled")
