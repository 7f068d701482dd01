"""Public visitor endpoints (no authentication)."""
from flask import Blueprint, current_app

from congregation import limiter
from congregation.models.service import Service
from congregation.services.checkin_service import CheckInService
from congregation.services.visitor_service import VisitorService
from congregation.utils.clock import local_today
from congregation.utils.helpers import get_json_body, parse_location, success_response
from congregation.utils.validators import Validator

public_bp = Blueprint('public', __name__)

@public_bp.route('/quick-checkin', methods=['POST'])
@limiter.limit(lambda: current_app.config['QUICK_CHECKIN_RATE_LIMIT'])
def quick_check_in():
    """Check in by name and phone; returning visitors are recognised by phone."""
    data = get_json_body()
    Validator.require(Validator.validate_required_fields(data, ['service_id']))

    outcome = VisitorService.quick_check_in(
        {
            'first_name': data.get('first_name'),
            'last_name': data.get('last_name'),
            'phone': data.get('phone'),
            'email': data.get('email')
        },
        data['service_id'],
        location=parse_location(data),
        device_info=data.get('device_info'),
        source='qr_scan' if data.get('qr_token') else 'manual'
    )

    return success_response(data=outcome.to_dict(), message=outcome.message, status_code=201)

@public_bp.route('/complete-registration', methods=['POST'])
def complete_registration():
    """Turn a registration invite into a member account."""
    data = get_json_body()
    Validator.require(Validator.validate_required_fields(data, ['token', 'password']))

    member = VisitorService.complete_registration(
        data['token'],
        data['password'],
        additional_info=data.get('additional_info')
    )

    return success_response(
        data={
            'member': member.to_dict(),
            'qr_data': CheckInService.member_qr_payload(member),
            'attendance_history': member.total_present
        },
        message="Registration completed successfully! Welcome to the family!",
        status_code=201
    )

@public_bp.route('/check-existence', methods=['POST'])
def check_existence():
    data = get_json_body()
    result = VisitorService.check_existence(phone=data.get('phone'), email=data.get('email'))

    return success_response(data=result)

@public_bp.route('/services/today', methods=['GET'])
def todays_services():
    """Services running today at the venue, for the check-in page."""
    services = Service.scheduled_on(local_today())

    return success_response(data={
        'services': [
            {
                'id': service.id,
                'name': service.name,
                'service_type': service.service_type,
                'start_time': service.start_time.isoformat(),
                'end_time': service.end_time.isoformat(),
                'venue': service.venue,
                'description': service.description
            }
            for service in services
        ],
        'count': len(services)
    })
