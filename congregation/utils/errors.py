"""Attendance error taxonomy.

Every failure in the attendance core is expected and recoverable. Services
raise these; the app's error handler renders them with the status code and
payload they carry.
"""
from typing import Any, Dict, Optional


class AttendanceError(Exception):
    """Base class for attendance domain errors."""

    status_code = 400
    default_message = 'Attendance operation failed'

    def __init__(self, message: Optional[str] = None, **payload: Any):
        self.message = message or self.default_message
        self.payload: Dict[str, Any] = payload
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        data = {'error': True, 'message': self.message, 'status_code': self.status_code}
        data.update(self.payload)
        return data


class NotFound(AttendanceError):
    status_code = 404
    default_message = 'Resource not found'


class DuplicateCheckIn(AttendanceError):
    status_code = 409
    default_message = 'Already checked in for this service today'


class OutOfRange(AttendanceError):
    """Submitted location is outside the venue geofence."""

    status_code = 400

    def __init__(self, distance_meters: int, required_radius: int):
        self.distance_meters = distance_meters
        self.required_radius = required_radius
        super().__init__(
            f"You are {distance_meters}m away from the venue. Please move closer to check in.",
            distance=distance_meters,
            required=required_radius,
        )


class Unauthorized(AttendanceError):
    status_code = 403
    default_message = 'Not authorized to perform this action'


class AlreadyCheckedOut(AttendanceError):
    status_code = 409
    default_message = 'Already checked out'


class InvalidToken(AttendanceError):
    status_code = 400
    default_message = 'Invalid or expired registration token'


class AlreadyConverted(AttendanceError):
    status_code = 409
    default_message = 'This invitation has already been used. Please login instead.'


class ValidationError(AttendanceError):
    status_code = 400
    default_message = 'Invalid input'


class InvalidTransition(AttendanceError):
    status_code = 409
    default_message = 'Invalid status transition'


class ConcurrentUpdate(AttendanceError):
    status_code = 409
    default_message = 'The record was modified concurrently, please retry'
