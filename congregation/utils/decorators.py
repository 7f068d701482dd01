"""Custom decorators for authorization."""
from functools import wraps
from flask import g
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from congregation.models.member import Member
from congregation.utils.helpers import error_response
from congregation.utils.permissions import Permission, has_permission

def load_current_member():
    """Resolve the JWT identity to an active member, or None."""
    identity = get_jwt_identity()
    if identity is None:
        return None
    try:
        member = Member.get_by_id(int(identity))
    except (TypeError, ValueError):
        return None
    if not member or not member.is_active:
        return None
    return member

def member_required(f):
    """Decorator to require an authenticated, active member."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        verify_jwt_in_request()
        member = load_current_member()

        if not member:
            return error_response("Member not found", 404)

        g.current_member = member
        return f(*args, **kwargs)
    return decorated_function

def permission_required(permission: Permission):
    """Decorator to require a capability of the current member's role."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            verify_jwt_in_request()
            member = load_current_member()

            if not member:
                return error_response("Member not found", 404)

            if not has_permission(member.role, permission):
                return error_response(
                    "You do not have permission to perform this action",
                    403,
                    required=permission.value
                )

            g.current_member = member
            return f(*args, **kwargs)
        return decorated_function
    return decorator
