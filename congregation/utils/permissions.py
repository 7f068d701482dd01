"""Role capabilities and resource ownership.

Roles are the closed ``MemberRole`` enum. Each role maps to an explicit set of
``Permission`` values, and every role must appear in the table. Ownership of
a resource is resolved through ``OWNER_ACCESSORS``, one accessor per
``ResourceKind``.
"""
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Optional

from congregation.models.member import MemberRole
from congregation.utils.errors import Unauthorized


class Permission(Enum):
    """Capabilities checked by the attendance core."""
    OVERRIDE_GEOFENCE = 'override_geofence'
    MANAGE_ANY_CHECKIN = 'manage_any_checkin'
    BULK_CHECKIN = 'bulk_checkin'
    EDIT_ATTENDANCE = 'edit_attendance'
    DELETE_ATTENDANCE = 'delete_attendance'
    RUN_ABSENCE_CHECK = 'run_absence_check'
    VIEW_ALL_ATTENDANCE = 'view_all_attendance'
    MANAGE_FOLLOWUPS = 'manage_followups'
    VIEW_ALL_FOLLOWUPS = 'view_all_followups'
    CREATE_FOLLOWUPS = 'create_followups'


ROLE_PERMISSIONS: Dict[MemberRole, FrozenSet[Permission]] = {
    MemberRole.SUPER_ADMIN: frozenset(Permission),
    MemberRole.ADMIN: frozenset({
        Permission.OVERRIDE_GEOFENCE,
        Permission.MANAGE_ANY_CHECKIN,
        Permission.BULK_CHECKIN,
        Permission.EDIT_ATTENDANCE,
        Permission.DELETE_ATTENDANCE,
        Permission.RUN_ABSENCE_CHECK,
        Permission.VIEW_ALL_ATTENDANCE,
        Permission.MANAGE_FOLLOWUPS,
        Permission.VIEW_ALL_FOLLOWUPS,
        Permission.CREATE_FOLLOWUPS,
    }),
    MemberRole.PASTOR: frozenset({
        Permission.VIEW_ALL_ATTENDANCE,
        Permission.MANAGE_FOLLOWUPS,
        Permission.VIEW_ALL_FOLLOWUPS,
        Permission.CREATE_FOLLOWUPS,
    }),
    MemberRole.DEPARTMENT_HEAD: frozenset({Permission.MANAGE_FOLLOWUPS}),
    MemberRole.MINISTER: frozenset({Permission.MANAGE_FOLLOWUPS}),
    MemberRole.WORKER: frozenset(),
    MemberRole.MEMBER: frozenset(),
    MemberRole.VISITOR: frozenset(),
}

_unmapped = set(MemberRole) - set(ROLE_PERMISSIONS)
if _unmapped:
    raise RuntimeError(f"Roles without a capability set: {sorted(r.value for r in _unmapped)}")


class ResourceKind(Enum):
    CHECK_IN = 'check_in'
    FOLLOW_UP = 'follow_up'


OWNER_ACCESSORS: Dict[ResourceKind, Callable[[Any], Optional[int]]] = {
    ResourceKind.CHECK_IN: lambda record: record.member_id,
    ResourceKind.FOLLOW_UP: lambda task: task.assigned_to_id,
}

_unowned = set(ResourceKind) - set(OWNER_ACCESSORS)
if _unowned:
    raise RuntimeError(f"Resource kinds without an owner accessor: {sorted(k.value for k in _unowned)}")


def has_permission(role: Optional[MemberRole], permission: Permission) -> bool:
    """Check if role grants permission."""
    if role is None:
        return False
    return permission in ROLE_PERMISSIONS[role]


def is_owner(kind: ResourceKind, resource: Any, member_id: Optional[int]) -> bool:
    """Check if member owns resource."""
    if member_id is None:
        return False
    return OWNER_ACCESSORS[kind](resource) == member_id


def ensure_owner_or_permitted(kind: ResourceKind, resource: Any,
                              member_id: Optional[int], role: Optional[MemberRole],
                              permission: Permission, message: str = None) -> None:
    """Raise Unauthorized unless the caller owns the resource or holds permission."""
    if is_owner(kind, resource, member_id) or has_permission(role, permission):
        return
    raise Unauthorized(message)


def ensure_permission(role: Optional[MemberRole], permission: Permission,
                      message: str = None) -> None:
    """Raise Unauthorized unless role grants permission."""
    if not has_permission(role, permission):
        raise Unauthorized(message or 'You do not have permission to perform this action',
                           required=permission.value)
