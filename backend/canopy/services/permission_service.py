# Overview: Service-layer operations for role permissions and the security event trail.

"""
Permission Service

Access is denied unless one of the user's roles grants the code. Only
denials are written to security_events; grants are not logged.

Permission codes are global; roles, and therefore grants, are per
organization and seeded from canopy.permissions.
"""

from ..extensions import db
from ..models import UserRole, Role, RolePermission, Permission, SecurityEvent
from ..permissions import PERMISSION_DEFINITIONS, DEFAULT_ROLE_PERMISSIONS
from canopy.time_utils import utcnow


class PermissionDeniedError(Exception):
    """Raised when the user's roles do not grant a permission code."""
    pass


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
    site_id: int | None = None,
) -> SecurityEvent:
    """
    Append one row to security_events and commit it.

    Event types in use: PERMISSION_DENIED, LOGIN_FAILED,
    CROSS_TENANT_ACCESS_DENIED.
    """
    event = SecurityEvent(
        event_type=event_type,
        success=success,
        user_id=user_id,
        org_id=org_id,
        site_id=site_id,
        resource=resource,
        action=action,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    db.session.commit()
    return event


def get_user_permissions(user_id: int) -> set[str]:
    granted = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .distinct()
    )
    return {code for (code,) in granted}


def require_permission(
    user_id: int,
    permission_code: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    org_id: int | None = None,
    site_id: int | None = None,
) -> None:
    """Raise PermissionDeniedError (after logging it) unless user_id holds the code."""
    if permission_code in get_user_permissions(user_id):
        return

    log_security_event(
        user_id=user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource,
        action=permission_code,
        reason=f"Missing permission: {permission_code}",
        ip_address=ip_address,
        user_agent=user_agent,
        org_id=org_id,
        site_id=site_id,
    )
    raise PermissionDeniedError(f"Permission denied: {permission_code}")


def initialize_permissions() -> int:
    """Insert any permission codes missing from the table. Returns the count added."""
    known = {code for (code,) in db.session.query(Permission.code)}
    missing = [
        Permission(code=code, name=name, description=description, category=category)
        for code, name, description, category in PERMISSION_DEFINITIONS
        if code not in known
    ]
    db.session.add_all(missing)
    db.session.commit()
    return len(missing)


def assign_default_role_permissions(org_id: int) -> int:
    """
    Grant each of the org's default roles its default codes.

    Roles the org does not have and codes not yet initialized are skipped.
    Returns the number of new grants.
    """
    roles = {
        role.name: role
        for role in db.session.query(Role).filter(
            Role.org_id == org_id,
            Role.name.in_(list(DEFAULT_ROLE_PERMISSIONS)),
        )
    }
    permission_ids = {code: pid for code, pid in db.session.query(Permission.code, Permission.id)}
    existing = {
        (role_id, permission_id)
        for role_id, permission_id in db.session.query(RolePermission.role_id, RolePermission.permission_id)
        .join(Role, Role.id == RolePermission.role_id)
        .filter(Role.org_id == org_id)
    }

    added = 0
    for role_name, codes in DEFAULT_ROLE_PERMISSIONS.items():
        role = roles.get(role_name)
        if role is None:
            continue
        for code in codes:
            permission_id = permission_ids.get(code)
            if permission_id is None or (role.id, permission_id) in existing:
                continue
            db.session.add(RolePermission(role_id=role.id, permission_id=permission_id))
            existing.add((role.id, permission_id))
            added += 1

    db.session.commit()
    return added
