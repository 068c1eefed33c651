# Overview: Service-layer operations for permission; encapsulates business logic and database work.

"""
Permission Checking and Security Event Logging

WHY: Enforce role-based access control and keep a trail of denials.

require_permission() is the single authorization policy function. The
@require_permission route decorator calls it, and services call it for
checks that depend on the request body (e.g. the permission needed for a
worksheet transition depends on the target status).

DESIGN PRINCIPLES:
- Fail closed: deny by default, require an explicit grant through a role
- Log denials only: grants are not logged
- Lab isolation: roles are lab-scoped, security events carry lab_id
"""

from flask import has_request_context, request

from ..extensions import db
from ..models import User, UserRole, Role, RolePermission, Permission, SecurityEvent
from ..permissions import PERMISSION_DEFINITIONS, DEFAULT_ROLE_PERMISSIONS, validate_permission_code
from labdesk.time_utils import utcnow


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""
    pass


def _client_context() -> tuple[str | None, str | None, str | None]:
    if not has_request_context():
        return None, None, None
    return request.path, request.remote_addr, request.headers.get("User-Agent")


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    lab_id: int | None = None,
) -> SecurityEvent:
    """
    Append a security event.

    event_type examples:
    - PERMISSION_DENIED
    - LOGIN_FAILED
    - CROSS_TENANT_ACCESS_DENIED
    """
    event = SecurityEvent(
        user_id=user_id,
        lab_id=lab_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    db.session.commit()

    return event


def get_user_permissions(user_id: int) -> set[str]:
    """
    Get all permission codes for a user: the union over all of their roles.
    """
    rows = (
        db.session.query(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .filter(UserRole.user_id == user_id)
        .distinct()
        .all()
    )
    return {code for (code,) in rows}


def user_has_permission(user_id: int, permission_code: str) -> bool:
    return permission_code in get_user_permissions(user_id)


def require_permission(
    user_id: int,
    permission_code: str,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    lab_id: int | None = None,
) -> None:
    """
    Require user to have permission, raise PermissionDeniedError if not.

    Denials are written to security_events. Client details default to the
    current request when called from inside one.

    Usage:
        require_permission(user.id, "MANAGE_INVOICES", lab_id=g.lab_id)
    """
    if user_has_permission(user_id, permission_code):
        return

    req_path, req_ip, req_agent = _client_context()
    if lab_id is None:
        user = db.session.get(User, user_id)
        lab_id = user.lab_id if user else None

    # Log only denials (policy: no granted logs)
    log_security_event(
        user_id=user_id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=resource or req_path,
        action=permission_code,
        reason=f"Missing permission: {permission_code}",
        ip_address=ip_address or req_ip,
        user_agent=user_agent or req_agent,
        lab_id=lab_id,
    )
    raise PermissionDeniedError(f"Permission denied: {permission_code}")


def get_user_role_names(user_id: int) -> list[str]:
    rows = (
        db.session.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id)
        .order_by(Role.name)
        .all()
    )
    return [name for (name,) in rows]


def initialize_permissions() -> int:
    """
    Create Permission records for all codes in PERMISSION_DEFINITIONS.

    Idempotent: Safe to run multiple times.
    """
    created_count = 0

    for code, name, description, category in PERMISSION_DEFINITIONS:
        existing = db.session.query(Permission).filter_by(code=code).first()

        if not existing:
            permission = Permission(
                code=code,
                name=name,
                description=description,
                category=category
            )
            db.session.add(permission)
            created_count += 1

    db.session.commit()
    return created_count


def assign_default_role_permissions(lab_id: int | None = None) -> int:
    """
    Link roles to their default permissions (DEFAULT_ROLE_PERMISSIONS).

    With lab_id, only that laboratory's roles are touched; otherwise every
    lab's roles are. Idempotent: existing links are skipped.
    """
    created_count = 0

    for role_name, permission_codes in DEFAULT_ROLE_PERMISSIONS.items():
        query = db.session.query(Role).filter_by(name=role_name)
        if lab_id is not None:
            query = query.filter_by(lab_id=lab_id)

        for role in query.all():
            for permission_code in permission_codes:
                permission = db.session.query(Permission).filter_by(code=permission_code).first()
                if not permission:
                    continue

                existing = db.session.query(RolePermission).filter_by(
                    role_id=role.id,
                    permission_id=permission.id
                ).first()

                if not existing:
                    db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
                    created_count += 1

    db.session.commit()
    return created_count


def grant_permission_to_role(lab_id: int, role_name: str, permission_code: str) -> RolePermission:
    if not validate_permission_code(permission_code):
        raise ValueError(f"Unknown permission code '{permission_code}'")

    role = db.session.query(Role).filter_by(lab_id=lab_id, name=role_name).first()
    if not role:
        raise ValueError(f"Role '{role_name}' not found")

    permission = db.session.query(Permission).filter_by(code=permission_code).first()
    if not permission:
        raise ValueError(f"Permission '{permission_code}' not found")

    existing = db.session.query(RolePermission).filter_by(
        role_id=role.id,
        permission_id=permission.id
    ).first()

    if existing:
        return existing

    role_permission = RolePermission(role_id=role.id, permission_id=permission.id)
    db.session.add(role_permission)
    db.session.commit()

    return role_permission


def revoke_permission_from_role(lab_id: int, role_name: str, permission_code: str) -> bool:
    if not validate_permission_code(permission_code):
        raise ValueError(f"Unknown permission code '{permission_code}'")

    role = db.session.query(Role).filter_by(lab_id=lab_id, name=role_name).first()
    if not role:
        raise ValueError(f"Role '{role_name}' not found")

    permission = db.session.query(Permission).filter_by(code=permission_code).first()
    if not permission:
        raise ValueError(f"Permission '{permission_code}' not found")

    role_permission = db.session.query(RolePermission).filter_by(
        role_id=role.id,
        permission_id=permission.id
    ).first()

    if role_permission:
        db.session.delete(role_permission)
        db.session.commit()
        return True

    return False
