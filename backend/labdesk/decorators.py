# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service, permission_service
from .services.permission_service import PermissionDeniedError


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'lab_id')


def require_auth(f):
    """
    Require authentication and establish tenant context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.lab_id: The laboratory ID (tenant context) - REQUIRED
    - g.session_context: The full SessionContext object

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid or expired token
    - User account deactivated
    - Laboratory deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]

        # Validate token and get session context (includes tenant info)
        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.lab_id = context.lab_id
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """
    Require a specific permission.

    Denials are written to security_events with the caller's lab_id and
    rejected before the route body runs, so nothing is mutated.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user

            try:
                permission_service.require_permission(
                    user_id=user.id,
                    permission_code=permission_code,
                    resource=request.path,
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                    lab_id=g.lab_id,
                )
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": str(e)
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_any_permission(*permission_codes):
    """
    Require any of the specified permissions.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            user = g.current_user
            user_permissions = permission_service.get_user_permissions(user.id)

            if not any(code in user_permissions for code in permission_codes):
                permission_service.log_security_event(
                    user_id=user.id,
                    event_type="PERMISSION_DENIED",
                    success=False,
                    resource=request.path,
                    action=f"ANY_OF:{','.join(permission_codes)}",
                    reason=f"Missing any of: {', '.join(permission_codes)}",
                    ip_address=request.remote_addr,
                    user_agent=request.headers.get("User-Agent"),
                    lab_id=g.lab_id,
                )
                return jsonify({
                    "error": "Permission denied",
                    "required_permissions": list(permission_codes),
                    "message": f"Requires any of: {', '.join(permission_codes)}"
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
