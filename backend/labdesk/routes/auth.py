# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- POST /api/auth/login   email + password (+ optional lab_code) -> bearer token
- POST /api/auth/logout  revoke the presented token
- GET  /api/auth/me      current user, roles and permissions

Self-registration does not exist; users are created with `flask users create`.
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..services import permission_service
from ..validation import normalize_keys, json_object, ValidationError
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Token must be included in the Authorization header for protected routes.
    Failed attempts are written to security_events.
    """
    try:
        data = normalize_keys(json_object(request.get_json(silent=True)))
        email = data.get("email")
        password = data.get("password")

        if not email or not password:
            return jsonify({"error": "email and password required"}), 400

        user_agent = request.headers.get("User-Agent")
        ip_address = request.remote_addr

        user = auth_service.authenticate(email, password, lab_code=data.get("lab_code"))

        if not user:
            permission_service.log_security_event(
                user_id=None,
                event_type="LOGIN_FAILED",
                success=False,
                resource=request.path,
                action="LOGIN",
                reason=f"Invalid credentials for {str(email).strip().lower()}",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=user_agent,
            ip_address=ip_address
        )
        permissions = sorted(permission_service.get_user_permissions(user.id))

        return jsonify({
            "user": user.to_dict(),
            "permissions": permissions,
            "token": token,
            "session": session.to_dict(),
            "lab_id": session.lab_id,
            "message": "Login successful"
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ValueError as e:
        return jsonify({"error": str(e)}), 401
    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    token = request.headers["Authorization"].split(" ", 1)[1]
    session_service.revoke_session(token)
    return jsonify({"message": "Logged out"}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "roles": permission_service.get_user_role_names(user.id),
        "permissions": sorted(permission_service.get_user_permissions(user.id)),
        "lab_id": g.lab_id,
    }), 200
