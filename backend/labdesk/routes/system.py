# Overview: Flask API routes for system health; returns JSON responses.

"""
System health endpoint.

Checks the database and that the permission catalog has been seeded.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Laboratory, Permission, SessionToken
from labdesk.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.
    """
    start_time = time.time()
    try:
        lab_count = db.session.query(Laboratory).count()
        active_sessions = db.session.query(SessionToken).filter_by(is_revoked=False).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "laboratories": lab_count,
                "active_sessions": active_sessions,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_permissions_health() -> dict:
    start_time = time.time()
    try:
        permission_count = db.session.query(Permission).count()
        elapsed_ms = (time.time() - start_time) * 1000

        if permission_count == 0:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": "Permissions not initialized (run: flask system init)",
            }
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"permission_count": permission_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Permission health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Permission catalog error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    permissions_health = check_permissions_health()

    all_checks = [database_health, permissions_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "permissions": permissions_health,
        }
    }, http_status
