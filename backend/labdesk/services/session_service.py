# Overview: Service-layer operations for session; encapsulates business logic and database work.

"""
Session Token Management

WHY: Bearer-token sessions with automatic timeout and revocation.

Sessions capture lab_id at creation time; that becomes the tenant context
for every authenticated request (g.lab_id).

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage
- 24-hour absolute timeout (SESSION_ABSOLUTE_TIMEOUT)
- 2-hour idle timeout (SESSION_IDLE_TIMEOUT)
- Revocable on logout
"""

import secrets
import hashlib
from dataclasses import dataclass
from datetime import timedelta
from ..extensions import db
from ..models import SessionToken, User, Laboratory
from labdesk.time_utils import utcnow


SESSION_ABSOLUTE_TIMEOUT = timedelta(hours=24)
SESSION_IDLE_TIMEOUT = timedelta(hours=2)


@dataclass
class SessionContext:
    """User identity plus tenant context, taken from the session record."""
    user: User
    session: SessionToken
    lab_id: int


def generate_token() -> str:
    """64-character hex token (32 bytes of entropy); only the hash is stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    # Tokens are already high-entropy, SHA-256 is sufficient.
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None
) -> tuple[SessionToken, str]:
    """
    Create new session token for user.

    Returns (session_record, plaintext_token).

    Raises ValueError if the user is missing or their laboratory is inactive.
    """
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")

    lab = db.session.get(Laboratory, user.lab_id)
    if not lab or not lab.is_active:
        raise ValueError("Laboratory is not active")

    plaintext_token = generate_token()
    now = utcnow()

    session = SessionToken(
        user_id=user_id,
        lab_id=user.lab_id,
        token_hash=hash_token(plaintext_token),
        created_at=now,
        last_used_at=now,
        expires_at=now + SESSION_ABSOLUTE_TIMEOUT,
        user_agent=user_agent,
        ip_address=ip_address,
        is_revoked=False
    )

    db.session.add(session)
    db.session.commit()

    return session, plaintext_token


def _revoke(session: SessionToken, reason: str) -> None:
    session.is_revoked = True
    session.revoked_at = utcnow()
    session.revoked_reason = reason
    db.session.commit()


def validate_session(token: str) -> SessionContext | None:
    """
    Validate session token and return SessionContext if valid.

    Returns None if:
    - Token is invalid, expired, or revoked
    - User account is deactivated
    - Laboratory is deactivated

    Updates last_used_at on successful validation.
    """
    now = utcnow()

    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return None

    if session.expires_at < now:
        return None

    if now - session.last_used_at > SESSION_IDLE_TIMEOUT:
        _revoke(session, "Idle timeout")
        return None

    user = session.user
    if not user or not user.is_active:
        _revoke(session, "User account deactivated")
        return None

    lab = session.laboratory
    if not lab or not lab.is_active:
        _revoke(session, "Laboratory deactivated")
        return None

    session.last_used_at = now
    db.session.commit()

    return SessionContext(user=user, session=session, lab_id=session.lab_id)


def revoke_session(token: str, reason: str = "User logout") -> bool:
    """Revoke session token. Returns False if no live session matches."""
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False
    ).first()

    if not session:
        return False

    _revoke(session, reason)
    return True
