# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every worksheet transition and invoice change must be attributable to
a named user. Passwords are hashed with bcrypt and checked for strength.

Users belong to exactly one laboratory; email uniqueness is lab-scoped.

SECURITY NOTES:
- bcrypt cost factor from BCRYPT_ROUNDS (12 by default)
- Minimum 8 characters with upper, lower, digit and special char
- Session tokens are managed in session_service.py
"""

import bcrypt
import re
from flask import current_app

from ..extensions import db
from ..models import User, Role, UserRole, Laboratory
from ..permissions import DEFAULT_ROLES
from labdesk.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def create_user(
    email: str,
    name: str,
    password: str,
    lab_id: int,
) -> User:
    """
    Create a laboratory user with a bcrypt password hash.

    Raises:
        ValueError: If the laboratory is missing/inactive or the email is taken
        PasswordValidationError: If password doesn't meet requirements
    """
    lab = db.session.get(Laboratory, lab_id)
    if not lab:
        raise ValueError("Laboratory not found")
    if not lab.is_active:
        raise ValueError("Laboratory is not active")

    email = email.strip().lower()
    existing = db.session.query(User).filter_by(lab_id=lab_id, email=email).first()
    if existing:
        raise ValueError("Email already exists in this laboratory")

    user = User(
        lab_id=lab_id,
        email=email,
        name=name.strip(),
        password_hash=hash_password(password),
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str, lab_code: str | None = None) -> User | None:
    """
    Authenticate by email and password.

    With lab_code the lookup is scoped to that laboratory. Returns the User
    and stamps last_login_at on success, None otherwise.
    """
    query = db.session.query(User).join(Laboratory, Laboratory.id == User.lab_id).filter(
        User.email == email.strip().lower(),
        User.is_active.is_(True),
        Laboratory.is_active.is_(True),
    )
    if lab_code:
        query = query.filter(Laboratory.code == lab_code)

    user = query.first()
    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def assign_role(user_id: int, role_name: str) -> UserRole:
    """Assign one of the user's laboratory roles to the user."""
    user = db.session.get(User, user_id)
    if not user:
        raise ValueError("User not found")

    role = db.session.query(Role).filter_by(lab_id=user.lab_id, name=role_name).first()
    if not role:
        raise ValueError(f"Role {role_name} not found")

    existing = db.session.query(UserRole).filter_by(user_id=user_id, role_id=role.id).first()
    if existing:
        return existing

    user_role = UserRole(user_id=user_id, role_id=role.id)
    db.session.add(user_role)
    db.session.commit()
    return user_role


def create_default_roles(lab_id: int) -> None:
    """Create the standard roles for a laboratory if they don't exist."""
    for name, desc in DEFAULT_ROLES:
        existing = db.session.query(Role).filter_by(lab_id=lab_id, name=name).first()
        if not existing:
            db.session.add(Role(lab_id=lab_id, name=name, description=desc))

    db.session.commit()
